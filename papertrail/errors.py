"""Exception hierarchy for ingestion, retrieval and the chat tool loop."""


class PapertrailError(Exception):
    """Base class for all application errors."""


class ExtractionError(PapertrailError):
    """A source could not be converted to text. Fatal to the source."""


class FetchError(ExtractionError):
    """Remote content returned a non-2xx status or timed out."""


class InvalidUrlError(ExtractionError):
    """The URL is malformed or does not match the expected shape."""


class NoTranscriptError(ExtractionError):
    """The video has no captions available."""


class EmptyExtractionError(ExtractionError):
    """Extraction succeeded but produced no usable text."""


class EmbeddingProviderError(PapertrailError):
    """Embedding request failed or no credential is available. Non-fatal."""


class ToolExecutionError(PapertrailError):
    """A chat tool failed. Surfaced to the model as structured output."""


class StoreWriteError(PapertrailError):
    """An upload or insert failed."""


class SourceNotFoundError(PapertrailError):
    """The requested source does not exist for this user."""
