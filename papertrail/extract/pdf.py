"""PDF text extraction via pypdf."""
import io
import pypdf
from pypdf.errors import PyPdfError
import structlog

from papertrail.errors import ExtractionError

logger = structlog.get_logger()


def extract_pdf(data: bytes) -> str:
    """Extract the text of every page, separated by blank lines.

    Pages that yield no text (scanned images, etc.) are skipped.

    Args:
        data: PDF file bytes

    Returns:
        Flattened document text

    Raises:
        ExtractionError: If the bytes are not a parseable PDF
    """
    try:
        reader = pypdf.PdfReader(io.BytesIO(data))
        parts = []
        for page in reader.pages:
            page_text = (page.extract_text() or "").strip()
            if page_text:
                parts.append(page_text)
    except (PyPdfError, ValueError, OSError) as e:
        logger.error("pdf_parse_failed", error=str(e), size=len(data))
        raise ExtractionError(f"Failed to parse PDF: {e}") from e

    logger.info("pdf_extracted", pages=len(parts), text_length=sum(len(p) for p in parts))
    return "\n\n".join(parts)
