"""Plain-text passthrough."""


def extract_text(data: bytes) -> str:
    """Decode an uploaded text file; undecodable bytes are replaced."""
    return data.decode("utf-8", errors="replace")
