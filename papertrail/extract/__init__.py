"""Extraction adapters: turn a source's raw form into plain text."""
from papertrail.extract.pdf import extract_pdf
from papertrail.extract.text import extract_text
from papertrail.extract.web import ScrapedPage, scrape_url, read_page
from papertrail.extract.youtube import extract_video_id, fetch_transcript
from papertrail.extract.image import describe_image

__all__ = [
    "extract_pdf",
    "extract_text",
    "ScrapedPage",
    "scrape_url",
    "read_page",
    "extract_video_id",
    "fetch_transcript",
    "describe_image",
]
