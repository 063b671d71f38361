"""YouTube transcript extraction."""
import asyncio
import re
from typing import Optional
from youtube_transcript_api import YouTubeTranscriptApi, CouldNotRetrieveTranscript
import structlog

from papertrail import config
from papertrail.errors import InvalidUrlError, NoTranscriptError

logger = structlog.get_logger()

VIDEO_ID_PATTERNS = (
    re.compile(r"youtube\.com/watch\?v=([a-zA-Z0-9_-]{11})"),
    re.compile(r"youtu\.be/([a-zA-Z0-9_-]{11})"),
    re.compile(r"youtube\.com/embed/([a-zA-Z0-9_-]{11})"),
    re.compile(r"youtube\.com/v/([a-zA-Z0-9_-]{11})"),
)


def extract_video_id(url: str) -> Optional[str]:
    """Return the 11-character video ID, or None if the URL isn't a YouTube URL."""
    for pattern in VIDEO_ID_PATTERNS:
        match = pattern.search(url or "")
        if match:
            return match.group(1)
    return None


def _fetch_snippets(video_id: str) -> str:
    transcript = YouTubeTranscriptApi().fetch(video_id)
    return " ".join(snippet.text for snippet in transcript)


async def fetch_transcript(url: str, timeout: Optional[float] = None) -> str:
    """Fetch a video's captions as one space-joined string.

    Args:
        url: YouTube URL (watch, youtu.be, embed or /v/ form)
        timeout: Seconds to wait for the transcript service

    Returns:
        Transcript text

    Raises:
        InvalidUrlError: If no video ID can be extracted
        NoTranscriptError: If the video has no usable captions
    """
    video_id = extract_video_id(url)
    if not video_id:
        raise InvalidUrlError("Could not extract video ID from URL")

    timeout = timeout or config.TRANSCRIPT_TIMEOUT

    try:
        # The transcript client is synchronous; keep it off the event loop
        text = await asyncio.wait_for(
            asyncio.to_thread(_fetch_snippets, video_id), timeout=timeout
        )
    except CouldNotRetrieveTranscript as e:
        logger.warning("transcript_unavailable", video_id=video_id, error=type(e).__name__)
        raise NoTranscriptError("No transcript available for this video") from e
    except asyncio.TimeoutError as e:
        logger.warning("transcript_timeout", video_id=video_id, timeout=timeout)
        raise NoTranscriptError("No transcript available for this video") from e

    if not text.strip():
        raise NoTranscriptError("No transcript available for this video")

    logger.info("transcript_fetched", video_id=video_id, text_length=len(text))
    return text
