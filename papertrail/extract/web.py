"""Web page scraping: main text, description and featured images."""
import re
from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import urljoin, urlparse
import httpx
from bs4 import BeautifulSoup
import structlog

from papertrail import config
from papertrail.errors import FetchError, InvalidUrlError

logger = structlog.get_logger()

NON_CONTENT_SELECTORS = (
    "head, title, script, style, noscript, iframe, nav, footer, header, aside, "
    ".nav, .footer, .header, .sidebar, .ad, .ads, .advertisement, "
    ".comments, .comment"
)
MAIN_CONTENT_SELECTORS = (
    "article",
    "main",
    "[role=main]",
    ".content",
    ".post-content",
    ".entry-content",
)
IMAGE_CONTAINER_SELECTORS = (
    "article",
    "main",
    ".content",
    ".post-content",
    ".entry-content",
)
META_IMAGE_SELECTORS = (
    'meta[property="og:image"]',
    'meta[property="og:image:secure_url"]',
    'meta[name="twitter:image"]',
    'meta[name="twitter:image:src"]',
)
TRACKING_HINTS = ("1x1", "pixel", "tracking")
MIN_IMAGE_DIMENSION = 200


@dataclass
class ScrapedPage:
    """Extracted content of one web page."""

    url: str
    title: str
    description: str = ""
    content: str = ""
    image_urls: List[str] = field(default_factory=list)


def validate_url(url: str) -> str:
    """Return the URL if it is absolute http(s).

    Raises:
        InvalidUrlError: For anything else
    """
    parsed = urlparse(url or "")
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidUrlError(f"Invalid URL: {url!r}")
    return url


async def fetch(
    url: str,
    timeout: Optional[float] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.Response:
    """GET a URL with the browser-like user agent.

    Raises:
        FetchError: On timeout, transport failure or non-2xx status
    """
    timeout = timeout or config.FETCH_TIMEOUT
    try:
        async with httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
        ) as client:
            response = await client.get(url, headers={"User-Agent": config.USER_AGENT})
    except httpx.TimeoutException as e:
        logger.warning("fetch_timeout", url=url, timeout=timeout)
        raise FetchError(f"Timed out fetching {url}") from e
    except httpx.HTTPError as e:
        logger.warning("fetch_failed", url=url, error=str(e))
        raise FetchError(f"Failed to fetch {url}: {e}") from e

    if not response.is_success:
        logger.warning("fetch_http_error", url=url, status_code=response.status_code)
        raise FetchError(
            f"Failed to fetch URL: {response.status_code} {response.reason_phrase}"
        )
    return response


def parse_page(html: str, url: str, max_chars: Optional[int] = None) -> ScrapedPage:
    """Extract title, description, featured images and main text from HTML.

    Args:
        html: Page HTML
        url: Page URL, used for resolving relative image links
        max_chars: Truncate the main text to this many characters

    Returns:
        ScrapedPage with whitespace-collapsed content
    """
    max_chars = max_chars or config.STORED_TEXT_LIMIT
    soup = BeautifulSoup(html, "html.parser")

    title = _first_text(soup, "title") or _first_text(soup, "h1") or url
    description = (
        _meta_content(soup, 'meta[name="description"]')
        or _meta_content(soup, 'meta[property="og:description"]')
        or _meta_content(soup, 'meta[name="twitter:description"]')
    )

    # Images are collected before the non-content markup is dropped
    image_urls = _featured_images(soup, url)

    for tag in soup.select(NON_CONTENT_SELECTORS):
        if not tag.decomposed:
            tag.decompose()

    content = ""
    for selector in MAIN_CONTENT_SELECTORS:
        element = soup.select_one(selector)
        if element is not None:
            content = _collapse(element.get_text(" "))
            if content:
                break
    if not content and soup.body is not None:
        content = _collapse(soup.body.get_text(" "))
    elif not content:
        content = _collapse(soup.get_text(" "))

    return ScrapedPage(
        url=url,
        title=title,
        description=description,
        content=content[:max_chars],
        image_urls=image_urls,
    )


async def scrape_url(
    url: str,
    max_chars: Optional[int] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ScrapedPage:
    """Fetch a page and extract its content for storage.

    Args:
        url: Absolute http(s) URL
        max_chars: Text limit (defaults to config.STORED_TEXT_LIMIT)
        transport: Optional httpx transport, used by tests

    Raises:
        InvalidUrlError: If the URL isn't http(s)
        FetchError: If the page can't be fetched
    """
    validate_url(url)
    response = await fetch(url, transport=transport)
    page = parse_page(response.text, str(response.url), max_chars=max_chars)

    logger.info(
        "url_scraped",
        url=url,
        content_length=len(page.content),
        image_count=len(page.image_urls),
    )
    return page


async def read_page(
    url: str, transport: Optional[httpx.AsyncBaseTransport] = None
) -> ScrapedPage:
    """Same extraction as scrape_url, bounded for inline agent use."""
    return await scrape_url(url, max_chars=config.AGENT_TEXT_LIMIT, transport=transport)


def _collapse(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def _first_text(soup: BeautifulSoup, selector: str) -> str:
    element = soup.select_one(selector)
    return _collapse(element.get_text(" ")) if element is not None else ""


def _meta_content(soup: BeautifulSoup, selector: str) -> str:
    element = soup.select_one(selector)
    if element is None:
        return ""
    return (element.get("content") or "").strip()


def _dimension(value: Optional[str]) -> int:
    match = re.match(r"\s*(\d+)", value or "")
    return int(match.group(1)) if match else 0


def _featured_images(soup: BeautifulSoup, base_url: str) -> List[str]:
    """Collect up to MAX_FEATURED_IMAGES absolute image URLs in priority order."""
    candidates: List[str] = []

    for selector in META_IMAGE_SELECTORS:
        value = _meta_content(soup, selector)
        if value:
            candidates.append(value)

    for element in soup.select("[itemprop=image]"):
        value = element.get("src") or element.get("content")
        if value:
            candidates.append(value)

    container = None
    for selector in IMAGE_CONTAINER_SELECTORS:
        container = soup.select_one(selector)
        if container is not None:
            break
    if container is None:
        container = soup.body

    if container is not None:
        for img in container.find_all("img"):
            src = img.get("src") or img.get("data-src")
            if not src:
                continue
            width = _dimension(img.get("width"))
            height = _dimension(img.get("height"))
            unsized = not width and not height
            if unsized or width >= MIN_IMAGE_DIMENSION or height >= MIN_IMAGE_DIMENSION:
                candidates.append(src)

    images: List[str] = []
    for candidate in candidates:
        candidate = candidate.strip()
        if not candidate or candidate.startswith("data:"):
            continue
        try:
            absolute = urljoin(base_url, candidate)
            scheme = urlparse(absolute).scheme
        except ValueError:
            continue
        if scheme not in ("http", "https"):
            continue
        lowered = absolute.lower()
        if any(hint in lowered for hint in TRACKING_HINTS):
            continue
        if absolute in images:
            continue
        images.append(absolute)
        if len(images) >= config.MAX_FEATURED_IMAGES:
            break

    return images
