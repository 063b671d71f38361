"""Web search tool using DuckDuckGo HTML scraping."""
from typing import List, Optional
from urllib.parse import urlparse, parse_qs
import httpx
from bs4 import BeautifulSoup
from pydantic import BaseModel, Field
import structlog

from papertrail import config
from papertrail.errors import ToolExecutionError
from papertrail.tools.registry import Tool

logger = structlog.get_logger()

SEARCH_URL = "https://html.duckduckgo.com/html/"


class SearchInput(BaseModel):
    """Input for web search tool."""
    query: str = Field(..., description="The search query", max_length=500)


class SearchResult(BaseModel):
    """A single search result."""
    title: str
    url: str
    snippet: str


class SearchOutput(BaseModel):
    """Output from web search tool."""
    query: str
    results: List[SearchResult]
    result_count: int


async def search_web(
    query: str,
    max_results: Optional[int] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> List[SearchResult]:
    """Search DuckDuckGo and return parsed results.

    Args:
        query: Search query
        max_results: Maximum number of results (default from config)
        transport: Optional httpx transport, used by tests

    Returns:
        List of SearchResult objects

    Raises:
        ToolExecutionError: If the search request fails
    """
    max_results = max_results or config.SEARCH_MAX_RESULTS

    try:
        async with httpx.AsyncClient(
            follow_redirects=True,
            timeout=config.SEARCH_TIMEOUT,
            transport=transport,
        ) as client:
            response = await client.get(
                SEARCH_URL,
                params={"q": query},
                headers={"User-Agent": config.USER_AGENT},
            )
            response.raise_for_status()
    except httpx.HTTPError as e:
        raise ToolExecutionError(f"Search request failed: {e}") from e

    results = _parse_duckduckgo_html(response.text, max_results)
    results = _filter_by_domains(results)
    return [_sanitize_result(r) for r in results]


async def search_handler(
    input_data: SearchInput,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> SearchOutput:
    """Perform a web search; failures yield an empty result list.

    Args:
        input_data: SearchInput with the query
        transport: Optional httpx transport, used by tests

    Returns:
        SearchOutput with search results
    """
    query = input_data.query
    logger.info("web_search_started", query=query)

    try:
        results = await search_web(query, transport=transport)
    except ToolExecutionError as e:
        logger.error("web_search_failed", query=query, error=str(e))
        results = []

    logger.info("web_search_completed", query=query, result_count=len(results))

    return SearchOutput(query=query, results=results, result_count=len(results))


def resolve_result_url(href: str) -> str:
    """Unwrap DuckDuckGo's ``/l/?uddg=`` redirect links to the real target."""
    if href.startswith("//"):
        href = "https:" + href
    parsed = urlparse(href)
    if parsed.path.startswith("/l/"):
        target = parse_qs(parsed.query).get("uddg")
        if target:
            return target[0]
    return href


def _parse_duckduckgo_html(html: str, max_results: int) -> List[SearchResult]:
    """Parse DuckDuckGo HTML results.

    Args:
        html: HTML response from DuckDuckGo
        max_results: Maximum number of results to extract

    Returns:
        List of SearchResult objects
    """
    soup = BeautifulSoup(html, "html.parser")
    results = []

    for block in soup.select("div.result"):
        if "result--ad" in (block.get("class") or []):
            continue

        link = block.select_one("a.result__a")
        if link is None or not link.get("href"):
            continue

        title = " ".join(link.get_text(" ").split())
        url = resolve_result_url(link["href"])
        snippet_tag = block.select_one(".result__snippet")
        snippet = " ".join(snippet_tag.get_text(" ").split()) if snippet_tag else ""

        if title and url.startswith(("http://", "https://")):
            results.append(SearchResult(
                title=title,
                url=url,
                snippet=snippet or "(No description)",
            ))

        if len(results) >= max_results:
            break

    return results


def _filter_by_domains(results: List[SearchResult]) -> List[SearchResult]:
    """Filter results by allowed/blocked domains from config."""
    allowed_domains = config.SEARCH_ALLOWED_DOMAINS
    blocked_domains = config.SEARCH_BLOCKED_DOMAINS

    if not allowed_domains and not blocked_domains:
        return results

    filtered = []
    for result in results:
        domain = urlparse(result.url).netloc.lower()

        if domain in blocked_domains:
            logger.debug("result_blocked", domain=domain, url=result.url)
            continue

        if allowed_domains and domain not in allowed_domains:
            logger.debug("result_not_allowed", domain=domain, url=result.url)
            continue

        filtered.append(result)

    return filtered


def _sanitize_result(result: SearchResult) -> SearchResult:
    """Limit field lengths and drop control characters."""
    title = ''.join(char for char in result.title[:200] if ord(char) >= 32)
    snippet = ''.join(char for char in result.snippet[:500] if ord(char) >= 32)

    return SearchResult(title=title, url=result.url[:500], snippet=snippet)


def make_search_tool(transport: Optional[httpx.AsyncBaseTransport] = None) -> Tool:
    async def handler(input_data: SearchInput) -> SearchOutput:
        return await search_handler(input_data, transport=transport)

    return Tool(
        name="webSearch",
        description=(
            "Search the web for information. Returns titles, URLs and snippets "
            "for up to 8 relevant results."
        ),
        input_model=SearchInput,
        output_model=SearchOutput,
        handler=handler,
    )
