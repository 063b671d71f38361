"""Page reader tool: fetch one page and return its main text."""
from typing import Optional
import httpx
from pydantic import BaseModel, Field
import structlog

from papertrail.errors import PapertrailError
from papertrail.extract import read_page
from papertrail.tools.registry import Tool

logger = structlog.get_logger()


class ReadPageInput(BaseModel):
    """Input for the page reader tool."""
    url: str = Field(..., description="The URL of the web page to read")


class ReadPageOutput(BaseModel):
    """Output from the page reader tool."""
    success: bool
    url: str
    title: str = ""
    content: str


async def read_page_handler(
    input_data: ReadPageInput,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ReadPageOutput:
    """Read a page; failures come back as ``success=False`` output."""
    try:
        page = await read_page(input_data.url, transport=transport)
    except PapertrailError as e:
        logger.warning("read_web_page_failed", url=input_data.url, error=str(e))
        return ReadPageOutput(
            success=False,
            url=input_data.url,
            content=f"Failed to read page: {e}",
        )

    return ReadPageOutput(
        success=True,
        url=input_data.url,
        title=page.title,
        content=page.content,
    )


def make_read_page_tool(transport: Optional[httpx.AsyncBaseTransport] = None) -> Tool:
    async def handler(input_data: ReadPageInput) -> ReadPageOutput:
        return await read_page_handler(input_data, transport=transport)

    return Tool(
        name="readWebPage",
        description=(
            "Read the main text content of a web page. Use it on promising "
            "search results to get the full details."
        ),
        input_model=ReadPageInput,
        output_model=ReadPageOutput,
        handler=handler,
    )
