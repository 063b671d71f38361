"""Research tools available to the chat agent."""
from typing import Optional
import httpx

from papertrail.rag.ingest import IngestPipeline
from papertrail.tools.registry import Tool, ToolResult, ToolRegistry
from papertrail.tools.websearch import make_search_tool
from papertrail.tools.webpage import make_read_page_tool
from papertrail.tools.sources import make_add_source_tool


def build_research_tools(
    pipeline: IngestPipeline,
    project_id: str,
    user_id: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ToolRegistry:
    """Create the tool registry for one chat turn."""
    registry = ToolRegistry()
    registry.register(make_search_tool(transport))
    registry.register(make_read_page_tool(transport))
    registry.register(make_add_source_tool(pipeline, project_id, user_id))
    return registry


__all__ = ["build_research_tools", "Tool", "ToolResult", "ToolRegistry"]
