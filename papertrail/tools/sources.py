"""Tool that saves a web page to the project's sources."""
from typing import Optional
from pydantic import BaseModel, Field
import structlog

from papertrail.errors import PapertrailError
from papertrail.rag.ingest import IngestPipeline
from papertrail.tools.registry import Tool

logger = structlog.get_logger()


class AddSourceInput(BaseModel):
    """Input for the save-source tool."""
    url: str = Field(..., description="The URL of the web page to save")
    title: str = Field(..., description="A descriptive title for the source")


class AddSourceOutput(BaseModel):
    """Output from the save-source tool."""
    success: bool
    message: str
    sourceId: Optional[str] = None


def make_add_source_tool(pipeline: IngestPipeline, project_id: str, user_id: str) -> Tool:
    """Build the save-source tool bound to one project and user."""

    async def handler(input_data: AddSourceInput) -> AddSourceOutput:
        try:
            source, result = await pipeline.ingest_url(
                project_id, user_id, input_data.url, title=input_data.title
            )
        except PapertrailError as e:
            logger.warning("add_to_sources_failed", url=input_data.url, error=str(e))
            return AddSourceOutput(success=False, message=f"Failed to add source: {e}")

        image_count = result.reports["images"].succeeded_count
        return AddSourceOutput(
            success=True,
            message=f'Added "{source.title}" to sources with {image_count} image(s).',
            sourceId=source.id,
        )

    return Tool(
        name="addToSources",
        description=(
            "Save a web page to the user's project sources so it can be used "
            "for research and document generation. Use it for particularly "
            "relevant, high-quality pages."
        ),
        input_model=AddSourceInput,
        output_model=AddSourceOutput,
        handler=handler,
    )
