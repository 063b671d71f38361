"""Tool registry for model tool calling.

Tools declare pydantic input/output models; the registry exposes them to the
model as function schemas and turns every failure into a structured result.
"""
import asyncio
from dataclasses import dataclass
from typing import Callable, Awaitable, Dict, Any, List, Optional
from pydantic import BaseModel, ValidationError
import structlog

from papertrail import config
from papertrail.errors import ToolExecutionError

logger = structlog.get_logger()


@dataclass
class Tool:
    """Tool definition with input/output schemas and handler."""
    name: str
    description: str
    input_model: type[BaseModel]
    output_model: type[BaseModel]
    handler: Callable[[BaseModel], Awaitable[BaseModel]]

    def schema(self) -> Dict[str, Any]:
        """OpenAI function-tool schema for this tool."""
        parameters = self.input_model.model_json_schema()
        parameters.pop("title", None)
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }


@dataclass
class ToolResult:
    """Result of a tool execution."""
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    def to_output(self) -> Dict[str, Any]:
        """Payload fed back to the model."""
        if self.success:
            return self.data or {}
        return {"success": False, "error": self.error}


class ToolRegistry:
    """Registry for the tools available in one chat turn."""

    def __init__(self, timeout: Optional[float] = None):
        self.tools: Dict[str, Tool] = {}
        self._timeout = timeout or config.TOOL_TIMEOUT

    def register(self, tool: Tool) -> None:
        """Register a tool."""
        self.tools[tool.name] = tool
        logger.debug("tool_registered", tool_name=tool.name)

    def get_tool(self, name: str) -> Optional[Tool]:
        """Get a tool by name."""
        return self.tools.get(name)

    def list_tools(self) -> List[Tool]:
        """List all registered tools."""
        return list(self.tools.values())

    def schemas(self) -> List[Dict[str, Any]]:
        """Function schemas for every registered tool."""
        return [tool.schema() for tool in self.tools.values()]

    async def execute_tool(self, tool_name: str, args: Dict[str, Any]) -> ToolResult:
        """Execute a tool with the given arguments.

        Args:
            tool_name: Name of the tool to execute
            args: Arguments to pass to the tool

        Returns:
            ToolResult with success status and data or error
        """
        tool = self.get_tool(tool_name)

        if not tool:
            logger.error("tool_not_found", tool_name=tool_name)
            return ToolResult(success=False, error=f"Tool '{tool_name}' not found")

        try:
            validated_input = tool.input_model(**args)

            async with asyncio.timeout(self._timeout):
                result = await tool.handler(validated_input)

            result_dict = result.model_dump()

            logger.info(
                "tool_executed",
                tool_name=tool_name,
                success=True,
                result_preview=str(result_dict)[:100],
            )

            return ToolResult(success=True, data=result_dict)

        except ValidationError as e:
            logger.warning("tool_input_invalid", tool_name=tool_name, error=str(e))
            return ToolResult(success=False, error=f"Invalid input for {tool_name}: {e}")

        except TimeoutError:
            logger.error("tool_timeout", tool_name=tool_name, timeout=self._timeout)
            return ToolResult(
                success=False,
                error=f"Tool execution timeout after {self._timeout}s",
            )

        except ToolExecutionError as e:
            logger.warning("tool_execution_error", tool_name=tool_name, error=str(e))
            return ToolResult(success=False, error=str(e))

        except Exception as e:
            logger.exception("tool_execution_failed", tool_name=tool_name, error=str(e))
            return ToolResult(success=False, error=f"Tool execution failed: {str(e)}")
