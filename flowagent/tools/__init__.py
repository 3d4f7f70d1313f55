"""Tools available to agent runs."""

from flowagent.tools.base import CustomTool, ToolBubble, ToolDefinition
from flowagent.tools.registry import ToolRegistry, get_tool_registry

__all__ = ["CustomTool", "ToolBubble", "ToolDefinition", "ToolRegistry", "get_tool_registry"]
