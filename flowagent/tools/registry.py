"""Registry of pre-registered tool bubbles."""

from typing import Any

from flowagent.tools.base import ToolBubble
from flowagent.tools.code_edit import code_edit_bubble
from flowagent.utils.logging import get_logger

logger = get_logger(__name__)


class ToolRegistry:
    """Registry of tool bubbles resolvable by name.

    Built once at process start and only read during runs.
    """

    def __init__(self, register_defaults: bool = True):
        """Initialize the registry.

        Args:
            register_defaults: Register the built-in tool bubbles
        """
        self._entries: dict[str, Any] = {}
        if register_defaults:
            self._register_default_tools()

    def _register_default_tools(self) -> None:
        """Register the built-in tool bubbles."""
        for bubble in [code_edit_bubble]:
            self.register(bubble)

    def register(self, entry: Any) -> None:
        """Register a bubble under its name, replacing any previous entry."""
        self._entries[entry.name] = entry
        logger.debug(f"Registered bubble: {entry.name}")

    def get(self, name: str) -> Any | None:
        """Look up any registered entry by name."""
        return self._entries.get(name)

    def get_tool(self, name: str) -> ToolBubble | None:
        """Look up a tool bubble by name; non-tool entries return None."""
        entry = self._entries.get(name)
        if entry is None or getattr(entry, "type", None) != "tool":
            return None
        return entry

    def get_tool_names(self) -> list[str]:
        """Get list of all registered tool bubble names."""
        return [name for name, entry in self._entries.items() if getattr(entry, "type", None) == "tool"]

    def has_tool(self, name: str) -> bool:
        """Check if a tool bubble is registered."""
        return self.get_tool(name) is not None


_tool_registry: ToolRegistry | None = None


def get_tool_registry() -> ToolRegistry:
    """Get or create the process-wide tool registry."""
    global _tool_registry
    if _tool_registry is None:
        _tool_registry = ToolRegistry()
    return _tool_registry
