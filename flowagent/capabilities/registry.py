"""Registry of available capabilities."""

from flowagent.capabilities.base import CapabilityDefinition, CapabilityMetadata
from flowagent.utils.logging import get_logger

logger = get_logger(__name__)


class CapabilityRegistry:
    """Capabilities resolvable by id. Read-only while runs are in flight."""

    def __init__(self):
        self._capabilities: dict[str, CapabilityDefinition] = {}

    def register(self, capability: CapabilityDefinition) -> None:
        """Register a capability, replacing any with the same id."""
        self._capabilities[capability.id] = capability
        logger.debug(f"Registered capability: {capability.id}")

    def get(self, capability_id: str) -> CapabilityDefinition | None:
        return self._capabilities.get(capability_id)

    def has_capability(self, capability_id: str) -> bool:
        return capability_id in self._capabilities

    def list_metadata(self, include_hidden: bool = False) -> list[CapabilityMetadata]:
        """Metadata of registered capabilities, hidden ones excluded by default."""
        return [c.metadata for c in self._capabilities.values() if include_hidden or not c.metadata.hidden]


_capability_registry: CapabilityRegistry | None = None


def get_capability_registry() -> CapabilityRegistry:
    """Get or create the process-wide capability registry."""
    global _capability_registry
    if _capability_registry is None:
        _capability_registry = CapabilityRegistry()
    return _capability_registry
