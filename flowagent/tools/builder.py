"""Assembles the tool set for one agent run."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import Field, create_model

from flowagent.capabilities.base import (
    CapabilityDefinition,
    CapabilityRuntimeContext,
    ToolScope,
    resolve_capability_credentials,
)
from flowagent.capabilities.registry import CapabilityRegistry
from flowagent.errors import InvalidToolSchemaError
from flowagent.graphs.hooks import AfterToolCallHook, BeforeToolCallHook
from flowagent.graphs.state import ExecutionContext
from flowagent.models.agent import AgentResult, CapabilityConfig, ToolConfig
from flowagent.models.credentials import Credentials
from flowagent.tools.base import CustomTool, ToolDefinition, ToolFunc, build_args_schema
from flowagent.tools.registry import ToolRegistry
from flowagent.utils.logging import get_logger

logger = get_logger(__name__)

USE_CAPABILITY_TOOL_NAME = "use-capability"

Delegate = Callable[[CapabilityConfig, CapabilityDefinition, str], Awaitable[AgentResult]]


@dataclass
class ToolSet:
    """Tools and capability-scoped hooks for one run."""

    tools: list[ToolDefinition] = field(default_factory=list)
    capability_before_hooks: dict[str, BeforeToolCallHook] = field(default_factory=dict)
    capability_after_hooks: dict[str, AfterToolCallHook] = field(default_factory=dict)

    def get(self, name: str) -> ToolDefinition | None:
        return next((t for t in self.tools if t.name == name), None)

    @property
    def names(self) -> list[str]:
        return [t.name for t in self.tools]

    def add(self, tool: ToolDefinition) -> bool:
        """Append ``tool`` unless a tool with the same name is already present."""
        if self.get(tool.name) is not None:
            logger.warning(f"Duplicate tool name '{tool.name}'; keeping the first definition")
            return False
        self.tools.append(tool)
        return True


class ToolBuilder:
    """Builds a run's tools from custom tools, tool bubbles and capabilities.

    A tool or capability that fails to initialise is logged and skipped; it
    never prevents the remaining tools from being built.
    """

    def __init__(
        self,
        tool_registry: ToolRegistry,
        capability_registry: CapabilityRegistry,
        credentials: Credentials | None = None,
        execution_context: ExecutionContext | None = None,
        delegate: Delegate | None = None,
    ):
        self.tool_registry = tool_registry
        self.capability_registry = capability_registry
        self.credentials: Credentials = dict(credentials or {})
        self.execution_context = execution_context
        self.delegate = delegate

    def build(
        self,
        custom_tools: list[CustomTool] | None = None,
        tool_configs: list[ToolConfig] | None = None,
        capability_configs: list[CapabilityConfig] | None = None,
    ) -> ToolSet:
        """Build the tool set.

        Args:
            custom_tools: Caller-defined tools, registered first
            tool_configs: Names of pre-registered tool bubbles
            capability_configs: Capabilities to load

        Returns:
            Tools in registration order plus capability hook maps
        """
        tool_set = ToolSet()
        for custom_tool in custom_tools or []:
            self._add_custom_tool(tool_set, custom_tool)
        for tool_config in tool_configs or []:
            self._add_registry_tool(tool_set, tool_config)

        capability_configs = capability_configs or []
        if len(capability_configs) > 1:
            self._add_delegating_capabilities(tool_set, capability_configs)
        else:
            for capability_config in capability_configs:
                self._add_capability(tool_set, capability_config)

        logger.info(f"Built {len(tool_set.tools)} tools: {', '.join(tool_set.names) or '(none)'}")
        return tool_set

    def _add_custom_tool(self, tool_set: ToolSet, custom_tool: CustomTool) -> None:
        logger.debug(f"Initializing custom tool: {custom_tool.name}")
        try:
            args_schema = build_args_schema(custom_tool.name, custom_tool.parameters)
        except InvalidToolSchemaError as e:
            logger.warning(f"Skipping custom tool '{custom_tool.name}': {e}")
            return
        tool_set.add(
            ToolDefinition(
                name=custom_tool.name,
                description=custom_tool.description,
                args_schema=args_schema,
                func=custom_tool.func,
                source="custom",
            )
        )

    def _add_registry_tool(self, tool_set: ToolSet, tool_config: ToolConfig) -> None:
        entry = self.tool_registry.get(tool_config.name)
        if entry is None:
            logger.warning(f"Tool bubble '{tool_config.name}' not found in registry. This tool will not be used.")
            return
        if getattr(entry, "type", None) != "tool":
            logger.warning(f"Bubble '{tool_config.name}' is not a tool bubble")
            return

        tool_credentials: Credentials = {
            cred_type: self.credentials[cred_type]
            for cred_type in entry.credential_types
            if self.credentials.get(cred_type)
        }
        tool_credentials.update(tool_config.credentials)
        logger.debug(f"Passing credentials to {tool_config.name}: {[str(c) for c in tool_credentials]}")

        try:
            tool_set.add(entry.to_tool(tool_credentials, tool_config.config))
        except Exception as e:
            logger.error(f"Error initializing tool '{tool_config.name}': {e}", exc_info=True)

    def _runtime_context(self, capability: CapabilityDefinition, config: CapabilityConfig) -> CapabilityRuntimeContext:
        return CapabilityRuntimeContext(
            capability_id=capability.id,
            credentials=resolve_capability_credentials(capability, self.credentials, config.credentials),
            inputs=dict(config.inputs),
            execution_context=self.execution_context,
        )

    def _scoped(self, ctx: CapabilityRuntimeContext, tool_name: str, func: ToolFunc) -> ToolFunc:
        """Wrap ``func`` so the capability's tool scope is set while it runs."""

        async def scoped_func(params: dict[str, Any]) -> Any:
            previous = ctx.tool_scope
            ctx.tool_scope = ToolScope(capability_id=ctx.capability_id, tool_name=tool_name)
            try:
                return await func(params)
            finally:
                ctx.tool_scope = previous

        return scoped_func

    def _register_capability_tools(
        self,
        tool_set: ToolSet,
        capability: CapabilityDefinition,
        config: CapabilityConfig,
        master_only: bool,
    ) -> None:
        tool_defs = [t for t in capability.metadata.tools if t.master_tool or not master_only]
        if not tool_defs:
            return

        ctx = self._runtime_context(capability, config)
        funcs = capability.create_tools(ctx)

        registered: list[str] = []
        for tool_def in tool_defs:
            func = funcs.get(tool_def.name)
            if func is None:
                continue
            try:
                args_schema = build_args_schema(tool_def.name, tool_def.parameter_schema)
            except InvalidToolSchemaError as e:
                logger.warning(f"Skipping capability tool '{tool_def.name}': {e}")
                continue
            added = tool_set.add(
                ToolDefinition(
                    name=tool_def.name,
                    description=tool_def.description,
                    args_schema=args_schema,
                    func=self._scoped(ctx, tool_def.name, func),
                    source="capability",
                )
            )
            if added:
                registered.append(tool_def.name)

        for name in registered:
            if capability.before_tool_call:
                tool_set.capability_before_hooks[name] = capability.before_tool_call
            if capability.after_tool_call:
                tool_set.capability_after_hooks[name] = capability.after_tool_call

        kind = "master-level tools" if master_only else "tools"
        logger.info(f"Registered {len(registered)} {kind} from capability {capability.id}")

    def _add_capability(self, tool_set: ToolSet, config: CapabilityConfig) -> None:
        capability = self.capability_registry.get(config.id)
        if capability is None:
            logger.warning(f"Capability '{config.id}' not found in registry. Skipping.")
            return
        try:
            self._register_capability_tools(tool_set, capability, config, master_only=False)
        except Exception as e:
            logger.error(f"Error initializing capability '{config.id}': {e}", exc_info=True)

    def _add_delegating_capabilities(self, tool_set: ToolSet, configs: list[CapabilityConfig]) -> None:
        for config in configs:
            capability = self.capability_registry.get(config.id)
            if capability is None:
                continue
            try:
                self._register_capability_tools(tool_set, capability, config, master_only=True)
            except Exception as e:
                logger.error(f"Error initializing master-level tools for capability '{config.id}': {e}", exc_info=True)

        tool_set.add(self._use_capability_tool(configs))
        logger.info(
            f"Multi-capability delegation mode: registered {USE_CAPABILITY_TOOL_NAME} for "
            f"[{', '.join(c.id for c in configs)}]"
        )

    def _use_capability_tool(self, configs: list[CapabilityConfig]) -> ToolDefinition:
        capability_ids = tuple(c.id for c in configs)
        args_schema = create_model(
            "UseCapabilityInput",
            capability_id=(Literal[capability_ids], Field(..., description="Which capability to delegate to")),
            task=(
                str,
                Field(
                    ...,
                    description=(
                        "Clear description of what to do. Include any relevant context from the conversation. "
                        "Always include information about the user's timezone and current time."
                    ),
                ),
            ),
        )

        async def use_capability(params: dict[str, Any]) -> dict[str, Any]:
            capability_id = params["capability_id"]
            config = next((c for c in configs if c.id == capability_id), None)
            capability = self.capability_registry.get(capability_id)
            if config is None or capability is None:
                return {"error": f'Capability "{capability_id}" not found'}
            if self.delegate is None:
                return {"success": False, "error": "Capability delegation is not available"}

            logger.info(f"Delegating task to capability {capability_id}")
            result = await self.delegate(config, capability, params["task"])
            if not result.success:
                return {"success": False, "error": result.error}
            return {"success": True, "response": result.response}

        return ToolDefinition(
            name=USE_CAPABILITY_TOOL_NAME,
            description=(
                "Delegate a task to a specialized capability. "
                "The capability has its own tools and context to handle the task."
            ),
            args_schema=args_schema,
            func=use_capability,
            source="delegation",
        )
