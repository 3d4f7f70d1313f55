"""Agent service: runs a request through the state machine with fallback."""

import asyncio
from collections.abc import Awaitable, Callable

import httpx

from flowagent.capabilities.base import CapabilityDefinition
from flowagent.capabilities.pipeline import postprocess_result, preprocess_request, schedule_memory_reflection
from flowagent.capabilities.registry import CapabilityRegistry, get_capability_registry
from flowagent.clients.openrouter import OpenRouterClient
from flowagent.clients.providers import ModelProviderAdapter, split_model_id
from flowagent.errors import DeepResearchError, ImageFetchError, ProviderError, TerminalProviderError
from flowagent.graphs.agent_graph import AgentStateMachine
from flowagent.graphs.hooks import HookDispatcher
from flowagent.graphs.nodes import AgentRuntime
from flowagent.graphs.state import AgentErrorInfo, AgentRunState, ExecutionContext
from flowagent.models.agent import CAPABILITY_AGENT_PREFIX, AgentRequest, AgentResult, CapabilityConfig
from flowagent.models.credentials import CredentialType
from flowagent.models.events import emit_event
from flowagent.models.llm import RECOMMENDED_MODELS, ModelConfig, TokenUsage
from flowagent.services.conversation_state import ConversationStateBuilder, serialize_messages
from flowagent.services.result import assemble_result, extract_tool_calls
from flowagent.tools.builder import ToolBuilder
from flowagent.tools.registry import ToolRegistry, get_tool_registry
from flowagent.utils.logging import get_logger, preview

logger = get_logger(__name__)

MEMORY_AGENT_NAME = f"{CAPABILITY_AGENT_PREFIX}Memory"
MEMORY_SYSTEM_PROMPT = "Respond concisely. Follow the instructions in the user message."


class AIAgent:
    """Executes one agent request.

    ``execute`` never raises for run failures; they are reported through
    ``AgentResult.success`` and ``AgentResult.error``. Each call builds a
    fresh run state, so an instance can be executed more than once.
    """

    def __init__(
        self,
        request: AgentRequest,
        execution_context: ExecutionContext | None = None,
        tool_registry: ToolRegistry | None = None,
        capability_registry: CapabilityRegistry | None = None,
        provider_adapter: ModelProviderAdapter | None = None,
        state_builder: ConversationStateBuilder | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the agent.

        Args:
            request: The request to execute
            execution_context: Context shared with delegated sub-agents
            tool_registry: Tool bubble registry (defaults to the global instance)
            capability_registry: Capability registry (defaults to the global instance)
            provider_adapter: Builds chat models from model configs
            state_builder: Builds the initial message list
            http_client: Client for image downloads and deep research calls
            sleep: Awaitable used between model retries
        """
        self.request = request
        self.execution_context = execution_context
        self.tool_registry = tool_registry or get_tool_registry()
        self.capability_registry = capability_registry or get_capability_registry()
        self.provider_adapter = provider_adapter or ModelProviderAdapter()
        self.http_client = http_client
        self.state_builder = state_builder or ConversationStateBuilder(http_client=http_client)
        self.sleep = sleep

    def _spawn(self, request: AgentRequest) -> "AIAgent":
        """Create an independent agent sharing this one's collaborators and context."""
        return AIAgent(
            request,
            execution_context=self.execution_context,
            tool_registry=self.tool_registry,
            capability_registry=self.capability_registry,
            provider_adapter=self.provider_adapter,
            state_builder=self.state_builder,
            http_client=self.http_client,
            sleep=self.sleep,
        )

    async def execute(self) -> AgentResult:
        """Run the request to completion.

        Returns:
            The run's result; failures have ``success=False``
        """
        logger.info(
            f"Executing agent '{self.request.name}' with model {self.request.model.model}: "
            f"{preview(self.request.message)}"
        )
        try:
            prepared = await preprocess_request(
                self.request,
                self.capability_registry,
                self.execution_context,
                call_llm=self.call_llm,
            )

            if prepared.model.is_deep_research:
                return await self._execute_deep_research(prepared)

            result = await self._execute_with_fallback(prepared)
            result = await postprocess_result(result, prepared, self.capability_registry, self.execution_context)
            schedule_memory_reflection(prepared, result, self.execution_context)
            return result
        except Exception as e:
            logger.error(f"Agent execution failed: {e}", exc_info=True)
            self._notify_agent_error(str(e), self.request.model.model, 0, [])
            return AgentResult(response=f"Error: {e}", success=False, error=str(e))

    async def _execute_with_fallback(self, prepared: AgentRequest) -> AgentResult:
        state = AgentRunState()
        try:
            return await self._execute_with_model(prepared, prepared.model, state)
        except (TerminalProviderError, ImageFetchError) as e:
            # Neither a retry nor another model can fix these
            logger.error(f"Agent run failed without fallback: {e}")
            return self._failure(prepared.model, e, state)
        except Exception as e:
            if prepared.model.backup_model is None:
                logger.error(f"Agent run failed: {e}", exc_info=True)
                return self._failure(prepared.model, e, state)

            backup_config = prepared.model.with_backup()
            logger.warning(f"Primary model {prepared.model.model} failed: {e}. Trying backup {backup_config.model}")
            await emit_event(
                prepared.streaming_callback,
                "error",
                error=f"Primary model {prepared.model.model} failed: {e}. Retrying with backup model {backup_config.model}",
                recoverable=True,
            )

        backup_state = AgentRunState()
        try:
            return await self._execute_with_model(prepared, backup_config, backup_state)
        except Exception as e:
            logger.error(f"Backup model {backup_config.model} failed: {e}", exc_info=True)
            return self._failure(backup_config, e, backup_state)

    async def _execute_with_model(
        self, prepared: AgentRequest, model_config: ModelConfig, state: AgentRunState
    ) -> AgentResult:
        """Run the state machine once with ``model_config``, filling ``state`` as it goes."""
        model = self.provider_adapter.build(
            model_config, prepared.credentials, streaming=prepared.streaming_callback is not None
        )

        tool_set = ToolBuilder(
            self.tool_registry,
            self.capability_registry,
            credentials=prepared.credentials,
            execution_context=self.execution_context,
            delegate=self.delegate_to_capability,
        ).build(prepared.custom_tools, prepared.tools, prepared.capabilities)

        runtime = AgentRuntime(
            model=model,
            model_config=model_config,
            system_prompt=prepared.system_prompt,
            tools=tool_set.tools,
            hooks=HookDispatcher(
                before_tool_call=prepared.before_tool_call,
                after_tool_call=prepared.after_tool_call,
                after_llm_call=prepared.after_llm_call,
                capability_before_hooks=tool_set.capability_before_hooks,
                capability_after_hooks=tool_set.capability_after_hooks,
            ),
            streaming_callback=prepared.streaming_callback,
            execution_context=self.execution_context,
            sleep=self.sleep,
        )

        state.messages = await self.state_builder.build(
            prepared.message,
            images=prepared.images,
            history=prepared.conversation_history,
            resume_state=prepared.resume_state,
            tools=tool_set.tools,
        )

        await AgentStateMachine(runtime, prepared.max_iterations).run(state)

        result = assemble_result(
            state.messages,
            model_config.model,
            state.iterations,
            json_mode=model_config.json_mode,
            expected_output_schema=prepared.expected_output_schema,
        )
        if not result.success:
            self._notify_agent_error(result.error, model_config.model, state.iterations, result.tool_calls, state)
        return result

    def _failure(self, model_config: ModelConfig, error: Exception, state: AgentRunState) -> AgentResult:
        """Failure result keeping whatever tool calls and turns completed."""
        tool_calls = extract_tool_calls(state.messages)
        self._notify_agent_error(str(error), model_config.model, state.iterations, tool_calls, state)
        return AgentResult(
            response=f"Execution error: {error}",
            tool_calls=tool_calls,
            iterations=state.iterations,
            success=False,
            error=str(error),
        )

    def _notify_agent_error(
        self,
        error: str,
        model: str,
        iterations: int,
        tool_calls: list,
        state: AgentRunState | None = None,
    ) -> None:
        context = self.execution_context
        if context is None or context.on_agent_error is None:
            return
        history = [m.model_dump() for m in serialize_messages(state.messages)] if state else None
        try:
            context.on_agent_error(
                AgentErrorInfo(
                    error=error,
                    model=model,
                    iterations=iterations,
                    tool_calls=list(tool_calls),
                    conversation_history=history,
                )
            )
        except Exception as e:
            logger.warning(f"on_agent_error callback failed: {e}")

    async def _execute_deep_research(self, prepared: AgentRequest) -> AgentResult:
        """Single direct completion for models that cannot run the tool loop."""
        api_key = prepared.credentials.get(CredentialType.OPENROUTER_CRED)
        if not api_key:
            error = "OpenRouter credential is required for deep research models"
            return AgentResult(response=f"Deep Research Error: {error}", success=False, error=error)

        messages = [{"role": "system", "content": prepared.system_prompt}]
        messages.extend({"role": m.role, "content": m.content} for m in prepared.conversation_history or [])
        messages.append({"role": "user", "content": prepared.message})

        _, model_name = split_model_id(prepared.model.model)
        client = OpenRouterClient(api_key, http_client=self.http_client)
        try:
            response = await client.create_completion(
                model=model_name,
                messages=messages,
                temperature=prepared.model.temperature,
                max_tokens=prepared.model.max_tokens,
            )
        except DeepResearchError as e:
            logger.error(f"Deep research failed: {e}")
            return AgentResult(response=f"Deep Research Error: {e}", success=False, error=str(e))

        usage = TokenUsage(total_tokens=response.total_tokens) if response.total_tokens else None
        return AgentResult(
            response=response.content,
            reasoning=response.reasoning,
            iterations=1,
            total_cost=response.total_cost,
            usage=usage,
            success=True,
        )

    async def delegate_to_capability(
        self, config: CapabilityConfig, capability: CapabilityDefinition, task: str
    ) -> AgentResult:
        """Run ``task`` in an isolated sub-agent scoped to a single capability."""
        sub_request = AgentRequest(
            message=task,
            system_prompt=self.request.system_prompt,
            name=f"{CAPABILITY_AGENT_PREFIX}{capability.metadata.name}",
            model=self.request.model.model_copy(),
            capabilities=[config],
            credentials=dict(self.request.credentials),
            max_iterations=self.request.max_iterations,
            streaming_callback=self.request.streaming_callback,
        )
        return await self._spawn(sub_request).execute()

    async def call_llm(self, prompt: str) -> str:
        """Answer ``prompt`` with a small helper agent; used by the memory integration.

        Raises:
            ProviderError: If the helper run fails
        """
        helper_request = AgentRequest(
            message=prompt,
            system_prompt=MEMORY_SYSTEM_PROMPT,
            name=MEMORY_AGENT_NAME,
            model=ModelConfig(
                model=RECOMMENDED_MODELS["FAST"],
                temperature=0,
                max_tokens=4096,
                max_retries=2,
            ),
            credentials=dict(self.request.credentials),
            max_iterations=4,
        )
        result = await self._spawn(helper_request).execute()
        if not result.success:
            raise ProviderError(f"Memory helper call failed: {result.error}")
        return result.response
