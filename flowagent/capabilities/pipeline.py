"""Request preprocessing and result postprocessing around an agent run."""

import asyncio
import json
from datetime import UTC, datetime

from flowagent.capabilities.base import (
    CapabilityDefinition,
    CapabilityRuntimeContext,
    call_prompt_factory,
    resolve_capability_credentials,
)
from flowagent.capabilities.registry import CapabilityRegistry
from flowagent.graphs.state import CallLLM, ExecutionContext
from flowagent.models.agent import AgentRequest, AgentResult, CapabilityConfig, ConversationMessage
from flowagent.models.llm import MIN_MAX_TOKENS, RECOMMENDED_MODELS
from flowagent.services.result import build_json_schema_instruction, output_schema_json
from flowagent.utils.logging import get_logger

logger = get_logger(__name__)

_background_tasks: set[asyncio.Task] = set()


def _runtime_context(
    capability: CapabilityDefinition,
    config: CapabilityConfig,
    request: AgentRequest,
    execution_context: ExecutionContext | None,
) -> CapabilityRuntimeContext:
    return CapabilityRuntimeContext(
        capability_id=capability.id,
        credentials=resolve_capability_credentials(capability, request.credentials, config.credentials),
        inputs=dict(config.inputs),
        execution_context=execution_context,
    )


def dedupe_capabilities(configs: list[CapabilityConfig]) -> list[CapabilityConfig]:
    """Drop repeated capability ids, keeping the first occurrence."""
    seen: set[str] = set()
    unique: list[CapabilityConfig] = []
    for config in configs:
        if config.id in seen:
            continue
        seen.add(config.id)
        unique.append(config)
    return unique


def system_time_note(now: datetime) -> str:
    stamp = now.astimezone(UTC).strftime("%A, %B %d, %Y, %I:%M %p UTC")
    return (
        f"**System time (UTC):** {stamp}\n"
        "IMPORTANT: The system time above is in UTC. Always interpret and present times from the user's "
        "perspective and timezone. If the user's timezone is known, convert all times accordingly. "
        "If unknown, ask the user for their timezone before making time-sensitive decisions."
    )


async def _delegation_summary(
    index: int,
    capability: CapabilityDefinition,
    config: CapabilityConfig,
    request: AgentRequest,
    execution_context: ExecutionContext | None,
) -> str:
    metadata = capability.metadata
    summary = f'{index}. "{metadata.name}" (id: {config.id})\n   Purpose: {metadata.description}'
    tool_names = ", ".join(t.name for t in metadata.tools if not t.master_tool)
    if tool_names:
        summary += f"\n   Tools: {tool_names}"

    hint = None
    if capability.create_delegation_hint:
        try:
            ctx = _runtime_context(capability, config, request, execution_context)
            hint = await call_prompt_factory(capability.create_delegation_hint, ctx)
        except Exception as e:
            logger.warning(f"Delegation hint for {config.id} failed, using static hint: {e}")
    hint = hint or metadata.delegation_hint
    if hint:
        summary += f"\n   When to use: {hint}"
    return summary


async def _apply_multi_capability(
    request: AgentRequest,
    registry: CapabilityRegistry,
    execution_context: ExecutionContext | None,
) -> None:
    # The delegating agent routes; each sub-agent applies its own model override
    request.model.model = RECOMMENDED_MODELS["CHAT"]
    request.model.reasoning_effort = "low"

    summaries: list[str] = []
    for index, config in enumerate(request.capabilities, start=1):
        capability = registry.get(config.id)
        if capability is None:
            continue
        summaries.append(await _delegation_summary(index, capability, config, request, execution_context))

    request.system_prompt += (
        "\n\n---\nSYSTEM CAPABILITY EXTENSIONS:\n"
        "Multiple specialized capabilities are available. You MUST delegate to them using the "
        "'use-capability' tool.\n\n"
        f"Available Capabilities:\n{'\n\n'.join(summaries)}\n\n"
        "DELEGATION RULES:\n"
        "- Use 'use-capability' tool to delegate tasks to the appropriate capability\n"
        "- Do NOT attempt to handle capability tasks yourself\n"
        "- Include full context when delegating, including all known user details and preferences "
        "(especially timezone)\n"
        "- Can chain multiple capabilities if needed\n"
        "- Only respond directly for: greetings, clarifications, or tasks outside all capabilities\n"
        "---\n\n"
        "Your role is to understand the user's request and delegate to the appropriate capability "
        "or respond directly when appropriate."
    )


async def _apply_single_capability(
    request: AgentRequest,
    registry: CapabilityRegistry,
    execution_context: ExecutionContext | None,
) -> None:
    for config in request.capabilities:
        capability = registry.get(config.id)
        if capability is None:
            continue

        override = capability.metadata.model_config_override
        if override is not None:
            if override.model:
                request.model.model = override.model
            if override.reasoning_effort:
                request.model.reasoning_effort = override.reasoning_effort
            if override.max_tokens:
                request.model.max_tokens = max(request.model.max_tokens, override.max_tokens)
            if override.max_iterations:
                request.max_iterations = override.max_iterations

        ctx = _runtime_context(capability, config, request, execution_context)
        addition = await call_prompt_factory(capability.create_system_prompt, ctx)
        addition = addition or capability.metadata.system_prompt_addition
        if addition:
            request.system_prompt += (
                "\n\n---\nSYSTEM CAPABILITY EXTENSION:\n"
                "The following capability has been added to enhance your functionality:\n\n"
                f"[{capability.metadata.name}]\n{addition}\n---\n\n"
                "Your primary objective is to fulfill the user's request using both your base capabilities "
                "and the extended capability above.\n"
                "Always use the user's timezone for all time-related operations."
            )


async def preprocess_request(
    request: AgentRequest,
    capability_registry: CapabilityRegistry,
    execution_context: ExecutionContext | None = None,
    call_llm: CallLLM | None = None,
    now: datetime | None = None,
) -> AgentRequest:
    """Return a prepared copy of ``request``; the original is not modified.

    Args:
        request: Request as given by the caller
        capability_registry: Registry to resolve capability ids
        execution_context: Shared context supplying history and memory hooks
        call_llm: Helper handed to the memory integration
        now: Current time, for the system prompt

    Returns:
        The request the run should actually execute
    """
    prepared = request.model_copy(
        update={
            "model": request.model.model_copy(),
            "custom_tools": list(request.custom_tools),
            "capabilities": dedupe_capabilities(request.capabilities),
        }
    )

    if prepared.model.max_tokens < MIN_MAX_TOKENS:
        prepared.model.max_tokens = MIN_MAX_TOKENS

    if prepared.expected_output_schema is not None:
        prepared.model.json_mode = True
        schema_json = output_schema_json(prepared.expected_output_schema)
        prepared.system_prompt += f"\n\n{build_json_schema_instruction(schema_json)}"

    prepared.system_prompt += f"\n\n{system_time_note(now or datetime.now(UTC))}"

    if len(prepared.capabilities) > 1:
        await _apply_multi_capability(prepared, capability_registry, execution_context)
    else:
        await _apply_single_capability(prepared, capability_registry, execution_context)

    if not prepared.conversation_history and execution_context and execution_context.trigger_conversation_history:
        prepared.conversation_history = [
            ConversationMessage.model_validate(m) for m in execution_context.trigger_conversation_history
        ]

    if not prepared.is_capability_agent and prepared.memory_enabled and execution_context is not None:
        if execution_context.memory_tools:
            prepared.custom_tools.extend(execution_context.memory_tools)
        if execution_context.memory_system_prompt:
            prepared.system_prompt += f"\n\n---\n\n{execution_context.memory_system_prompt}"
        if execution_context.memory_call_llm_init and call_llm is not None:
            execution_context.memory_call_llm_init(call_llm)

    return prepared


async def postprocess_result(
    result: AgentResult,
    request: AgentRequest,
    capability_registry: CapabilityRegistry,
    execution_context: ExecutionContext | None = None,
) -> AgentResult:
    """Append single-capability response additions to a successful result."""
    if not result.success or len(request.capabilities) > 1:
        return result

    parts: list[str] = []
    for config in request.capabilities:
        capability = capability_registry.get(config.id)
        if capability is None or capability.create_response_append is None:
            continue
        ctx = _runtime_context(capability, config, request, execution_context)
        text = await call_prompt_factory(capability.create_response_append, ctx)
        if text:
            parts.append(text)

    if not parts:
        return result
    return result.model_copy(update={"response": f"{result.response}\n\n{'\n\n'.join(parts)}"})


def _reflection_messages(request: AgentRequest, result: AgentResult) -> list[dict[str, str]]:
    messages = [{"role": m.role, "content": m.content} for m in request.conversation_history or []]
    messages.append({"role": "user", "content": request.message})
    for record in result.tool_calls:
        messages.append(
            {
                "role": "assistant",
                "content": f"[Used tool: {record.tool}] Input: {json.dumps(record.input, default=str)[:200]}",
            }
        )
    messages.append({"role": "assistant", "content": result.response})
    return messages


def _log_reflection_failure(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(f"Memory reflection failed: {error}")


def schedule_memory_reflection(
    request: AgentRequest,
    result: AgentResult,
    execution_context: ExecutionContext | None,
) -> asyncio.Task | None:
    """Start memory reflection in the background without waiting for it."""
    if request.is_capability_agent or not result.success or not request.memory_enabled:
        return None
    if execution_context is None or execution_context.memory_reflection_callback is None:
        return None

    task = asyncio.create_task(execution_context.memory_reflection_callback(_reflection_messages(request, result)))
    _background_tasks.add(task)
    task.add_done_callback(_log_reflection_failure)
    return task
