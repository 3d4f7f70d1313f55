"""Turns a finished message list into an AgentResult."""

import json
from typing import Any

from langchain_core.messages import AIMessage, BaseMessage, ToolMessage
from pydantic import BaseModel, ValidationError

from flowagent.errors import TerminalProviderError
from flowagent.models.agent import AgentResult, ToolCallRecord
from flowagent.models.llm import TokenUsage
from flowagent.utils.formatting import extract_thinking, format_final_response
from flowagent.utils.logging import get_logger

logger = get_logger(__name__)

MAX_TOKENS_FINISH_REASONS = frozenset({"max_tokens", "length", "MAX_TOKENS"})
SAFETY_FINISH_REASONS = frozenset(
    {"SAFETY", "SAFETY_BLOCKED", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII", "content_filter", "refusal"}
)

MAX_TOKENS_ERROR = (
    "Response was truncated due to max tokens limit. Please increase max_tokens in model configuration."
)
SAFETY_ERROR = (
    "The model was unable to generate a response because it was blocked by safety filters. "
    "Please try again with a different prompt or model."
)


def extract_tool_calls(messages: list[BaseMessage]) -> list[ToolCallRecord]:
    """Pair tool calls with their results by call id, in result order.

    Outputs holding a JSON object or array are decoded; other text is kept as is.
    """
    calls: dict[str, tuple[str, Any]] = {}
    records: list[ToolCallRecord] = []
    for message in messages:
        if isinstance(message, AIMessage):
            for tool_call in message.tool_calls:
                if tool_call.get("id"):
                    calls[tool_call["id"]] = (tool_call["name"], tool_call.get("args"))
        elif isinstance(message, ToolMessage):
            call = calls.get(message.tool_call_id)
            if call is None:
                continue
            output: Any = message.content
            if isinstance(output, str) and output.lstrip().startswith(("{", "[")):
                try:
                    output = json.loads(output)
                except json.JSONDecodeError:
                    pass
            records.append(ToolCallRecord(tool=call[0], input=call[1], output=output))
    return records


def aggregate_usage(messages: list[BaseMessage]) -> TokenUsage:
    """Sum token usage over every AI message of the run."""
    usage = TokenUsage()
    for message in messages:
        if isinstance(message, AIMessage) and message.usage_metadata:
            usage.add(
                input_tokens=message.usage_metadata.get("input_tokens", 0),
                output_tokens=message.usage_metadata.get("output_tokens", 0),
                total_tokens=message.usage_metadata.get("total_tokens", 0),
            )
    return usage


def finish_reason(message: AIMessage) -> str | None:
    """Provider finish/stop reason of a message, if reported."""
    for source in (message.response_metadata, message.additional_kwargs):
        for key in ("finish_reason", "stop_reason", "finishReason"):
            value = source.get(key)
            if value:
                return str(value)
    return None


def check_terminal_condition(message: AIMessage) -> None:
    """Raise for finish reasons that neither retrying nor a backup model can fix.

    Raises:
        TerminalProviderError: On a safety block or max-tokens truncation
    """
    reason = finish_reason(message)
    if reason in SAFETY_FINISH_REASONS:
        raise TerminalProviderError(SAFETY_ERROR, reason="safety")
    if reason in MAX_TOKENS_FINISH_REASONS:
        raise TerminalProviderError(MAX_TOKENS_ERROR, reason="max_tokens")


def output_schema_json(schema: Any) -> str:
    """JSON text of an expected output schema (model class, dict or JSON string)."""
    if isinstance(schema, type) and issubclass(schema, BaseModel):
        return json.dumps(schema.model_json_schema(), indent=2)
    if isinstance(schema, dict):
        return json.dumps(schema, indent=2)
    return str(schema)


def build_json_schema_instruction(schema_json: str) -> str:
    return (
        "CRITICAL OUTPUT REQUIREMENT: Respond with ONLY valid JSON matching this exact schema:\n"
        f"```json\n{schema_json}\n```\n"
        "Do not include explanations, markdown or any text outside the JSON."
    )


def validate_output(response: str, schema: Any) -> str | None:
    """Validate a JSON response against a pydantic schema; returns an error message or None."""
    if not (isinstance(schema, type) and issubclass(schema, BaseModel)):
        return None
    try:
        schema.model_validate_json(response)
    except ValidationError as e:
        return f"Response does not match expected output schema: {e}"
    return None


def assemble_result(
    messages: list[BaseMessage],
    model: str,
    iterations: int,
    json_mode: bool = False,
    expected_output_schema: Any = None,
) -> AgentResult:
    """Build the result of a completed run.

    Raises:
        TerminalProviderError: If the final AI message ended on a terminal condition
    """
    tool_calls = extract_tool_calls(messages)
    final_message = next((m for m in reversed(messages) if isinstance(m, AIMessage)), None)
    if final_message is None:
        return AgentResult(tool_calls=tool_calls, iterations=iterations, success=True)

    check_terminal_condition(final_message)

    usage = aggregate_usage(messages)
    logger.info(f"Token usage for {model}: {usage.input_tokens} input, {usage.output_tokens} output")

    formatted = format_final_response(final_message.content, model, json_mode)
    error = formatted.error
    if error is None and json_mode and expected_output_schema is not None:
        error = validate_output(formatted.response, expected_output_schema)

    if error is not None:
        logger.warning(f"Final response failed formatting: {error[:200]}")
        return AgentResult(
            response=formatted.response,
            tool_calls=tool_calls,
            iterations=iterations,
            usage=usage,
            success=False,
            error=error,
        )

    logger.info(f"Tool calls made: {len(tool_calls)}; response length: {len(formatted.response)}")
    return AgentResult(
        response=formatted.response,
        reasoning=extract_thinking(final_message),
        tool_calls=tool_calls,
        iterations=iterations,
        usage=usage,
        success=True,
    )
