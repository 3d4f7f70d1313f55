"""Streaming event types emitted during an agent run."""

import inspect
from collections.abc import Awaitable, Callable
from typing import Any, Literal

from pydantic import BaseModel, Field

from flowagent.utils.logging import get_logger

logger = get_logger(__name__)

StreamingEventType = Literal[
    "llm_start",
    "llm_complete",
    "think",
    "tool_call_start",
    "tool_call_complete",
    "error",
]


class StreamingEvent(BaseModel):
    """A single progress event delivered to the streaming callback."""

    type: StreamingEventType
    data: dict[str, Any] = Field(default_factory=dict)


StreamingCallback = Callable[[StreamingEvent], Awaitable[None] | None]


async def emit_event(callback: StreamingCallback | None, event_type: StreamingEventType, **data: Any) -> None:
    """Deliver an event to a sync or async callback, if one is set.

    Callback failures are logged and never interrupt the run.
    """
    if callback is None:
        return

    event = StreamingEvent(type=event_type, data=data)
    try:
        result = callback(event)
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.warning(f"Streaming callback failed for {event_type} event: {e}")
