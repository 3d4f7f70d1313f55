"""Builds the initial message list for an agent run."""

import base64
from typing import Any

import httpx
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage

from flowagent.errors import ImageFetchError
from flowagent.models.agent import ConversationMessage, ImageInput, StoredMessage, StoredToolCall
from flowagent.tools.base import ToolDefinition, stringify_tool_output
from flowagent.utils.logging import get_logger

logger = get_logger(__name__)

APPROVED_TOOL_MESSAGE = "This action has been approved by the user. You may now execute this tool."
DEFAULT_IMAGE_MIME_TYPE = "image/png"


def restore_messages(stored: list[StoredMessage]) -> list[BaseMessage]:
    """Rebuild live messages from their persisted form."""
    messages: list[BaseMessage] = []
    for record in stored:
        match record.role:
            case "system":
                messages.append(SystemMessage(content=record.content, id=record.id))
            case "user":
                messages.append(HumanMessage(content=record.content, id=record.id))
            case "assistant":
                messages.append(
                    AIMessage(
                        content=record.content,
                        id=record.id,
                        tool_calls=[{"id": tc.id, "name": tc.name, "args": tc.args} for tc in record.tool_calls],
                    )
                )
            case "tool":
                if not record.tool_call_id:
                    logger.warning("Dropping stored tool message without tool_call_id")
                    continue
                messages.append(
                    ToolMessage(content=record.content, tool_call_id=record.tool_call_id, name=record.name, id=record.id)
                )
    return messages


def serialize_messages(messages: list[BaseMessage]) -> list[StoredMessage]:
    """Convert live messages to the lossless persisted layout used for resumption."""
    stored: list[StoredMessage] = []
    for message in messages:
        if isinstance(message, AIMessage):
            stored.append(
                StoredMessage(
                    role="assistant",
                    content=message.content,
                    id=message.id,
                    tool_calls=[
                        StoredToolCall(id=tc["id"], name=tc["name"], args=tc.get("args") or {})
                        for tc in message.tool_calls
                        if tc.get("id")
                    ],
                )
            )
        elif isinstance(message, ToolMessage):
            stored.append(
                StoredMessage(
                    role="tool",
                    content=message.content,
                    tool_call_id=message.tool_call_id,
                    name=message.name,
                    id=message.id,
                )
            )
        elif isinstance(message, SystemMessage):
            stored.append(StoredMessage(role="system", content=message.content, id=message.id))
        else:
            stored.append(StoredMessage(role="user", content=message.content, id=message.id))
    return stored


def _pending_calls(message: AIMessage, resolved_ids: set[str]) -> list[dict[str, Any]]:
    return [tc for tc in message.tool_calls if tc.get("id") and tc["id"] not in resolved_ids]


async def repair_pending_tool_calls(messages: list[BaseMessage], tools: list[ToolDefinition]) -> list[BaseMessage]:
    """Give every unresolved tool call of a resumed conversation a result.

    Pending calls of the most recent AI message with pending calls (the one
    that paused for approval) are executed directly, bypassing hooks. Any
    other unresolved call gets a synthetic approval result. Results are placed
    right after their AI message. Running this on an already repaired list
    returns it unchanged.
    """
    resolved_ids = {m.tool_call_id for m in messages if isinstance(m, ToolMessage) and m.tool_call_id}

    approval_index = -1
    for index in range(len(messages) - 1, -1, -1):
        message = messages[index]
        if isinstance(message, AIMessage) and _pending_calls(message, resolved_ids):
            approval_index = index
            break

    if approval_index == -1:
        return list(messages)

    tools_by_name = {t.name: t for t in tools}
    repaired: list[BaseMessage] = []
    for index, message in enumerate(messages):
        repaired.append(message)
        if not isinstance(message, AIMessage):
            continue

        for tool_call in _pending_calls(message, resolved_ids):
            tool = tools_by_name.get(tool_call["name"])
            if index == approval_index and tool is not None:
                logger.info(f"Resume: executing approved tool {tool_call['name']} directly")
                try:
                    output = await tool.invoke(tool_call.get("args") or {})
                    content = stringify_tool_output(output)
                except Exception as e:
                    logger.warning(f"Resume: direct execution of {tool_call['name']} failed: {e}")
                    content = f"Tool execution failed: {e}"
            else:
                content = APPROVED_TOOL_MESSAGE
            repaired.append(ToolMessage(content=content, tool_call_id=tool_call["id"], name=tool_call["name"]))
            resolved_ids.add(tool_call["id"])

    return repaired


def history_to_messages(history: list[ConversationMessage]) -> list[BaseMessage]:
    """Convert plain conversation history; tool turns without a call id are dropped."""
    messages: list[BaseMessage] = []
    for entry in history:
        if entry.role == "user":
            messages.append(HumanMessage(content=entry.content))
        elif entry.role == "assistant":
            messages.append(AIMessage(content=entry.content))
        elif entry.tool_call_id:
            messages.append(ToolMessage(content=entry.content, tool_call_id=entry.tool_call_id, name=entry.name))
    return messages


class ConversationStateBuilder:
    """Produces the message list an agent run starts from."""

    def __init__(self, http_client: httpx.AsyncClient | None = None, timeout: float = 30.0):
        """Initialize the builder.

        Args:
            http_client: Client used to download URL images; one is created per build if omitted
            timeout: Download timeout in seconds
        """
        self._http_client = http_client
        self.timeout = timeout

    async def build(
        self,
        message: str,
        images: list[ImageInput] | None = None,
        history: list[ConversationMessage] | None = None,
        resume_state: list[StoredMessage] | None = None,
        tools: list[ToolDefinition] | None = None,
    ) -> list[BaseMessage]:
        """Build the initial messages, ending with the new human message.

        A non-empty ``resume_state`` takes precedence over ``history``.

        Raises:
            ImageFetchError: If a URL image cannot be downloaded
        """
        if resume_state:
            logger.info(f"Resuming from {len(resume_state)} stored messages")
            messages = await repair_pending_tool_calls(restore_messages(resume_state), tools or [])
        elif history:
            messages = history_to_messages(history)
        else:
            messages = []

        messages.append(await self.build_human_message(message, images or []))
        return messages

    async def build_human_message(self, message: str, images: list[ImageInput]) -> HumanMessage:
        """Text message, or a multimodal one when images are attached."""
        if not images:
            return HumanMessage(content=message)

        logger.info(f"Creating multimodal message with {len(images)} images")
        content: list[str | dict[str, Any]] = [{"type": "text", "text": message}]
        for image in images:
            content.append({"type": "image_url", "image_url": {"url": await self._image_data_uri(image)}})
            if image.description:
                content.append({"type": "text", "text": f"Image description: {image.description}"})
        return HumanMessage(content=content)

    async def _image_data_uri(self, image: ImageInput) -> str:
        if image.type == "base64":
            return f"data:{image.mime_type};base64,{image.data}"

        url = image.url or ""
        logger.debug(f"Fetching image from URL: {url}")
        client = self._http_client or httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
        try:
            response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Error fetching image from URL {url}: {e}")
            raise ImageFetchError(url, str(e)) from e
        finally:
            if self._http_client is None:
                await client.aclose()

        content_type = response.headers.get("content-type", DEFAULT_IMAGE_MIME_TYPE).split(";")[0].strip()
        encoded = base64.b64encode(response.content).decode("ascii")
        return f"data:{content_type or DEFAULT_IMAGE_MIME_TYPE};base64,{encoded}"
