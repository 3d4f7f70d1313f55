"""Helpers for turning model output into final responses."""

import json
import re
from dataclasses import dataclass
from typing import Any

from langchain_core.messages import AIMessage

from flowagent.utils.logging import get_logger

logger = get_logger(__name__)

GARBAGE_PATTERNS = frozenset({"[]", "{}", '""', "''", "null", "undefined"})

_FENCE_RE = re.compile(r"^\s*```(?:json|JSON)?\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)
_THINK_TAG_RE = re.compile(r"</?think>", re.IGNORECASE)
_INLINE_DATA_RE = re.compile(r'\{\s*"inlineData"\s*:\s*\{\s*"mimeType"\s*:\s*"([^"]+)"\s*,\s*"data"\s*:\s*"([^"]+)"')


@dataclass
class FormattedResponse:
    response: str
    error: str | None = None


@dataclass
class JsonParseResult:
    success: bool
    response: str
    data: Any = None


def extract_text(content: Any) -> str:
    """Join the text parts of message content.

    Strings pass through; block lists contribute their ``text`` blocks only,
    so tool-use and thinking blocks are ignored.
    """
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        chunks: list[str] = []
        for block in content:
            if isinstance(block, str):
                chunks.append(block)
            elif isinstance(block, dict):
                if block.get("type", "text") == "text" and isinstance(block.get("text"), str):
                    chunks.append(block["text"])
        return "".join(chunks)
    return str(content)


def is_garbage_response(content: Any) -> bool:
    """Whether a model answer is empty or a bare placeholder like ``[]`` or ``null``."""
    trimmed = extract_text(content).strip()
    return not trimmed or trimmed in GARBAGE_PATTERNS


def strip_markdown_fences(text: str) -> str:
    match = _FENCE_RE.match(text)
    return match.group(1).strip() if match else text.strip()


def _balanced_json_span(text: str) -> str | None:
    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if not starts:
        return None
    start = min(starts)
    end = text.rfind("}" if text[start] == "{" else "]")
    if end <= start:
        return None
    return text[start : end + 1]


def parse_json_with_fallbacks(text: str) -> JsonParseResult:
    """Parse JSON from model output.

    Tries the text as-is after stripping markdown fences, then the outermost
    object or array found inside it.
    """
    candidates = [strip_markdown_fences(text)]
    span = _balanced_json_span(candidates[0])
    if span and span != candidates[0]:
        candidates.append(span)

    for candidate in candidates:
        try:
            return JsonParseResult(success=True, response=candidate, data=json.loads(candidate))
        except json.JSONDecodeError:
            continue

    return JsonParseResult(success=False, response=text)


def format_gemini_image_response(response: str) -> str:
    """Convert Gemini ``inlineData`` output to a data URI, if present."""
    match = _INLINE_DATA_RE.search(response)
    if not match:
        return response
    mime_type, data = match.groups()
    logger.debug(f"Extracted data URI from Gemini inlineData: {mime_type}")
    return f"data:{mime_type};base64,{data}"


def is_image_model(model: str) -> bool:
    return "gemini" in model and "image" in model


def format_final_response(content: Any, model: str, json_mode: bool = False) -> FormattedResponse:
    """Format the final AI message content for the caller.

    Args:
        content: Message content, a string or a list of content blocks
        model: Model id, used to detect image generation models
        json_mode: Require the response to be JSON

    Returns:
        The response text, with ``error`` set when JSON mode parsing failed
    """
    if is_image_model(model):
        raw = content if isinstance(content, str) else json.dumps(content)
        return FormattedResponse(response=format_gemini_image_response(raw))

    text = extract_text(content)
    if json_mode:
        result = parse_json_with_fallbacks(text)
        if not result.success:
            return FormattedResponse(response=result.response, error=f"Response is not valid JSON: {text[:200]}")
        return FormattedResponse(response=result.response)

    return FormattedResponse(response=text)


def extract_thinking(message: AIMessage) -> str | None:
    """Collect reasoning text from an AI message across provider formats."""
    parts: list[str] = []

    if isinstance(message.content, list):
        for block in message.content:
            if not isinstance(block, dict):
                continue
            block_type = block.get("type")
            if block_type == "thinking" and isinstance(block.get("thinking"), str):
                parts.append(block["thinking"])
            elif block_type == "reasoning":
                for summary in block.get("summary") or []:
                    if isinstance(summary, dict) and isinstance(summary.get("text"), str):
                        parts.append(summary["text"])

    for key in ("reasoning_content", "reasoning"):
        value = message.additional_kwargs.get(key)
        if isinstance(value, str):
            parts.append(value)
        elif isinstance(value, dict):
            for summary in value.get("summary") or []:
                if isinstance(summary, dict) and isinstance(summary.get("text"), str):
                    parts.append(summary["text"])

    thinking = _THINK_TAG_RE.sub("", "\n".join(p for p in parts if p)).strip()
    return thinking or None
