"""Find-and-replace code edit tool."""

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field

from flowagent.models.credentials import Credentials
from flowagent.tools.base import ToolBubble, ToolFunc

CODE_EDIT_TOOL_NAME = "code-edit-tool"

NOT_UNIQUE_ERROR = (
    "old_string is not unique in the code. Provide a larger string with more surrounding context "
    "to make it unique, or use replace_all to change every instance."
)


@dataclass
class CodeEditResult:
    """Outcome of a single edit."""

    code: str
    applied: bool
    error: str | None = None


class CodeEditInput(BaseModel):
    """Input schema for the code edit tool."""

    initial_code: str = Field(..., description="The current code to apply the edit to")
    old_string: str = Field(
        ...,
        description=(
            "The exact text to replace. Must be unique in the code; if not unique, "
            "provide more surrounding context to disambiguate."
        ),
    )
    new_string: str = Field(..., description="The replacement text. Must be different from old_string.")
    replace_all: bool = Field(
        default=False,
        description="Replace all occurrences of old_string. Use for renaming variables or strings across the file.",
    )


def apply_code_edit(initial_code: str, old_string: str, new_string: str, replace_all: bool = False) -> CodeEditResult:
    """Replace ``old_string`` with ``new_string`` in ``initial_code``.

    Line endings of the edit strings are normalised to those of the code, so an
    edit written with ``\\n`` applies cleanly to CRLF code.

    Args:
        initial_code: Code to edit
        old_string: Exact text to find
        new_string: Replacement text
        replace_all: Replace every occurrence instead of requiring a unique match

    Returns:
        The edited code, or the original code with an error when the edit is rejected
    """
    if not initial_code or not initial_code.strip():
        return CodeEditResult(code="", applied=False, error="Initial code cannot be empty")
    if not old_string:
        return CodeEditResult(code=initial_code, applied=False, error="old_string cannot be empty")
    if old_string == new_string:
        return CodeEditResult(code=initial_code, applied=False, error="new_string must be different from old_string")

    code_has_crlf = "\r\n" in initial_code
    norm_code = initial_code.replace("\r\n", "\n") if code_has_crlf else initial_code
    norm_old = old_string.replace("\r\n", "\n")
    norm_new = new_string.replace("\r\n", "\n")

    if norm_old not in norm_code:
        return CodeEditResult(code=initial_code, applied=False, error="old_string not found in code")

    effective_old = norm_old.replace("\n", "\r\n") if code_has_crlf else norm_old
    effective_new = norm_new.replace("\n", "\r\n") if code_has_crlf else norm_new

    if replace_all:
        return CodeEditResult(code=initial_code.replace(effective_old, effective_new), applied=True)

    if initial_code.count(effective_old) > 1:
        return CodeEditResult(code=initial_code, applied=False, error=NOT_UNIQUE_ERROR)

    return CodeEditResult(code=initial_code.replace(effective_old, effective_new, 1), applied=True)


def create_code_edit_tool(credentials: Credentials, config: dict[str, Any]) -> ToolFunc:
    """Create the code edit tool function. Needs no credentials."""

    async def code_edit(params: dict[str, Any]) -> dict[str, Any]:
        edit = CodeEditInput.model_validate(params)
        result = apply_code_edit(edit.initial_code, edit.old_string, edit.new_string, edit.replace_all)
        return {
            "merged_code": result.code,
            "applied": result.applied,
            "success": result.applied,
            "error": result.error or "",
        }

    return code_edit


code_edit_bubble = ToolBubble(
    name=CODE_EDIT_TOOL_NAME,
    description=(
        "Applies code edits using find-and-replace. old_string must be an exact match of text in the code; "
        "if it appears multiple times, provide more context or set replace_all. "
        "Returns the merged code and whether the edit was applied."
    ),
    parameters=CodeEditInput,
    create=create_code_edit_tool,
)
