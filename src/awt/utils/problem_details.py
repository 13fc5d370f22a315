"""
Structured error rendering for awt.

Errors are reported either as plain text on stderr or as a single JSON
object of the form ``{"error": ..., "code": ..., "hint": ...}`` for
machine consumers (agents driving awt through ``--json``).
"""

from typing import Optional

from pydantic import BaseModel, Field

from .status_codes import AwtError, ExitCode, exit_code_for


class ErrorDetail(BaseModel):
    """Machine-readable description of a failed command."""

    error: str = Field(..., description="One-line human-readable message")
    code: int = Field(..., description="Stable process exit code")
    hint: Optional[str] = Field(None, description="Suggested next step for the operator")


def create_error_detail(error: BaseException) -> ErrorDetail:
    """Build an ErrorDetail from any exception."""
    if isinstance(error, AwtError):
        return ErrorDetail(error=error.message, code=int(error.code), hint=error.hint or None)
    return ErrorDetail(error=str(error) or error.__class__.__name__, code=int(ExitCode.GENERAL))


def format_error(error: BaseException, as_json: bool = False) -> str:
    """Render an exception for the terminal."""
    detail = create_error_detail(error)
    if as_json:
        return detail.model_dump_json(exclude_none=True)

    text = f"Error: {detail.error}"
    if detail.hint:
        text += f"\nHint: {detail.hint}"
    return text


__all__ = ["ErrorDetail", "create_error_detail", "format_error", "exit_code_for"]
