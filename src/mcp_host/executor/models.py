"""
Tool execution models.

A ToolExecutionResult is created once, when an execution reaches a terminal
state, and is never modified afterwards; the execution history stores these
records in completion order.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class ToolExecutionRequest(BaseModel):
    """A single tool invocation to run through the executor."""

    server_id: str = Field(..., description="Target MCP server identifier")
    tool_name: str = Field(..., description="Tool declared by the server")
    arguments: Dict[str, Any] = Field(default_factory=dict, description="Tool arguments")
    execution_id: Optional[str] = Field(
        None,
        description="Caller-chosen execution id, used as the cancellation handle"
    )


class ToolExecutionContext(BaseModel):
    """Where an execution originated, passed through to the permission prompt."""

    message_id: Optional[str] = None
    conversation_id: Optional[str] = None
    user_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ToolExecutionResult(BaseModel):
    """
    Immutable record of one finished tool execution.

    Exactly one of ``result`` and ``error`` is populated; ``success`` tells
    which. ``error_type`` carries the exception's stable ``error_type`` (for
    example ``permission_denied`` or ``timeout``) so a UI can render an
    actionable message without parsing ``error``.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Execution identifier")
    server_id: str
    tool_name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[Dict[str, Any]] = Field(None, description="Wire form of the tool's CallToolResult")
    error: Optional[str] = None
    error_type: Optional[str] = None
    success: bool
    start_time: datetime
    end_time: datetime
    duration_ms: int = Field(..., ge=0)

    @classmethod
    def create(
        cls,
        execution_id: str,
        request: ToolExecutionRequest,
        start_time: datetime,
        result: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
        error_type: Optional[str] = None,
    ) -> "ToolExecutionResult":
        """Build a record ending now, deriving ``success`` and the duration."""
        end_time = datetime.now(timezone.utc)
        duration_ms = max(0, int((end_time - start_time).total_seconds() * 1000))
        return cls(
            id=execution_id,
            server_id=request.server_id,
            tool_name=request.tool_name,
            arguments=dict(request.arguments),
            result=result,
            error=error,
            error_type=error_type,
            success=error is None,
            start_time=start_time,
            end_time=end_time,
            duration_ms=duration_ms,
        )


def new_execution_id() -> str:
    return f"exec_{uuid.uuid4().hex[:16]}"
