"""Tool execution pipeline and execution history."""

from .history import ExecutionHistory
from .models import ToolExecutionContext, ToolExecutionRequest, ToolExecutionResult
from .tool_executor import ToolExecutor
from .validation import validate_arguments

__all__ = [
    "ExecutionHistory",
    "ToolExecutionContext",
    "ToolExecutionRequest",
    "ToolExecutionResult",
    "ToolExecutor",
    "validate_arguments",
]
