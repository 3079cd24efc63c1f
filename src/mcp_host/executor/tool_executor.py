"""
MCP Tool Executor

Runs tool invocations through a fixed pipeline (server lookup, tool lookup,
argument validation, permission gate, dispatch) and records every outcome
in an execution history owned by the executor instance.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Tuple

from .history import ExecutionHistory
from .models import (
    ToolExecutionContext, ToolExecutionRequest, ToolExecutionResult, new_execution_id
)
from .validation import validate_arguments
from ..core.config import settings
from ..core.logging import get_logger
from ..mcp.connection_manager import ConnectionManager
from ..mcp.exceptions import PermissionDeniedError, ToolExecutionCancelledError
from ..permissions.engine import PermissionEngine
from ..permissions.models import PermissionCheck
from ..permissions.policy import ScopeResolver, infer_scope


logger = get_logger(__name__)


class ToolExecutor:
    """
    Safe, observable invocation of MCP tools.

    Every execution runs as its own asyncio task so that it can be cancelled
    through its execution id without touching the server connection or any
    other in-flight request on it.
    """

    def __init__(
        self,
        connection_manager: ConnectionManager,
        permission_engine: Optional[PermissionEngine] = None,
        scope_resolver: ScopeResolver = infer_scope,
        history: Optional[ExecutionHistory] = None
    ):
        self._connections = connection_manager
        self._permissions = permission_engine
        self._scope_resolver = scope_resolver
        self._history = history if history is not None else ExecutionHistory(settings.EXECUTION_HISTORY_LIMIT)
        self._active: Dict[str, asyncio.Task] = {}
        self._cancel_requested: Set[str] = set()

    @property
    def history(self) -> ExecutionHistory:
        return self._history

    @property
    def active_executions(self) -> List[str]:
        """Ids of executions currently in flight."""
        return list(self._active)

    async def execute_tool(
        self,
        request: ToolExecutionRequest,
        context: Optional[ToolExecutionContext] = None
    ) -> ToolExecutionResult:
        """
        Execute one tool call.

        Args:
            request: Target server, tool and arguments
            context: Originating message/conversation, forwarded to the permission prompt

        Returns:
            ToolExecutionResult: The successful, recorded result

        Raises:
            ServerNotFoundError, ServerNotConnectedError: Target server unusable
            ToolNotFoundError: Tool not declared by the server
            ToolValidationError: Arguments violate the input schema
            PermissionDeniedError: The permission engine refused the call
            ToolExecutionCancelledError: Cancelled through ``cancel_execution``
            MCPClientError: Transport, protocol or timeout failure during dispatch
        """
        result, error = await self._execute(request, context)
        if error is not None:
            raise error
        return result

    async def execute_tools(
        self,
        requests: List[ToolExecutionRequest],
        context: Optional[ToolExecutionContext] = None
    ) -> List[ToolExecutionResult]:
        """
        Execute several tool calls concurrently.

        A failure in one call never affects the others; it is returned as a
        failed result in the same position as its request.
        """
        outcomes = await asyncio.gather(*(self._execute(request, context) for request in requests))
        return [result for result, _error in outcomes]

    def cancel_execution(self, execution_id: str) -> bool:
        """Cancel one in-flight execution. Returns False if it is not active."""
        task = self._active.get(execution_id)
        if task is None or task.done():
            return False
        self._cancel_requested.add(execution_id)
        task.cancel()
        logger.info(f"Cancelling tool execution {execution_id}")
        return True

    def cancel_all(self) -> int:
        """Cancel every in-flight execution and return how many were cancelled."""
        return sum(1 for execution_id in list(self._active) if self.cancel_execution(execution_id))

    def get_execution_history(self, limit: Optional[int] = None) -> List[ToolExecutionResult]:
        return self._history.get_history(limit)

    def get_execution(self, execution_id: str) -> Optional[ToolExecutionResult]:
        return self._history.get_by_id(execution_id)

    def get_executions_by_tool(self, tool_name: str, limit: Optional[int] = None) -> List[ToolExecutionResult]:
        return self._history.get_by_tool(tool_name, limit)

    def get_executions_by_server(self, server_id: str, limit: Optional[int] = None) -> List[ToolExecutionResult]:
        return self._history.get_by_server(server_id, limit)

    def get_execution_stats(self) -> Dict[str, Any]:
        return self._history.get_stats()

    def clear_history(self) -> None:
        self._history.clear()

    def export_history(self) -> str:
        return self._history.export()

    async def _execute(
        self,
        request: ToolExecutionRequest,
        context: Optional[ToolExecutionContext]
    ) -> Tuple[ToolExecutionResult, Optional[Exception]]:
        execution_id = request.execution_id or new_execution_id()
        start_time = datetime.now(timezone.utc)

        if execution_id in self._active:
            error = ValueError(f"Execution id already in flight: {execution_id}")
            return self._record(execution_id, request, start_time, error=error), error

        task = asyncio.ensure_future(self._run_pipeline(request, context or ToolExecutionContext()))
        self._active[execution_id] = task
        logger.info(f"Executing tool {request.tool_name} on {request.server_id} ({execution_id})")

        try:
            call_result = await task
        except asyncio.CancelledError:
            if execution_id not in self._cancel_requested:
                self._record(execution_id, request, start_time, error=ToolExecutionCancelledError(execution_id))
                raise
            error = ToolExecutionCancelledError(execution_id)
            return self._record(execution_id, request, start_time, error=error), error
        except Exception as e:
            return self._record(execution_id, request, start_time, error=e), e
        finally:
            self._active.pop(execution_id, None)
            self._cancel_requested.discard(execution_id)

        return self._record(execution_id, request, start_time, result=call_result.to_wire()), None

    async def _run_pipeline(self, request: ToolExecutionRequest, context: ToolExecutionContext):
        self._connections.get_client(request.server_id)
        tool = await self._connections.get_tool(request.server_id, request.tool_name)
        validate_arguments(tool, request.arguments)

        if self._permissions is not None:
            scope, resource = self._scope_resolver(request.tool_name, request.arguments)
            check = PermissionCheck(
                server_id=request.server_id,
                tool_name=request.tool_name,
                scope=scope,
                resource=resource,
                arguments=request.arguments,
                context=context.model_dump(exclude_none=True)
            )
            if not await self._permissions.check_permission(check):
                raise PermissionDeniedError(request.server_id, request.tool_name, scope.value, resource)

        return await self._connections.call_tool(request.server_id, request.tool_name, request.arguments)

    def _record(
        self,
        execution_id: str,
        request: ToolExecutionRequest,
        start_time: datetime,
        result: Optional[Dict[str, Any]] = None,
        error: Optional[Exception] = None
    ) -> ToolExecutionResult:
        if error is None:
            record = ToolExecutionResult.create(execution_id, request, start_time, result=result)
            logger.info(f"Tool {request.tool_name} on {request.server_id} succeeded in {record.duration_ms}ms")
        else:
            message = getattr(error, "message", None) or str(error) or type(error).__name__
            error_type = getattr(error, "error_type", type(error).__name__)
            record = ToolExecutionResult.create(
                execution_id, request, start_time, error=message, error_type=error_type
            )
            logger.error(f"Tool {request.tool_name} on {request.server_id} failed ({error_type}): {message}")
        self._history.add(record)
        return record
