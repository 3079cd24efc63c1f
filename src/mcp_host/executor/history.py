"""
In-memory execution history for the tool executor.

Holds finished ToolExecutionResult records in completion order. Each
ToolExecutor owns its own history instance; there is no process-wide store.
"""

import json
import threading
from collections import Counter, deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

from .models import ToolExecutionResult


class ExecutionHistory:
    """
    Thread-safe, bounded, append-only log of tool executions.

    Records are kept oldest first; once ``max_entries`` is reached the oldest
    record is dropped. Queries return newest first.

    Example:
        history = ExecutionHistory(max_entries=500)
        history.add(result)

        recent = history.get_history(limit=10)
        stats = history.get_stats()
    """

    def __init__(self, max_entries: Optional[int] = 1000):
        self._results: Deque[ToolExecutionResult] = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    def add(self, result: ToolExecutionResult) -> None:
        with self._lock:
            self._results.append(result)

    def get_history(self, limit: Optional[int] = None) -> List[ToolExecutionResult]:
        """
        Retrieve executions in reverse completion order.

        Args:
            limit: Maximum number of records to return (all when None)

        Returns:
            List[ToolExecutionResult]: Newest first
        """
        with self._lock:
            return self._newest_first(list(self._results), limit)

    def get_by_id(self, execution_id: str) -> Optional[ToolExecutionResult]:
        with self._lock:
            for result in self._results:
                if result.id == execution_id:
                    return result
        return None

    def get_by_tool(self, tool_name: str, limit: Optional[int] = None) -> List[ToolExecutionResult]:
        with self._lock:
            return self._newest_first([r for r in self._results if r.tool_name == tool_name], limit)

    def get_by_server(self, server_id: str, limit: Optional[int] = None) -> List[ToolExecutionResult]:
        with self._lock:
            return self._newest_first([r for r in self._results if r.server_id == server_id], limit)

    def get_failed(self, limit: Optional[int] = None) -> List[ToolExecutionResult]:
        with self._lock:
            return self._newest_first([r for r in self._results if not r.success], limit)

    def count(self) -> int:
        with self._lock:
            return len(self._results)

    def clear(self) -> None:
        with self._lock:
            self._results.clear()

    def get_stats(self) -> Dict[str, Any]:
        """
        Aggregate statistics over the retained history.

        Returns:
            dict: ``total``, ``successful``, ``failed``, ``success_rate``,
            ``average_duration_ms`` and ``most_used_tools`` (top 10, keyed
            ``server:tool``, most frequent first)
        """
        with self._lock:
            results = list(self._results)

        if not results:
            return {
                "total": 0,
                "successful": 0,
                "failed": 0,
                "success_rate": 0.0,
                "average_duration_ms": 0.0,
                "most_used_tools": []
            }

        successful = sum(1 for r in results if r.success)
        usage = Counter(f"{r.server_id}:{r.tool_name}" for r in results)

        return {
            "total": len(results),
            "successful": successful,
            "failed": len(results) - successful,
            "success_rate": successful / len(results),
            "average_duration_ms": sum(r.duration_ms for r in results) / len(results),
            "most_used_tools": [
                {"tool": tool, "count": count}
                for tool, count in usage.most_common(10)
            ]
        }

    def export(self) -> str:
        """Serialize the history as JSON, oldest first."""
        with self._lock:
            executions = [r.model_dump(mode="json") for r in self._results]
        return json.dumps({
            "version": "1.0",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "executions": executions
        }, indent=2)

    @staticmethod
    def _newest_first(results: List[ToolExecutionResult], limit: Optional[int]) -> List[ToolExecutionResult]:
        results = results[::-1]
        return results if limit is None else results[:limit]
