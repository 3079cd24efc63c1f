"""
MCP Permission Engine

Decides whether a tool invocation may proceed. A decision is taken from an
existing grant, from the auto-allow policies, or from an interactive
request that observers answer through ``respond_to_permission_request``.
Unanswered requests are denied once ``permission_timeout`` elapses.
"""

import asyncio
import json
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import yaml
from pydantic import ValidationError

from .models import (
    ImportResult, Permission, PermissionCheck, PermissionLevel,
    PermissionRequest, PermissionScope, PermissionSettings
)
from .policy import DEFAULT_AUTO_ALLOW_POLICIES, AutoAllowPolicy, matches_pattern
from ..core.logging import get_logger
from ..mcp.exceptions import PermissionLimitError


logger = get_logger(__name__)

PermissionListener = Callable[[PermissionRequest], None]

EXPORT_VERSION = "1.0"


@dataclass
class _PendingDecision:
    request: PermissionRequest
    future: asyncio.Future


def describe_check(check: PermissionCheck) -> str:
    """Human-readable summary shown when asking the user."""
    target = f" ({check.resource})" if check.resource else ""
    descriptions = {
        PermissionScope.FILESYSTEM: f"Access file system{target}",
        PermissionScope.NETWORK: f"Make network requests{' to ' + check.resource if check.resource else ''}",
        PermissionScope.SYSTEM: "Execute system commands",
        PermissionScope.DATABASE: f"Access database{target}",
        PermissionScope.EXTERNAL_API: f"Call external API{target}",
    }
    return f"{check.tool_name}: {descriptions[check.scope]}"


class PermissionEngine:
    """
    Grant store plus decision procedure for tool invocations.

    Grants live in memory and, when ``storage_path`` is given, are mirrored
    to a YAML file after every change. Pending requests are never persisted.
    """

    def __init__(
        self,
        settings: Optional[PermissionSettings] = None,
        policies: Optional[List[AutoAllowPolicy]] = None,
        storage_path: Optional[Union[str, Path]] = None
    ):
        self._settings = settings or PermissionSettings()
        self._policies = list(DEFAULT_AUTO_ALLOW_POLICIES if policies is None else policies)
        self._storage_path = Path(storage_path) if storage_path else None
        self._permissions: List[Permission] = []
        self._pending: Dict[str, _PendingDecision] = {}
        self._listeners: List[PermissionListener] = []
        self._lock = threading.Lock()

        if self._storage_path is not None and self._storage_path.exists():
            self._load()

    async def check_permission(self, check: PermissionCheck) -> bool:
        """
        Decide whether the checked invocation may proceed.

        Order: matching grant, auto-allow policies, interactive request (when
        confirmation is required), otherwise deny.

        An auto-allow stores a grant for the exact resource checked. Checks
        without a resource, or whose resource contains glob characters, are
        allowed without storing anything, since such a grant would cover the
        whole scope.
        """
        grant = self._find_grant(check)
        if grant is not None:
            logger.debug(f"Grant {grant.id} decides {check.tool_name} on {check.server_id}: {grant.level.value}")
            return grant.level is PermissionLevel.ALLOW

        if self._auto_allowed(check):
            # A stored grant must not cover more than the resource that was checked
            if check.resource and not any(char in check.resource for char in "*?"):
                try:
                    self.grant_permission(
                        server_id=check.server_id,
                        scope=check.scope,
                        resource=check.resource,
                        description=f"Auto-granted for {check.tool_name}"
                    )
                except PermissionLimitError as e:
                    logger.warning(
                        f"Auto-allowed {check.tool_name} on {check.server_id} without storing a grant: {e.message}"
                    )
            logger.info(f"Auto-allowed {check.tool_name} on {check.server_id} ({check.scope.value})")
            return True

        if self._settings.require_confirmation:
            return await self._request_permission(check)

        logger.info(f"Denied {check.tool_name} on {check.server_id}: no grant and confirmation disabled")
        return False

    def respond_to_permission_request(
        self,
        request_id: str,
        granted: bool,
        expires_in: Optional[float] = None,
        resource: Optional[str] = None,
        remember: bool = True
    ) -> bool:
        """
        Answer a pending request.

        Args:
            request_id: Id of the pending request
            granted: The decision
            expires_in: Lifetime in seconds of the stored grant (no expiry when None)
            resource: Pattern to store instead of the request's resource
            remember: Store an allow grant for future checks

        Returns:
            bool: False if the request was not pending (already answered or timed out)

        Raises:
            PermissionLimitError: The grant could not be stored; the waiting check is still resolved
        """
        pending = self._pending.pop(request_id, None)
        if pending is None:
            logger.warning(f"Permission request {request_id} is not pending")
            return False

        if not pending.future.done():
            pending.future.set_result(granted)

        request = pending.request
        logger.info(f"Permission request {request_id} {'granted' if granted else 'denied'}")
        if granted and remember:
            self.grant_permission(
                server_id=request.server_id,
                scope=request.scope,
                resource=resource or request.resource,
                expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in) if expires_in else None,
                description=request.description
            )
        return True

    def grant_permission(
        self,
        server_id: str,
        scope: Union[PermissionScope, str],
        resource: Optional[str] = None,
        level: Union[PermissionLevel, str] = PermissionLevel.ALLOW,
        expires_at: Optional[datetime] = None,
        description: str = ""
    ) -> Permission:
        """
        Store a new grant.

        Raises:
            PermissionLimitError: The server already holds the maximum number of grants
        """
        permission = Permission(
            server_id=server_id,
            scope=scope,
            resource=resource,
            level=level,
            expires_at=expires_at,
            description=description
        )
        with self._lock:
            self._check_limit(server_id)
            self._permissions.append(permission)
        self._save()
        logger.info(f"Stored {permission.level.value} grant {permission.id} for {server_id} ({permission.scope.value})")
        return permission

    def revoke_permission(self, permission_id: str) -> bool:
        with self._lock:
            before = len(self._permissions)
            self._permissions = [p for p in self._permissions if p.id != permission_id]
            removed = before != len(self._permissions)
        if removed:
            self._save()
        return removed

    def revoke_server_permissions(self, server_id: str) -> int:
        with self._lock:
            before = len(self._permissions)
            self._permissions = [p for p in self._permissions if p.server_id != server_id]
            removed = before - len(self._permissions)
        if removed:
            self._save()
            logger.info(f"Revoked {removed} grants for {server_id}")
        return removed

    def get_permissions(self) -> List[Permission]:
        with self._lock:
            return list(self._permissions)

    def get_permissions_by_server(self, server_id: str) -> List[Permission]:
        with self._lock:
            return [p for p in self._permissions if p.server_id == server_id]

    def get_pending_requests(self) -> List[PermissionRequest]:
        return [pending.request for pending in self._pending.values()]

    def add_permission_listener(self, listener: PermissionListener) -> None:
        self._listeners.append(listener)

    def remove_permission_listener(self, listener: PermissionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def cleanup_expired_permissions(self) -> int:
        """Remove expired grants and return how many were removed."""
        now = datetime.now(timezone.utc)
        with self._lock:
            before = len(self._permissions)
            self._permissions = [p for p in self._permissions if not p.is_expired(now)]
            removed = before - len(self._permissions)
        if removed:
            self._save()
            logger.info(f"Removed {removed} expired grants")
        return removed

    def get_permission_stats(self) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        stats: Dict[str, Any] = {"total": 0, "by_scope": {}, "by_level": {}, "expired": 0}
        for permission in self.get_permissions():
            stats["total"] += 1
            stats["by_scope"][permission.scope.value] = stats["by_scope"].get(permission.scope.value, 0) + 1
            stats["by_level"][permission.level.value] = stats["by_level"].get(permission.level.value, 0) + 1
            if permission.is_expired(now):
                stats["expired"] += 1
        return stats

    def get_settings(self) -> PermissionSettings:
        return self._settings.model_copy()

    def update_settings(self, changes: Dict[str, Any]) -> PermissionSettings:
        """
        Merge changes into the current settings.

        Raises:
            pydantic.ValidationError: If the merged settings are invalid
        """
        self._settings = PermissionSettings.model_validate({**self._settings.model_dump(), **changes})
        self._save()
        return self.get_settings()

    def export_permissions(self) -> str:
        return json.dumps({
            "version": EXPORT_VERSION,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "permissions": [p.model_dump(mode="json") for p in self.get_permissions()],
            "settings": self._settings.model_dump(mode="json")
        }, indent=2)

    def import_permissions(self, json_data: str) -> ImportResult:
        """
        Merge an export into this engine.

        Grants identical in server, scope and resource to an existing one are
        skipped. Invalid entries are reported in ``errors`` and do not abort
        the import.
        """
        result = ImportResult()
        try:
            data = json.loads(json_data)
        except json.JSONDecodeError as e:
            result.errors.append(f"Failed to parse import data: {e}")
            return result

        if not isinstance(data, dict) or not data.get("version") or not isinstance(data.get("permissions"), list):
            result.errors.append("Failed to parse import data: invalid export format")
            return result

        with self._lock:
            existing_ids = {p.id for p in self._permissions}
            for item in data["permissions"]:
                if not isinstance(item, dict) or not all(item.get(key) for key in ("server_id", "scope", "level")):
                    result.errors.append(f"Invalid permission structure: {json.dumps(item, default=str)}")
                    continue
                try:
                    permission = Permission.model_validate(item)
                except ValidationError as e:
                    result.errors.append(f"Failed to import permission {item.get('id')}: {e}")
                    continue

                if any(self._same_target(p, permission) for p in self._permissions):
                    continue
                try:
                    self._check_limit(permission.server_id)
                except PermissionLimitError as e:
                    result.errors.append(e.message)
                    continue
                if permission.id in existing_ids:
                    permission = permission.model_copy(update={"id": f"perm_{uuid.uuid4().hex[:12]}"})
                existing_ids.add(permission.id)
                self._permissions.append(permission)
                result.imported += 1

        if isinstance(data.get("settings"), dict):
            try:
                self._settings = PermissionSettings.model_validate({**self._settings.model_dump(), **data["settings"]})
            except ValidationError as e:
                result.errors.append(f"Failed to import settings: {e}")

        self._save()
        logger.info(f"Imported {result.imported} grants ({len(result.errors)} errors)")
        return result

    async def _request_permission(self, check: PermissionCheck) -> bool:
        request = PermissionRequest(
            server_id=check.server_id,
            tool_name=check.tool_name,
            scope=check.scope,
            resource=check.resource,
            description=describe_check(check),
            arguments=check.arguments,
            context=check.context
        )
        future = asyncio.get_running_loop().create_future()
        self._pending[request.id] = _PendingDecision(request=request, future=future)
        logger.info(f"Awaiting permission decision {request.id} for {check.tool_name} on {check.server_id}")

        for listener in list(self._listeners):
            try:
                listener(request)
            except Exception as e:
                logger.error(f"Permission listener failed: {e}")

        try:
            return await asyncio.wait_for(future, timeout=self._settings.permission_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Permission request {request.id} timed out after {self._settings.permission_timeout:g}s; denying"
            )
            return False
        finally:
            self._pending.pop(request.id, None)

    def _find_grant(self, check: PermissionCheck) -> Optional[Permission]:
        now = datetime.now(timezone.utc)
        matches = [
            p for p in self.get_permissions()
            if p.server_id == check.server_id
            and p.scope is check.scope
            and not p.is_expired(now)
            and (p.resource is None or matches_pattern(check.resource or "", p.resource))
        ]
        for permission in matches:
            if permission.level is PermissionLevel.DENY:
                return permission
        return matches[0] if matches else None

    def _auto_allowed(self, check: PermissionCheck) -> bool:
        return any(policy(check, self._settings) for policy in self._policies)

    def _check_limit(self, server_id: str) -> None:
        count = sum(1 for p in self._permissions if p.server_id == server_id)
        if count >= self._settings.max_permissions_per_server:
            raise PermissionLimitError(server_id, self._settings.max_permissions_per_server)

    @staticmethod
    def _same_target(a: Permission, b: Permission) -> bool:
        return a.server_id == b.server_id and a.scope is b.scope and a.resource == b.resource

    def _load(self) -> None:
        with open(self._storage_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if isinstance(data.get("settings"), dict):
            self._settings = PermissionSettings.model_validate({**self._settings.model_dump(), **data["settings"]})
        for item in data.get("permissions") or []:
            try:
                self._permissions.append(Permission.model_validate(item))
            except ValidationError as e:
                logger.error(f"Skipping invalid stored grant {item!r}: {e}")
        logger.info(f"Loaded {len(self._permissions)} grants from {self._storage_path}")

    def _save(self) -> None:
        if self._storage_path is None:
            return
        data = {
            "settings": self._settings.model_dump(mode="json"),
            "permissions": [p.model_dump(mode="json") for p in self.get_permissions()]
        }
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._storage_path, "w", encoding="utf-8") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
