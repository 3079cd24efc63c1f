"""
Permission models.

A Permission is a durable grant looked up by server, scope and resource
pattern. A PermissionRequest only exists while a decision is pending.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from ..core.config import settings as app_settings


class PermissionScope(str, Enum):
    FILESYSTEM = "filesystem"
    NETWORK = "network"
    SYSTEM = "system"
    DATABASE = "database"
    EXTERNAL_API = "external_api"


class PermissionLevel(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Permission(BaseModel):
    """A durable allow or deny grant for one server and scope."""

    id: str = Field(default_factory=lambda: f"perm_{uuid.uuid4().hex[:12]}")
    server_id: str
    scope: PermissionScope
    resource: Optional[str] = Field(
        None,
        description="Glob pattern over resources, e.g. '/home/user/*'; matches everything when unset"
    )
    level: PermissionLevel = PermissionLevel.ALLOW
    granted_at: datetime = Field(default_factory=_utcnow)
    expires_at: Optional[datetime] = None
    description: str = ""

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at is not None and self.expires_at <= (now or _utcnow())

    @field_validator("granted_at", "expires_at")
    @classmethod
    def ensure_timezone(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Naive timestamps from imports are taken as UTC."""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class PermissionCheck(BaseModel):
    """The question asked of the engine before a tool is dispatched."""

    server_id: str
    tool_name: str
    scope: PermissionScope
    resource: Optional[str] = None
    arguments: Dict[str, Any] = Field(default_factory=dict)
    context: Dict[str, Any] = Field(default_factory=dict)


class PermissionRequest(BaseModel):
    """A check awaiting an interactive decision."""

    id: str = Field(default_factory=lambda: f"req_{uuid.uuid4().hex[:12]}")
    server_id: str
    tool_name: str
    scope: PermissionScope
    resource: Optional[str] = None
    description: str = ""
    requested_at: datetime = Field(default_factory=_utcnow)
    arguments: Dict[str, Any] = Field(default_factory=dict)
    context: Dict[str, Any] = Field(default_factory=dict)


class PermissionSettings(BaseModel):
    """Policy knobs of the permission engine."""

    require_confirmation: bool = True
    auto_allow_trusted_servers: bool = False
    trusted_servers: List[str] = Field(default_factory=list)
    auto_allow_filesystem_read: bool = False
    auto_allow_network_requests: bool = False
    permission_timeout: float = Field(
        default_factory=lambda: app_settings.PERMISSION_TIMEOUT,
        gt=0,
        description="Seconds to wait for an interactive decision before denying"
    )
    max_permissions_per_server: int = Field(
        default_factory=lambda: app_settings.MAX_PERMISSIONS_PER_SERVER,
        ge=1
    )


class ImportResult(BaseModel):
    imported: int = 0
    errors: List[str] = Field(default_factory=list)
