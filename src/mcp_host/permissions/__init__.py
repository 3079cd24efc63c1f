"""Permission grants, auto-allow policies and interactive decisions."""

from .engine import PermissionEngine
from .models import (
    ImportResult, Permission, PermissionCheck, PermissionLevel,
    PermissionRequest, PermissionScope, PermissionSettings
)
from .policy import (
    DEFAULT_AUTO_ALLOW_POLICIES, AutoAllowPolicy, filesystem_read_policy,
    infer_scope, matches_pattern, network_policy, trusted_server_policy
)

__all__ = [
    "PermissionEngine",
    "ImportResult",
    "Permission",
    "PermissionCheck",
    "PermissionLevel",
    "PermissionRequest",
    "PermissionScope",
    "PermissionSettings",
    "DEFAULT_AUTO_ALLOW_POLICIES",
    "AutoAllowPolicy",
    "filesystem_read_policy",
    "infer_scope",
    "matches_pattern",
    "network_policy",
    "trusted_server_policy",
]
