"""
Permission policy helpers.

Resource pattern matching, the auto-allow policies consulted before a user
is asked, and the scope inference used by the tool executor. Policies are
plain callables so deployments can replace or extend the default set.
"""

import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from .models import PermissionCheck, PermissionScope, PermissionSettings


AutoAllowPolicy = Callable[[PermissionCheck, PermissionSettings], bool]
ScopeResolver = Callable[[str, Dict[str, Any]], Tuple[PermissionScope, Optional[str]]]


def matches_pattern(resource: str, pattern: str) -> bool:
    """
    Anchored glob match: ``*`` matches any run of characters, ``?`` exactly
    one; every other character is literal.
    """
    regex = "".join(
        ".*" if char == "*" else "." if char == "?" else re.escape(char)
        for char in pattern
    )
    return re.fullmatch(regex, resource, flags=re.DOTALL) is not None


def filesystem_read_policy(check: PermissionCheck, settings: PermissionSettings) -> bool:
    """Allow read-only filesystem tools when enabled."""
    return (
        settings.auto_allow_filesystem_read
        and check.scope is PermissionScope.FILESYSTEM
        and "read" in check.tool_name.lower()
    )


def network_policy(check: PermissionCheck, settings: PermissionSettings) -> bool:
    return settings.auto_allow_network_requests and check.scope is PermissionScope.NETWORK


def trusted_server_policy(check: PermissionCheck, settings: PermissionSettings) -> bool:
    return settings.auto_allow_trusted_servers and check.server_id in settings.trusted_servers


DEFAULT_AUTO_ALLOW_POLICIES: List[AutoAllowPolicy] = [
    filesystem_read_policy,
    network_policy,
    trusted_server_policy,
]


# First match wins, so order matters: "read_query" is database, not filesystem
_SCOPE_KEYWORDS: List[Tuple[PermissionScope, Tuple[str, ...]]] = [
    (PermissionScope.DATABASE, ("sql", "query", "database", "db_")),
    (PermissionScope.SYSTEM, ("exec", "command", "shell", "run_", "process")),
    (PermissionScope.NETWORK, ("http", "fetch", "url", "web", "search", "request", "download")),
    (PermissionScope.FILESYSTEM, ("file", "read", "write", "path", "directory", "dir", "move")),
]

_RESOURCE_KEYS = ("path", "uri", "url", "file", "filename", "directory", "query")


def infer_scope(tool_name: str, arguments: Optional[Dict[str, Any]] = None) -> Tuple[PermissionScope, Optional[str]]:
    """
    Guess the permission scope and target resource of a tool call.

    The scope comes from keywords in the tool name and defaults to
    ``external_api``; the resource is the first string argument under a
    well-known key such as ``path`` or ``url``.
    """
    name = tool_name.lower()
    scope = PermissionScope.EXTERNAL_API
    for candidate, keywords in _SCOPE_KEYWORDS:
        if any(keyword in name for keyword in keywords):
            scope = candidate
            break

    resource = None
    for key in _RESOURCE_KEYS:
        value = (arguments or {}).get(key)
        if isinstance(value, str) and value:
            resource = value
            break

    return scope, resource
