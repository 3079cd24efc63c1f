"""Test the permission engine and its policies."""

import asyncio
import json
import time
from datetime import datetime, timedelta, timezone

import pytest
import yaml

from mcp_host.mcp.exceptions import PermissionLimitError
from mcp_host.permissions import (
    Permission, PermissionCheck, PermissionEngine, PermissionLevel,
    PermissionScope, PermissionSettings, infer_scope, matches_pattern
)


def check(server_id="fs", tool_name="read_file", scope=PermissionScope.FILESYSTEM, resource="/home/user/a.txt"):
    return PermissionCheck(server_id=server_id, tool_name=tool_name, scope=scope, resource=resource)


@pytest.fixture
def engine():
    return PermissionEngine(PermissionSettings(require_confirmation=False))


class TestPatternMatching:
    """Test glob-style resource patterns."""

    def test_directory_wildcard(self):
        assert matches_pattern("/home/user/a.txt", "/home/user/*")
        assert not matches_pattern("/home/user/a.txt", "/etc/*")

    def test_question_mark_matches_one_character(self):
        assert matches_pattern("file1.txt", "file?.txt")
        assert not matches_pattern("file10.txt", "file?.txt")

    def test_match_is_anchored(self):
        assert not matches_pattern("/home/user/a.txt", "/home/user")
        assert not matches_pattern("x/home/user/a", "/home/user/*")

    def test_regex_characters_are_literal(self):
        assert matches_pattern("api.example.com", "*.example.com")
        assert not matches_pattern("apiXexampleYcom", "api.example.com")
        assert matches_pattern("a+b(1)", "a+b(?)")


class TestGrants:
    """Test grant lookup."""

    async def test_matching_grant_allows(self, engine):
        engine.grant_permission("fs", PermissionScope.FILESYSTEM, resource="/home/user/*")

        assert await engine.check_permission(check())

    async def test_non_matching_pattern_denies(self, engine):
        engine.grant_permission("fs", PermissionScope.FILESYSTEM, resource="/etc/*")

        assert not await engine.check_permission(check())

    async def test_grant_is_scoped_to_server_and_scope(self, engine):
        engine.grant_permission("fs", PermissionScope.NETWORK)
        engine.grant_permission("other", PermissionScope.FILESYSTEM)

        assert not await engine.check_permission(check())

    async def test_grant_without_pattern_covers_everything(self, engine):
        engine.grant_permission("fs", PermissionScope.FILESYSTEM)

        assert await engine.check_permission(check(resource=None))

    async def test_deny_grant_wins(self, engine):
        engine.grant_permission("fs", PermissionScope.FILESYSTEM, resource="/home/*")
        engine.grant_permission("fs", PermissionScope.FILESYSTEM, resource="/home/user/*", level=PermissionLevel.DENY)

        assert not await engine.check_permission(check())

    async def test_expired_grant_is_ignored(self, engine):
        engine.grant_permission(
            "fs", PermissionScope.FILESYSTEM,
            expires_at=datetime.now(timezone.utc) - timedelta(seconds=1)
        )

        assert not await engine.check_permission(check())

    def test_limit_per_server(self):
        engine = PermissionEngine(PermissionSettings(max_permissions_per_server=2))
        engine.grant_permission("fs", PermissionScope.FILESYSTEM, resource="/a")
        engine.grant_permission("fs", PermissionScope.FILESYSTEM, resource="/b")

        with pytest.raises(PermissionLimitError):
            engine.grant_permission("fs", PermissionScope.FILESYSTEM, resource="/c")

        assert len(engine.get_permissions_by_server("fs")) == 2
        engine.grant_permission("other", PermissionScope.FILESYSTEM)

    def test_revoke(self, engine):
        grant = engine.grant_permission("fs", PermissionScope.FILESYSTEM)
        engine.grant_permission("fs", PermissionScope.NETWORK)
        engine.grant_permission("web", PermissionScope.NETWORK)

        assert engine.revoke_permission(grant.id)
        assert not engine.revoke_permission(grant.id)
        assert engine.revoke_server_permissions("fs") == 1
        assert [p.server_id for p in engine.get_permissions()] == ["web"]

    def test_cleanup_expired(self, engine):
        past = datetime.now(timezone.utc) - timedelta(minutes=1)
        engine.grant_permission("fs", PermissionScope.FILESYSTEM, expires_at=past)
        engine.grant_permission("fs", PermissionScope.NETWORK, expires_at=past)
        engine.grant_permission("fs", PermissionScope.SYSTEM)

        assert engine.get_permission_stats()["expired"] == 2
        assert engine.cleanup_expired_permissions() == 2
        assert engine.cleanup_expired_permissions() == 0
        assert len(engine.get_permissions()) == 1

    def test_stats(self, engine):
        engine.grant_permission("fs", PermissionScope.FILESYSTEM)
        engine.grant_permission("fs", PermissionScope.NETWORK, level=PermissionLevel.DENY)

        stats = engine.get_permission_stats()

        assert stats["total"] == 2
        assert stats["by_scope"] == {"filesystem": 1, "network": 1}
        assert stats["by_level"] == {"allow": 1, "deny": 1}


class TestAutoAllow:
    """Test auto-allow policies."""

    async def test_filesystem_read_requires_read_tool(self):
        engine = PermissionEngine(PermissionSettings(require_confirmation=False, auto_allow_filesystem_read=True))

        assert await engine.check_permission(check(tool_name="read_file"))
        assert not await engine.check_permission(check(server_id="fs2", tool_name="write_file"))

    async def test_auto_allow_persists_grant(self):
        engine = PermissionEngine(PermissionSettings(require_confirmation=False, auto_allow_network_requests=True))

        assert await engine.check_permission(check(scope=PermissionScope.NETWORK, resource="https://x"))

        grants = engine.get_permissions()
        assert len(grants) == 1
        assert grants[0].level is PermissionLevel.ALLOW
        assert grants[0].resource == "https://x"

    async def test_auto_allow_without_resource_stores_nothing(self):
        engine = PermissionEngine(PermissionSettings(require_confirmation=False, auto_allow_filesystem_read=True))

        assert await engine.check_permission(check(tool_name="read_file", resource=None))

        assert engine.get_permissions() == []
        assert not await engine.check_permission(check(tool_name="write_file", resource="/etc/passwd"))

    async def test_auto_grant_covers_only_the_checked_resource(self):
        engine = PermissionEngine(PermissionSettings(require_confirmation=False, auto_allow_filesystem_read=True))

        assert await engine.check_permission(check(tool_name="read_file", resource="/home/user/a.txt"))

        assert not await engine.check_permission(check(tool_name="write_file", resource="/home/user/b.txt"))

    async def test_auto_allow_with_glob_resource_stores_nothing(self):
        engine = PermissionEngine(PermissionSettings(require_confirmation=False, auto_allow_network_requests=True))

        assert await engine.check_permission(check(scope=PermissionScope.NETWORK, resource="https://*"))

        assert engine.get_permissions() == []

    async def test_trusted_servers(self):
        engine = PermissionEngine(PermissionSettings(
            require_confirmation=False, auto_allow_trusted_servers=True, trusted_servers=["fs"]
        ))

        assert await engine.check_permission(check(scope=PermissionScope.SYSTEM))
        assert not await engine.check_permission(check(server_id="stranger", scope=PermissionScope.SYSTEM))

    async def test_auto_allow_at_limit_still_allows(self):
        engine = PermissionEngine(PermissionSettings(
            require_confirmation=False, auto_allow_network_requests=True, max_permissions_per_server=1
        ))
        engine.grant_permission("fs", PermissionScope.SYSTEM)

        assert await engine.check_permission(check(scope=PermissionScope.NETWORK))
        assert len(engine.get_permissions()) == 1

    async def test_custom_policies_replace_defaults(self):
        engine = PermissionEngine(
            PermissionSettings(require_confirmation=False, auto_allow_network_requests=True),
            policies=[lambda c, s: c.tool_name == "safe_tool"]
        )

        assert await engine.check_permission(check(tool_name="safe_tool"))
        assert not await engine.check_permission(check(scope=PermissionScope.NETWORK, tool_name="fetch"))


class TestInteractiveRequests:
    """Test the pending/granted/denied/timeout flow."""

    async def test_timeout_denies_and_discards_request(self):
        engine = PermissionEngine(PermissionSettings(permission_timeout=0.05))
        published = []
        engine.add_permission_listener(published.append)

        started = time.monotonic()
        allowed = await engine.check_permission(check())
        elapsed = time.monotonic() - started

        assert allowed is False
        assert 0.04 <= elapsed < 1.0
        assert engine.get_pending_requests() == []
        assert len(published) == 1
        assert engine.respond_to_permission_request(published[0].id, True) is False
        assert engine.get_permissions() == []

    async def test_grant_resolves_waiter_and_persists(self):
        engine = PermissionEngine(PermissionSettings(permission_timeout=5.0))
        waiter = asyncio.create_task(engine.check_permission(check()))
        await asyncio.sleep(0.01)

        pending = engine.get_pending_requests()
        assert len(pending) == 1
        assert pending[0].description == "read_file: Access file system (/home/user/a.txt)"

        assert engine.respond_to_permission_request(pending[0].id, True, expires_in=60, resource="/home/user/*")

        assert await waiter is True
        grant = engine.get_permissions()[0]
        assert grant.resource == "/home/user/*"
        assert grant.expires_at is not None
        assert engine.get_pending_requests() == []
        assert await engine.check_permission(check(resource="/home/user/b.txt"))

    async def test_denial_resolves_false_without_grant(self):
        engine = PermissionEngine(PermissionSettings(permission_timeout=5.0))
        engine.add_permission_listener(lambda request: engine.respond_to_permission_request(request.id, False))

        assert await engine.check_permission(check()) is False
        assert engine.get_permissions() == []

    async def test_grant_once_without_remembering(self):
        engine = PermissionEngine(PermissionSettings(permission_timeout=5.0))
        engine.add_permission_listener(
            lambda request: engine.respond_to_permission_request(request.id, True, remember=False)
        )

        assert await engine.check_permission(check()) is True
        assert engine.get_permissions() == []

    async def test_cancelled_check_discards_request(self):
        engine = PermissionEngine(PermissionSettings(permission_timeout=5.0))
        waiter = asyncio.create_task(engine.check_permission(check()))
        await asyncio.sleep(0.01)

        waiter.cancel()
        await asyncio.gather(waiter, return_exceptions=True)

        assert engine.get_pending_requests() == []

    async def test_failing_listener_does_not_block_request(self):
        engine = PermissionEngine(PermissionSettings(permission_timeout=0.05))

        def explode(_request):
            raise RuntimeError("ui crashed")

        engine.add_permission_listener(explode)

        assert await engine.check_permission(check()) is False

    async def test_removed_listener(self):
        engine = PermissionEngine(PermissionSettings(permission_timeout=0.01))
        published = []
        engine.add_permission_listener(published.append)
        engine.remove_permission_listener(published.append)

        await engine.check_permission(check())

        assert published == []

    async def test_no_confirmation_denies_by_default(self, engine):
        assert await engine.check_permission(check()) is False
        assert engine.get_pending_requests() == []


class TestSettings:
    """Test settings access."""

    def test_defaults(self):
        settings = PermissionEngine().get_settings()

        assert settings.require_confirmation is True
        assert settings.auto_allow_filesystem_read is False
        assert settings.auto_allow_network_requests is False
        assert settings.permission_timeout == 300.0
        assert settings.max_permissions_per_server == 50

    def test_update_settings_merges(self, engine):
        updated = engine.update_settings({"auto_allow_network_requests": True})

        assert updated.auto_allow_network_requests is True
        assert updated.require_confirmation is False

    def test_get_settings_returns_copy(self, engine):
        engine.get_settings().require_confirmation = True

        assert engine.get_settings().require_confirmation is False


class TestImportExport:
    """Test portability of grants and settings."""

    def test_export_then_import_into_fresh_engine(self, engine):
        engine.grant_permission("fs", PermissionScope.FILESYSTEM, resource="/home/*")
        engine.grant_permission("web", PermissionScope.NETWORK, level=PermissionLevel.DENY)
        exported = engine.export_permissions()

        other = PermissionEngine()
        result = other.import_permissions(exported)

        assert json.loads(exported)["version"] == "1.0"
        assert result.imported == 2
        assert result.errors == []
        assert other.get_settings().require_confirmation is False
        assert {(p.server_id, p.scope, p.resource) for p in other.get_permissions()} == {
            ("fs", PermissionScope.FILESYSTEM, "/home/*"),
            ("web", PermissionScope.NETWORK, None),
        }

    def test_duplicates_are_skipped(self, engine):
        engine.grant_permission("fs", PermissionScope.FILESYSTEM, resource="/home/*")
        exported = engine.export_permissions()

        result = engine.import_permissions(exported)

        assert result.imported == 0
        assert len(engine.get_permissions()) == 1

    def test_invalid_entries_are_reported(self, engine):
        payload = json.dumps({
            "version": "1.0",
            "permissions": [
                {"server_id": "fs"},
                {"server_id": "fs", "scope": "teleport", "level": "allow"},
                {"server_id": "fs", "scope": "filesystem", "level": "allow", "resource": "/tmp/*"},
            ],
        })

        result = engine.import_permissions(payload)

        assert result.imported == 1
        assert len(result.errors) == 2

    @pytest.mark.parametrize("payload", ["not json", "[]", json.dumps({"permissions": []}), json.dumps({"version": "1.0"})])
    def test_invalid_payload(self, engine, payload):
        result = engine.import_permissions(payload)

        assert result.imported == 0
        assert result.errors

    def test_import_respects_limit(self):
        engine = PermissionEngine(PermissionSettings(max_permissions_per_server=1))
        payload = json.dumps({
            "version": "1.0",
            "permissions": [
                {"server_id": "fs", "scope": "filesystem", "level": "allow", "resource": "/a"},
                {"server_id": "fs", "scope": "filesystem", "level": "allow", "resource": "/b"},
            ],
        })

        result = engine.import_permissions(payload)

        assert result.imported == 1
        assert "Maximum permissions exceeded" in result.errors[0]


class TestPersistence:
    """Test the YAML grant store."""

    def test_grants_survive_restart(self, tmp_path):
        path = tmp_path / "permissions.yaml"
        engine = PermissionEngine(PermissionSettings(require_confirmation=False), storage_path=path)
        grant = engine.grant_permission("fs", PermissionScope.FILESYSTEM, resource="/home/*")

        restored = PermissionEngine(storage_path=path)

        assert [p.id for p in restored.get_permissions()] == [grant.id]
        assert restored.get_settings().require_confirmation is False
        assert yaml.safe_load(path.read_text())["permissions"][0]["scope"] == "filesystem"

    def test_invalid_stored_grant_is_skipped(self, tmp_path):
        path = tmp_path / "permissions.yaml"
        path.write_text(yaml.dump({"permissions": [{"server_id": "fs"}, {"server_id": "fs", "scope": "network"}]}))

        engine = PermissionEngine(storage_path=path)

        assert [p.scope for p in engine.get_permissions()] == [PermissionScope.NETWORK]


class TestScopeInference:
    """Test the default scope resolver."""

    @pytest.mark.parametrize("tool_name,arguments,expected", [
        ("read_file", {"path": "/tmp/a"}, (PermissionScope.FILESYSTEM, "/tmp/a")),
        ("fetch", {"url": "https://example.com"}, (PermissionScope.NETWORK, "https://example.com")),
        ("brave_web_search", {"query": "mcp"}, (PermissionScope.NETWORK, "mcp")),
        ("read_query", {"query": "select 1"}, (PermissionScope.DATABASE, "select 1")),
        ("execute_command", {"command": "ls"}, (PermissionScope.SYSTEM, None)),
        ("get_weather", {"city": "Rome"}, (PermissionScope.EXTERNAL_API, None)),
    ])
    def test_infer_scope(self, tool_name, arguments, expected):
        assert infer_scope(tool_name, arguments) == expected

    def test_permission_model_defaults(self):
        permission = Permission(server_id="fs", scope="filesystem")

        assert permission.level is PermissionLevel.ALLOW
        assert not permission.is_expired()
