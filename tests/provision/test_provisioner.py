"""Tests for sitespine.provision.provisioner."""

from __future__ import annotations

from unittest.mock import MagicMock

from tests._support.stack import SITE, FakeStack, proc


DESIRED = {
    "cache_endpoint": "redis://redis-cache:6379",
    "queue_endpoint": "redis://redis-queue:6379",
    "realtime_endpoint": "redis://redis-queue:6379",
    "database_host": "db",
    "database_port": 3306,
}


class TestNewSiteArgs:
    def test_credentials_and_database_flags(self, stack, credentials):
        from sitespine.provision.provisioner import SiteProvisioner

        args = SiteProvisioner(stack).new_site_args(SITE, credentials, DESIRED)
        assert args == [
            "new-site",
            SITE,
            "--mariadb-root-password",
            "root-pw-123",
            "--admin-password",
            "admin-pw-456",
            "--db-host",
            "db",
            "--db-port",
            "3306",
        ]

    def test_no_force_flag(self, stack, credentials):
        from sitespine.provision.provisioner import SiteProvisioner

        args = SiteProvisioner(stack).new_site_args(SITE, credentials, DESIRED)
        assert not any("force" in a for a in args)

    def test_database_flags_optional(self, stack, credentials):
        from sitespine.provision.provisioner import SiteProvisioner

        args = SiteProvisioner(stack).new_site_args(SITE, credentials, {"cache_endpoint": "redis://c:1"})
        assert "--db-host" not in args
        assert "--db-port" not in args


class TestCreateSite:
    def test_creates_and_configures(self, stack, credentials):
        from sitespine.provision.provisioner import SiteProvisioner

        result = SiteProvisioner(stack).create_site(SITE, credentials, DESIRED)

        assert result.created
        assert result.configured_keys == [
            "database_host",
            "database_port",
            "cache_endpoint",
            "queue_endpoint",
            "realtime_endpoint",
        ]
        stored = stack.sites[SITE]
        assert stored["db_host"] == "db"
        assert stored["db_port"] == 3306
        assert stored["redis_cache"] == "redis://redis-cache:6379"
        assert stored["redis_socketio"] == "redis://redis-queue:6379"
        assert len(stack.commands("new-site")) == 1
        # database keys go through new-site, not set-config
        assert len(stack.commands("set-config")) == 3

    def test_existing_site_is_conflict(self, credentials):
        from sitespine.provision.provisioner import SiteProvisioner

        stack = FakeStack({SITE: {"db_name": "_x"}})
        result = SiteProvisioner(stack).create_site(SITE, credentials, DESIRED)

        assert result.status == "create_failed"
        assert result.conflict is True
        assert "already exists" in result.reason
        assert result.partial_state == []
        assert stack.sites[SITE] == {"db_name": "_x"}
        assert stack.commands("set-config") == []

    def test_failure_without_leftovers(self, stack, credentials):
        from sitespine.provision.provisioner import SiteProvisioner

        stack.new_site_error = "Access denied for user 'root'@'172.18.0.5'"
        result = SiteProvisioner(stack).create_site(SITE, credentials, DESIRED)

        assert result.status == "create_failed"
        assert result.conflict is False
        assert "Access denied" in result.reason
        assert result.partial_state == []

    def test_failure_reports_partial_site_directory(self, credentials):
        from sitespine.provision.provisioner import SiteProvisioner

        client = MagicMock()
        client.bench.return_value = proc(1, stderr="pymysql.err.OperationalError: (2013, 'Lost connection')")
        client.exec.return_value = proc(0)

        result = SiteProvisioner(client).create_site(SITE, credentials, DESIRED)
        assert result.status == "create_failed"
        assert result.partial_state == [f"sites/{SITE}"]
        client.exec.assert_called_once_with(["test", "-d", f"sites/{SITE}"], timeout=30)

    def test_command_error_is_failure(self, credentials):
        from sitespine.core.errors import CommandError
        from sitespine.provision.provisioner import SiteProvisioner

        client = MagicMock()
        client.bench.side_effect = CommandError("Command timed out after 600s")
        client.exec.return_value = proc(1)

        result = SiteProvisioner(client).create_site(SITE, credentials, DESIRED)
        assert result.status == "create_failed"
        assert result.conflict is False
        assert "timed out" in result.reason

    def test_post_create_config_failure(self, stack, credentials):
        from sitespine.provision.provisioner import SiteProvisioner

        stack.fail_keys.add("redis_cache")
        result = SiteProvisioner(stack).create_site(SITE, credentials, DESIRED)

        assert result.status == "create_failed"
        assert result.conflict is False
        assert result.partial_state == [f"site {SITE} exists", "unapplied: cache_endpoint"]
        assert "cache_endpoint" not in result.configured_keys
        assert SITE in stack.sites

    def test_reason_never_contains_credentials(self, stack, credentials):
        from sitespine.provision.provisioner import SiteProvisioner

        stack.new_site_error = "Error: could not connect"
        result = SiteProvisioner(stack).create_site(SITE, credentials, DESIRED)
        assert "root-pw-123" not in result.model_dump_json()
        assert "admin-pw-456" not in result.model_dump_json()
