"""Tests for sitespine.provision.compose (.env rendering)."""

from __future__ import annotations

import pytest


class TestRenderEnvFile:
    def test_defaults(self):
        from sitespine.provision.compose import render_env_file
        from sitespine.provision.config import SiteSettings

        text = render_env_file("crm.example.com", SiteSettings.defaults())
        assert text.splitlines() == [
            "# Generated by site-spine",
            "SITE_NAME=crm.example.com",
            "REDIS_CACHE=redis://redis-cache:6379",
            "REDIS_QUEUE=redis://redis-queue:6379",
            "REDIS_SOCKETIO=redis://redis-queue:6379",
            "DB_HOST=db",
            "DB_PORT=3306",
        ]
        assert text.endswith("\n")

    def test_only_set_keys(self):
        from sitespine.provision.compose import render_env_file
        from sitespine.provision.config import SiteSettings

        text = render_env_file("crm.example.com", SiteSettings(cache_endpoint=" redis://cache:6379 "))
        assert "REDIS_CACHE=redis://cache:6379\n" in text
        assert "REDIS_QUEUE" not in text

    def test_extra_variables(self):
        from sitespine.provision.compose import render_env_file
        from sitespine.provision.config import SiteSettings

        text = render_env_file(
            "crm.example.com", SiteSettings(), extra={"ERPNEXT_VERSION": " v15.20.0 ", "HTTP_PUBLISH_PORT": "8080"}
        )
        assert text.splitlines()[-2:] == ["ERPNEXT_VERSION=v15.20.0", "HTTP_PUBLISH_PORT=8080"]

    @pytest.mark.parametrize(
        "extra",
        [
            {"lower_case": "x"},
            {"1BAD": "x"},
            {"GOOD": "has space"},
        ],
    )
    def test_extra_rejected(self, extra):
        from sitespine.provision.compose import render_env_file
        from sitespine.provision.config import SiteSettings

        with pytest.raises(ValueError):
            render_env_file("crm.example.com", SiteSettings(), extra=extra)

    def test_invalid_site_name(self):
        from sitespine.provision.compose import render_env_file
        from sitespine.provision.config import SiteSettings

        with pytest.raises(ValueError, match="Invalid site name"):
            render_env_file("bad site", SiteSettings())


class TestWriteEnvFile:
    def test_writes_file(self, tmp_path):
        from sitespine.provision.compose import render_env_file, write_env_file
        from sitespine.provision.config import SiteSettings

        target = tmp_path / "frappe_docker" / ".env"
        path = write_env_file(target, "crm.example.com", SiteSettings.defaults())

        assert path == target
        assert target.read_text(encoding="utf-8") == render_env_file("crm.example.com", SiteSettings.defaults())

    def test_replaces_existing(self, tmp_path):
        from sitespine.provision.compose import write_env_file
        from sitespine.provision.config import SiteSettings

        target = tmp_path / ".env"
        target.write_text("REDIS_CACHE= redis-cache:6379\n")
        write_env_file(target, "crm.example.com", SiteSettings(cache_endpoint="redis://redis-cache:6379"))
        assert target.read_text() == (
            "# Generated by site-spine\nSITE_NAME=crm.example.com\nREDIS_CACHE=redis://redis-cache:6379\n"
        )
