"""Environment file generation for the compose stack.

The stack's compose files read their service endpoints from a ``.env``
file next to them. This module renders that file from validated
:class:`~sitespine.provision.config.SiteSettings`, so an endpoint without
a scheme, or with stray whitespace (``REDIS_CACHE= redis://...``), can
never be written.

Example::

    from sitespine.provision.config import SiteSettings
    text = render_env_file("crm.example.com", SiteSettings.defaults())
    Path("frappe_docker/.env").write_text(text)

Tags:
    compose, env-file, generation, endpoints
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from pathlib import Path

from sitespine.core.logging import get_logger
from sitespine.provision.config import SITE_ID_PATTERN, SiteSettings

logger = get_logger(__name__)

# SiteSettings field -> .env variable
ENV_VARIABLES: dict[str, str] = {
    "cache_endpoint": "REDIS_CACHE",
    "queue_endpoint": "REDIS_QUEUE",
    "realtime_endpoint": "REDIS_SOCKETIO",
    "database_host": "DB_HOST",
    "database_port": "DB_PORT",
}
_ENV_NAME_RE = re.compile(r"^[A-Z_][A-Z0-9_]*$")


def render_env_file(
    site_id: str,
    settings: SiteSettings,
    extra: Mapping[str, str] | None = None,
) -> str:
    """Render ``.env`` contents for the stack.

    Raises
    ------
    ValueError
        If *site_id* is not a valid site name, or an extra variable has an
        invalid name or a value containing whitespace.
    """
    if not re.match(SITE_ID_PATTERN, site_id):
        raise ValueError(f"Invalid site name: {site_id!r}")

    lines = ["# Generated by site-spine", f"SITE_NAME={site_id}"]
    for field_name, value in settings.as_desired().items():
        lines.append(f"{ENV_VARIABLES[field_name]}={value}")

    for name, value in (extra or {}).items():
        if not _ENV_NAME_RE.match(name):
            raise ValueError(f"Invalid environment variable name: {name!r}")
        text = str(value).strip()
        if any(ch.isspace() for ch in text):
            raise ValueError(f"Value for {name} contains whitespace")
        lines.append(f"{name}={text}")

    return "\n".join(lines) + "\n"


def write_env_file(
    path: str | Path,
    site_id: str,
    settings: SiteSettings,
    extra: Mapping[str, str] | None = None,
) -> Path:
    """Render and write the ``.env`` file, replacing any existing one."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(render_env_file(site_id, settings, extra), encoding="utf-8")
    logger.info("compose.env_written", path=str(target), site_id=site_id)
    return target
