"""Service registry for the site stack.

Describes every container in the stack (database, cache, queue, backend,
realtime gateway, frontend) as a frozen :class:`ServiceSpec`, plus the
mapping from desired-configuration keys to the keys the backend stores in
a site's config.

Key Concepts:
    ServiceSpec: Compose service name, default host/port/scheme, and the
        readiness kind used to poll it.
    SERVICES: Registry of all services keyed by short name.
    DEPENDENT_SERVICES: The services a run waits on before probing.
    SETTING_KEYS: Desired key -> (site-config key, parse-as-json flag).

Related Modules:
    - :mod:`sitespine.provision.config` — builds readiness targets from specs
    - :mod:`sitespine.provision.reconciler` — uses SETTING_KEYS
    - :mod:`sitespine.provision.compose` — renders endpoints into the .env file

Tags:
    services, registry, redis, mariadb, compose, specs
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ServiceSpec:
    """Specification for one service in the compose stack."""

    name: str
    """Compose service name (e.g., 'redis-cache')."""

    role: str
    """What the service does in the stack."""

    host: str
    """Hostname on the compose network."""

    port: int
    """Port inside the compose network."""

    readiness_kind: str
    """One of 'tcp', 'redis', 'http', 'command'."""

    scheme: str = "tcp"
    """URL scheme used when rendering the endpoint."""

    image: str = ""
    """Default image (informational)."""

    readiness_command: list[str] = field(default_factory=list)
    """Command run inside the service for 'command' readiness."""

    notes: str = ""

    @property
    def url(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}"


DATABASE = ServiceSpec(
    name="db",
    role="database",
    host="db",
    port=3306,
    readiness_kind="tcp",
    scheme="mysql",
    image="mariadb:10.6",
    notes="Site databases are created here by new-site using the root password.",
)

REDIS_CACHE = ServiceSpec(
    name="redis-cache",
    role="cache",
    host="redis-cache",
    port=6379,
    readiness_kind="redis",
    scheme="redis",
    image="redis:6.2-alpine",
)

REDIS_QUEUE = ServiceSpec(
    name="redis-queue",
    role="queue",
    host="redis-queue",
    port=6379,
    readiness_kind="redis",
    scheme="redis",
    image="redis:6.2-alpine",
    notes="Also carries the realtime gateway's pub/sub channel.",
)

BACKEND = ServiceSpec(
    name="backend",
    role="application backend",
    host="backend",
    port=8000,
    readiness_kind="command",
    scheme="http",
    readiness_command=["bench", "version"],
    notes="All site commands run here via 'docker compose exec'.",
)

WEBSOCKET = ServiceSpec(
    name="websocket",
    role="realtime gateway",
    host="websocket",
    port=9000,
    readiness_kind="tcp",
    scheme="http",
)

FRONTEND = ServiceSpec(
    name="frontend",
    role="reverse proxy",
    host="frontend",
    port=8080,
    readiness_kind="http",
    scheme="http",
    image="nginx",
)


SERVICES: dict[str, ServiceSpec] = {
    "database": DATABASE,
    "cache": REDIS_CACHE,
    "queue": REDIS_QUEUE,
    "backend": BACKEND,
    "realtime": WEBSOCKET,
    "frontend": FRONTEND,
}

# Waited on before probing, in this order
DEPENDENT_SERVICES: tuple[str, ...] = ("database", "cache", "queue", "backend")

# desired key -> (site config key, value is JSON-parsed by set-config)
SETTING_KEYS: dict[str, tuple[str, bool]] = {
    "cache_endpoint": ("redis_cache", False),
    "queue_endpoint": ("redis_queue", False),
    "realtime_endpoint": ("redis_socketio", False),
    "database_host": ("db_host", False),
    "database_port": ("db_port", True),
}


def site_config_key(desired_key: str) -> str:
    """Map a desired-configuration key to the backend's site-config key."""
    return SETTING_KEYS[desired_key][0]
