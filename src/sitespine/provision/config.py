"""Configuration models for site provisioning.

Provides Pydantic v2 models for every input a provisioning run consumes:
the site identifier, the desired configuration map, the one-time
credentials, and the readiness targets for the backing services.

Validation happens at construction. A desired endpoint without an
explicit scheme (``redis-cache:6379`` instead of
``redis://redis-cache:6379``) is rejected here, before any command is
issued against the stack.

Key Concepts:
    SiteSettings: The desired configuration map (cache/queue/realtime
        endpoints, database host/port). Unset keys are not reconciled.
    Credentials: Root and new-site admin secrets as ``SecretStr``.
    ReadinessTarget: One backing service to poll, with its own wait budget.
    ProvisionConfig: Everything one orchestrator run needs.
        ``from_env()`` reads ``SITESPINE_*`` variables for the installer layer.

Architecture Decisions:
    - Explicit parameters: components receive a ProvisionConfig (or parts
      of it); nothing below the CLI reads the process environment.
    - from_env() classmethod: explicit env-var parsing rather than
      ``pydantic-settings``. Override precedence: kwargs > env vars > defaults.
    - SecretStr for credentials so ``repr()`` and ``model_dump_json()``
      never reveal them.

Related Modules:
    - :mod:`sitespine.provision.services` — default hosts and ports
    - :mod:`sitespine.provision.workflow` — consumer of ProvisionConfig

Tags:
    config, settings, pydantic, validation, endpoints, credentials
"""

from __future__ import annotations

import os
import re
import uuid
from pathlib import Path
from typing import Any, Literal
from urllib.parse import urlsplit

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    field_validator,
    model_validator,
)

from sitespine.core.errors import InvalidEndpointError
from sitespine.provision.services import DEPENDENT_SERVICES, SERVICES, ServiceSpec

SITE_ID_PATTERN = r"^[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)*$"
_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*$")

ENDPOINT_KEYS = ("cache_endpoint", "queue_endpoint", "realtime_endpoint")
DEFAULT_MAX_WAIT_SECONDS = 60.0
DEFAULT_POLL_INTERVAL_SECONDS = 2.0

# SiteSettings field -> environment variable read by from_env()
SETTINGS_ENV: dict[str, str] = {
    "cache_endpoint": "SITESPINE_REDIS_CACHE",
    "queue_endpoint": "SITESPINE_REDIS_QUEUE",
    "realtime_endpoint": "SITESPINE_REDIS_SOCKETIO",
    "database_host": "SITESPINE_DB_HOST",
    "database_port": "SITESPINE_DB_PORT",
}


def validate_endpoint(key: str, value: Any) -> str:
    """Validate a ``scheme://host:port`` endpoint and return it stripped.

    Raises
    ------
    InvalidEndpointError
        If the value is empty, contains whitespace, lacks a scheme, a host,
        or a numeric port.
    """
    if not isinstance(value, str):
        raise InvalidEndpointError(key, value, f"{key} must be a string, got {type(value).__name__}")
    text = value.strip()
    if not text:
        raise InvalidEndpointError(key, value, f"{key} is empty")
    if any(ch.isspace() for ch in text):
        raise InvalidEndpointError(key, value, f"{key} contains whitespace: {value!r}")
    if "://" not in text:
        raise InvalidEndpointError(
            key, value, f"{key} is missing a scheme (expected scheme://host:port): {value!r}"
        )

    parts = urlsplit(text)
    if not _SCHEME_RE.match(parts.scheme or ""):
        raise InvalidEndpointError(key, value, f"{key} has an invalid scheme: {value!r}")
    if not parts.hostname:
        raise InvalidEndpointError(key, value, f"{key} has no host: {value!r}")
    try:
        port = parts.port
    except ValueError as exc:
        raise InvalidEndpointError(key, value, f"{key} has an invalid port: {value!r}") from exc
    if port is None:
        raise InvalidEndpointError(key, value, f"{key} has no port: {value!r}")
    return text


class ServiceEndpoint(BaseModel):
    """A (name, scheme, host, port) tuple for one backing service."""

    model_config = ConfigDict(frozen=True)

    name: str
    scheme: str = Field(min_length=1)
    host: str = Field(min_length=1)
    port: int = Field(ge=1, le=65535)

    @property
    def url(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}"

    @classmethod
    def parse(cls, name: str, value: str) -> ServiceEndpoint:
        """Parse ``scheme://host:port``; a bare ``host:port`` is rejected."""
        text = validate_endpoint(name, value)
        parts = urlsplit(text)
        return cls(name=name, scheme=parts.scheme, host=parts.hostname, port=parts.port)


class SiteSettings(BaseModel):
    """Desired configuration map for a site.

    Only keys that are set take part in provisioning and reconciliation.
    """

    model_config = ConfigDict(extra="forbid")

    cache_endpoint: str | None = None
    queue_endpoint: str | None = None
    realtime_endpoint: str | None = None
    database_host: str | None = None
    database_port: int | None = Field(default=None, ge=1, le=65535)

    @field_validator(*ENDPOINT_KEYS, mode="before")
    @classmethod
    def _check_endpoint(cls, value: Any, info: Any) -> str | None:
        if value is None:
            return None
        return validate_endpoint(info.field_name, value)

    @field_validator("database_host", mode="before")
    @classmethod
    def _check_host(cls, value: Any) -> str | None:
        if value is None:
            return None
        text = str(value).strip()
        if not text or "://" in text or ":" in text or any(ch.isspace() for ch in text):
            raise InvalidEndpointError(
                "database_host", value, f"database_host must be a bare hostname: {value!r}"
            )
        return text

    def as_desired(self) -> dict[str, str | int]:
        """Return the set keys as a plain desired-configuration map."""
        return {k: v for k, v in self.model_dump().items() if v is not None}

    def endpoints(self) -> list[ServiceEndpoint]:
        """Parsed endpoints for the set endpoint keys."""
        return [
            ServiceEndpoint.parse(key, getattr(self, key))
            for key in ENDPOINT_KEYS
            if getattr(self, key) is not None
        ]

    @classmethod
    def defaults(cls) -> SiteSettings:
        """Settings pointing at the stack's own services."""
        return cls(
            cache_endpoint=SERVICES["cache"].url,
            queue_endpoint=SERVICES["queue"].url,
            realtime_endpoint=SERVICES["queue"].url,
            database_host=SERVICES["database"].host,
            database_port=SERVICES["database"].port,
        )

    @classmethod
    def from_env(cls, **overrides: Any) -> SiteSettings:
        """Defaults, overlaid with SITESPINE_* variables, then non-None *overrides*."""
        values: dict[str, Any] = cls.defaults().as_desired()
        for field_name, env_var in SETTINGS_ENV.items():
            env_val = os.environ.get(env_var)
            if env_val is not None:
                values[field_name] = env_val
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


class Credentials(BaseModel):
    """One-time administrative secrets used only by site creation."""

    model_config = ConfigDict(frozen=True)

    root_password: SecretStr
    admin_password: SecretStr

    @field_validator("root_password", "admin_password")
    @classmethod
    def _not_blank(cls, value: SecretStr, info: Any) -> SecretStr:
        if not value.get_secret_value():
            raise ValueError(f"{info.field_name} must not be empty")
        return value


class ReadinessTarget(BaseModel):
    """A backing service to wait on before probing."""

    name: str
    kind: Literal["tcp", "redis", "http", "command"] = "tcp"
    host: str = Field(min_length=1)
    port: int = Field(ge=1, le=65535)
    scheme: str = Field(min_length=1)
    path: str = "/"
    service: str | None = Field(
        default=None,
        description="Compose service to exec into for kind='command'",
    )
    command: list[str] = Field(default_factory=list)
    max_wait_seconds: float = Field(default=DEFAULT_MAX_WAIT_SECONDS, gt=0)
    poll_interval_seconds: float = Field(default=DEFAULT_POLL_INTERVAL_SECONDS, gt=0)
    check_timeout_seconds: float = Field(default=3.0, gt=0)

    @property
    def url(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}"

    @model_validator(mode="after")
    def _check_command(self) -> ReadinessTarget:
        if self.kind == "command" and not self.command:
            raise ValueError(f"readiness target {self.name!r} of kind 'command' needs a command")
        return self

    @classmethod
    def from_service(
        cls,
        spec: ServiceSpec,
        max_wait_seconds: float = DEFAULT_MAX_WAIT_SECONDS,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> ReadinessTarget:
        return cls(
            name=spec.name,
            kind=spec.readiness_kind,
            host=spec.host,
            port=spec.port,
            scheme=spec.scheme,
            service=spec.name,
            command=list(spec.readiness_command),
            max_wait_seconds=max_wait_seconds,
            poll_interval_seconds=poll_interval_seconds,
        )


def default_readiness_targets(
    max_wait_seconds: float = DEFAULT_MAX_WAIT_SECONDS,
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
) -> list[ReadinessTarget]:
    """One readiness target per dependent service, in wait order."""
    return [
        ReadinessTarget.from_service(SERVICES[name], max_wait_seconds, poll_interval_seconds)
        for name in DEPENDENT_SERVICES
    ]


class ProvisionConfig(BaseModel):
    """Configuration for one provisioning run.

    Example::

        config = ProvisionConfig(
            site_id="crm.example.com",
            settings=SiteSettings.defaults(),
            credentials=Credentials(root_password="...", admin_password="..."),
        )
    """

    # What to provision
    site_id: str = Field(pattern=SITE_ID_PATTERN, max_length=253)
    settings: SiteSettings = Field(default_factory=SiteSettings.defaults)
    credentials: Credentials

    # Dependencies
    readiness: list[ReadinessTarget] = Field(default_factory=default_readiness_targets)

    # Stack
    compose_files: list[str] = Field(
        default_factory=list,
        description="Compose files to pass with -f (compose default lookup when empty)",
    )
    project_name: str | None = Field(default=None, description="Compose project name")
    project_dir: Path | None = Field(
        default=None,
        description="Directory holding the compose files and .env",
    )
    backend_service: str = Field(
        default="backend",
        description="Compose service that runs site commands",
    )

    # Execution
    command_timeout_seconds: int = Field(
        default=600,
        gt=0,
        description="Timeout for site creation and set-config commands",
    )
    probe_timeout_seconds: int = Field(default=30, gt=0)

    # Internal
    run_id: str = Field(default="", description="Unique run identifier (auto-generated)")

    @model_validator(mode="after")
    def _set_defaults(self) -> ProvisionConfig:
        if not self.run_id:
            self.run_id = uuid.uuid4().hex[:12]
        return self

    @property
    def desired(self) -> dict[str, str | int]:
        return self.settings.as_desired()

    @classmethod
    def from_env(cls, **overrides: Any) -> ProvisionConfig:
        """Create config from SITESPINE_* environment variables."""
        env_map = {
            "site_id": "SITESPINE_SITE_NAME",
            "compose_files": "SITESPINE_COMPOSE_FILES",
            "project_name": "SITESPINE_PROJECT_NAME",
            "project_dir": "SITESPINE_PROJECT_DIR",
            "command_timeout_seconds": "SITESPINE_COMMAND_TIMEOUT_SECONDS",
        }
        credentials_map = {
            "root_password": "SITESPINE_DB_ROOT_PASSWORD",
            "admin_password": "SITESPINE_ADMIN_PASSWORD",
        }

        values: dict[str, Any] = {}
        for field_name, env_var in env_map.items():
            env_val = os.environ.get(env_var)
            if env_val is not None:
                if field_name == "compose_files":
                    values[field_name] = [f.strip() for f in env_val.split(",") if f.strip()]
                else:
                    values[field_name] = env_val

        if isinstance(overrides.get("settings"), dict):
            values["settings"] = SiteSettings.from_env(**overrides.pop("settings"))
        else:
            values["settings"] = SiteSettings.from_env()

        credentials = {
            field_name: os.environ[env_var]
            for field_name, env_var in credentials_map.items()
            if env_var in os.environ
        }
        if isinstance(overrides.get("credentials"), dict):
            credentials.update(overrides.pop("credentials"))
        if credentials:
            values["credentials"] = credentials

        wait = os.environ.get("SITESPINE_WAIT_SECONDS")
        if wait is not None:
            values["readiness"] = [
                {**target.model_dump(), "max_wait_seconds": wait} for target in default_readiness_targets()
            ]

        values.update(overrides)
        return cls(**values)
