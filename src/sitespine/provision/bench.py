"""Command runner for the site stack.

Every site operation (existence query, ``new-site``, ``set-config``,
config readback, in-container readiness commands) is an opaque
pass-through command executed inside a compose service::

    docker compose [-f FILE ...] [--project-name NAME] exec -T backend bench ...

``BenchClient`` owns building those command lines, running them with a
timeout, and logging them with secrets redacted. Non-zero exit codes are
returned to the caller; only failures to run the command at all (docker
missing, timeout) raise :class:`~sitespine.core.errors.CommandError`.

Architecture Decisions:
    - subprocess, not docker-py: works with any runtime exposing a
      ``docker compose`` CLI.
    - ``check=False`` by default: callers interpret exit codes, because a
      non-zero status means different things to the prober (ambiguous)
      and the provisioner (failed).
    - ``-T``: no TTY allocation, so output is capturable and the command
      never waits on a terminal.

Tags:
    subprocess, docker, compose, exec, bench, redaction
"""

from __future__ import annotations

import shutil
import subprocess
from collections.abc import Sequence
from pathlib import Path

from sitespine.core.errors import CommandError
from sitespine.core.logging import get_logger

logger = get_logger(__name__)

REDACTED = "***"
_SECRET_MARKERS = ("password", "secret", "token")


def redact(args: Sequence[str]) -> list[str]:
    """Replace the value following any password/secret flag with ``***``.

    Handles both ``--flag value`` and ``--flag=value`` forms.
    """
    out: list[str] = []
    hide_next = False
    for arg in args:
        if hide_next:
            out.append(REDACTED)
            hide_next = False
            continue
        lowered = arg.lower()
        if arg.startswith("-") and any(m in lowered for m in _SECRET_MARKERS):
            if "=" in arg:
                flag = arg.split("=", 1)[0]
                out.append(f"{flag}={REDACTED}")
            else:
                out.append(arg)
                hide_next = True
            continue
        out.append(arg)
    return out


class BenchClient:
    """Runs commands inside the compose stack.

    Parameters
    ----------
    compose_files
        Compose files passed with ``-f``. Empty means compose's default lookup.
    project_name
        Compose project name (``--project-name``).
    project_dir
        Working directory for compose commands.
    backend_service
        Service that hosts the site tooling.
    default_timeout
        Seconds before a command is abandoned.
    """

    def __init__(
        self,
        compose_files: Sequence[str] = (),
        project_name: str | None = None,
        project_dir: str | Path | None = None,
        backend_service: str = "backend",
        default_timeout: int = 120,
        docker_cmd: str | None = None,
    ) -> None:
        self.compose_files = list(compose_files)
        self.project_name = project_name
        self.project_dir = Path(project_dir) if project_dir else None
        self.backend_service = backend_service
        self.default_timeout = default_timeout
        self._docker_cmd = docker_cmd

    @classmethod
    def from_config(cls, config: object) -> BenchClient:
        """Build a client from a :class:`~sitespine.provision.config.ProvisionConfig`."""
        return cls(
            compose_files=config.compose_files,  # type: ignore[attr-defined]
            project_name=config.project_name,  # type: ignore[attr-defined]
            project_dir=config.project_dir,  # type: ignore[attr-defined]
            backend_service=config.backend_service,  # type: ignore[attr-defined]
            default_timeout=config.command_timeout_seconds,  # type: ignore[attr-defined]
        )

    @staticmethod
    def is_docker_available() -> bool:
        """Check if the docker CLI is installed and the daemon answers."""
        docker = shutil.which("docker")
        if docker is None:
            return False
        try:
            result = subprocess.run(
                [docker, "info"],
                capture_output=True,
                timeout=10,
            )
            return result.returncode == 0
        except (subprocess.TimeoutExpired, OSError):
            return False

    @property
    def docker_cmd(self) -> str:
        if self._docker_cmd is None:
            docker = shutil.which("docker")
            if docker is None:
                raise CommandError("Docker CLI not found on PATH. Install Docker or add it to PATH.")
            self._docker_cmd = docker
        return self._docker_cmd

    # ------------------------------------------------------------------
    # Command builders
    # ------------------------------------------------------------------

    def compose_args(self, *args: str) -> list[str]:
        """``docker compose`` prefix with files and project name, then *args*."""
        cmd = ["compose"]
        for f in self.compose_files:
            cmd.extend(["-f", f])
        if self.project_name:
            cmd.extend(["--project-name", self.project_name])
        cmd.extend(args)
        return cmd

    def exec_args(self, command: Sequence[str], service: str | None = None) -> list[str]:
        return self.compose_args("exec", "-T", service or self.backend_service, *command)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def compose(
        self,
        *args: str,
        timeout: int | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run a ``docker compose`` subcommand."""
        return self._run(self.compose_args(*args), timeout=timeout)

    def exec(
        self,
        command: Sequence[str],
        service: str | None = None,
        timeout: int | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run *command* inside *service* (the backend by default)."""
        return self._run(self.exec_args(command, service), timeout=timeout)

    def bench(
        self,
        *args: str,
        site: str | None = None,
        timeout: int | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run ``bench [--site SITE] ARGS`` in the backend."""
        command = ["bench"]
        if site:
            command.extend(["--site", site])
        command.extend(args)
        return self.exec(command, timeout=timeout)

    def _run(
        self,
        args: list[str],
        timeout: int | None = None,
    ) -> subprocess.CompletedProcess[str]:
        timeout = timeout or self.default_timeout
        cmd = [self.docker_cmd, *args]
        logger.debug("command.exec", cmd=" ".join(redact(cmd)))
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=timeout,
                cwd=self.project_dir,
            )
        except subprocess.TimeoutExpired as exc:
            raise CommandError(
                f"Command timed out after {timeout}s: {' '.join(redact(args))}",
                cause=exc,
            ) from exc
        except OSError as exc:
            raise CommandError(
                f"Command could not be started: {' '.join(redact(args))}: {exc}",
                cause=exc,
            ) from exc
        if result.returncode != 0:
            logger.debug(
                "command.nonzero",
                returncode=result.returncode,
                stderr=result.stderr.strip()[-500:],
            )
        return result
