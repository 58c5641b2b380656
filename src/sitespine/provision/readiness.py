"""Readiness gate for backing services.

Polls a service with a lightweight, read-only check until it succeeds or
the wait budget runs out. A timeout is returned as a value
(``ReadinessResult(status="timed_out")``), not raised, so the caller
decides whether it is fatal.

Key Concepts:
    ReadinessGate: Bounded retry loop. ``clock`` and ``sleep`` are
        injectable, so tests drive it with a simulated clock.
    Check: zero-arg callable returning truthy when the service answers.
        Exceptions from a check count as "not ready yet".
    Check factories: ``tcp_check``, ``redis_check`` (PING),
        ``http_check`` (GET, 2xx), ``command_check`` (exit 0 inside a
        compose service, e.g. ``bench version``).

Architecture Decisions:
    - Never sleeps past the deadline: each sleep is clipped to the time
      remaining, so a call returns within ``timeout + poll_interval``
      plus the duration of one check.
    - The first check runs immediately; a service that is already up
      costs no sleep at all.

Related Modules:
    - :mod:`sitespine.provision.config` — ReadinessTarget
    - :mod:`sitespine.provision.workflow` — waits on every target in order

Tags:
    readiness, health, polling, redis, httpx, tcp
"""

from __future__ import annotations

import socket
import time
from collections.abc import Callable

import httpx
import redis

from sitespine.core.errors import CommandError
from sitespine.core.logging import get_logger
from sitespine.provision.bench import BenchClient
from sitespine.provision.config import ReadinessTarget
from sitespine.provision.results import ReadinessResult

logger = get_logger(__name__)

Check = Callable[[], bool]


# ── Check factories ──────────────────────────────────────────────────────


def tcp_check(host: str, port: int, timeout: float = 3.0) -> Check:
    """Open and close a TCP connection."""

    def check() -> bool:
        with socket.create_connection((host, port), timeout=timeout):
            return True

    return check


def redis_check(url: str, timeout: float = 3.0) -> Check:
    """``PING`` a Redis instance."""

    def check() -> bool:
        client = redis.Redis.from_url(
            url,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        try:
            return bool(client.ping())
        finally:
            client.close()

    return check


def http_check(url: str, timeout: float = 3.0) -> Check:
    """``GET`` a URL and expect a 2xx response."""

    def check() -> bool:
        resp = httpx.get(url, timeout=timeout)
        resp.raise_for_status()
        return True

    return check


def command_check(
    client: BenchClient,
    command: list[str],
    service: str | None = None,
    timeout: float = 10.0,
) -> Check:
    """Run a read-only command inside a compose service; exit 0 means ready."""

    def check() -> bool:
        result = client.exec(command, service=service, timeout=max(1, int(timeout)))
        return result.returncode == 0

    return check


def build_check(target: ReadinessTarget, client: BenchClient | None = None) -> Check:
    """Pick the check for a target's kind."""
    if target.kind == "tcp":
        return tcp_check(target.host, target.port, target.check_timeout_seconds)
    if target.kind == "redis":
        return redis_check(target.url, target.check_timeout_seconds)
    if target.kind == "http":
        return http_check(f"{target.url}{target.path}", target.check_timeout_seconds)
    if client is None:
        raise ValueError(f"readiness target {target.name!r} needs a BenchClient")
    return command_check(client, target.command, target.service, target.check_timeout_seconds)


# ── Gate ─────────────────────────────────────────────────────────────────


class ReadinessGate:
    """Waits for services to accept commands.

    Parameters
    ----------
    clock
        Monotonic time source in seconds.
    sleep
        Blocking sleep function.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.clock = clock
        self.sleep = sleep

    def await_ready(
        self,
        service: str,
        check: Check,
        timeout: float,
        poll_interval: float,
    ) -> ReadinessResult:
        """Poll *check* every *poll_interval* seconds for up to *timeout* seconds."""
        if timeout <= 0 or poll_interval <= 0:
            raise ValueError("timeout and poll_interval must be positive")

        start = self.clock()
        deadline = start + timeout
        attempts = 0
        last_error: str | None = None

        while True:
            attempts += 1
            try:
                ok = bool(check())
                if not ok:
                    last_error = "check returned false"
            except (OSError, redis.RedisError, httpx.HTTPError, CommandError) as exc:
                ok = False
                last_error = f"{type(exc).__name__}: {exc}"
            except Exception as exc:
                ok = False
                last_error = f"{type(exc).__name__}: {exc}"
                logger.warning("readiness.check_error", service=service, error=last_error)

            now = self.clock()
            if ok:
                logger.info("readiness.ready", service=service, attempts=attempts)
                return ReadinessResult(
                    service=service,
                    status="ready",
                    attempts=attempts,
                    waited_seconds=round(now - start, 3),
                )

            remaining = deadline - now
            if remaining <= 0:
                logger.warning(
                    "readiness.timed_out",
                    service=service,
                    attempts=attempts,
                    timeout=timeout,
                    last_error=last_error,
                )
                return ReadinessResult(
                    service=service,
                    status="timed_out",
                    attempts=attempts,
                    waited_seconds=round(now - start, 3),
                    last_error=last_error,
                )

            logger.debug("readiness.waiting", service=service, attempt=attempts, error=last_error)
            self.sleep(min(poll_interval, remaining))

    def await_target(
        self,
        target: ReadinessTarget,
        client: BenchClient | None = None,
        check: Check | None = None,
    ) -> ReadinessResult:
        """Wait on a configured target using its own budget and interval."""
        return self.await_ready(
            target.name,
            check or build_check(target, client),
            timeout=target.max_wait_seconds,
            poll_interval=target.poll_interval_seconds,
        )
