"""State prober: does the named site already exist?

Lists the sites in the backend's ``sites/`` directory (a directory counts
as a site when it holds a ``site_config.json``) and checks membership.

Only a successful listing can produce ``absent``. A non-zero exit, a
timeout, a missing container runtime, or a line that is not a site name
all yield ``probe_failed``: an unreachable backend must never look like
a missing site, or the caller would attempt a duplicate creation.

Tags:
    probe, existence, read-only, sites
"""

from __future__ import annotations

import re

from sitespine.core.errors import CommandError
from sitespine.core.logging import get_logger
from sitespine.provision.bench import BenchClient
from sitespine.provision.config import SITE_ID_PATTERN
from sitespine.provision.results import ProbeResult

logger = get_logger(__name__)

# Prints one site name per line; exits non-zero if sites/ is unreadable.
LIST_SITES_SCRIPT = (
    "set -e; cd sites; "
    'for d in */; do d="${d%/}"; '
    'if [ -f "$d/site_config.json" ]; then echo "$d"; fi; done'
)


class StateProber:
    """Read-only existence check for sites."""

    def __init__(self, client: BenchClient, timeout: int = 30) -> None:
        self.client = client
        self.timeout = timeout

    def list_sites(self) -> list[str]:
        """Return the site names present in the backend.

        Raises
        ------
        CommandError
            If the listing could not be run or exited non-zero, or printed
            something that is not a site name.
        """
        result = self.client.exec(["bash", "-c", LIST_SITES_SCRIPT], timeout=self.timeout)
        if result.returncode != 0:
            raise CommandError(
                f"site listing exited {result.returncode}: {result.stderr.strip()[:200]}"
            )
        sites = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        unexpected = [name for name in sites if not re.match(SITE_ID_PATTERN, name)]
        if unexpected:
            raise CommandError(f"unexpected site listing output: {unexpected[0]!r}")
        return sites

    def probe(self, site_id: str) -> ProbeResult:
        try:
            sites = self.list_sites()
        except CommandError as exc:
            logger.warning("probe.failed", site_id=site_id, error=exc.message)
            return ProbeResult(site_id=site_id, status="probe_failed", reason=exc.message)

        status = "exists" if site_id in sites else "absent"
        logger.info("probe.complete", site_id=site_id, status=status, sites=len(sites))
        return ProbeResult(site_id=site_id, status=status, known_sites=sites)
