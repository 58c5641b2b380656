"""Tests for sitespine.provision.workflow.

End-to-end orchestrator runs against the in-memory stack, with the real
readiness gate on a simulated clock. Covers both branches, every failure
reason, idempotent re-runs, and the compose stack runner.
"""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from tests._support.stack import SITE, FakeStack, ScriptedGate, current_settings, proc


def _orchestrator(config, stack, gate):
    from sitespine.provision.workflow import SiteOrchestrator

    return SiteOrchestrator(config, client=stack, gate=gate)


# ===========================================================================
# Happy paths
# ===========================================================================


class TestProvisionBranch:
    """Dependencies ready, site absent."""

    def test_creates_site_and_verifies(self, make_config, stack, clock):
        from sitespine.provision.results import Phase

        gate = ScriptedGate(clock)
        result = _orchestrator(make_config(), stack, gate).run()

        assert result.done
        assert result.status == "done"
        assert result.branch == "provision"
        assert result.history == [
            Phase.START,
            Phase.AWAITING_DEPENDENCIES,
            Phase.PROBING,
            Phase.PROVISIONING,
            Phase.VERIFYING,
            Phase.DONE,
        ]
        assert result.probe.status == "absent"
        assert result.create.created
        assert result.reconcile is None
        assert result.verify.ok
        assert len(stack.commands("new-site")) == 1
        assert stack.sites[SITE]["redis_cache"] == "redis://redis-cache:6379"

    def test_waits_on_every_dependency_then_rechecks_backend(self, make_config, stack, clock):
        gate = ScriptedGate(clock)
        result = _orchestrator(make_config(), stack, gate).run()

        assert gate.awaited == ["db", "redis-cache", "redis-queue", "backend", "backend"]
        assert [r.service for r in result.readiness] == ["db", "redis-cache", "redis-queue", "backend"]
        assert result.verify.readiness.ready

    def test_summary(self, make_config, stack, clock):
        result = _orchestrator(make_config(), stack, ScriptedGate(clock)).run()
        assert result.summary.startswith(f"{SITE}: done via provision in ")
        assert result.completed_at is not None
        result.raise_for_status()


class TestReconcileBranch:
    """Dependencies ready, site present with one stale endpoint."""

    def test_sets_only_differing_key(self, make_config, clock):
        from sitespine.provision.results import Phase

        stack = FakeStack({SITE: current_settings(redis_cache="redis://10.0.0.5:6379")})
        result = _orchestrator(make_config(), stack, ScriptedGate(clock)).run()

        assert result.done
        assert result.branch == "reconcile"
        assert Phase.RECONCILING in result.history
        assert Phase.PROVISIONING not in result.history
        assert result.reconcile.applied_keys == ["cache_endpoint"]
        assert stack.commands("new-site") == []
        set_calls = stack.commands("set-config")
        assert set_calls == [
            ["bench", "--site", SITE, "set-config", "redis_cache", "redis://redis-cache:6379"]
        ]

    def test_already_correct_site_changes_nothing(self, make_config, clock):
        stack = FakeStack({SITE: current_settings()})
        result = _orchestrator(make_config(), stack, ScriptedGate(clock)).run()

        assert result.done
        assert result.reconcile.applied_keys == []
        assert stack.commands("set-config") == []

    def test_rerun_after_provision_is_noop(self, make_config, stack, clock):
        config = make_config()
        first = _orchestrator(config, stack, ScriptedGate(clock)).run()
        stored = json.loads(json.dumps(stack.sites))

        second = _orchestrator(config, stack, ScriptedGate(clock)).run()

        assert first.branch == "provision"
        assert second.done
        assert second.branch == "reconcile"
        assert second.reconcile.applied_keys == []
        assert len(stack.commands("new-site")) == 1
        assert stack.sites == stored


# ===========================================================================
# Failures
# ===========================================================================


class TestDependencyUnready:
    def test_cache_never_ready(self, make_config, stack, clock):
        from sitespine.provision.results import FailureReason, Phase

        gate = ScriptedGate(clock, checks={"redis-cache": lambda: False})
        result = _orchestrator(make_config(), stack, gate).run()

        assert result.status == "failed"
        assert result.reason == FailureReason.DEPENDENCY_UNREADY
        assert result.failed_phase == Phase.AWAITING_DEPENDENCIES
        assert result.history == [Phase.START, Phase.AWAITING_DEPENDENCIES, Phase.FAILED]
        assert "redis-cache" in result.detail
        # bounded by the 10s budget plus one poll interval
        assert 10 <= clock.t <= 12
        # nothing probed, nothing mutated
        assert result.probe is None
        assert stack.calls == []
        assert gate.awaited == ["db", "redis-cache"]

    def test_sixty_second_window_never_probes(self, make_config, stack, clock):
        from sitespine.provision.config import default_readiness_targets
        from sitespine.provision.results import FailureReason, Phase
        from sitespine.provision.workflow import SiteOrchestrator

        config = make_config(readiness=default_readiness_targets(max_wait_seconds=60, poll_interval_seconds=2))
        gate = ScriptedGate(clock, checks={"db": lambda: False})
        prober = MagicMock()
        result = SiteOrchestrator(config, client=stack, gate=gate, prober=prober).run()

        assert result.reason == FailureReason.DEPENDENCY_UNREADY
        assert result.failed_phase == Phase.AWAITING_DEPENDENCIES
        assert "60s" in result.detail
        assert 60 <= clock.t <= 62
        prober.probe.assert_not_called()
        assert stack.calls == []

    def test_check_raising_unexpected_error_fails_run(self, make_config, stack, clock):
        import httpx

        from sitespine.provision.results import FailureReason

        def broken():
            raise httpx.InvalidURL("Invalid port: 'abc'")

        gate = ScriptedGate(clock, checks={"backend": broken})
        result = _orchestrator(make_config(), stack, gate).run()

        assert result.status == "failed"
        assert result.reason == FailureReason.DEPENDENCY_UNREADY
        assert "InvalidURL" in result.detail
        assert result.probe is None

    def test_raise_for_status(self, make_config, stack, clock):
        from sitespine.core.errors import DependencyUnready

        gate = ScriptedGate(clock, checks={"db": lambda: False})
        result = _orchestrator(make_config(), stack, gate).run()

        with pytest.raises(DependencyUnready) as exc_info:
            result.raise_for_status()
        assert exc_info.value.context.phase == "awaiting_dependencies"
        assert exc_info.value.context.run_id == result.run_id


class TestProbeAmbiguous:
    def test_probe_failure_never_creates(self, make_config, stack, clock):
        from sitespine.provision.results import FailureReason, Phase

        stack.probe_fails = True
        result = _orchestrator(make_config(), stack, ScriptedGate(clock)).run()

        assert result.reason == FailureReason.PROBE_AMBIGUOUS
        assert result.failed_phase == Phase.PROBING
        assert result.probe.status == "probe_failed"
        assert stack.commands("new-site") == []
        assert stack.commands("set-config") == []


class TestCreationFailures:
    def test_conflict(self, make_config, stack, clock):
        from sitespine.core.errors import CreationConflict
        from sitespine.provision.results import FailureReason, Phase

        # another installer created the site between probe and create
        stack.new_site_error = f"Site {SITE} already exists"
        result = _orchestrator(make_config(), stack, ScriptedGate(clock)).run()

        assert result.reason == FailureReason.CREATION_CONFLICT
        assert result.failed_phase == Phase.PROVISIONING
        assert result.create.conflict
        with pytest.raises(CreationConflict):
            result.raise_for_status()

    def test_creation_failed(self, make_config, stack, clock):
        from sitespine.provision.results import FailureReason, Phase

        stack.new_site_error = "Access denied for user 'root'"
        result = _orchestrator(make_config(), stack, ScriptedGate(clock)).run()

        assert result.reason == FailureReason.CREATION_FAILED
        assert result.failed_phase == Phase.PROVISIONING
        assert Phase.VERIFYING not in result.history
        assert "Access denied" in result.detail


class TestReconcileIncomplete:
    def test_unapplied_keys_reported(self, make_config, clock):
        from sitespine.core.errors import ReconcileIncomplete
        from sitespine.provision.results import FailureReason, Phase

        stack = FakeStack(
            {SITE: current_settings(redis_cache="redis://old:6379", redis_queue="redis://old:6380")}
        )
        stack.fail_keys.add("redis_queue")
        result = _orchestrator(make_config(), stack, ScriptedGate(clock)).run()

        assert result.reason == FailureReason.RECONCILE_INCOMPLETE
        assert result.failed_phase == Phase.RECONCILING
        assert result.unapplied_keys == ["queue_endpoint"]
        assert result.reconcile.applied_keys == ["cache_endpoint"]
        assert "queue_endpoint" in result.summary

        with pytest.raises(ReconcileIncomplete) as exc_info:
            result.raise_for_status()
        assert exc_info.value.failed_keys == ["queue_endpoint"]
        assert exc_info.value.applied_keys == ["cache_endpoint"]


class TestVerificationMismatch:
    def test_readback_differs(self, make_config, clock):
        from sitespine.core.errors import VerificationMismatch
        from sitespine.provision.results import FailureReason, Phase

        stack = FakeStack({SITE: current_settings(redis_cache="redis://old:6379")})
        stack.ignore_keys.add("redis_cache")
        result = _orchestrator(make_config(), stack, ScriptedGate(clock)).run()

        assert result.reason == FailureReason.VERIFICATION_MISMATCH
        assert result.failed_phase == Phase.VERIFYING
        assert result.verify.mismatched == {
            "cache_endpoint": {"desired": "redis://redis-cache:6379", "actual": "redis://old:6379"}
        }
        with pytest.raises(VerificationMismatch) as exc_info:
            result.raise_for_status()
        assert "cache_endpoint" in exc_info.value.mismatched

    def test_backend_gone_during_verification(self, make_config, stack, clock):
        from sitespine.provision.results import FailureReason

        calls = {"n": 0}

        def backend():
            calls["n"] += 1
            return calls["n"] == 1

        gate = ScriptedGate(clock, checks={"backend": backend})
        result = _orchestrator(make_config(), stack, gate).run()

        assert result.reason == FailureReason.VERIFICATION_MISMATCH
        assert "during verification" in result.detail
        assert not result.verify.readiness.ready

    def test_readback_failure_is_mismatch(self, make_config, clock):
        from sitespine.provision.results import FailureReason

        stack = FakeStack({SITE: current_settings()})
        stack.readback_fails = True
        result = _orchestrator(make_config(), stack, ScriptedGate(clock)).run()

        assert result.reason == FailureReason.VERIFICATION_MISMATCH
        assert "readback failed" in result.detail


class TestRunResult:
    def test_finished_run_cannot_transition(self):
        from sitespine.provision.results import Phase, RunResult

        result = RunResult(run_id="abc123def456", site_id=SITE)
        result.enter(Phase.AWAITING_DEPENDENCIES)
        result.succeed()

        assert result.phase.terminal
        with pytest.raises(ValueError, match="already ended in done"):
            result.enter(Phase.PROBING)
        assert result.history[-1] == Phase.DONE


class TestDefaults:
    def test_components_share_client(self, make_config, stack):
        from sitespine.provision.workflow import SiteOrchestrator

        config = make_config(command_timeout_seconds=900, probe_timeout_seconds=15)
        orch = SiteOrchestrator(config, client=stack)
        assert orch.prober.client is stack
        assert orch.prober.timeout == 15
        assert orch.reconciler.timeout == 900
        assert orch.provisioner.reconciler is orch.reconciler

    def test_credentials_not_in_result(self, make_config, stack, clock):
        result = _orchestrator(make_config(), stack, ScriptedGate(clock)).run()
        dumped = result.model_dump_json()
        assert "root-pw-123" not in dumped
        assert "admin-pw-456" not in dumped


# ===========================================================================
# Stack runner
# ===========================================================================

PS_NDJSON = "\n".join(
    [
        json.dumps({"Service": "backend", "Name": "erp-backend-1", "Image": "frappe/erpnext:v15", "State": "running", "Health": ""}),
        json.dumps({"Service": "db", "Name": "erp-db-1", "Image": "mariadb:10.6", "State": "running", "Health": "healthy"}),
        json.dumps({"Service": "configurator", "Name": "erp-configurator-1", "Image": "frappe/erpnext:v15", "State": "exited"}),
    ]
)


class TestStackRunner:
    def test_up_then_status(self):
        from sitespine.provision.workflow import StackRunner

        client = MagicMock()
        client.compose.side_effect = [proc(0), proc(0, stdout=PS_NDJSON)]
        result = StackRunner(client).up(build=True)

        assert result.ok
        assert client.compose.call_args_list[0].args == ("up", "-d", "--build")
        assert client.compose.call_args_list[1].args == ("ps", "--all", "--format", "json")
        assert [s.status for s in result.services] == ["running", "healthy", "exited"]
        assert result.summary == "2/3 services running"

    def test_up_failure_skips_status(self):
        from sitespine.provision.workflow import StackRunner

        client = MagicMock()
        client.compose.return_value = proc(1, stderr="no configuration file provided: not found\n")
        result = StackRunner(client).up(services=["backend"])

        assert not result.ok
        assert result.error == "no configuration file provided: not found"
        assert client.compose.call_count == 1
        assert client.compose.call_args.args == ("up", "-d", "backend")

    def test_down(self):
        from sitespine.provision.workflow import StackRunner

        client = MagicMock()
        client.compose.return_value = proc(0)
        result = StackRunner(client).down()
        assert result.ok
        assert result.mode == "down"
        client.compose.assert_called_once_with("down", timeout=600)

    def test_command_error(self):
        from sitespine.core.errors import CommandError
        from sitespine.provision.workflow import StackRunner

        client = MagicMock()
        client.compose.side_effect = CommandError("Docker CLI not found on PATH.")
        result = StackRunner(client).status()
        assert result.error == "Docker CLI not found on PATH."


class TestParseComposePs:
    def test_json_array(self):
        from sitespine.provision.workflow import parse_compose_ps

        out = json.dumps([{"Service": "redis-cache", "Name": "erp-redis-cache-1", "State": "running"}])
        [svc] = parse_compose_ps(out)
        assert svc.name == "redis-cache"
        assert svc.container_name == "erp-redis-cache-1"
        assert svc.status == "running"

    def test_empty_and_garbage(self):
        from sitespine.provision.workflow import parse_compose_ps

        assert parse_compose_ps("") == []
        assert [s.name for s in parse_compose_ps('not json\n{"Service": "db", "State": "running"}')] == ["db"]

    @pytest.mark.parametrize(
        "state, expected",
        [
            ("running", "running"),
            ("healthy", "healthy"),
            ("unhealthy", "unhealthy"),
            ("exited", "exited"),
            ("Exit 1", "exited"),
            ("starting", "starting"),
            ("created", "starting"),
            ("paused", "not_found"),
        ],
    )
    def test_status_mapping(self, state, expected):
        from sitespine.provision.workflow import _map_compose_status

        assert _map_compose_status(state) == expected
