import subprocess
from datetime import date
from unittest import mock

import pytest

from node_maintenance.config import POLICY_REMEDIATE, MaintenanceConfig, RetryBudget
from node_maintenance.metrics import RunMetrics
from node_maintenance.routine import MaintenanceOutcome, MaintenanceRoutine, run_maintenance
from tests.fakes import (
    DOCKER_UPGRADE_REPORT,
    NO_REBOOT_OUTPUT,
    REBOOT_OUTPUT,
    FakeFilesystem,
    FakeHost,
    FakeSleep,
)


def remediate_config(**kwargs):
    return MaintenanceConfig(
        policy=POLICY_REMEDIATE,
        required_artifacts=("/sys/fs/cgroup/kubepods.slice/a",),
        retry_budget=RetryBudget(max_attempts=2, delay_seconds=60),
        **kwargs,
    )


def make_routine(config, host, today, appear_after_restarts=0):
    filesystem = FakeFilesystem(host, appear_after_restarts)
    sleep = FakeSleep()
    routine = MaintenanceRoutine(config, host, today=today, sleep=sleep, exists=filesystem.exists)
    return routine, filesystem, sleep


class TestRebootOnlyPolicy:
    def test_stale_kernel_reboots_and_does_nothing_else(self, config, today):
        host = FakeHost(staleness=REBOOT_OUTPUT)
        routine, filesystem, sleep = make_routine(config, host, today)

        outcome = routine.run()

        assert outcome is MaintenanceOutcome.REBOOT_SCHEDULED
        assert host.calls == [("update",), ("staleness",), ("shutdown",)]
        assert filesystem.checked == []
        assert sleep.calls == []

    def test_essential_package_upgrade_reboots(self, config, today):
        host = FakeHost(staleness=NO_REBOOT_OUTPUT, report=DOCKER_UPGRADE_REPORT)
        routine, _, _ = make_routine(config, host, today)

        assert routine.run() is MaintenanceOutcome.REBOOT_SCHEDULED
        assert host.calls[-1] == ("shutdown",)
        assert routine.decision.matched_prefix == "containerd.io"

    def test_nothing_to_do_never_remediates(self, config, today):
        report = DOCKER_UPGRADE_REPORT.replace("22 Aug 2024", "20 Aug 2024")
        host = FakeHost(staleness=NO_REBOOT_OUTPUT, report=report)
        routine, filesystem, _ = make_routine(config, host, today, appear_after_restarts=None)

        assert routine.run() is MaintenanceOutcome.NOTHING_TO_DO
        assert host.called("shutdown") == []
        assert host.called("restart") == []
        assert filesystem.checked == []

    def test_update_failure_aborts_before_decision(self, config, today):
        host = FakeHost(staleness=REBOOT_OUTPUT)
        host.update_returncode = 1
        routine, _, _ = make_routine(config, host, today)

        with pytest.raises(subprocess.CalledProcessError):
            routine.run()
        assert host.calls == [("update",)]


class TestRemediatePolicy:
    def test_stale_kernel_reboots_without_remediation(self, today):
        host = FakeHost(staleness=REBOOT_OUTPUT)
        routine, filesystem, _ = make_routine(remediate_config(), host, today)

        assert routine.run() is MaintenanceOutcome.REBOOT_SCHEDULED
        assert filesystem.checked == []
        assert host.called("restart") == []

    def test_essential_upgrade_is_remediated_not_rebooted(self, today):
        host = FakeHost(staleness=NO_REBOOT_OUTPUT, report=DOCKER_UPGRADE_REPORT)
        routine, _, sleep = make_routine(remediate_config(), host, today, appear_after_restarts=2)

        assert routine.run() is MaintenanceOutcome.REMEDIATED
        assert host.called("history") == []
        assert host.called("shutdown") == []
        assert host.called("restart") == [("restart", "kubelet"), ("restart", "kubelet")]
        assert sleep.calls == [60, 60]

    def test_custom_kubelet_service_name(self, today):
        host = FakeHost(staleness=NO_REBOOT_OUTPUT)
        config = remediate_config(kubelet_service="rke-kubelet")
        routine, _, _ = make_routine(config, host, today, appear_after_restarts=1)

        routine.run()

        assert host.called("restart") == [("restart", "rke-kubelet")]


class TestWeekdayGate:
    def test_skips_on_other_weekdays(self, today):
        # 2024-08-22 is a Thursday (ISO weekday 4)
        host = FakeHost()
        routine, _, _ = make_routine(MaintenanceConfig(maintenance_weekday=5), host, today)

        assert routine.run() is MaintenanceOutcome.SKIPPED
        assert host.calls == []

    def test_runs_on_configured_weekday(self, today):
        host = FakeHost(staleness=REBOOT_OUTPUT)
        routine, _, _ = make_routine(MaintenanceConfig(maintenance_weekday=4), host, today)

        assert routine.run() is MaintenanceOutcome.REBOOT_SCHEDULED


class TestRunMaintenance:
    def run(self, config, host, appear_after_restarts=0):
        routine, _, _ = make_routine(config, host, lambda: date(2024, 8, 22), appear_after_restarts)
        metrics = RunMetrics(instance="node-1")
        with mock.patch("node_maintenance.routine.send_alert") as send_alert:
            code = run_maintenance(config, host=host, routine=routine, metrics=metrics)
        return code, metrics, send_alert

    def test_reboot_exits_zero(self, config):
        code, metrics, send_alert = self.run(config, FakeHost(staleness=REBOOT_OUTPUT))

        assert code == 0
        assert metrics.registry.get_sample_value("node_maintenance_reboot_required") == 1
        assert (
            metrics.registry.get_sample_value(
                "node_maintenance_outcome", {"outcome": "reboot_scheduled"}
            )
            == 1
        )
        send_alert.assert_not_called()

    def test_remediation_failure_exits_one_and_alerts(self):
        host = FakeHost(staleness=NO_REBOOT_OUTPUT)

        code, metrics, send_alert = self.run(remediate_config(), host, appear_after_restarts=None)

        assert code == 1
        assert metrics.registry.get_sample_value("node_maintenance_remediation_restarts") == 2
        assert (
            metrics.registry.get_sample_value(
                "node_maintenance_outcome", {"outcome": "remediation_failed"}
            )
            == 1
        )
        send_alert.assert_called_once()
        assert "Manual intervention required" in send_alert.call_args[0][0]

    def test_update_failure_propagates_exit_code(self, config):
        host = FakeHost(staleness=REBOOT_OUTPUT)
        host.update_returncode = 100

        code, metrics, send_alert = self.run(config, host)

        assert code == 100
        assert host.called("shutdown") == []
        assert (
            metrics.registry.get_sample_value("node_maintenance_outcome", {"outcome": "aborted"})
            == 1
        )
        send_alert.assert_called_once()

    def test_shutdown_failure_propagates_exit_code(self, config):
        host = FakeHost(staleness=REBOOT_OUTPUT)
        host.shutdown_returncode = 3

        code, _, _ = self.run(config, host)

        assert code == 3

    def test_metrics_pushed_before_shutdown(self, config):
        host = FakeHost(staleness=REBOOT_OUTPUT)
        calls_at_push = []

        def record_calls(_):
            calls_at_push.append(list(host.calls))

        with mock.patch.object(RunMetrics, "push", autospec=True, side_effect=record_calls) as push:
            code, _, _ = self.run(config, host)

        assert code == 0
        push.assert_called_once()
        assert ("shutdown",) not in calls_at_push[0]
        assert host.calls[-1] == ("shutdown",)

    def test_shutdown_failure_after_push_reports_aborted(self, config):
        host = FakeHost(staleness=REBOOT_OUTPUT)
        host.shutdown_returncode = 3

        with mock.patch.object(RunMetrics, "push", autospec=True) as push:
            code, metrics, send_alert = self.run(config, host)

        assert code == 3
        assert push.call_count == 2
        registry = metrics.registry
        assert registry.get_sample_value("node_maintenance_outcome", {"outcome": "aborted"}) == 1
        assert (
            registry.get_sample_value("node_maintenance_outcome", {"outcome": "reboot_scheduled"})
            is None
        )
        send_alert.assert_called_once()

    def test_nothing_to_do_exits_zero(self, config):
        host = FakeHost(staleness=NO_REBOOT_OUTPUT, report="")

        code, metrics, send_alert = self.run(config, host)

        assert code == 0
        assert metrics.registry.get_sample_value("node_maintenance_reboot_required") == 0
        send_alert.assert_not_called()
