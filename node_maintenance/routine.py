"""
One maintenance pass on one node: update, decide, then reboot or remediate.

The routine assumes it is the only maintenance run on the host. There is no
lock file; the scheduler must not start a second run while one is active.
"""

import enum
import logging
import os
import subprocess
import time
from datetime import date, datetime

from node_maintenance.actions import PackageUpdater, Rebooter
from node_maintenance.alerts import send_alert
from node_maintenance.commands import HostCommands
from node_maintenance.config import POLICY_REBOOT_ONLY, POLICY_REMEDIATE
from node_maintenance.metrics import RunMetrics
from node_maintenance.policies import StagedRebootPolicy, StalenessOnlyRebootPolicy
from node_maintenance.remediation import RemediationFailedError, RemediationLoop

logger = logging.getLogger(__name__)


class MaintenanceOutcome(enum.Enum):
    REBOOT_SCHEDULED = "reboot_scheduled"
    NOTHING_TO_DO = "nothing_to_do"
    REMEDIATED = "remediated"
    REMEDIATION_FAILED = "remediation_failed"
    SKIPPED = "skipped"
    ABORTED = "aborted"


def build_policy(config, host, today=date.today):
    if config.policy == POLICY_REBOOT_ONLY:
        return StagedRebootPolicy(host, config.essential_package_prefixes, today=today)
    if config.policy == POLICY_REMEDIATE:
        return StalenessOnlyRebootPolicy(host)
    raise ValueError(f"Unknown policy: {config.policy}")


class MaintenanceRoutine:
    def __init__(
        self,
        config,
        host,
        today=date.today,
        sleep=time.sleep,
        exists=os.path.exists,
        before_reboot=None,
    ):
        self.config = config
        self.host = host
        self.today = today
        self.sleep = sleep
        self.exists = exists
        self.updater = PackageUpdater(host)
        self.policy = build_policy(config, host, today=today)
        self.rebooter = Rebooter(host)
        # Called with the decision right before the reboot request; nothing runs after it
        self.before_reboot = before_reboot
        self.decision = None
        self.remediation = None

    def scheduled_today(self):
        weekday = self.config.maintenance_weekday
        if weekday is None:
            return True
        return self.today().isoweekday() == weekday

    def remediate(self):
        loop = RemediationLoop(
            self.config.required_artifacts,
            restart=lambda: self.host.restart_service(self.config.kubelet_service),
            budget=self.config.retry_budget,
            exists=self.exists,
            sleep=self.sleep,
        )
        self.remediation = loop.run()
        if not self.remediation.succeeded:
            raise RemediationFailedError(self.remediation)
        return MaintenanceOutcome.REMEDIATED

    def run(self):
        """
        Execute the maintenance pass.

        Raises CalledProcessError when the update or shutdown command fails
        and RemediationFailedError when the kubelet never recovers.
        """
        if not self.scheduled_today():
            logger.info(
                f"Today is not ISO weekday {self.config.maintenance_weekday}; skipping maintenance"
            )
            return MaintenanceOutcome.SKIPPED

        self.updater.run()

        logger.info(f"--- Deciding whether a reboot is required ({self.policy.name}) ---")
        self.decision = self.policy.decide()
        if self.decision.reboot:
            if self.before_reboot is not None:
                self.before_reboot(self.decision)
            self.rebooter.reboot(self.decision.reason)
            return MaintenanceOutcome.REBOOT_SCHEDULED

        logger.info(f"No reboot required: {self.decision.reason}")
        if self.config.policy == POLICY_REBOOT_ONLY:
            logger.info("Nothing to do")
            return MaintenanceOutcome.NOTHING_TO_DO

        logger.info("--- Verifying kubelet artifacts ---")
        return self.remediate()


def exit_code_for(outcome, error=None):
    if isinstance(error, subprocess.CalledProcessError):
        return error.returncode or 1
    if error is not None:
        return 1
    return 1 if outcome is MaintenanceOutcome.REMEDIATION_FAILED else 0


def run_maintenance(config, host=None, routine=None, metrics=None):
    """Run one maintenance pass with summary logging, alerting and metrics. Returns the exit code."""
    host = host or HostCommands(config.commands, update_timeout=config.update_timeout)
    routine = routine or MaintenanceRoutine(config, host)
    metrics = metrics or RunMetrics(config.pushgateway_url)

    logger.info(f"=== Starting node maintenance run (policy: {config.policy}) ===")
    start_run_time = datetime.now()
    outcome = MaintenanceOutcome.ABORTED
    error = None

    def report(run_outcome):
        if routine.decision is not None:
            metrics.record_decision(routine.decision.reboot)
        if routine.remediation is not None:
            metrics.record_remediation(routine.remediation.restarts)
        metrics.record_outcome(
            run_outcome.value, (datetime.now() - start_run_time).total_seconds()
        )
        metrics.push()

    # The host may go down as soon as the reboot is requested
    routine.before_reboot = lambda decision: report(MaintenanceOutcome.REBOOT_SCHEDULED)
    try:
        outcome = routine.run()
    except RemediationFailedError as e:
        error = e
        outcome = MaintenanceOutcome.REMEDIATION_FAILED
        logger.critical(f"Remediation failed: {e}")
        send_alert(
            f"Node maintenance on {metrics.instance} failed: {e}. Manual intervention required.",
            config.alert_command,
            config.alert_webhook_url,
        )
    except Exception as e:
        error = e
        logger.critical(f"Maintenance run aborted due to error: {e}", exc_info=True)
        send_alert(
            f"Node maintenance on {metrics.instance} aborted: {e}",
            config.alert_command,
            config.alert_webhook_url,
        )
    finally:
        run_duration = datetime.now() - start_run_time
        if outcome is not MaintenanceOutcome.REBOOT_SCHEDULED:
            report(outcome)

        logger.info("--- Maintenance Run Summary ---")
        logger.info(f"Start Time: {start_run_time.isoformat()}")
        logger.info(f"Duration: {run_duration}")
        if routine.decision is not None:
            logger.info(f"Reboot decision: {routine.decision.reboot} ({routine.decision.reason})")
        if routine.remediation is not None:
            logger.info(
                f"Remediation: {routine.remediation.state.value} "
                f"after {routine.remediation.restarts} restart(s)"
            )
        logger.info(f"Outcome: {outcome.value}")
        logger.info("=== Node maintenance run finished ===")

    return exit_code_for(outcome, error)
