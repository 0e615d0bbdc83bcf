import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from typing import Optional

from node_maintenance.transaction import parse_transaction_report

logger = logging.getLogger(__name__)

NO_REBOOT_SENTINEL = "Reboot should not be necessary."


@dataclass(frozen=True)
class RebootDecision:
    reboot: bool
    reason: str
    matched_prefix: Optional[str] = None

    def __bool__(self):
        return self.reboot


class KernelStalenessCheck:
    """Asks the host whether the running kernel or libraries are outdated."""

    def __init__(self, host):
        self.host = host

    def check(self):
        output = self.host.staleness_report()
        if NO_REBOOT_SENTINEL in output:
            logger.info("No reboot required by kernel or library updates")
            return RebootDecision(False, "kernel and libraries are up to date")
        logger.info("Reboot required by kernel or library updates")
        return RebootDecision(True, "kernel or core libraries were updated")


class EssentialPackageCheck:
    """Checks whether the latest package transaction upgraded an essential package."""

    def __init__(self, host, prefixes, today=date.today):
        self.host = host
        self.prefixes = tuple(prefixes)
        self.today = today

    def check(self):
        report = self.host.last_transaction_report()
        logger.debug(f"Last package transaction reads:\n---\n{report}\n---")
        record = parse_transaction_report(report)

        today = self.today()
        if not record.began_on(today):
            # Upgrades from an earlier run were already handled by that run.
            logger.info(
                f"Latest transaction did not happen today ({today.isoformat()}) but on "
                f"'{record.begin_time}'; not checking its packages"
            )
            return RebootDecision(False, "no package transaction today")

        upgrade_lines = record.upgrade_lines
        logger.info(
            "Latest transaction took place today; upgraded packages:\n"
            + ("\n".join(upgrade_lines) or "(none)")
        )
        for prefix in self.prefixes:
            if any(prefix in line for line in upgrade_lines):
                logger.info(f"Essential package with prefix '{prefix}' was upgraded")
                return RebootDecision(
                    True, f"essential package '{prefix}' was upgraded", matched_prefix=prefix
                )

        logger.info("No essential package requiring a reboot was upgraded")
        return RebootDecision(False, "no essential package was upgraded")


class RebootPolicy(ABC):
    """Decides whether the node must reboot after a package update."""

    name = None

    def __init__(self, host):
        self.host = host
        self.staleness = KernelStalenessCheck(host)

    @abstractmethod
    def decide(self):
        """Return a RebootDecision."""
        pass


class StagedRebootPolicy(RebootPolicy):
    """Staleness check first, then the essential package check."""

    name = "staged"

    def __init__(self, host, prefixes, today=date.today):
        super().__init__(host)
        self.essential = EssentialPackageCheck(host, prefixes, today=today)

    def decide(self):
        decision = self.staleness.check()
        if decision.reboot:
            return decision
        return self.essential.check()


class StalenessOnlyRebootPolicy(RebootPolicy):
    """
    Only the staleness check decides.

    Upgraded container runtime packages are handled by the kubelet
    remediation loop instead of a reboot.
    """

    name = "staleness-only"

    def decide(self):
        return self.staleness.check()
