import logging

logger = logging.getLogger(__name__)


class PackageUpdater:
    """Updates all packages on the node. A failed update aborts the run."""

    def __init__(self, host):
        self.host = host

    def run(self):
        logger.info("--- Updating all packages ---")
        self.host.update_packages()
        logger.info("Package update completed.")


class Rebooter:
    """
    Schedules a delayed reboot. Nothing else may run after it.

    Callers that report on the run (metrics, summaries) must do so before
    calling reboot. run_maintenance pushes metrics from the routine's
    before_reboot hook.
    """

    def __init__(self, host):
        self.host = host
        self.issued = False

    def reboot(self, reason):
        if self.issued:
            raise RuntimeError("Reboot was already scheduled in this run")
        logger.warning(f"Scheduling reboot: {reason}")
        self.host.schedule_shutdown()
        self.issued = True
        logger.warning("Reboot scheduled; the host will go down shortly.")
