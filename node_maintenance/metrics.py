import logging
import socket
import time

from prometheus_client import CollectorRegistry, Gauge, push_to_gateway

logger = logging.getLogger(__name__)

JOB_NAME = "node_maintenance"


class RunMetrics:
    """
    Prometheus metrics describing a single maintenance run.

    The run is a short-lived job, so metrics live in a private registry and
    are pushed to a Pushgateway when the run ends, or just before the reboot
    request when the run ends with one.
    """

    def __init__(self, pushgateway_url=None, instance=None):
        self.pushgateway_url = pushgateway_url
        self.instance = instance or socket.gethostname()
        self.registry = CollectorRegistry()

        self.last_run = Gauge(
            "node_maintenance_last_run_timestamp_seconds",
            "Unix time the last maintenance run finished",
            registry=self.registry,
        )
        self.duration = Gauge(
            "node_maintenance_duration_seconds",
            "Duration of the last maintenance run",
            registry=self.registry,
        )
        self.reboot_required = Gauge(
            "node_maintenance_reboot_required",
            "Whether the last run decided to reboot the node (1) or not (0)",
            registry=self.registry,
        )
        self.remediation_restarts = Gauge(
            "node_maintenance_remediation_restarts",
            "Service restarts issued by the remediation loop in the last run",
            registry=self.registry,
        )
        self.outcome = Gauge(
            "node_maintenance_outcome",
            "Outcome of the last run (1 for the outcome that occurred)",
            ["outcome"],
            registry=self.registry,
        )

    def record_decision(self, reboot):
        self.reboot_required.set(1 if reboot else 0)

    def record_remediation(self, restarts):
        self.remediation_restarts.set(restarts)

    def record_outcome(self, outcome, duration):
        self.outcome.clear()
        self.outcome.labels(outcome=outcome).set(1)
        self.duration.set(duration)
        self.last_run.set(time.time())

    def push(self):
        """Push metrics to the Pushgateway. Returns True on success."""
        if not self.pushgateway_url:
            logger.debug("PUSHGATEWAY_URL not set, not pushing metrics")
            return False
        try:
            push_to_gateway(
                self.pushgateway_url,
                job=JOB_NAME,
                registry=self.registry,
                grouping_key={"instance": self.instance},
            )
            logger.info(f"Pushed run metrics to {self.pushgateway_url}")
            return True
        except Exception as e:
            logger.error(f"Failed to push metrics to Pushgateway: {str(e)}")
            return False
