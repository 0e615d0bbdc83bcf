"""
Kubelet remediation after package upgrades.

Upgrading the container runtime restarts docker, and the kubelet container
that comes back up does not always recreate its cgroup slices. Restarting the
kubelet container fixes this; empirically the slices reliably appear only
after the second restart, hence the default budget of two restarts with a
60 second settle delay.
"""

import enum
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Callable, List, Sequence

from node_maintenance.config import RetryBudget

logger = logging.getLogger(__name__)


class RemediationState(enum.Enum):
    CHECKING = "checking"
    RESTARTING = "restarting"
    WAITING = "waiting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RemediationFailedError(RuntimeError):
    """Required artifacts are still missing after the retry budget was spent."""

    def __init__(self, result):
        self.result = result
        super().__init__(
            f"Required artifacts still missing after {result.restarts} restart(s): "
            f"{', '.join(result.missing)}"
        )


@dataclass
class RemediationResult:
    state: RemediationState
    restarts: int = 0
    missing: List[str] = field(default_factory=list)

    @property
    def succeeded(self):
        return self.state is RemediationState.SUCCEEDED


class RemediationLoop:
    def __init__(
        self,
        artifacts: Sequence[str],
        restart: Callable[[], None],
        budget: RetryBudget = None,
        exists: Callable[[str], bool] = os.path.exists,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.artifacts = list(artifacts)
        self.restart = restart
        self.budget = budget or RetryBudget()
        self.exists = exists
        self.sleep = sleep
        self.state = RemediationState.CHECKING

    def _transition(self, state):
        logger.debug(f"Remediation state {self.state.value} -> {state.value}")
        self.state = state

    def missing_artifacts(self):
        return [path for path in self.artifacts if not self.exists(path)]

    def _check(self):
        self._transition(RemediationState.CHECKING)
        missing = self.missing_artifacts()
        if missing:
            logger.warning(f"Required artifacts missing: {', '.join(missing)}")
        else:
            logger.info("All required artifacts present")
        return missing

    def run(self):
        """Drive the loop to a terminal state and return the result."""
        restarts = 0
        for attempt in range(1, self.budget.max_attempts + 1):
            if not self._check():
                self._transition(RemediationState.SUCCEEDED)
                return RemediationResult(self.state, restarts)

            self._transition(RemediationState.RESTARTING)
            logger.info(f"Restart attempt {attempt}/{self.budget.max_attempts}")
            self.restart()
            restarts += 1

            self._transition(RemediationState.WAITING)
            logger.info(f"Waiting {self.budget.delay_seconds}s for artifacts to appear")
            self.sleep(self.budget.delay_seconds)

        missing = self._check()
        if missing:
            self._transition(RemediationState.FAILED)
            logger.error(
                f"Required artifacts still missing after {restarts} restart(s); "
                "manual intervention required"
            )
        else:
            self._transition(RemediationState.SUCCEEDED)
        return RemediationResult(self.state, restarts, missing)
