import logging
import os
import subprocess

logger = logging.getLogger(__name__)


def run_command(command, check=True, timeout=None, env=None, log_output=True):
    """Runs a command with logging and timeout. Returns the CompletedProcess."""
    cmd_str = " ".join(command)
    logger.info(f"Running command: {cmd_str}")
    try:
        process_env = os.environ.copy()
        if env:
            process_env.update(env)

        result = subprocess.run(
            command,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            check=check,
            text=True,
            timeout=timeout,
            env=process_env,
        )
        stdout_log = result.stdout.strip() if result.stdout else ""
        stderr_log = result.stderr.strip() if result.stderr else ""

        if log_output and stdout_log:
            logger.info(f"Command stdout:\n{stdout_log}")
        elif stdout_log:
            logger.debug(f"Command stdout:\n{stdout_log}")
        # Log stderr as warning even on success, as commands might output info there
        if stderr_log:
            logger.warning(f"Command stderr:\n{stderr_log}")
        logger.debug(f"Command exited with code {result.returncode}: {cmd_str}")
        return result
    except subprocess.TimeoutExpired:
        logger.error(f"Command timed out after {timeout}s: {cmd_str}")
        raise
    except subprocess.CalledProcessError as e:
        logger.error(f"Command failed with exit code {e.returncode}: {cmd_str}")
        stdout_log = e.stdout.strip() if e.stdout else ""
        stderr_log = e.stderr.strip() if e.stderr else ""
        if stdout_log:
            logger.error(f"Failed command stdout:\n{stdout_log}")
        if stderr_log:
            logger.error(f"Failed command stderr:\n{stderr_log}")
        raise
    except Exception as e:
        logger.error(f"Failed to run command {cmd_str}: {e}")
        raise


class HostCommands:
    """
    The external commands one maintenance run needs on the node.

    Every method maps to exactly one command from the configured CommandSet,
    so tests can substitute a fake with the same methods.
    """

    def __init__(self, commands, update_timeout=None):
        self.commands = commands
        self.update_timeout = update_timeout

    def update_packages(self):
        """Update all packages. Raises CalledProcessError on failure."""
        run_command(list(self.commands.update), timeout=self.update_timeout)

    def staleness_report(self):
        """
        Output of the reboot staleness query.

        The exit code is not meaningful here (`needs-restarting -r` exits 1
        when a reboot is needed), so stdout and stderr are returned together
        for the caller to interpret.
        """
        try:
            result = run_command(list(self.commands.staleness), check=False, timeout=300)
        except OSError as e:
            logger.warning(f"Staleness query could not be executed: {e}")
            return str(e)
        return "\n".join(part for part in (result.stdout, result.stderr) if part)

    def last_transaction_report(self):
        """Text of the most recent package transaction."""
        # Fixed locale so the begin time is rendered with English day/month names
        result = run_command(
            list(self.commands.history),
            timeout=120,
            env={"LC_ALL": "C"},
            log_output=False,
        )
        return result.stdout

    def restart_service(self, name):
        run_command(list(self.commands.service_restart) + [name], timeout=300)

    def schedule_shutdown(self):
        run_command(list(self.commands.shutdown), timeout=60)
