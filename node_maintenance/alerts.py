import logging
import shlex
import socket
import subprocess

import requests

logger = logging.getLogger(__name__)


def send_alert(message, alert_command=None, webhook_url=None):
    """Sends an alert using the configured command and/or webhook."""
    logger.warning(f"ALERT: {message}")
    if not alert_command and not webhook_url:
        logger.warning("ALERT_COMMAND and ALERT_WEBHOOK_URL not set, only logging alert.")
        return

    if alert_command:
        try:
            # Example: ALERT_COMMAND="curl -X POST -d @- http://alert-webhook"
            full_command = f"{alert_command} {shlex.quote(message)}"
            logger.info(f"Executing alert command: {full_command}")
            subprocess.run(full_command, shell=True, check=True, timeout=30)
        except (subprocess.SubprocessError, OSError) as e:
            logger.error(f"Failed to send alert using command '{alert_command}': {e}")

    if webhook_url:
        payload = {"text": message, "host": socket.gethostname(), "source": "node-maintenance"}
        try:
            response = requests.post(webhook_url, json=payload, timeout=10)
            if response.status_code not in (200, 201, 202, 204):
                logger.warning(
                    f"Alert webhook returned status {response.status_code}: {response.text}"
                )
        except requests.RequestException as e:
            logger.error(f"Failed to send alert to webhook {webhook_url}: {e}")
