import logging
import os
import sys
from datetime import datetime

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(trace=False, log_dir=None):
    """Configure root logging for a run. Returns the log file path, if any."""
    handlers = [logging.StreamHandler(sys.stdout)]
    log_filename = None
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        log_filename = os.path.join(
            log_dir, f"node_maintenance_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
        )
        handlers.append(logging.FileHandler(log_filename))

    logging.basicConfig(
        level=logging.DEBUG if trace else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    if trace:
        logging.getLogger(__name__).debug("TRACE enabled, logging every command and state change")
    return log_filename
