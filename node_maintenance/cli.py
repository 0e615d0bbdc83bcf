import argparse
import logging
import sys

from node_maintenance.config import POLICIES, ConfigError, load_config
from node_maintenance.logging_setup import configure_logging
from node_maintenance.routine import run_maintenance

logger = logging.getLogger(__name__)

EPILOG = """\
policies:
  reboot-only  reboot when kernel/libraries are stale or an essential package
               (container runtime) was upgraded today
  remediate    reboot only when kernel/libraries are stale, otherwise restart
               the kubelet container until its cgroup slices exist

Run at most one instance per host at a time; there is no lock.
"""


def build_parser():
    parser = argparse.ArgumentParser(
        prog="node-maintenance",
        description="Update packages on an RKE1 node and reboot or remediate as needed",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--policy", choices=POLICIES, help="Reboot policy (default: reboot-only)")
    parser.add_argument("-c", "--config", help="Path to a YAML configuration file")
    parser.add_argument(
        "--weekday",
        type=int,
        choices=range(1, 8),
        metavar="{1..7}",
        help="Only run on this ISO weekday (1=Monday), e.g. 4 for Thursdays",
    )
    parser.add_argument("--log-dir", help="Also write the run log to this directory")
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable verbose tracing (same as TRACE=1)"
    )
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    overrides = {
        "policy": args.policy,
        "maintenance_weekday": args.weekday,
        "log_dir": args.log_dir,
        "trace": True if args.verbose else None,
    }
    try:
        config = load_config(config_path=args.config, overrides=overrides)
    except ConfigError as e:
        configure_logging()
        logger.critical(f"Invalid configuration: {e}")
        return 2

    log_filename = configure_logging(trace=config.trace, log_dir=config.log_dir)
    if log_filename:
        logger.info(f"Log file: {log_filename}")
    return run_maintenance(config)


if __name__ == "__main__":
    sys.exit(main())
