import logging
import os
import shlex
from dataclasses import dataclass, field, replace

import yaml

logger = logging.getLogger(__name__)

# Package name prefixes whose upgrade requires a reboot, e.g. `containerd.io`
# matches `containerd.io-1.7.20-3.1.el9.x86_64`.
DEFAULT_ESSENTIAL_PACKAGE_PREFIXES = (
    "containerd.io",
    "docker-ce",  # includes docker-ce-cli and docker-ce-rootless-extras
    "docker-buildx-plugin",
)

# Created by the kubelet once it has set up its cgroup hierarchy.
DEFAULT_REQUIRED_ARTIFACTS = (
    "/sys/fs/cgroup/kubepods.slice/kubepods-burstable.slice",
    "/sys/fs/cgroup/kubepods.slice/kubepods-besteffort.slice",
)

# The artifacts reliably show up only after the second kubelet restart.
DEFAULT_MAX_ATTEMPTS = 2
DEFAULT_DELAY_SECONDS = 60

POLICY_REBOOT_ONLY = "reboot-only"
POLICY_REMEDIATE = "remediate"
POLICIES = (POLICY_REBOOT_ONLY, POLICY_REMEDIATE)


class ConfigError(ValueError):
    """Raised for invalid environment or YAML configuration."""


@dataclass(frozen=True)
class RetryBudget:
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    delay_seconds: float = DEFAULT_DELAY_SECONDS

    def __post_init__(self):
        if self.max_attempts < 0:
            raise ConfigError(f"max_attempts must be >= 0, got {self.max_attempts}")
        if self.delay_seconds < 0:
            raise ConfigError(f"delay_seconds must be >= 0, got {self.delay_seconds}")


@dataclass(frozen=True)
class CommandSet:
    """Argv lists for every external command the routine runs."""

    update: tuple = ("dnf", "update", "-y")
    staleness: tuple = ("needs-restarting", "-r")
    history: tuple = ("dnf", "history", "info", "last")
    service_restart: tuple = ("docker", "restart")
    shutdown: tuple = ("shutdown", "-r", "+1")


@dataclass(frozen=True)
class MaintenanceConfig:
    policy: str = POLICY_REBOOT_ONLY
    essential_package_prefixes: tuple = DEFAULT_ESSENTIAL_PACKAGE_PREFIXES
    required_artifacts: tuple = DEFAULT_REQUIRED_ARTIFACTS
    retry_budget: RetryBudget = field(default_factory=RetryBudget)
    kubelet_service: str = "kubelet"
    commands: CommandSet = field(default_factory=CommandSet)
    update_timeout: int = 3600
    maintenance_weekday: int = None
    log_dir: str = None
    alert_command: str = None
    alert_webhook_url: str = None
    pushgateway_url: str = None
    trace: bool = False

    def __post_init__(self):
        if self.policy not in POLICIES:
            raise ConfigError(
                f"Unknown policy '{self.policy}', expected one of {', '.join(POLICIES)}"
            )
        if self.maintenance_weekday is not None and not 1 <= self.maintenance_weekday <= 7:
            raise ConfigError(
                f"maintenance_weekday must be an ISO weekday (1-7), got {self.maintenance_weekday}"
            )


def _split_list(value):
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _as_list(value, key):
    if isinstance(value, str):
        return _split_list(value)
    if isinstance(value, (list, tuple)):
        return tuple(str(item) for item in value)
    raise ConfigError(f"'{key}' must be a list or a comma-separated string")


def _as_argv(value, key):
    if isinstance(value, str):
        argv = tuple(shlex.split(value))
    elif isinstance(value, (list, tuple)):
        argv = tuple(str(item) for item in value)
    else:
        raise ConfigError(f"'{key}' must be a command string or an argv list")
    if not argv:
        raise ConfigError(f"'{key}' must not be empty")
    return argv


def _as_int(value, key):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"'{key}' must be an integer, got {value!r}") from None


def _as_float(value, key):
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"'{key}' must be a number, got {value!r}") from None


def _as_bool(value):
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes")


# Environment variable -> flat settings key
ENV_KEYS = {
    "MAINTENANCE_POLICY": "policy",
    "ESSENTIAL_PACKAGE_PREFIXES": "essential_package_prefixes",
    "REQUIRED_ARTIFACTS": "required_artifacts",
    "REMEDIATION_MAX_ATTEMPTS": "max_attempts",
    "REMEDIATION_DELAY_SECONDS": "delay_seconds",
    "KUBELET_SERVICE": "kubelet_service",
    "UPDATE_COMMAND": "update_command",
    "STALENESS_COMMAND": "staleness_command",
    "HISTORY_COMMAND": "history_command",
    "SERVICE_RESTART_COMMAND": "service_restart_command",
    "SHUTDOWN_COMMAND": "shutdown_command",
    "UPDATE_TIMEOUT": "update_timeout",
    "MAINTENANCE_WEEKDAY": "maintenance_weekday",
    "LOG_DIR": "log_dir",
    "ALERT_COMMAND": "alert_command",
    "ALERT_WEBHOOK_URL": "alert_webhook_url",
    "PUSHGATEWAY_URL": "pushgateway_url",
    "TRACE": "trace",
}


def load_yaml_settings(path):
    """Read a flat settings mapping from a YAML file."""
    try:
        with open(path, "r") as f:
            settings = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"Cannot read configuration file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in configuration file {path}: {e}") from e

    if not isinstance(settings, dict):
        raise ConfigError(f"Configuration file {path} must contain a mapping")
    unknown = set(settings) - set(ENV_KEYS.values())
    if unknown:
        raise ConfigError(
            f"Unknown keys in configuration file {path}: {', '.join(sorted(unknown))}"
        )
    logger.info(f"Loaded configuration from {path}")
    return settings


def env_settings(environ=None):
    """Collect the settings present in the environment."""
    environ = os.environ if environ is None else environ
    return {
        key: environ[name]
        for name, key in ENV_KEYS.items()
        if environ.get(name, "") != ""
    }


def build_config(settings):
    """Turn a flat settings mapping into a MaintenanceConfig."""
    defaults = MaintenanceConfig()
    commands = defaults.commands
    command_keys = {
        "update_command": "update",
        "staleness_command": "staleness",
        "history_command": "history",
        "service_restart_command": "service_restart",
        "shutdown_command": "shutdown",
    }
    for key, attr in command_keys.items():
        if key in settings:
            commands = replace(commands, **{attr: _as_argv(settings[key], key)})

    retry_budget = RetryBudget(
        max_attempts=_as_int(settings.get("max_attempts", DEFAULT_MAX_ATTEMPTS), "max_attempts"),
        delay_seconds=_as_float(
            settings.get("delay_seconds", DEFAULT_DELAY_SECONDS), "delay_seconds"
        ),
    )

    weekday = settings.get("maintenance_weekday")
    return MaintenanceConfig(
        policy=settings.get("policy", defaults.policy),
        essential_package_prefixes=_as_list(
            settings.get("essential_package_prefixes", defaults.essential_package_prefixes),
            "essential_package_prefixes",
        ),
        required_artifacts=_as_list(
            settings.get("required_artifacts", defaults.required_artifacts),
            "required_artifacts",
        ),
        retry_budget=retry_budget,
        kubelet_service=settings.get("kubelet_service", defaults.kubelet_service),
        commands=commands,
        update_timeout=_as_int(
            settings.get("update_timeout", defaults.update_timeout), "update_timeout"
        ),
        maintenance_weekday=None if weekday is None else _as_int(weekday, "maintenance_weekday"),
        log_dir=settings.get("log_dir"),
        alert_command=settings.get("alert_command"),
        alert_webhook_url=settings.get("alert_webhook_url"),
        pushgateway_url=settings.get("pushgateway_url"),
        trace=_as_bool(settings.get("trace", False)),
    )


def load_config(config_path=None, environ=None, overrides=None):
    """
    Resolve the configuration for one maintenance run.

    Precedence, lowest first: built-in defaults, the YAML file given by
    ``config_path`` (or ``CONFIG_PATH``), environment variables, then
    explicit ``overrides`` (typically from command-line flags).
    """
    environ = os.environ if environ is None else environ
    settings = {}
    config_path = config_path or environ.get("CONFIG_PATH")
    if config_path:
        settings.update(load_yaml_settings(config_path))
    settings.update(env_settings(environ))
    if overrides:
        settings.update({k: v for k, v in overrides.items() if v is not None})
    return build_config(settings)
