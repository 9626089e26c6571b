"""
Configuration loading, validation, and parsing.

Loads configuration from a YAML file and provides typed access to the
vault identity, expiry threshold, polling budgets, schedule and
notification channels.
"""

import os
import re
from pathlib import Path
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional

import yaml

from .logger import get_logger


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


DEFAULT_THRESHOLD_DAYS = 30
DEFAULT_SCHEDULE_TIME = "02:00"

_UNEXPANDED_VAR = re.compile(r"\$\{[^}]+\}")
_VAULT_NAME = re.compile(r"^[a-zA-Z][a-zA-Z0-9-]{1,22}[a-zA-Z0-9]$")
_SCHEDULE_TIME = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


@dataclass
class VaultConfig:
    """Azure Key Vault identity.

    Only the name is required; the URL defaults to the public cloud
    endpoint for that name.
    """
    name: str
    url: str = ""

    def __post_init__(self):
        if self.name and not self.url:
            self.url = f"https://{self.name}.vault.azure.net/"


@dataclass
class PollBudget:
    """Interval and maximum wait (seconds) for one class of caller."""
    interval: float
    max_wait: float


@dataclass
class PollingConfig:
    """Polling budgets for on-demand requests and scheduled sweeps."""
    interactive: PollBudget = field(default_factory=lambda: PollBudget(2, 60))
    sweep: PollBudget = field(default_factory=lambda: PollBudget(5, 120))


@dataclass
class CreatePolicyConfig:
    """Defaults for certificates issued by the create action."""
    issuer_name: str = "Self"
    validity_in_months: int = 12
    key_type: str = "RSA"
    key_size: int = 2048
    enhanced_key_usage: List[str] = field(default_factory=lambda: [
        "1.3.6.1.5.5.7.3.1",  # serverAuth
        "1.3.6.1.5.5.7.3.2",  # clientAuth
    ])
    key_usage: List[str] = field(default_factory=lambda: [
        "digitalSignature",
        "keyEncipherment",
    ])


@dataclass
class EmailNotificationConfig:
    """Email notification configuration."""
    enabled: bool = False
    from_email: str = ""
    to_emails: List[str] = field(default_factory=list)


@dataclass
class TeamsNotificationConfig:
    """Teams notification configuration."""
    enabled: bool = False
    webhook_url: Optional[str] = None


@dataclass
class NotificationsConfig:
    """Notification channels configuration."""
    email: EmailNotificationConfig = field(default_factory=EmailNotificationConfig)
    teams: TeamsNotificationConfig = field(default_factory=TeamsNotificationConfig)
    only_on_failure: bool = True


@dataclass
class Settings:
    """Global settings."""
    expiration_threshold_days: int = DEFAULT_THRESHOLD_DAYS
    schedule_time: str = DEFAULT_SCHEDULE_TIME
    dry_run: bool = False
    log_file: Optional[str] = None


@dataclass
class Config:
    """Root configuration object."""
    vault: VaultConfig
    settings: Settings = field(default_factory=Settings)
    polling: PollingConfig = field(default_factory=PollingConfig)
    create_policy: CreatePolicyConfig = field(default_factory=CreatePolicyConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)


def _expand_env_vars(value: Any) -> Any:
    """
    Expand ${VAR_NAME} references in string values, recursively.

    Unset variables are left in place so validation can report them.
    """
    if isinstance(value, str):
        def replace(match):
            return os.environ.get(match.group(1), match.group(0))

        return re.sub(r"\$\{([^}]+)\}", replace, value)

    elif isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}

    elif isinstance(value, list):
        return [_expand_env_vars(item) for item in value]

    return value


def _is_unset(value: Optional[str]) -> bool:
    return not value or bool(_UNEXPANDED_VAR.search(value))


def _parse_vault(data: Dict[str, Any]) -> VaultConfig:
    """
    Parse the vault section.

    Raises:
        ConfigurationError: If no usable vault identifier is configured
    """
    name = data.get("name") or ""
    url = data.get("url") or ""

    if _is_unset(name):
        name = ""
    if _is_unset(url):
        url = ""

    if not name and not url:
        raise ConfigurationError(
            "Key Vault name is not configured. Set vault.name in the "
            "configuration file or the KEY_VAULT_NAME environment variable"
        )

    if url:
        if not url.startswith("https://"):
            raise ConfigurationError(f"Vault URL must start with https://: {url}")
        if not name:
            name = url.split("//")[1].split(".")[0]
    elif not _VAULT_NAME.match(name):
        raise ConfigurationError(
            f"Invalid Key Vault name '{name}'. Names are 3-24 characters, "
            "alphanumeric and hyphens, starting with a letter"
        )

    return VaultConfig(name=name, url=url)


def _parse_budget(data: Dict[str, Any], default: PollBudget, label: str) -> PollBudget:
    budget = PollBudget(
        interval=data.get("interval", default.interval),
        max_wait=data.get("max_wait", default.max_wait),
    )
    if budget.interval <= 0:
        raise ConfigurationError(f"polling.{label}.interval must be positive")
    if budget.max_wait < budget.interval:
        raise ConfigurationError(
            f"polling.{label}.max_wait must be at least the poll interval"
        )
    return budget


def _parse_polling(data: Dict[str, Any]) -> PollingConfig:
    defaults = PollingConfig()
    return PollingConfig(
        interactive=_parse_budget(data.get("interactive") or {}, defaults.interactive, "interactive"),
        sweep=_parse_budget(data.get("sweep") or {}, defaults.sweep, "sweep"),
    )


def _parse_settings(data: Dict[str, Any]) -> Settings:
    """
    Parse and validate the settings section.

    Raises:
        ConfigurationError: If a setting is out of range
    """
    settings = Settings(
        expiration_threshold_days=data.get("expiration_threshold_days", DEFAULT_THRESHOLD_DAYS),
        schedule_time=str(data.get("schedule_time", DEFAULT_SCHEDULE_TIME)),
        dry_run=data.get("dry_run", False),
        log_file=data.get("log_file"),
    )

    if not isinstance(settings.expiration_threshold_days, int):
        raise ConfigurationError("expiration_threshold_days must be an integer")
    if settings.expiration_threshold_days < 1:
        raise ConfigurationError("expiration_threshold_days must be at least 1")
    if settings.expiration_threshold_days > 365:
        raise ConfigurationError("expiration_threshold_days should not exceed 365")
    if not _SCHEDULE_TIME.match(settings.schedule_time):
        raise ConfigurationError(
            f"Invalid schedule_time '{settings.schedule_time}'. Use HH:MM (24h, UTC)"
        )

    return settings


def _parse_create_policy(data: Dict[str, Any]) -> CreatePolicyConfig:
    defaults = CreatePolicyConfig()
    policy = CreatePolicyConfig(
        issuer_name=data.get("issuer_name", defaults.issuer_name),
        validity_in_months=data.get("validity_in_months", defaults.validity_in_months),
        key_type=str(data.get("key_type", defaults.key_type)).upper(),
        key_size=data.get("key_size", defaults.key_size),
        enhanced_key_usage=data.get("enhanced_key_usage", defaults.enhanced_key_usage),
        key_usage=data.get("key_usage", defaults.key_usage),
    )

    valid_key_types = ["RSA", "RSA-HSM"]
    if policy.key_type not in valid_key_types:
        raise ConfigurationError(
            f"Invalid key_type '{policy.key_type}'. Must be one of: {', '.join(valid_key_types)}"
        )

    valid_rsa_sizes = [2048, 3072, 4096]
    if policy.key_size not in valid_rsa_sizes:
        raise ConfigurationError(
            f"Invalid key_size '{policy.key_size}'. Must be one of: {', '.join(map(str, valid_rsa_sizes))}"
        )

    if not 1 <= policy.validity_in_months <= 120:
        raise ConfigurationError("validity_in_months must be between 1 and 120")

    return policy


def _parse_notifications(data: Dict[str, Any]) -> NotificationsConfig:
    email_data = data.get("email") or {}
    to_emails = email_data.get("to_emails", [])
    if isinstance(to_emails, str):
        to_emails = [to_emails]

    teams_data = data.get("teams") or {}

    return NotificationsConfig(
        email=EmailNotificationConfig(
            enabled=email_data.get("enabled", False),
            from_email=email_data.get("from_email", ""),
            to_emails=to_emails,
        ),
        teams=TeamsNotificationConfig(
            enabled=teams_data.get("enabled", False),
            webhook_url=None if _is_unset(teams_data.get("webhook_url")) else teams_data["webhook_url"],
        ),
        only_on_failure=data.get("only_on_failure", True),
    )


def parse_config(data: Dict[str, Any]) -> Config:
    """
    Build a validated Config from already-loaded YAML data.

    Args:
        data: Raw mapping, environment variables not yet expanded

    Returns:
        Validated Config instance

    Raises:
        ConfigurationError: If configuration is invalid
    """
    data = _expand_env_vars(data or {})

    return Config(
        vault=_parse_vault(data.get("vault") or {}),
        settings=_parse_settings(data.get("settings") or {}),
        polling=_parse_polling(data.get("polling") or {}),
        create_policy=_parse_create_policy(data.get("create_policy") or {}),
        notifications=_parse_notifications(data.get("notifications") or {}),
    )


def load_config(config_path: str, vault_name: Optional[str] = None) -> Config:
    """
    Load and validate configuration from a YAML file.

    Args:
        config_path: Path to the configuration file
        vault_name: Optional vault name overriding the file's vault section

    Returns:
        Validated Config instance

    Raises:
        ConfigurationError: If configuration is invalid
    """
    logger = get_logger()
    path = Path(config_path)

    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    if path.suffix not in (".yaml", ".yml"):
        raise ConfigurationError(
            f"Configuration file must be YAML (.yaml or .yml): {config_path}"
        )

    try:
        with open(path, "r") as f:
            raw_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in configuration file: {e}")
    except IOError as e:
        raise ConfigurationError(f"Failed to read configuration file: {e}")

    if raw_data is None:
        raw_data = {}
    if not isinstance(raw_data, dict):
        raise ConfigurationError("Configuration file must contain a mapping")

    if vault_name:
        raw_data["vault"] = {"name": vault_name}

    config = parse_config(raw_data)

    logger.info(f"Loaded configuration from {config_path}")
    logger.info(f"  Vault: {config.vault.name}")
    logger.info(f"  Threshold: {config.settings.expiration_threshold_days} days")
    logger.debug(
        f"  Polling: interactive {config.polling.interactive.interval}s/"
        f"{config.polling.interactive.max_wait}s, sweep "
        f"{config.polling.sweep.interval}s/{config.polling.sweep.max_wait}s"
    )

    enabled_channels = []
    if config.notifications.email.enabled:
        enabled_channels.append("email")
    if config.notifications.teams.enabled:
        enabled_channels.append("teams")
    if enabled_channels:
        logger.info(f"  Notifications: {', '.join(enabled_channels)}")
    else:
        logger.info("  Notifications: disabled")

    return config
