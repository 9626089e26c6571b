"""
Azure Key Vault certificate rotation engine.

This package contains:
- helpers: Expiry evaluation and formatting
- keyvault: Azure Key Vault operations
- poller: Issuance submission and status polling
- sweep: Scheduled sweep over a vault
- handler: On-demand list/check/rotate/create requests
- audit: Rotation results and sweep summaries
- scheduler: Daily trigger
- config_loader: Configuration loading and validation
- logger: Centralized logging setup
- notification: Notification of sweep outcomes
"""

from .logger import setup_logger, get_logger
from .config_loader import (
    load_config,
    parse_config,
    Config,
    ConfigurationError,
    VaultConfig,
    PollingConfig,
    NotificationsConfig,
)
from .helpers import (
    ExpiryStatus,
    ExpiryEvaluation,
    evaluate_expiry,
    format_expiration_status,
)
from .keyvault import (
    KeyVaultClient,
    CertificateInfo,
    RenewalPolicy,
    RotationOperation,
    OperationStatus,
    KeyVaultError,
    NotFoundError,
    UpstreamError,
    connect,
)
from .audit import (
    AuditResultAggregator,
    RotationOutcome,
    RotationResult,
    SweepSummary,
)
from .poller import (
    RotationOperationPoller,
    PollPolicy,
    OperationTimeoutError,
    wait_for_completion,
)
from .sweep import BatchRotationSweep
from .handler import OnDemandRequestHandler, ValidationError, parse_request
from .notification import NotificationManager
from .scheduler import run_daily, daily_trigger

__all__ = [
    # Logger
    "setup_logger",
    "get_logger",
    # Config
    "load_config",
    "parse_config",
    "Config",
    "ConfigurationError",
    "VaultConfig",
    "PollingConfig",
    "NotificationsConfig",
    # Expiry
    "ExpiryStatus",
    "ExpiryEvaluation",
    "evaluate_expiry",
    "format_expiration_status",
    # Key Vault
    "KeyVaultClient",
    "CertificateInfo",
    "RenewalPolicy",
    "RotationOperation",
    "OperationStatus",
    "KeyVaultError",
    "NotFoundError",
    "UpstreamError",
    "connect",
    # Results
    "AuditResultAggregator",
    "RotationOutcome",
    "RotationResult",
    "SweepSummary",
    # Rotation
    "RotationOperationPoller",
    "PollPolicy",
    "OperationTimeoutError",
    "wait_for_completion",
    "BatchRotationSweep",
    # On-demand
    "OnDemandRequestHandler",
    "ValidationError",
    "parse_request",
    # Notifications
    "NotificationManager",
    # Schedule
    "run_daily",
    "daily_trigger",
]
