"""
Common utility functions.

Provides the expiry classification used by both the scheduled sweep and
the on-demand handler, plus formatting and naming helpers.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

SECONDS_PER_DAY = 86400


class ExpiryStatus(Enum):
    """Classification of a certificate's remaining validity."""
    EXPIRED = "expired"
    EXPIRING_SOON = "expiring_soon"
    OK = "ok"


@dataclass(frozen=True)
class ExpiryEvaluation:
    """Result of evaluating one certificate against a threshold."""
    status: ExpiryStatus
    days_until_expiry: int
    needs_rotation: bool
    expires_on: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value.upper(),
            "daysUntilExpiry": self.days_until_expiry,
            "needsRotation": self.needs_rotation,
            "expiresOn": self.expires_on.isoformat(),
        }


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def days_until(expires_on: datetime, now: Optional[datetime] = None) -> int:
    """
    Whole days between now and expiry, truncated toward zero.

    Args:
        expires_on: Expiration datetime (naive values are treated as UTC)
        now: Reference time, defaults to the current UTC time

    Returns:
        Number of whole days remaining (negative once expired)
    """
    now = _as_utc(now) if now else datetime.now(timezone.utc)
    seconds = (_as_utc(expires_on) - now).total_seconds()
    return int(seconds / SECONDS_PER_DAY)


def evaluate_expiry(
    certificate: Any,
    threshold_days: int,
    now: Optional[datetime] = None,
) -> ExpiryEvaluation:
    """
    Classify a certificate's remaining validity against a threshold.

    - days <= 0              -> EXPIRED
    - 0 < days <= threshold  -> EXPIRING_SOON
    - otherwise              -> OK

    A certificate exactly ``threshold_days`` from expiry needs rotation.
    The function performs no I/O; given the same certificate, threshold
    and ``now`` it always returns the same result.

    Args:
        certificate: Object with an ``expires_on`` datetime attribute
        threshold_days: Days before expiry at which rotation is due
        now: Reference time, defaults to the current UTC time

    Returns:
        ExpiryEvaluation for the certificate

    Raises:
        ValueError: If the certificate carries no expiry date
    """
    expires_on = getattr(certificate, "expires_on", None)
    if expires_on is None:
        raise ValueError(
            f"Certificate {getattr(certificate, 'name', '?')} has no expiry date"
        )

    days = days_until(expires_on, now)

    if days <= 0:
        status = ExpiryStatus.EXPIRED
    elif days <= threshold_days:
        status = ExpiryStatus.EXPIRING_SOON
    else:
        status = ExpiryStatus.OK

    return ExpiryEvaluation(
        status=status,
        days_until_expiry=days,
        needs_rotation=status is not ExpiryStatus.OK,
        expires_on=_as_utc(expires_on),
    )


def format_expiration_status(evaluation: ExpiryEvaluation) -> str:
    """
    Format a human-readable expiration status.

    Args:
        evaluation: Result of evaluate_expiry

    Returns:
        Formatted status string
    """
    days = evaluation.days_until_expiry

    if days < 0:
        return f"EXPIRED ({abs(days)} day{'s' if days != -1 else ''} ago)"
    elif days == 0:
        return "EXPIRED (today)"
    elif evaluation.status is ExpiryStatus.EXPIRING_SOON:
        return f"EXPIRING in {days} day{'s' if days != 1 else ''}"
    else:
        return f"Valid ({days} days remaining)"


def sanitize_cert_name(name: str) -> str:
    """
    Sanitize a certificate name for use in Key Vault.

    Key Vault object names must be 1-127 characters of alphanumerics and
    hyphens.

    Args:
        name: Requested certificate name

    Returns:
        Sanitized certificate name
    """
    sanitized = re.sub(r"[^a-zA-Z0-9-]", "-", name.strip())
    sanitized = re.sub(r"-+", "-", sanitized)
    return sanitized.strip("-")[:127]


def utc_timestamp(now: Optional[datetime] = None) -> str:
    """ISO-8601 UTC timestamp used in envelopes and audit records."""
    return (now or datetime.now(timezone.utc)).isoformat()
