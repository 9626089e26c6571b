"""
Rotation results and their aggregation into an auditable summary.

Both the scheduled sweep and the on-demand handler funnel their
per-certificate outcomes through AuditResultAggregator, which keeps them
in input order and counts them by outcome.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .helpers import ExpiryEvaluation, utc_timestamp
from .logger import get_logger


class RotationOutcome(Enum):
    """Outcome of evaluating (and possibly rotating) one certificate."""
    ROTATED = "rotated"
    CREATED = "created"
    SKIPPED = "skipped"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class RotationResult:
    """Result of processing a single certificate."""
    certificate_name: str
    outcome: RotationOutcome
    message: str = ""
    old_thumbprint: Optional[str] = None
    new_thumbprint: Optional[str] = None
    new_expires_on: Optional[datetime] = None
    error: Optional[str] = None
    evaluation: Optional[ExpiryEvaluation] = None

    @property
    def is_failure(self) -> bool:
        return self.outcome in (RotationOutcome.FAILED, RotationOutcome.TIMED_OUT)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = {
            "certificateName": self.certificate_name,
            "outcome": self.outcome.value.upper(),
            "message": self.message,
        }
        if self.old_thumbprint or self.new_thumbprint:
            data["oldThumbprint"] = self.old_thumbprint
            data["newThumbprint"] = self.new_thumbprint
        if self.new_expires_on:
            data["newExpiresOn"] = self.new_expires_on.isoformat()
        if self.error:
            data["error"] = self.error
        if self.evaluation:
            data["expiry"] = self.evaluation.to_dict()
        return data


@dataclass
class SweepSummary:
    """Ordered results of one invocation plus per-outcome counts."""
    vault_name: str
    threshold_days: Optional[int] = None
    started_at: str = field(default_factory=utc_timestamp)
    completed_at: Optional[str] = None
    dry_run: bool = False
    results: List[RotationResult] = field(default_factory=list)

    def count(self, outcome: RotationOutcome) -> int:
        return sum(1 for r in self.results if r.outcome is outcome)

    @property
    def rotated(self) -> int:
        return self.count(RotationOutcome.ROTATED)

    @property
    def created(self) -> int:
        return self.count(RotationOutcome.CREATED)

    @property
    def skipped(self) -> int:
        return self.count(RotationOutcome.SKIPPED)

    @property
    def failed(self) -> int:
        return self.count(RotationOutcome.FAILED)

    @property
    def timed_out(self) -> int:
        return self.count(RotationOutcome.TIMED_OUT)

    @property
    def has_failures(self) -> bool:
        return any(r.is_failure for r in self.results)

    def counts(self) -> Dict[str, int]:
        return {
            "evaluated": len(self.results),
            "rotated": self.rotated,
            "created": self.created,
            "skipped": self.skipped,
            "failed": self.failed,
            "timedOut": self.timed_out,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "keyVault": self.vault_name,
            "thresholdDays": self.threshold_days,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "dryRun": self.dry_run,
            "success": not self.has_failures,
            "summary": self.counts(),
            "results": [r.to_dict() for r in self.results],
        }

    def to_json(self, indent: int = 2) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), indent=indent)


class AuditResultAggregator:
    """
    Collects RotationResult entries into a SweepSummary.

    Results are kept exactly in the order they are added.
    """

    def __init__(
        self,
        vault_name: str,
        threshold_days: Optional[int] = None,
        dry_run: bool = False,
    ):
        self.summary = SweepSummary(
            vault_name=vault_name,
            threshold_days=threshold_days,
            dry_run=dry_run,
        )

    def add(self, result: RotationResult) -> RotationResult:
        self.summary.results.append(result)
        return result

    def finalize(self, kind: str = "sweep") -> SweepSummary:
        """
        Stamp completion time and write the summary as an audit record.

        Args:
            kind: Audit record type

        Returns:
            The completed SweepSummary
        """
        self.summary.completed_at = utc_timestamp()
        get_logger().audit(kind, self.summary.to_dict())
        return self.summary
