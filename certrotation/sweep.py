"""
Scheduled sweep over every certificate in a vault.

Each certificate is evaluated against the expiry threshold; those due are
rotated through the shared poller. A failure on one certificate is
recorded and the sweep moves on to the next.
"""

from datetime import datetime
from typing import Optional

from .audit import AuditResultAggregator, RotationOutcome, RotationResult, SweepSummary
from .helpers import evaluate_expiry, format_expiration_status
from .keyvault import CertificateInfo, KeyVaultClient
from .logger import get_logger
from .poller import OperationTimeoutError, PollPolicy, RotationOperationPoller


class BatchRotationSweep:
    """Evaluates and rotates all certificates of one vault."""

    def __init__(self, vault: KeyVaultClient, poller: RotationOperationPoller):
        self.vault = vault
        self.poller = poller
        self.logger = get_logger()

    def run(
        self,
        threshold_days: int,
        poll: PollPolicy,
        dry_run: bool = False,
        now: Optional[datetime] = None,
    ) -> SweepSummary:
        """
        Run one sweep.

        Args:
            threshold_days: Days before expiry at which rotation is due
            poll: Poll interval and budget for each rotation
            dry_run: Evaluate only, never submit a rotation
            now: Reference time for evaluation, defaults to current time

        Returns:
            SweepSummary with exactly one result per listed certificate

        Raises:
            KeyVaultError: If the certificates cannot be listed
        """
        self.logger.section(f"Sweeping vault: {self.vault.vault_name}")
        if dry_run:
            self.logger.warning("DRY RUN - no rotations will be submitted")

        aggregator = AuditResultAggregator(
            vault_name=self.vault.vault_name,
            threshold_days=threshold_days,
            dry_run=dry_run,
        )

        certificates = self.vault.list_certificates()
        self.logger.info(
            f"Found {len(certificates)} certificate(s), threshold {threshold_days} days"
        )

        for certificate in certificates:
            self.logger.subsection(certificate.name)
            try:
                result = self._process(certificate, threshold_days, poll, dry_run, now)
            except OperationTimeoutError as e:
                self.logger.failure(str(e))
                result = RotationResult(
                    certificate_name=certificate.name,
                    outcome=RotationOutcome.TIMED_OUT,
                    message="Issuance did not finish within the wait budget",
                    old_thumbprint=certificate.thumbprint,
                    error=str(e),
                )
            except Exception as e:
                self.logger.failure(f"{certificate.name}: {e}")
                result = RotationResult(
                    certificate_name=certificate.name,
                    outcome=RotationOutcome.FAILED,
                    message="Unexpected error during rotation",
                    old_thumbprint=certificate.thumbprint,
                    error=f"{type(e).__name__}: {e}",
                )
            aggregator.add(result)

        summary = aggregator.finalize("sweep")
        self._log_summary(summary)
        return summary

    def _process(
        self,
        certificate: CertificateInfo,
        threshold_days: int,
        poll: PollPolicy,
        dry_run: bool,
        now: Optional[datetime],
    ) -> RotationResult:
        evaluation = evaluate_expiry(certificate, threshold_days, now)
        status_text = format_expiration_status(evaluation)
        self.logger.info(f"  Status: {status_text}")

        if not certificate.enabled:
            return RotationResult(
                certificate_name=certificate.name,
                outcome=RotationOutcome.SKIPPED,
                message="Certificate disabled",
                evaluation=evaluation,
            )

        if not evaluation.needs_rotation:
            self.logger.info("  Decision: SKIP")
            return RotationResult(
                certificate_name=certificate.name,
                outcome=RotationOutcome.SKIPPED,
                message=status_text,
                evaluation=evaluation,
            )

        if dry_run:
            self.logger.info("  Decision: ROTATE (dry run)")
            return RotationResult(
                certificate_name=certificate.name,
                outcome=RotationOutcome.SKIPPED,
                message="Dry run - would rotate",
                old_thumbprint=certificate.thumbprint,
                evaluation=evaluation,
            )

        self.logger.info("  Decision: ROTATE")
        result = self.poller.submit_and_wait(certificate.name, None, poll)
        result.evaluation = evaluation
        return result

    def _log_summary(self, summary: SweepSummary) -> None:
        self.logger.section("SWEEP SUMMARY")
        self.logger.info(f"  Evaluated:  {len(summary.results)}")
        self.logger.info(f"  Rotated:    {summary.rotated}")
        self.logger.info(f"  Skipped:    {summary.skipped}")
        self.logger.info(f"  Failed:     {summary.failed}")
        self.logger.info(f"  Timed out:  {summary.timed_out}")

        for result in summary.results:
            if result.is_failure:
                self.logger.error(
                    f"  [{result.outcome.value.upper()}] {result.certificate_name}: {result.error}"
                )
