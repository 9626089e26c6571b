"""
Submission and polling of long-running certificate issuance.

Key Vault offers no completion callback, so a submitted issuance is
tracked by querying its operation status at a fixed interval until it
reaches a terminal state or the wait budget runs out. Interactive and
scheduled callers use different budgets, supplied as PollPolicy values.
"""

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, Optional

from .audit import RotationOutcome, RotationResult
from .keyvault import (
    KeyVaultClient,
    KeyVaultError,
    OperationStatus,
    RenewalPolicy,
    RotationOperation,
)
from .logger import get_logger


class OperationTimeoutError(Exception):
    """Raised when an operation is still in progress after the wait budget."""

    def __init__(self, operation: RotationOperation, waited: float):
        super().__init__(
            f"Operation for {operation.certificate_name} still in progress "
            f"after {waited:.0f}s"
        )
        self.operation = operation
        self.waited = waited


class RotationInProgressError(Exception):
    """Raised when the same certificate is already being rotated."""
    pass


@dataclass(frozen=True)
class PollPolicy:
    """Seconds between status queries and total seconds to wait."""
    interval: float
    max_wait: float

    @classmethod
    def from_config(cls, budget) -> "PollPolicy":
        return cls(interval=budget.interval, max_wait=budget.max_wait)


class SingleFlight:
    """
    Per-key guard allowing one in-flight operation per certificate name.

    Only covers callers in the same process.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._active: Dict[str, bool] = {}

    @contextmanager
    def claim(self, key: str) -> Iterator[None]:
        with self._lock:
            if self._active.get(key):
                raise RotationInProgressError(f"Rotation already in progress for {key}")
            self._active[key] = True
        try:
            yield
        finally:
            with self._lock:
                self._active.pop(key, None)


def wait_for_completion(
    vault: KeyVaultClient,
    operation: RotationOperation,
    interval: float,
    max_wait: float,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> RotationOperation:
    """
    Poll an operation until it is Completed or Failed.

    Args:
        vault: Client used to query the operation
        operation: Handle from submission
        interval: Seconds between queries
        max_wait: Budget in seconds, measured from the first query
        clock: Monotonic time source
        sleep: Blocking sleep function

    Returns:
        The operation in a terminal state

    Raises:
        OperationTimeoutError: If the budget is exhausted while in progress
        KeyVaultError: If a status query fails
    """
    logger = get_logger()
    started = clock()
    deadline = started + max_wait
    attempts = 0

    while True:
        attempts += 1
        operation = vault.poll_operation(operation)
        if operation.status.is_terminal:
            logger.debug(
                f"  Operation for {operation.certificate_name} "
                f"{operation.status.value} after {attempts} poll(s)"
            )
            return operation

        now = clock()
        if now >= deadline:
            raise OperationTimeoutError(operation, now - started)

        sleep(min(interval, deadline - now))


class RotationOperationPoller:
    """
    Submits issuance requests and blocks until they finish.

    One instance is shared by the sweep and the on-demand handler so the
    single-flight guard spans both paths within a process.
    """

    def __init__(
        self,
        vault: KeyVaultClient,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.vault = vault
        self.clock = clock
        self.sleep = sleep
        self.logger = get_logger()
        self._in_flight = SingleFlight()

    def submit_and_wait(
        self,
        certificate_name: str,
        policy: Optional[RenewalPolicy],
        poll: PollPolicy,
    ) -> RotationResult:
        """
        Rotate one certificate and wait for the new version.

        Args:
            certificate_name: Certificate to rotate
            policy: Policy for the new version; the current policy when None
            poll: Interval and budget for the wait

        Returns:
            RotationResult with outcome ROTATED, FAILED or TIMED_OUT
        """
        try:
            with self._in_flight.claim(certificate_name):
                return self._rotate(certificate_name, policy, poll)
        except RotationInProgressError as e:
            self.logger.warning(f"  {e}")
            return RotationResult(
                certificate_name=certificate_name,
                outcome=RotationOutcome.FAILED,
                message="Rotation already in progress",
                error=str(e),
            )

    def create_and_wait(
        self,
        certificate_name: str,
        policy: RenewalPolicy,
        poll: PollPolicy,
    ) -> RotationResult:
        """
        Issue a new certificate and wait for it.

        Returns:
            RotationResult with outcome CREATED, FAILED or TIMED_OUT
        """
        try:
            with self._in_flight.claim(certificate_name):
                return self._issue(
                    certificate_name, policy, poll,
                    old_thumbprint=None,
                    rotating=False,
                )
        except RotationInProgressError as e:
            self.logger.warning(f"  {e}")
            return RotationResult(
                certificate_name=certificate_name,
                outcome=RotationOutcome.FAILED,
                message="Issuance already in progress",
                error=str(e),
            )

    def _rotate(
        self,
        certificate_name: str,
        policy: Optional[RenewalPolicy],
        poll: PollPolicy,
    ) -> RotationResult:
        try:
            current = self.vault.get_certificate(certificate_name)
            if policy is None:
                policy = self.vault.get_renewal_policy(certificate_name)
        except KeyVaultError as e:
            self.logger.failure(f"{certificate_name}: {e}")
            return RotationResult(
                certificate_name=certificate_name,
                outcome=RotationOutcome.FAILED,
                message="Could not read current certificate",
                error=str(e),
            )

        return self._issue(
            certificate_name, policy, poll,
            old_thumbprint=current.thumbprint,
            rotating=True,
        )

    def _issue(
        self,
        certificate_name: str,
        policy: RenewalPolicy,
        poll: PollPolicy,
        old_thumbprint: Optional[str],
        rotating: bool,
    ) -> RotationResult:
        try:
            operation = self.vault.submit_renewal(certificate_name, policy)
            self.logger.info(
                f"  Submitted {'rotation' if rotating else 'issuance'} for "
                f"{certificate_name}, waiting up to {poll.max_wait:.0f}s"
            )
            operation = wait_for_completion(
                self.vault,
                operation,
                interval=poll.interval,
                max_wait=poll.max_wait,
                clock=self.clock,
                sleep=self.sleep,
            )

            if operation.status is OperationStatus.FAILED:
                self.logger.failure(f"{certificate_name}: {operation.error}")
                return RotationResult(
                    certificate_name=certificate_name,
                    outcome=RotationOutcome.FAILED,
                    message="Issuance rejected by Key Vault",
                    old_thumbprint=old_thumbprint,
                    error=operation.error or "Operation failed",
                )

            issued = self.vault.get_certificate(certificate_name)

        except OperationTimeoutError as e:
            self.logger.failure(str(e))
            return RotationResult(
                certificate_name=certificate_name,
                outcome=RotationOutcome.TIMED_OUT,
                message="Issuance did not finish within the wait budget",
                old_thumbprint=old_thumbprint,
                error=str(e),
            )
        except KeyVaultError as e:
            self.logger.failure(f"{certificate_name}: {e}")
            return RotationResult(
                certificate_name=certificate_name,
                outcome=RotationOutcome.FAILED,
                message="Key Vault call failed",
                old_thumbprint=old_thumbprint,
                error=str(e),
            )

        self.logger.success(
            f"{certificate_name} {'rotated' if rotating else 'created'} "
            f"(thumbprint {issued.thumbprint})"
        )
        return RotationResult(
            certificate_name=certificate_name,
            outcome=RotationOutcome.ROTATED if rotating else RotationOutcome.CREATED,
            message="Successfully rotated" if rotating else "Successfully created",
            old_thumbprint=old_thumbprint,
            new_thumbprint=issued.thumbprint,
            new_expires_on=issued.expires_on,
        )
