"""
On-demand request handling.

A request arrives as a flat mapping of query/body parameters. It is
turned into one of four request types at construction time, so missing
or malformed parameters are rejected before any vault call, and then
dispatched to the matching action. Every response is a JSON envelope
paired with an HTTP status code.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Tuple, Union

from .audit import AuditResultAggregator, RotationOutcome, RotationResult
from .config_loader import DEFAULT_THRESHOLD_DAYS, CreatePolicyConfig
from .helpers import (
    ExpiryStatus,
    evaluate_expiry,
    format_expiration_status,
    sanitize_cert_name,
    utc_timestamp,
)
from .keyvault import (
    CertificateInfo,
    KeyVaultClient,
    KeyVaultError,
    NotFoundError,
    RenewalPolicy,
)
from .logger import get_logger
from .poller import PollPolicy, RotationOperationPoller


class ValidationError(Exception):
    """Raised when a request parameter is missing or invalid."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class Action(Enum):
    """Actions accepted by the on-demand endpoint."""
    LIST = "list"
    CHECK = "check"
    ROTATE = "rotate"
    CREATE = "create"


@dataclass(frozen=True)
class ListRequest:
    action: ClassVar[Action] = Action.LIST
    threshold_days: int = DEFAULT_THRESHOLD_DAYS


@dataclass(frozen=True)
class CheckRequest:
    action: ClassVar[Action] = Action.CHECK
    threshold_days: int = DEFAULT_THRESHOLD_DAYS


@dataclass(frozen=True)
class RotateRequest:
    action: ClassVar[Action] = Action.ROTATE
    certificate_name: str


@dataclass(frozen=True)
class CreateRequest:
    action: ClassVar[Action] = Action.CREATE
    certificate_name: str


Request = Union[ListRequest, CheckRequest, RotateRequest, CreateRequest]


def _require_name(params: Mapping[str, Any], action: Action) -> str:
    name = params.get("certificateName")
    if name is None or not str(name).strip():
        raise ValidationError(f"certificateName is required for action '{action.value}'")

    name = str(name).strip()
    if sanitize_cert_name(name) != name:
        raise ValidationError(
            f"Invalid certificateName '{name}'. Use 1-127 letters, digits and hyphens"
        )
    return name


def _threshold(params: Mapping[str, Any], default: int) -> int:
    raw = params.get("daysBeforeExpiry")
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"daysBeforeExpiry must be an integer, got '{raw}'")
    if value < 0 or value > 365:
        raise ValidationError("daysBeforeExpiry must be between 0 and 365")
    return value


def parse_request(
    params: Mapping[str, Any],
    default_threshold: int = DEFAULT_THRESHOLD_DAYS,
) -> Request:
    """
    Build a typed request from query/body parameters.

    Args:
        params: Merged query string and body parameters
        default_threshold: Threshold used when daysBeforeExpiry is absent

    Returns:
        One of ListRequest, CheckRequest, RotateRequest, CreateRequest

    Raises:
        ValidationError: If the action is unknown or a parameter is invalid
    """
    raw_action = str(params.get("action") or Action.LIST.value).strip().lower()
    try:
        action = Action(raw_action)
    except ValueError:
        valid = ", ".join(a.value for a in Action)
        raise ValidationError(f"Unknown action '{raw_action}'. Must be one of: {valid}")

    if action is Action.LIST:
        return ListRequest(threshold_days=_threshold(params, default_threshold))
    if action is Action.CHECK:
        return CheckRequest(threshold_days=_threshold(params, default_threshold))
    if action is Action.ROTATE:
        return RotateRequest(certificate_name=_require_name(params, action))
    return CreateRequest(certificate_name=_require_name(params, action))


_OUTCOME_STATUS = {
    RotationOutcome.ROTATED: 200,
    RotationOutcome.CREATED: 201,
    RotationOutcome.SKIPPED: 200,
    RotationOutcome.FAILED: 502,
    RotationOutcome.TIMED_OUT: 504,
}


def error_envelope(action: str, vault_name: str, error: str) -> Dict[str, Any]:
    """Failure response body."""
    return {
        "success": False,
        "error": error,
        "action": action,
        "keyVault": vault_name,
        "timestamp": utc_timestamp(),
    }


class OnDemandRequestHandler:
    """
    Serves list/check/rotate/create requests against one vault.

    Rotations use the interactive poll budget, since a caller is waiting
    on the response.
    """

    def __init__(
        self,
        vault: KeyVaultClient,
        poller: RotationOperationPoller,
        poll: PollPolicy,
        default_threshold: int = DEFAULT_THRESHOLD_DAYS,
        create_policy: Optional[CreatePolicyConfig] = None,
    ):
        self.vault = vault
        self.poller = poller
        self.poll = poll
        self.default_threshold = default_threshold
        self.create_policy = create_policy or CreatePolicyConfig()
        self.logger = get_logger()
        self._handlers = {
            ListRequest: self._list,
            CheckRequest: self._check,
            RotateRequest: self._rotate,
            CreateRequest: self._create,
        }

    def handle(self, params: Mapping[str, Any]) -> Tuple[int, Dict[str, Any]]:
        """
        Handle one request.

        Args:
            params: Merged query string and body parameters

        Returns:
            Tuple of (HTTP status code, JSON envelope)
        """
        action = str(params.get("action") or Action.LIST.value)
        vault_name = self.vault.vault_name

        try:
            request = parse_request(params, self.default_threshold)
            action = request.action.value
            self.logger.info(f"On-demand request: {action} on {vault_name}")
            status_code, body = self._handlers[type(request)](request)
        except ValidationError as e:
            self.logger.warning(f"Rejected {action} request: {e}")
            return e.status_code, error_envelope(action, vault_name, str(e))
        except NotFoundError as e:
            self.logger.warning(str(e))
            return 404, error_envelope(action, vault_name, str(e))
        except KeyVaultError as e:
            self.logger.error(f"Key Vault error during {action}: {e}")
            return 502, error_envelope(action, vault_name, str(e))
        except Exception as e:
            self.logger.exception(f"Unexpected error during {action}: {e}")
            return 500, error_envelope(action, vault_name, f"{type(e).__name__}: {e}")

        envelope = {
            "success": status_code < 400,
            "action": action,
            "keyVault": vault_name,
            "timestamp": utc_timestamp(),
            **body,
        }
        return status_code, envelope

    def _evaluate_all(
        self,
        threshold_days: int,
        now: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        entries = []
        for certificate in self.vault.list_certificates():
            entry = self._describe(certificate)
            try:
                evaluation = evaluate_expiry(certificate, threshold_days, now)
            except ValueError:
                entry.update({"status": "UNKNOWN", "needsRotation": False})
            else:
                entry.update(evaluation.to_dict())
                entry["statusText"] = format_expiration_status(evaluation)
            entries.append(entry)
        return entries

    @staticmethod
    def _describe(certificate: CertificateInfo) -> Dict[str, Any]:
        return {
            "name": certificate.name,
            "thumbprint": certificate.thumbprint,
            "version": certificate.version,
            "enabled": certificate.enabled,
            "expiresOn": certificate.expires_on.isoformat() if certificate.expires_on else None,
        }

    def _list(self, request: ListRequest) -> Tuple[int, Dict[str, Any]]:
        certificates = self._evaluate_all(request.threshold_days)
        return 200, {
            "message": f"Found {len(certificates)} certificate(s)",
            "thresholdDays": request.threshold_days,
            "count": len(certificates),
            "certificates": certificates,
        }

    def _check(self, request: CheckRequest) -> Tuple[int, Dict[str, Any]]:
        buckets: Dict[str, List[Dict[str, Any]]] = {
            "expired": [],
            "expiringSoon": [],
            "ok": [],
            "unknown": [],
        }
        bucket_for = {
            ExpiryStatus.EXPIRED.value.upper(): "expired",
            ExpiryStatus.EXPIRING_SOON.value.upper(): "expiringSoon",
            ExpiryStatus.OK.value.upper(): "ok",
        }

        for entry in self._evaluate_all(request.threshold_days):
            buckets[bucket_for.get(entry["status"], "unknown")].append(entry)

        summary = {name: len(items) for name, items in buckets.items()}
        summary["total"] = sum(summary.values())
        due = summary["expired"] + summary["expiringSoon"]

        return 200, {
            "message": f"{due} of {summary['total']} certificate(s) need rotation",
            "thresholdDays": request.threshold_days,
            "summary": summary,
            **buckets,
        }

    def _rotate(self, request: RotateRequest) -> Tuple[int, Dict[str, Any]]:
        # Raises NotFoundError before anything is submitted.
        self.vault.get_certificate(request.certificate_name)
        result = self.poller.submit_and_wait(request.certificate_name, None, self.poll)
        return self._result_response(result)

    def _create(self, request: CreateRequest) -> Tuple[int, Dict[str, Any]]:
        try:
            self.vault.get_certificate(request.certificate_name)
        except NotFoundError:
            pass
        else:
            raise ValidationError(
                f"Certificate already exists: {request.certificate_name}. "
                "Use the rotate action to issue a new version",
                status_code=409,
            )

        policy = RenewalPolicy(
            subject=f"CN={request.certificate_name}",
            issuer_name=self.create_policy.issuer_name,
            validity_in_months=self.create_policy.validity_in_months,
            key_type=self.create_policy.key_type,
            key_size=self.create_policy.key_size,
            enhanced_key_usage=list(self.create_policy.enhanced_key_usage),
            key_usage=list(self.create_policy.key_usage),
        )
        result = self.poller.create_and_wait(request.certificate_name, policy, self.poll)
        return self._result_response(result)

    def _result_response(self, result: RotationResult) -> Tuple[int, Dict[str, Any]]:
        aggregator = AuditResultAggregator(vault_name=self.vault.vault_name)
        aggregator.add(result)
        aggregator.finalize("request")

        body: Dict[str, Any] = {
            "message": result.message,
            "certificateName": result.certificate_name,
            "result": result.to_dict(),
        }
        if result.is_failure:
            body["error"] = result.error or result.message
        return _OUTCOME_STATUS[result.outcome], body
