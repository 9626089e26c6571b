"""
Azure Key Vault operations.

Wraps an already-authorized ``CertificateClient`` with the five calls the
rotation engine needs: list, get, read renewal policy, submit issuance and
poll the pending issuance operation. Azure SDK exceptions are translated
into this module's error hierarchy at this boundary.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
from dataclasses import dataclass, field

from cryptography import x509
from azure.identity import DefaultAzureCredential
from azure.keyvault.certificates import (
    CertificateClient,
    CertificatePolicy,
    CertificateContentType,
    KeyType,
    KeyUsageType,
)
from azure.core.exceptions import (
    AzureError,
    ResourceNotFoundError,
    ClientAuthenticationError,
)
from azure.core.polling import LROPoller

from .logger import get_logger


class KeyVaultError(Exception):
    """Raised when Key Vault operations fail."""
    pass


class UpstreamError(KeyVaultError):
    """Raised when a Key Vault call itself fails."""
    pass


class AuthenticationError(UpstreamError):
    """Raised when authentication to Key Vault fails."""
    pass


class NotFoundError(KeyVaultError):
    """Raised when a named certificate does not exist in the vault."""

    def __init__(self, certificate_name: str):
        super().__init__(f"Certificate not found: {certificate_name}")
        self.certificate_name = certificate_name


class OperationStatus(Enum):
    """Status of a pending certificate issuance operation."""
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self is not OperationStatus.IN_PROGRESS

    @classmethod
    def from_service(cls, value: Optional[str]) -> "OperationStatus":
        """Map the service's status string ("inProgress", "completed", ...)."""
        normalized = (value or "").lower()
        if normalized == "completed":
            return cls.COMPLETED
        if normalized in ("failed", "cancelled"):
            return cls.FAILED
        return cls.IN_PROGRESS


@dataclass
class RotationOperation:
    """
    Handle for a submitted issuance, refreshed by each poll.

    ``poller`` is the SDK poller returned on submission; it is the only
    source of status for operations this process submitted.
    """
    certificate_name: str
    status: OperationStatus = OperationStatus.IN_PROGRESS
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    error: Optional[str] = None
    poller: Optional[LROPoller] = field(default=None, repr=False, compare=False)


def _enum_value(value) -> Optional[str]:
    """Plain string of an SDK enum member (or of a raw string)."""
    if value is None:
        return None
    return getattr(value, "value", value)


@dataclass
class RenewalPolicy:
    """
    Issuance policy of a certificate.

    The fields mirror the SDK ``CertificatePolicy`` attributes the engine
    reports on. A policy read from the vault keeps the SDK object in
    ``source`` and is submitted back unchanged, so rotation never alters
    content type, key curve, exportability or lifetime actions.
    """
    subject: str
    issuer_name: str = "Self"
    validity_in_months: Optional[int] = 12
    key_type: Optional[str] = "RSA"
    key_size: Optional[int] = 2048
    enhanced_key_usage: List[str] = field(default_factory=list)
    key_usage: List[str] = field(default_factory=list)
    san_dns_names: List[str] = field(default_factory=list)
    source: Optional[CertificatePolicy] = field(default=None, repr=False, compare=False)

    @classmethod
    def from_sdk(cls, policy: CertificatePolicy) -> "RenewalPolicy":
        return cls(
            source=policy,
            subject=policy.subject or "",
            issuer_name=policy.issuer_name or "Self",
            validity_in_months=policy.validity_in_months,
            key_type=_enum_value(policy.key_type),
            key_size=policy.key_size,
            enhanced_key_usage=list(policy.enhanced_key_usage or []),
            key_usage=[_enum_value(u) for u in (policy.key_usage or [])],
            san_dns_names=list(policy.san_dns_names or []),
        )

    def to_sdk(self) -> CertificatePolicy:
        """
        SDK policy to submit with a new version.

        Returns the vault's own policy when this one was read from the
        vault. Otherwise builds a PKCS#12, exportable policy with
        ``reuse_key`` False, which is what new certificates are issued with.
        """
        if self.source is not None:
            return self.source

        return CertificatePolicy(
            issuer_name=self.issuer_name,
            subject=self.subject,
            san_dns_names=self.san_dns_names or None,
            validity_in_months=self.validity_in_months,
            key_type=KeyType(self.key_type) if self.key_type else None,
            key_size=self.key_size,
            enhanced_key_usage=self.enhanced_key_usage or None,
            key_usage=[KeyUsageType(u) for u in self.key_usage] or None,
            content_type=CertificateContentType.pkcs12,
            exportable=True,
            reuse_key=False,
        )


@dataclass
class CertificateInfo:
    """
    Certificate information from Key Vault.

    Contains metadata and parsed certificate details.
    """
    name: str
    vault_name: str
    expires_on: Optional[datetime]
    thumbprint: Optional[str]
    version: Optional[str] = None
    subject: Optional[str] = None
    domains: List[str] = field(default_factory=list)
    enabled: bool = True


def connect(vault_url: str) -> CertificateClient:
    """
    Create an authorized certificate client for a vault.

    Uses DefaultAzureCredential, which supports environment variables
    (service principal), managed identity and Azure CLI credentials.
    Called once per process; the resulting handle is passed to every
    component.

    Args:
        vault_url: Full URL to the Azure Key Vault

    Returns:
        CertificateClient bound to the vault
    """
    return CertificateClient(vault_url=vault_url, credential=DefaultAzureCredential())


class KeyVaultClient:
    """
    Certificate operations on a single vault.

    The underlying SDK client is supplied by the caller already bound to
    a credential; this class never authenticates on its own.
    """

    def __init__(self, client: CertificateClient, vault_name: Optional[str] = None):
        """
        Initialize the Key Vault client.

        Args:
            client: Authorized CertificateClient
            vault_name: Display name, derived from the client's URL if omitted
        """
        self._client = client
        self.vault_url = client.vault_url
        self.vault_name = vault_name or self.vault_url.split("//")[1].split(".")[0]
        self.logger = get_logger()

    def list_certificates(self) -> List[CertificateInfo]:
        """
        List all certificates in the vault with their current version details.

        Details come from the listing itself, so the subject and domains of
        listed certificates are not populated.

        Returns:
            List of CertificateInfo objects, in listing order

        Raises:
            AuthenticationError: If the credential is rejected
            UpstreamError: If listing fails
        """
        try:
            certificates = [
                self._to_info(props)
                for props in self._client.list_properties_of_certificates()
            ]
        except ClientAuthenticationError as e:
            raise AuthenticationError(f"Failed to authenticate to Azure Key Vault: {e}")
        except AzureError as e:
            raise UpstreamError(f"Failed to list certificates: {e}")

        self.logger.debug(f"Listed {len(certificates)} certificate(s) in {self.vault_name}")
        return certificates

    def get_certificate(self, cert_name: str) -> CertificateInfo:
        """
        Get the latest version of a certificate.

        Args:
            cert_name: Name of the certificate

        Returns:
            CertificateInfo for the current version

        Raises:
            NotFoundError: If the certificate does not exist
            UpstreamError: If the call fails
        """
        try:
            certificate = self._client.get_certificate(cert_name)
        except ResourceNotFoundError:
            raise NotFoundError(cert_name)
        except ClientAuthenticationError as e:
            raise AuthenticationError(f"Failed to authenticate to Azure Key Vault: {e}")
        except AzureError as e:
            raise UpstreamError(f"Failed to get certificate {cert_name}: {e}")

        return self._to_info(certificate.properties, certificate.cer)

    def _to_info(self, props, cer: Optional[bytes] = None) -> CertificateInfo:
        expires_on = props.expires_on
        if expires_on and expires_on.tzinfo is None:
            expires_on = expires_on.replace(tzinfo=timezone.utc)

        subject, domains = self._parse_subject(cer)

        return CertificateInfo(
            name=props.name,
            vault_name=self.vault_name,
            expires_on=expires_on,
            thumbprint=(
                props.x509_thumbprint.hex()
                if props.x509_thumbprint
                else None
            ),
            version=props.version,
            subject=subject,
            domains=domains,
            enabled=props.enabled if props.enabled is not None else True,
        )

    def _parse_subject(self, cer_bytes: Optional[bytes]):
        """
        Read the subject and DNS names from the DER certificate body.

        Returns:
            Tuple of (RFC 4514 subject or None, list of CN and SAN names)
        """
        if not cer_bytes:
            return None, []

        try:
            cert = x509.load_der_x509_certificate(cer_bytes)
        except ValueError as e:
            self.logger.warning(f"Unreadable certificate body: {e}")
            return None, []

        domains = [
            attr.value
            for attr in cert.subject.get_attributes_for_oid(x509.oid.NameOID.COMMON_NAME)
        ]
        try:
            san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
            domains.extend(
                name for name in san.value.get_values_for_type(x509.DNSName)
                if name not in domains
            )
        except x509.ExtensionNotFound:
            pass

        return cert.subject.rfc4514_string(), domains

    def get_renewal_policy(self, cert_name: str) -> RenewalPolicy:
        """
        Get the issuance policy of a certificate.

        Raises:
            NotFoundError: If the certificate does not exist
            UpstreamError: If the call fails
        """
        try:
            policy = self._client.get_certificate_policy(cert_name)
        except ResourceNotFoundError:
            raise NotFoundError(cert_name)
        except AzureError as e:
            raise UpstreamError(f"Failed to get policy for {cert_name}: {e}")

        return RenewalPolicy.from_sdk(policy)

    def submit_renewal(self, cert_name: str, policy: RenewalPolicy) -> RotationOperation:
        """
        Submit issuance of a new certificate version.

        Used both for rotating an existing certificate and for creating a
        new one; the service creates the name if it does not exist yet.

        Args:
            cert_name: Name of the certificate
            policy: Policy for the new version

        Returns:
            RotationOperation handle in InProgress state, carrying the SDK poller

        Raises:
            UpstreamError: If the submission is rejected
        """
        try:
            poller = self._client.begin_create_certificate(
                certificate_name=cert_name,
                policy=policy.to_sdk(),
                enabled=True,
            )
        except ClientAuthenticationError as e:
            raise AuthenticationError(f"Failed to authenticate to Azure Key Vault: {e}")
        except AzureError as e:
            raise UpstreamError(f"Failed to submit issuance for {cert_name}: {e}")

        self.logger.debug(f"Submitted issuance for {self.vault_name}/{cert_name}")
        return RotationOperation(certificate_name=cert_name, poller=poller)

    def poll_operation(self, operation: RotationOperation) -> RotationOperation:
        """
        Refresh the status of a pending issuance operation.

        Operations submitted through this client are read from their SDK
        poller, which already queries the service in the background; no
        second status query is made. Operations without a poller are
        queried directly.

        Args:
            operation: Handle returned by submit_renewal

        Returns:
            The same handle with status and error updated

        Raises:
            NotFoundError: If the operation no longer exists
            UpstreamError: If the status query fails
        """
        if operation.poller is not None:
            return self._read_poller(operation)

        try:
            pending = self._client.get_certificate_operation(operation.certificate_name)
        except ResourceNotFoundError:
            raise NotFoundError(operation.certificate_name)
        except AzureError as e:
            raise UpstreamError(
                f"Failed to query operation for {operation.certificate_name}: {e}"
            )

        operation.status = OperationStatus.from_service(pending.status)
        if operation.status is OperationStatus.FAILED:
            detail = pending.error.message if pending.error else None
            operation.error = detail or pending.status_details or pending.status
        return operation

    def _read_poller(self, operation: RotationOperation) -> RotationOperation:
        poller = operation.poller
        if not poller.done():
            operation.status = OperationStatus.IN_PROGRESS
            return operation

        try:
            outcome = poller.result()
        except ResourceNotFoundError:
            raise NotFoundError(operation.certificate_name)
        except AzureError as e:
            raise UpstreamError(
                f"Failed to query operation for {operation.certificate_name}: {e}"
            )

        status = poller.status()
        operation.status = OperationStatus.from_service(status)
        if operation.status is OperationStatus.FAILED:
            # A failed issuance resolves to the CertificateOperation itself.
            error = getattr(outcome, "error", None)
            detail = error.message if error else None
            operation.error = detail or getattr(outcome, "status_details", None) or status
        return operation
