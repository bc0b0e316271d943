"""Trust root and certificate chain validation."""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Iterable, List, Mapping, Optional, Tuple, Union

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import ExtendedKeyUsageOID

from .errors import ConfigurationError, MalformedInputError
from .keys import key_id

logger = logging.getLogger(__name__)

MAX_CHAIN_DEPTH = 5

_PEM_CERTIFICATE = re.compile(
    rb"-----BEGIN CERTIFICATE-----.+?-----END CERTIFICATE-----", re.DOTALL
)

CertificateSource = Union[str, bytes, x509.Certificate]


def load_certificate(data: Union[str, bytes]) -> Optional[x509.Certificate]:
    """
    Load the first PEM certificate in data.

    Args:
        data: PEM text

    Returns:
        Certificate, or None if data holds no PEM certificate block

    Raises:
        MalformedInputError: If a PEM block is present but cannot be decoded
    """
    if isinstance(data, str):
        data = data.encode("utf-8", errors="replace")

    match = _PEM_CERTIFICATE.search(data)
    if match is None:
        return None

    try:
        return x509.load_pem_x509_certificate(match.group(0))
    except ValueError as e:
        raise MalformedInputError(f"Malformed certificate: {e}") from e


def certificate_pem(cert: x509.Certificate) -> str:
    """Encode certificate as PEM text."""
    return cert.public_bytes(serialization.Encoding.PEM).decode("utf-8")


def within_validity(cert: x509.Certificate, at: datetime) -> bool:
    """Check at lies in [notBefore, notAfter], both bounds inclusive."""
    return cert.not_valid_before_utc <= at <= cert.not_valid_after_utc


def is_ca(cert: x509.Certificate) -> bool:
    """Check the BasicConstraints CA flag."""
    try:
        constraints = cert.extensions.get_extension_for_class(x509.BasicConstraints)
    except x509.ExtensionNotFound:
        return False
    return constraints.value.ca


def permits_code_signing(cert: x509.Certificate) -> bool:
    """Check KeyUsage allows digitalSignature and ExtendedKeyUsage includes codeSigning."""
    try:
        usage = cert.extensions.get_extension_for_class(x509.KeyUsage)
        extended_usage = cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage)
    except (x509.ExtensionNotFound, ValueError):
        return False
    return (
        usage.value.digital_signature
        and ExtendedKeyUsageOID.CODE_SIGNING in extended_usage.value
    )


@dataclass(frozen=True)
class TrustRoot:
    """
    Certificate authorities and transparency log keys a verifier trusts.

    Built once and never mutated; safe to share between concurrent
    verifications.
    """

    ca_certificates: Tuple[x509.Certificate, ...] = field(default_factory=tuple)
    log_public_keys: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "ca_certificates", tuple(self.ca_certificates))
        object.__setattr__(
            self, "log_public_keys", MappingProxyType(dict(self.log_public_keys))
        )

    @classmethod
    def create(
        cls,
        ca_certificates: Iterable[CertificateSource],
        log_public_keys: Union[Mapping[str, Any], Iterable[Any]] = (),
    ) -> "TrustRoot":
        """
        Build a trust root from PEM material or loaded objects.

        Args:
            ca_certificates: Root and intermediate CA certificates (PEM or x509)
            log_public_keys: Mapping of log ID to key, or keys alone whose log
                IDs are derived from the key (hex SHA-256 of the DER SPKI)

        Returns:
            TrustRoot instance

        Raises:
            ConfigurationError: If any certificate or key cannot be loaded
        """
        certs = []
        for idx, source in enumerate(ca_certificates):
            if isinstance(source, x509.Certificate):
                certs.append(source)
                continue
            try:
                cert = load_certificate(source)
            except MalformedInputError as e:
                raise ConfigurationError(f"ca_certificates[{idx}]: {e}") from e
            if cert is None:
                raise ConfigurationError(f"ca_certificates[{idx}] is not a PEM certificate")
            certs.append(cert)

        if isinstance(log_public_keys, Mapping):
            items = [(log_id, _load_public_key(k)) for log_id, k in log_public_keys.items()]
        else:
            keys = [_load_public_key(k) for k in log_public_keys]
            items = [(key_id(k), k) for k in keys]

        return cls(ca_certificates=tuple(certs), log_public_keys=dict(items))

    def log_key(self, log_id: str) -> Optional[Any]:
        """Get public key for a transparency log, or None if untrusted."""
        return self.log_public_keys.get(log_id)

    def build_chain(
        self, leaf: x509.Certificate, at: datetime
    ) -> Optional[List[x509.Certificate]]:
        """
        Build a path from leaf to a self-signed trusted root.

        Every certificate on the path must be valid at the given time.

        Args:
            leaf: Signing certificate
            at: Time the chain must be valid at

        Returns:
            Chain from leaf to root, or None if no trusted path exists
        """
        if is_ca(leaf):
            logger.debug("Signing certificate is a CA certificate")
            return None

        chain = [leaf]
        current = leaf
        for _ in range(MAX_CHAIN_DEPTH):
            issuer = self._find_issuer(current, at)
            if issuer is None:
                logger.debug("No trusted issuer for %s", current.issuer.rfc4514_string())
                return None

            chain.append(issuer)
            if issuer.subject == issuer.issuer:
                return chain
            current = issuer

        logger.debug("Certificate chain exceeds maximum depth %d", MAX_CHAIN_DEPTH)
        return None

    def _find_issuer(
        self, cert: x509.Certificate, at: datetime
    ) -> Optional[x509.Certificate]:
        for candidate in self.ca_certificates:
            if candidate.subject != cert.issuer:
                continue
            if not is_ca(candidate) or not within_validity(candidate, at):
                continue
            try:
                cert.verify_directly_issued_by(candidate)
            except (ValueError, TypeError, InvalidSignature):
                continue
            return candidate
        return None


def _load_public_key(key: Any) -> Any:
    if isinstance(key, (str, bytes)):
        data = key.encode("utf-8") if isinstance(key, str) else key
        try:
            return serialization.load_pem_public_key(data)
        except ValueError as e:
            raise ConfigurationError(f"Invalid log public key: {e}") from e
    if not hasattr(key, "public_bytes"):
        raise ConfigurationError(f"Invalid log public key type: {type(key).__name__}")
    return key
