"""Keyless signer coordinating identity, certificate authority and transparency log."""

import asyncio
import base64
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Dict, List, Sequence, Type, TypeVar

from cryptography import x509

from .bundle import DSSEBundle, SignedPayload
from .clients.base import (
    CertificateAuthorityClient,
    CertificateRequest,
    IssuedCertificate,
    TransparencyLogClient,
)
from .config import DEFAULT_TIMEOUT, SigningConfig
from .dsse import Envelope, EnvelopeSignature, pae
from .errors import (
    CertificateIssuanceError,
    ConfigurationError,
    IdentityError,
    KeylessError,
    LogSubmissionError,
    MalformedInputError,
    SigningError,
)
from .identity import IdentityProvider, IdentityToken
from .keys import DEFAULT_ALGORITHM, SUPPORTED_ALGORITHMS, EphemeralKeyPair, key_id
from .transparency import LogEntry, build_dsse_entry, build_hashedrekord_entry
from .trust import load_certificate, within_validity

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Signer:
    """Signs payloads with ephemeral keys bound to an identity by a short-lived certificate."""

    def __init__(
        self,
        ca: CertificateAuthorityClient,
        log: TransparencyLogClient,
        identity_providers: Sequence[IdentityProvider],
        algorithm: str = DEFAULT_ALGORITHM,
        upload_blobs: bool = False,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """
        Initialize signer with its collaborators.

        Args:
            ca: Certificate authority client
            log: Transparency log client
            identity_providers: Providers queried in order for an identity token
            algorithm: Ephemeral key algorithm
            upload_blobs: Also record plain blob signatures in the transparency log
            timeout: Seconds to wait on each collaborator call

        Raises:
            ConfigurationError: If any argument is invalid
        """
        if not isinstance(ca, CertificateAuthorityClient):
            raise ConfigurationError("ca must be a CertificateAuthorityClient")
        if not isinstance(log, TransparencyLogClient):
            raise ConfigurationError("log must be a TransparencyLogClient")

        providers = list(identity_providers or [])
        if not providers:
            raise ConfigurationError("At least one identity provider is required")
        for idx, provider in enumerate(providers):
            if not isinstance(provider, IdentityProvider):
                raise ConfigurationError(
                    f"identity_providers[{idx}] must be an IdentityProvider"
                )

        if algorithm not in SUPPORTED_ALGORITHMS:
            raise ConfigurationError(
                f"Unsupported signing algorithm {algorithm!r}; "
                f"expected one of: {', '.join(SUPPORTED_ALGORITHMS)}"
            )
        if not isinstance(upload_blobs, bool):
            raise ConfigurationError("upload_blobs must be boolean")
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ConfigurationError("timeout must be a positive number")

        self.ca = ca
        self.log = log
        self.identity_providers = tuple(providers)
        self.algorithm = algorithm
        self.upload_blobs = upload_blobs
        self.timeout = float(timeout)

    async def sign_blob(self, payload: bytes) -> SignedPayload:
        """
        Sign raw payload bytes.

        Args:
            payload: Bytes to sign

        Returns:
            SignedPayload with base64 signature and PEM certificate; carries a
            log entry only when upload_blobs is enabled

        Raises:
            IdentityError: If no identity provider yields a token
            CertificateIssuanceError: If the certificate authority rejects the request
            SigningError: If signing fails locally
            LogSubmissionError: If upload_blobs is enabled and the log rejects the entry
        """
        _require_bytes(payload, "payload")

        token = await self._fetch_identity()
        with EphemeralKeyPair(self.algorithm) as key:
            issued = await self._request_certificate(key, token)
            signature = key.sign(payload)
        del token

        base64_signature = base64.b64encode(signature).decode("utf-8")
        logger.info("Signed %d byte payload", len(payload))

        tlog_entry = None
        if self.upload_blobs:
            tlog_entry = await self._create_log_entry(
                build_hashedrekord_entry(payload, base64_signature, issued.certificate),
                issued.certificate,
            )

        return SignedPayload(
            base64_signature=base64_signature,
            cert=issued.certificate,
            tlog_entry=tlog_entry,
        )

    async def sign_attestation(self, payload: bytes, payload_type: str) -> DSSEBundle:
        """
        Sign payload as a DSSE attestation and record it in the transparency log.

        The signature covers the PAE of (payload_type, payload), never the raw
        payload.

        Args:
            payload: Attestation payload bytes
            payload_type: Payload content type

        Returns:
            DSSEBundle with envelope, certificate and log entry fields

        Raises:
            IdentityError: If no identity provider yields a token
            CertificateIssuanceError: If the certificate authority rejects the request
            SigningError: If signing fails locally
            LogSubmissionError: If the log rejects the entry or is unreachable
        """
        _require_bytes(payload, "payload")
        if not isinstance(payload_type, str):
            raise SigningError("payload_type must be a string")

        try:
            pae_bytes = pae(payload_type, payload)
        except MalformedInputError as e:
            raise SigningError(str(e)) from e

        token = await self._fetch_identity()
        with EphemeralKeyPair(self.algorithm) as key:
            issued = await self._request_certificate(key, token)
            signature = key.sign(pae_bytes)
            keyid = key_id(key.public_key)
        del token

        sig_b64 = base64.b64encode(signature).decode("utf-8")
        envelope = Envelope.create(
            payload, payload_type, [EnvelopeSignature(sig=sig_b64, keyid=keyid)]
        )

        entry = await self._create_log_entry(
            build_dsse_entry(pae_bytes, payload, [sig_b64], issued.certificate),
            issued.certificate,
        )
        logger.info(
            "Signed %s attestation, log index %d", payload_type, entry.log_index
        )

        return DSSEBundle.create(envelope, issued.certificate, entry)

    async def _fetch_identity(self) -> IdentityToken:
        """
        Query identity providers in order until one yields a token.

        Raises:
            IdentityError: If every provider fails
        """
        failures: List[str] = []

        for provider in self.identity_providers:
            try:
                raw = await asyncio.wait_for(provider.get_token(), self.timeout)
            except asyncio.TimeoutError:
                failures.append(f"{provider.name}: timed out")
                logger.warning("Identity provider %s timed out", provider.name)
                continue
            except Exception as e:
                failures.append(f"{provider.name}: {e}")
                logger.warning("Identity provider %s failed: %s", provider.name, e)
                continue

            if not raw:
                failures.append(f"{provider.name}: no token available")
                continue

            try:
                token = IdentityToken.from_jwt(raw)
            except IdentityError as e:
                failures.append(f"{provider.name}: {e}")
                logger.warning("Identity provider %s returned an unusable token", provider.name)
                continue

            logger.debug("Identity from %s: subject hash %s", provider.name, token.subject_hash)
            return token

        raise IdentityError(
            "No identity provider yielded a token: " + "; ".join(failures)
        )

    async def _request_certificate(
        self, key: EphemeralKeyPair, token: IdentityToken
    ) -> IssuedCertificate:
        """
        Exchange the ephemeral public key and identity token for a certificate.

        Raises:
            CertificateIssuanceError: If the request fails or the certificate
                does not certify the ephemeral key
        """
        proof = key.sign(token.principal.encode("utf-8"))
        request = CertificateRequest(
            public_key_pem=key.public_key_pem(),
            algorithm=key.algorithm,
            identity_token=token.raw,
            proof_of_possession=base64.b64encode(proof).decode("utf-8"),
        )

        issued = await self._call(
            self.ca.request_certificate(request),
            CertificateIssuanceError,
            "Certificate authority",
        )

        cert = _parse_issued_certificate(issued)
        if key_id(cert.public_key()) != key_id(key.public_key):
            raise CertificateIssuanceError(
                "Issued certificate does not match the ephemeral public key"
            )

        return issued

    async def _create_log_entry(self, entry: Dict[str, Any], certificate: str) -> LogEntry:
        """
        Submit an entry and check it was integrated while the certificate was valid.

        Raises:
            LogSubmissionError: If the log fails or returns an inconsistent record
        """
        log_entry = await self._call(
            self.log.create_entry(entry), LogSubmissionError, "Transparency log"
        )
        if not isinstance(log_entry, LogEntry):
            raise LogSubmissionError("Transparency log returned no entry")

        try:
            integrated = datetime.fromtimestamp(log_entry.integrated_time, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as e:
            raise LogSubmissionError(
                f"Log entry integrated time out of range: {log_entry.integrated_time}"
            ) from e

        cert = load_certificate(certificate)
        if cert is None or not within_validity(cert, integrated):
            raise LogSubmissionError(
                "Log entry integrated time falls outside the certificate validity window"
            )

        return log_entry

    async def _call(
        self, call: Awaitable[T], error_cls: Type[KeylessError], what: str
    ) -> T:
        """Await a collaborator call, mapping timeouts and failures to error_cls."""
        try:
            return await asyncio.wait_for(call, self.timeout)
        except asyncio.TimeoutError as e:
            logger.warning("%s timed out after %.1fs", what, self.timeout)
            raise error_cls(f"{what} timed out after {self.timeout}s") from e
        except error_cls:
            raise
        except Exception as e:
            logger.warning("%s failed: %s", what, e)
            raise error_cls(f"{what} failed: {e}") from e

    @classmethod
    def from_config(cls, config: SigningConfig) -> "Signer":
        """
        Create signer from configuration.

        Args:
            config: Validated configuration

        Returns:
            Signer with HTTP collaborators and configured identity providers
        """
        from .clients.fulcio import DEFAULT_FULCIO_URL, FulcioClient
        from .clients.rekor import DEFAULT_REKOR_URL, RekorClient

        ca_config = config.get_service_config("ca")
        log_config = config.get_service_config("log")

        return cls(
            ca=FulcioClient(
                ca_config.get("url", DEFAULT_FULCIO_URL), timeout=config.get_timeout("ca")
            ),
            log=RekorClient(
                log_config.get("url", DEFAULT_REKOR_URL), timeout=config.get_timeout("log")
            ),
            identity_providers=config.get_identity_providers(),
            algorithm=config.algorithm,
            upload_blobs=config.upload_blobs,
            timeout=max(config.get_timeout("ca"), config.get_timeout("log")),
        )


def _require_bytes(value: Any, name: str) -> None:
    if not isinstance(value, (bytes, bytearray)):
        raise SigningError(f"{name} must be bytes, not {type(value).__name__}")


def _parse_issued_certificate(issued: Any) -> x509.Certificate:
    if not isinstance(issued, IssuedCertificate):
        raise CertificateIssuanceError("Certificate authority returned no certificate")
    try:
        cert = load_certificate(issued.certificate)
    except MalformedInputError as e:
        raise CertificateIssuanceError(str(e)) from e
    if cert is None:
        raise CertificateIssuanceError("Certificate authority returned no PEM certificate")
    return cert
