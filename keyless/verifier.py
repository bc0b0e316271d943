"""Verification of plain signatures and DSSE bundles against a trust root."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Union

from cryptography import x509

from .bundle import (
    DSSE_ATTESTATION_TYPE,
    Bundle,
    BundleKind,
    DSSEBundle,
    SignedPayload,
    parse_bundle,
)
from .clients.base import TransparencyLogClient
from .config import DEFAULT_TIMEOUT, SigningConfig
from .errors import ConfigurationError, MalformedInputError
from .keys import decode_signature, verify_signature
from .merkle import InvalidInclusionProofError, verify_inclusion
from .transparency import (
    LogEntry,
    build_dsse_entry,
    build_hashedrekord_entry,
    encode_body,
    leaf_hash,
    verify_checkpoint,
    verify_signed_entry_timestamp,
)
from .trust import TrustRoot, load_certificate, permits_code_signing, within_validity

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Verifier:
    """
    Checks that a signature, its certificate and its log record agree.

    Every cryptographic or consistency mismatch yields False. Only
    structurally invalid input raises (MalformedInputError).
    """

    def __init__(
        self,
        trust_root: TrustRoot,
        log_client: Optional[TransparencyLogClient] = None,
        require_inclusion_proof: bool = False,
        clock: Optional[Callable[[], datetime]] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """
        Initialize verifier.

        Args:
            trust_root: Trusted CA certificates and log keys
            log_client: Log client used to fetch proofs missing from bundles
            require_inclusion_proof: Reject log records without a Merkle inclusion proof
            clock: Zero-argument callable returning the current time; naive
                values are taken as UTC
            timeout: Seconds to wait on the log client

        Raises:
            ConfigurationError: If any argument is invalid
        """
        if not isinstance(trust_root, TrustRoot):
            raise ConfigurationError("trust_root must be a TrustRoot")
        if log_client is not None and not isinstance(log_client, TransparencyLogClient):
            raise ConfigurationError("log_client must be a TransparencyLogClient")
        if not isinstance(require_inclusion_proof, bool):
            raise ConfigurationError("require_inclusion_proof must be boolean")
        if require_inclusion_proof and log_client is None:
            raise ConfigurationError(
                "require_inclusion_proof needs a log_client to fetch missing proofs"
            )
        if clock is not None and not callable(clock):
            raise ConfigurationError("clock must be callable")
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ConfigurationError("timeout must be a positive number")

        self.trust_root = trust_root
        self.log_client = log_client
        self.require_inclusion_proof = require_inclusion_proof
        self.clock = clock or _utcnow
        self.timeout = float(timeout)

    async def verify(self, payload: bytes, signature: Union[str, bytes], cert: Union[str, bytes]) -> bool:
        """
        Verify a plain signature over payload.

        Args:
            payload: Signed bytes
            signature: Base64 signature
            cert: PEM signing certificate

        Returns:
            True if the certificate chains to the trust root, is valid now,
            and its key verifies the signature

        Raises:
            MalformedInputError: If an argument has the wrong type or the
                certificate PEM block cannot be decoded
        """
        return self._verify_at(payload, signature, cert, self._now())

    def _now(self) -> datetime:
        now = self.clock()
        if now.tzinfo is None:
            # naive clocks such as datetime.utcnow report UTC
            now = now.replace(tzinfo=timezone.utc)
        return now

    def _verify_at(
        self,
        payload: bytes,
        signature: Union[str, bytes],
        cert: Union[str, bytes],
        at: datetime,
    ) -> bool:
        if not isinstance(payload, (bytes, bytearray)):
            raise MalformedInputError("payload must be bytes")
        if not isinstance(signature, (str, bytes)):
            raise MalformedInputError("signature must be str or bytes")
        if not isinstance(cert, (str, bytes)):
            raise MalformedInputError("cert must be str or bytes")

        leaf = load_certificate(cert)
        if leaf is None:
            logger.debug("No PEM certificate in input")
            return False

        if not self._check_certificate(leaf, at):
            return False

        raw_signature = decode_signature(signature)
        if not raw_signature:
            logger.debug("Signature is not valid base64")
            return False

        if not verify_signature(leaf.public_key(), raw_signature, bytes(payload)):
            logger.debug("Signature does not match payload")
            return False

        return True

    async def verify_dsse(self, bundle: Union[DSSEBundle, Dict[str, Any]]) -> bool:
        """
        Verify a DSSE bundle, including its transparency log record.

        Args:
            bundle: DSSEBundle or its wire dictionary

        Returns:
            True if envelope, certificate and log record are all consistent

        Raises:
            MalformedInputError: If the bundle is structurally invalid
        """
        if isinstance(bundle, dict):
            bundle = DSSEBundle.from_dict(bundle)
        elif not isinstance(bundle, DSSEBundle):
            raise MalformedInputError("bundle must be a DSSEBundle or dictionary")

        if bundle.attestation_type != DSSE_ATTESTATION_TYPE:
            logger.debug("Unexpected attestation type %r", bundle.attestation_type)
            return False

        envelope = bundle.attestation
        if not envelope.signatures:
            logger.debug("DSSE envelope carries no signatures")
            return False

        payload = envelope.decoded_payload()
        pae_bytes = envelope.pae()

        leaf = load_certificate(bundle.certificate)
        if leaf is None:
            logger.debug("No PEM certificate in bundle")
            return False

        integrated = _timestamp(bundle.integrated_time)
        if not self._check_certificate(leaf, integrated):
            return False

        public_key = leaf.public_key()
        if not any(
            _verify_envelope_signature(public_key, s.sig, pae_bytes)
            for s in envelope.signatures
        ):
            logger.debug("No envelope signature verifies over the PAE")
            return False

        body = encode_body(
            build_dsse_entry(
                pae_bytes,
                payload,
                [s.sig for s in envelope.signatures],
                bundle.certificate,
            )
        )
        return await self._verify_log_entry(body, bundle.log_entry)

    async def verify_bundle(self, bundle: Union[Bundle, Dict[str, Any], str, bytes], payload: Optional[bytes] = None) -> bool:
        """
        Verify either bundle variant.

        Args:
            bundle: SignedPayload, DSSEBundle, or their wire form
            payload: Signed bytes, required for plain bundles

        Returns:
            Verification result of the matching operation

        Raises:
            MalformedInputError: If the bundle is invalid or a plain bundle
                comes without its payload
        """
        if not isinstance(bundle, (SignedPayload, DSSEBundle)):
            bundle = parse_bundle(bundle)

        if bundle.kind is BundleKind.PLAIN:
            if payload is None:
                raise MalformedInputError("payload is required to verify a plain bundle")
            return await self._verify_signed_payload(bundle, payload)
        elif bundle.kind is BundleKind.DSSE:
            return await self.verify_dsse(bundle)

        raise MalformedInputError(f"Unsupported bundle kind: {bundle.kind}")

    async def _verify_signed_payload(self, bundle: SignedPayload, payload: bytes) -> bool:
        entry = bundle.tlog_entry
        if entry is None:
            return await self.verify(payload, bundle.base64_signature, bundle.cert)

        # the certificate must have been valid when the log integrated the entry
        at = _timestamp(entry.integrated_time)
        if not self._verify_at(payload, bundle.base64_signature, bundle.cert, at):
            return False

        body = encode_body(
            build_hashedrekord_entry(bytes(payload), bundle.base64_signature, bundle.cert)
        )
        return await self._verify_log_entry(body, entry)

    def _check_certificate(self, leaf: x509.Certificate, at: datetime) -> bool:
        if not permits_code_signing(leaf):
            logger.debug("Certificate is not valid for code signing")
            return False

        if not within_validity(leaf, at):
            logger.debug(
                "Certificate not valid at %s (valid %s to %s)",
                at.isoformat(),
                leaf.not_valid_before_utc.isoformat(),
                leaf.not_valid_after_utc.isoformat(),
            )
            return False

        if self.trust_root.build_chain(leaf, at) is None:
            logger.debug("Certificate does not chain to the trust root")
            return False

        return True

    async def _verify_log_entry(self, body: str, entry: LogEntry) -> bool:
        log_key = self.trust_root.log_key(entry.log_id)
        if log_key is None:
            logger.debug("Untrusted transparency log %s", entry.log_id)
            return False

        if not verify_signed_entry_timestamp(
            log_key,
            body,
            entry.integrated_time,
            entry.log_id,
            entry.log_index,
            entry.signed_entry_timestamp,
        ):
            logger.debug("Signed entry timestamp does not verify")
            return False

        proof = entry.inclusion_proof
        if proof is not None and proof.checkpoint is None:
            # roots are trusted only through a signed checkpoint
            logger.debug("Inclusion proof for entry %d has no checkpoint", entry.log_index)
            proof = None

        if proof is None:
            if not self.require_inclusion_proof:
                logger.debug(
                    "No inclusion proof for entry %d; relying on signed entry timestamp",
                    entry.log_index,
                )
                return True
            proof = await self._fetch_inclusion_proof(entry.log_index)
            if proof is None or proof.checkpoint is None:
                logger.debug("No checkpointed inclusion proof for entry %d", entry.log_index)
                return False

        if proof.log_index != entry.log_index:
            logger.debug(
                "Inclusion proof index %d does not match entry index %d",
                proof.log_index,
                entry.log_index,
            )
            return False

        try:
            root_hash, hashes = proof.decoded()
        except ValueError as e:
            logger.debug("Inclusion proof rejected: %s", e)
            return False

        if not verify_checkpoint(
            log_key, entry.log_id, proof.checkpoint, root_hash, proof.tree_size
        ):
            logger.debug("Checkpoint does not commit to the proof root")
            return False

        try:
            verify_inclusion(leaf_hash(body), proof.log_index, proof.tree_size, hashes, root_hash)
        except (ValueError, InvalidInclusionProofError) as e:
            logger.debug("Inclusion proof rejected: %s", e)
            return False

        return True

    async def _fetch_inclusion_proof(self, log_index: int):
        try:
            return await asyncio.wait_for(
                self.log_client.get_inclusion_proof(log_index), self.timeout
            )
        except asyncio.TimeoutError:
            logger.warning("Inclusion proof lookup for entry %d timed out", log_index)
        except Exception as e:
            logger.warning("Inclusion proof lookup for entry %d failed: %s", log_index, e)
        return None

    @classmethod
    def from_config(
        cls, config: SigningConfig, trust_root: Optional[TrustRoot] = None
    ) -> "Verifier":
        """
        Create verifier from configuration.

        Args:
            config: Validated configuration
            trust_root: Trust root to use instead of the configured one

        Raises:
            ConfigurationError: If no trust root is given and the
                configuration names none
        """
        from .clients.rekor import DEFAULT_REKOR_URL, RekorClient

        log_config = config.get_service_config("log")
        return cls(
            trust_root=trust_root if trust_root is not None else config.load_trust_root(),
            log_client=RekorClient(
                log_config.get("url", DEFAULT_REKOR_URL), timeout=config.get_timeout("log")
            ),
            require_inclusion_proof=config.require_inclusion_proof,
            timeout=config.get_timeout("log"),
        )


def _timestamp(seconds: int) -> datetime:
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as e:
        raise MalformedInputError(f"integratedTime out of range: {seconds}") from e


def _verify_envelope_signature(public_key: Any, sig: str, pae_bytes: bytes) -> bool:
    raw = decode_signature(sig)
    if not raw:
        return False
    return verify_signature(public_key, raw, pae_bytes)
