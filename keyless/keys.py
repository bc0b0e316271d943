"""Ephemeral signing keys and signature verification."""

import base64
import hashlib
import logging
from typing import Any, Callable, Dict, Optional

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa

from .errors import SigningError

logger = logging.getLogger(__name__)

DEFAULT_ALGORITHM = "ecdsa-p256"

# algorithm name -> (key generator, signature hash or None for EdDSA)
_ALGORITHMS: Dict[str, Any] = {
    "ecdsa-p256": (lambda: ec.generate_private_key(ec.SECP256R1()), hashes.SHA256),
    "ecdsa-p384": (lambda: ec.generate_private_key(ec.SECP384R1()), hashes.SHA384),
    "ed25519": (ed25519.Ed25519PrivateKey.generate, None),
}

SUPPORTED_ALGORITHMS = tuple(_ALGORITHMS)

_CURVE_HASHES: Dict[str, Callable[[], hashes.HashAlgorithm]] = {
    "secp256r1": hashes.SHA256,
    "secp384r1": hashes.SHA384,
    "secp521r1": hashes.SHA512,
}


class EphemeralKeyPair:
    """
    Key pair that lives for exactly one signing operation.

    Use as a context manager: the private key reference is dropped when the
    block exits, including on error or task cancellation.
    """

    def __init__(self, algorithm: str = DEFAULT_ALGORITHM):
        """
        Generate a fresh key pair.

        Args:
            algorithm: One of SUPPORTED_ALGORITHMS

        Raises:
            SigningError: If the algorithm is unknown or generation fails
        """
        if algorithm not in _ALGORITHMS:
            raise SigningError(f"Unsupported signing algorithm: {algorithm}")

        generate, hash_cls = _ALGORITHMS[algorithm]
        self.algorithm = algorithm
        self._hash_cls = hash_cls
        try:
            self._private_key = generate()
        except (ValueError, UnsupportedAlgorithm) as e:
            raise SigningError(f"Failed to generate {algorithm} key: {e}") from e
        self.public_key = self._private_key.public_key()

    def __enter__(self) -> "EphemeralKeyPair":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.discard()

    @property
    def discarded(self) -> bool:
        return self._private_key is None

    def discard(self) -> None:
        """Drop the private key."""
        self._private_key = None

    def sign(self, data: bytes) -> bytes:
        """
        Sign data with the ephemeral private key.

        Args:
            data: Bytes to sign

        Returns:
            Raw signature bytes

        Raises:
            SigningError: If the key was discarded or signing fails
        """
        if self._private_key is None:
            raise SigningError("Ephemeral key has already been discarded")

        try:
            if self._hash_cls is None:
                return self._private_key.sign(data)
            return self._private_key.sign(data, ec.ECDSA(self._hash_cls()))
        except (TypeError, ValueError, UnsupportedAlgorithm) as e:
            raise SigningError(f"Signing failed: {e}") from e

    def public_key_pem(self) -> str:
        """Export public key in PEM format."""
        return self.public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode("utf-8")


def key_id(public_key: Any) -> str:
    """
    Compute key ID from public key.

    Hex SHA-256 of the DER SubjectPublicKeyInfo, which is also how
    transparency logs derive their log ID.
    """
    der = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return hashlib.sha256(der).hexdigest()


def decode_signature(signature: Any) -> Optional[bytes]:
    """Decode a base64 signature, returning None when it is not valid base64."""
    if isinstance(signature, str):
        signature = signature.encode("ascii", errors="replace")
    try:
        return base64.b64decode(signature, validate=True)
    except ValueError:
        return None


def verify_signature(public_key: Any, signature: bytes, data: bytes) -> bool:
    """
    Verify a raw signature using the algorithm implied by the key type.

    Args:
        public_key: Certificate or log public key
        signature: Raw signature bytes
        data: Signed bytes

    Returns:
        True if the signature is valid, False otherwise
    """
    try:
        if isinstance(public_key, ec.EllipticCurvePublicKey):
            hash_cls = _CURVE_HASHES.get(public_key.curve.name)
            if hash_cls is None:
                logger.debug("Unsupported curve: %s", public_key.curve.name)
                return False
            public_key.verify(signature, data, ec.ECDSA(hash_cls()))
        elif isinstance(public_key, ed25519.Ed25519PublicKey):
            public_key.verify(signature, data)
        elif isinstance(public_key, rsa.RSAPublicKey):
            public_key.verify(signature, data, padding.PKCS1v15(), hashes.SHA256())
        else:
            logger.debug("Unsupported public key type: %s", type(public_key).__name__)
            return False
    except InvalidSignature:
        return False
    return True
