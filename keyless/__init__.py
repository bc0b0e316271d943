"""
Keyless artifact signing and verification.

Signatures are made with ephemeral keys certified for a short time against an
OIDC identity, and recorded in a transparency log, so no long-lived signing
secret has to be stored.
"""

__version__ = "0.1.0"

from .api import sign, sign_attestation, verify, verify_dsse
from .bundle import BundleKind, DSSEBundle, SignedPayload, parse_bundle
from .errors import (
    CertificateIssuanceError,
    ConfigurationError,
    IdentityError,
    KeylessError,
    LogSubmissionError,
    MalformedInputError,
    SigningError,
)
from .signer import Signer
from .trust import TrustRoot
from .verifier import Verifier

__all__ = [
    "BundleKind",
    "CertificateIssuanceError",
    "ConfigurationError",
    "DSSEBundle",
    "IdentityError",
    "KeylessError",
    "LogSubmissionError",
    "MalformedInputError",
    "SignedPayload",
    "Signer",
    "SigningError",
    "TrustRoot",
    "Verifier",
    "parse_bundle",
    "sign",
    "sign_attestation",
    "verify",
    "verify_dsse",
]
