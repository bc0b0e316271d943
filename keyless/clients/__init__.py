"""Certificate authority and transparency log clients."""

from .base import (
    CertificateAuthorityClient,
    CertificateRequest,
    IssuedCertificate,
    TransparencyLogClient,
)

# HTTP clients are imported lazily so that callers supplying their own
# collaborators never load them
__all__ = [
    "CertificateAuthorityClient",
    "CertificateRequest",
    "IssuedCertificate",
    "TransparencyLogClient",
    "FulcioClient",
    "RekorClient",
]


def __getattr__(name):
    """Lazy import HTTP clients."""
    if name == "FulcioClient":
        from .fulcio import FulcioClient
        return FulcioClient
    elif name == "RekorClient":
        from .rekor import RekorClient
        return RekorClient
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
