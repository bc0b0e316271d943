"""Error taxonomy for signing and verification operations."""

from typing import Optional


class KeylessError(Exception):
    """Base class for all keyless signing errors."""
    pass


class ConfigurationError(KeylessError):
    """Signer or Verifier configured incorrectly."""
    pass


class IdentityError(KeylessError):
    """No identity provider yielded a token."""
    pass


class CertificateIssuanceError(KeylessError):
    """Certificate authority rejected the signing certificate request."""

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.reason = reason


class SigningError(KeylessError):
    """Local cryptographic failure while signing."""
    pass


class LogSubmissionError(KeylessError):
    """Transparency log rejected the entry or was unreachable."""
    pass


class MalformedInputError(KeylessError):
    """Verification input cannot be parsed into the expected shape."""
    pass
