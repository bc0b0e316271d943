"""Certificate authority and transparency log client interfaces."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from ..transparency import InclusionProof, LogEntry


@dataclass(frozen=True)
class CertificateRequest:
    """Everything a certificate authority needs to issue a signing certificate."""

    public_key_pem: str
    algorithm: str
    identity_token: str = field(repr=False)
    proof_of_possession: str  # base64 signature over the token principal


@dataclass(frozen=True)
class IssuedCertificate:
    """Signing certificate and the chain that issued it (all PEM)."""

    certificate: str
    chain: Tuple[str, ...] = field(default_factory=tuple)


class CertificateAuthorityClient(ABC):
    """Exchanges a public key and identity token for a signing certificate."""

    @abstractmethod
    async def request_certificate(self, request: CertificateRequest) -> IssuedCertificate:
        """
        Request a short-lived signing certificate.

        Args:
            request: Public key, identity token and proof of possession

        Returns:
            IssuedCertificate with the leaf certificate first

        Raises:
            CertificateIssuanceError: If the authority rejects the request
        """
        pass


class TransparencyLogClient(ABC):
    """Records signed entries in an append-only transparency log."""

    @abstractmethod
    async def create_entry(self, entry: Dict[str, Any]) -> LogEntry:
        """
        Submit a canonical entry to the log.

        Args:
            entry: Entry dictionary (see keyless.transparency)

        Returns:
            LogEntry for the accepted entry

        Raises:
            LogSubmissionError: If the log rejects the entry or is unreachable
        """
        pass

    async def get_inclusion_proof(self, log_index: int) -> Optional[InclusionProof]:
        """
        Fetch a current inclusion proof for an entry.

        Only used by verifiers that require inclusion proofs for bundles
        recorded without one.
        """
        raise NotImplementedError(
            f"{type(self).__name__} does not support inclusion proof lookups"
        )
