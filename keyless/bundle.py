"""Signed-result bundles exchanged between Signer and Verifier."""

import enum
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from .dsse import Envelope
from .errors import MalformedInputError
from .transparency import InclusionProof, LogEntry, is_integer

DSSE_ATTESTATION_TYPE = "attestation/dsse"


class BundleKind(enum.Enum):
    """Discriminant for the bundle tagged union."""

    PLAIN = "plain"
    DSSE = "dsse"


@dataclass(frozen=True)
class SignedPayload:
    """Plain blob signature with its signing certificate."""

    base64_signature: str
    cert: str  # PEM
    tlog_entry: Optional[LogEntry] = None

    kind = BundleKind.PLAIN

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "base64Signature": self.base64_signature,
            "cert": self.cert,
        }
        if self.tlog_entry is not None:
            data["tlogEntry"] = self.tlog_entry.to_dict()
        return data

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_dict(cls, data: Any) -> "SignedPayload":
        """
        Parse a plain signature bundle.

        Raises:
            MalformedInputError: If fields are missing or mistyped
        """
        if not isinstance(data, dict):
            raise MalformedInputError("bundle must be an object")
        if not isinstance(data.get("base64Signature"), str):
            raise MalformedInputError("bundle base64Signature must be a string")
        if not isinstance(data.get("cert"), str):
            raise MalformedInputError("bundle cert must be a string")

        entry = data.get("tlogEntry")
        return cls(
            base64_signature=data["base64Signature"],
            cert=data["cert"],
            tlog_entry=LogEntry.from_dict(entry) if entry is not None else None,
        )


@dataclass(frozen=True)
class DSSEBundle:
    """DSSE attestation with its certificate and transparency log record."""

    attestation: Envelope
    certificate: str  # PEM
    integrated_time: int
    signed_entry_timestamp: str  # base64
    log_index: int
    log_id: str
    inclusion_proof: Optional[InclusionProof] = None
    attestation_type: str = DSSE_ATTESTATION_TYPE

    kind = BundleKind.DSSE

    @property
    def log_entry(self) -> LogEntry:
        """Log record fields as a LogEntry."""
        return LogEntry(
            log_index=self.log_index,
            log_id=self.log_id,
            integrated_time=self.integrated_time,
            signed_entry_timestamp=self.signed_entry_timestamp,
            inclusion_proof=self.inclusion_proof,
        )

    @classmethod
    def create(cls, envelope: Envelope, certificate: str, entry: LogEntry) -> "DSSEBundle":
        """Merge a signed envelope with the log entry recording it."""
        return cls(
            attestation=envelope,
            certificate=certificate,
            integrated_time=entry.integrated_time,
            signed_entry_timestamp=entry.signed_entry_timestamp,
            log_index=entry.log_index,
            log_id=entry.log_id,
            inclusion_proof=entry.inclusion_proof,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "attestationType": self.attestation_type,
            "attestation": self.attestation.to_dict(),
            "certificate": self.certificate,
            "integratedTime": self.integrated_time,
            "signedEntryTimestamp": self.signed_entry_timestamp,
            "logIndex": self.log_index,
            "logID": self.log_id,
        }
        if self.inclusion_proof is not None:
            data["inclusionProof"] = self.inclusion_proof.to_dict()
        return data

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_dict(cls, data: Any) -> "DSSEBundle":
        """
        Parse a DSSE bundle from its wire dictionary.

        The attestationType value is kept as-is so that a verifier can reject
        an unexpected discriminant as a failed verification.

        Raises:
            MalformedInputError: If fields are missing or mistyped
        """
        if not isinstance(data, dict):
            raise MalformedInputError("bundle must be an object")

        for key in ("attestationType", "certificate", "signedEntryTimestamp", "logID"):
            if not isinstance(data.get(key), str):
                raise MalformedInputError(f"bundle {key} must be a string")
        for key in ("integratedTime", "logIndex"):
            if not is_integer(data.get(key)):
                raise MalformedInputError(f"bundle {key} must be an integer")

        proof = data.get("inclusionProof")
        return cls(
            attestation=Envelope.from_dict(data.get("attestation")),
            certificate=data["certificate"],
            integrated_time=data["integratedTime"],
            signed_entry_timestamp=data["signedEntryTimestamp"],
            log_index=data["logIndex"],
            log_id=data["logID"],
            inclusion_proof=InclusionProof.from_dict(proof) if proof is not None else None,
            attestation_type=data["attestationType"],
        )


Bundle = Union[SignedPayload, DSSEBundle]


def parse_bundle(data: Any) -> Bundle:
    """
    Parse either bundle variant, dispatching on its discriminant.

    Args:
        data: Bundle dictionary or JSON string

    Returns:
        SignedPayload or DSSEBundle

    Raises:
        MalformedInputError: If the data matches neither variant
    """
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except ValueError as e:
            raise MalformedInputError(f"bundle is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedInputError("bundle must be an object")

    if "attestationType" in data:
        return DSSEBundle.from_dict(data)
    if "base64Signature" in data:
        return SignedPayload.from_dict(data)

    raise MalformedInputError("unrecognized bundle shape")
