"""DSSE envelope model and Pre-Authentication Encoding."""

import base64
import binascii
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .errors import MalformedInputError

PAE_PREFIX = b"DSSEv1"


def pae(payload_type: str, payload: bytes) -> bytes:
    """
    Compute DSSE Pre-Authentication Encoding.

    PAE format: "DSSEv1" + SP + LEN(payloadType) + SP + payloadType + SP + LEN(payload) + SP + payload

    Lengths are ASCII decimal byte counts, so no two (type, payload) pairs
    encode to the same bytes.

    Args:
        payload_type: DSSE payload type
        payload: Payload bytes

    Returns:
        PAE bytes

    Raises:
        MalformedInputError: If payload_type cannot be encoded as UTF-8
    """
    try:
        payload_type_bytes = payload_type.encode("utf-8")
    except UnicodeEncodeError as e:
        raise MalformedInputError(f"payloadType is not valid UTF-8 text: {e}") from e

    pae_parts = [
        PAE_PREFIX,
        b" ",
        str(len(payload_type_bytes)).encode("ascii"),
        b" ",
        payload_type_bytes,
        b" ",
        str(len(payload)).encode("ascii"),
        b" ",
        payload,
    ]

    return b"".join(pae_parts)


@dataclass(frozen=True)
class EnvelopeSignature:
    """One signature inside a DSSE envelope."""

    sig: str  # base64
    keyid: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"sig": self.sig}
        if self.keyid is not None:
            data["keyid"] = self.keyid
        return data


@dataclass(frozen=True)
class Envelope:
    """DSSE envelope as it appears on the wire."""

    payload: str  # base64
    payload_type: str
    signatures: Tuple[EnvelopeSignature, ...] = field(default_factory=tuple)

    @classmethod
    def create(
        cls, payload: bytes, payload_type: str, signatures: List[EnvelopeSignature]
    ) -> "Envelope":
        """Build an envelope from raw payload bytes."""
        return cls(
            payload=base64.b64encode(payload).decode("utf-8"),
            payload_type=payload_type,
            signatures=tuple(signatures),
        )

    def decoded_payload(self) -> bytes:
        """
        Decode the base64 payload.

        Raises:
            MalformedInputError: If the payload is not valid base64
        """
        try:
            return base64.b64decode(self.payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise MalformedInputError(f"DSSE payload is not valid base64: {e}") from e

    def pae(self) -> bytes:
        """Recompute the PAE bytes this envelope's signatures cover."""
        return pae(self.payload_type, self.decoded_payload())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payload": self.payload,
            "payloadType": self.payload_type,
            "signatures": [s.to_dict() for s in self.signatures],
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Envelope":
        """
        Parse an envelope from its wire dictionary.

        An empty signature list parses fine; it just cannot verify.

        Raises:
            MalformedInputError: If required fields are missing or mistyped
        """
        if not isinstance(data, dict):
            raise MalformedInputError("DSSE envelope must be an object")

        payload = data.get("payload")
        payload_type = data.get("payloadType")
        signatures = data.get("signatures")

        if not isinstance(payload, str):
            raise MalformedInputError("DSSE envelope payload must be a string")
        if not isinstance(payload_type, str):
            raise MalformedInputError("DSSE envelope payloadType must be a string")
        if not isinstance(signatures, list):
            raise MalformedInputError("DSSE envelope signatures must be a list")

        parsed = []
        for idx, entry in enumerate(signatures):
            if not isinstance(entry, dict) or not isinstance(entry.get("sig"), str):
                raise MalformedInputError(f"signatures[{idx}].sig must be a string")
            keyid = entry.get("keyid")
            if keyid is not None and not isinstance(keyid, str):
                raise MalformedInputError(f"signatures[{idx}].keyid must be a string")
            parsed.append(EnvelopeSignature(sig=entry["sig"], keyid=keyid))

        return cls(payload=payload, payload_type=payload_type, signatures=tuple(parsed))
