"""
Transparency log entries, canonical entry bodies and Signed Entry Timestamps.

A log entry body is the canonical JSON of the entry the signer submitted. The
log signs a Signed Entry Timestamp (SET) over the canonical JSON of
``{body, integratedTime, logID, logIndex}``, so a verifier that can rebuild the
body from a bundle can check the SET without talking to the log.
"""

import base64
import binascii
import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .errors import MalformedInputError
from .keys import decode_signature, verify_signature
from .merkle import hash_leaf

ENTRY_API_VERSION = "0.0.1"

NOTE_SIGNATURE_PREFIX = "\u2014 "


def canonical_json(obj: Any) -> bytes:
    """Stable JSON encoding (sorted keys, no whitespace) for hashing and signing."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":")).encode("utf-8")


@dataclass(frozen=True)
class InclusionProof:
    """Merkle audit path proving an entry is in the log's tree."""

    log_index: int
    root_hash: str  # hex
    tree_size: int
    hashes: Tuple[str, ...] = field(default_factory=tuple)  # hex, leaf upwards
    checkpoint: Optional[str] = None  # signed note over the tree head

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "logIndex": self.log_index,
            "rootHash": self.root_hash,
            "treeSize": self.tree_size,
            "hashes": list(self.hashes),
        }
        if self.checkpoint is not None:
            data["checkpoint"] = self.checkpoint
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "InclusionProof":
        """
        Parse an inclusion proof.

        Raises:
            MalformedInputError: If fields are missing or mistyped
        """
        if not isinstance(data, dict):
            raise MalformedInputError("inclusionProof must be an object")

        log_index = data.get("logIndex")
        root_hash = data.get("rootHash")
        tree_size = data.get("treeSize")
        hashes = data.get("hashes", [])
        checkpoint = data.get("checkpoint")

        if not is_integer(log_index) or not is_integer(tree_size):
            raise MalformedInputError("inclusionProof logIndex/treeSize must be integers")
        if not isinstance(root_hash, str):
            raise MalformedInputError("inclusionProof rootHash must be a string")
        if not isinstance(hashes, list) or not all(isinstance(h, str) for h in hashes):
            raise MalformedInputError("inclusionProof hashes must be a list of strings")
        if checkpoint is not None and not isinstance(checkpoint, str):
            raise MalformedInputError("inclusionProof checkpoint must be a string")

        return cls(
            log_index=log_index,
            root_hash=root_hash,
            tree_size=tree_size,
            hashes=tuple(hashes),
            checkpoint=checkpoint,
        )

    def decoded(self) -> Tuple[bytes, List[bytes]]:
        """
        Decode the hex root and audit path.

        Raises:
            ValueError: If any hash is not valid hex
        """
        return bytes.fromhex(self.root_hash), [bytes.fromhex(h) for h in self.hashes]


@dataclass(frozen=True)
class LogEntry:
    """Record returned by a transparency log for an accepted entry."""

    log_index: int
    log_id: str
    integrated_time: int
    signed_entry_timestamp: str  # base64
    inclusion_proof: Optional[InclusionProof] = None
    body: Optional[str] = None  # base64 canonical entry body

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "logIndex": self.log_index,
            "logID": self.log_id,
            "integratedTime": self.integrated_time,
            "signedEntryTimestamp": self.signed_entry_timestamp,
        }
        if self.inclusion_proof is not None:
            data["inclusionProof"] = self.inclusion_proof.to_dict()
        if self.body is not None:
            data["body"] = self.body
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "LogEntry":
        """
        Parse a log entry.

        Raises:
            MalformedInputError: If fields are missing or mistyped
        """
        if not isinstance(data, dict):
            raise MalformedInputError("log entry must be an object")

        if not is_integer(data.get("logIndex")) or not is_integer(data.get("integratedTime")):
            raise MalformedInputError("log entry logIndex/integratedTime must be integers")
        if not isinstance(data.get("logID"), str):
            raise MalformedInputError("log entry logID must be a string")
        if not isinstance(data.get("signedEntryTimestamp"), str):
            raise MalformedInputError("log entry signedEntryTimestamp must be a string")

        proof = data.get("inclusionProof")
        body = data.get("body")
        if body is not None and not isinstance(body, str):
            raise MalformedInputError("log entry body must be a string")

        return cls(
            log_index=data["logIndex"],
            log_id=data["logID"],
            integrated_time=data["integratedTime"],
            signed_entry_timestamp=data["signedEntryTimestamp"],
            inclusion_proof=InclusionProof.from_dict(proof) if proof is not None else None,
            body=body,
        )


def is_integer(value: Any) -> bool:
    """True for ints, excluding bools."""
    return isinstance(value, int) and not isinstance(value, bool)


def _sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("utf-8")


def _utf8(text: str, what: str) -> bytes:
    try:
        return text.encode("utf-8")
    except UnicodeEncodeError as e:
        raise MalformedInputError(f"{what} is not valid UTF-8 text: {e}") from e


def build_dsse_entry(
    pae_bytes: bytes, payload: bytes, signatures: List[str], certificate_pem: str
) -> Dict[str, Any]:
    """
    Build the canonical log entry for a DSSE attestation.

    Args:
        pae_bytes: PAE the signatures cover
        payload: Raw envelope payload
        signatures: Base64 envelope signatures
        certificate_pem: Signing certificate (PEM)

    Returns:
        Entry dictionary submitted to the log

    Raises:
        MalformedInputError: If the certificate text cannot be encoded as UTF-8
    """
    verifier = _b64(_utf8(certificate_pem, "certificate"))
    return {
        "apiVersion": ENTRY_API_VERSION,
        "kind": "dsse",
        "spec": {
            "paeHash": {"algorithm": "sha256", "value": _sha256_hex(pae_bytes)},
            "payloadHash": {"algorithm": "sha256", "value": _sha256_hex(payload)},
            "signatures": [{"signature": sig, "verifier": verifier} for sig in signatures],
        },
    }


def build_hashedrekord_entry(
    payload: bytes, signature: str, certificate_pem: str
) -> Dict[str, Any]:
    """Build the canonical log entry for a plain blob signature."""
    return {
        "apiVersion": ENTRY_API_VERSION,
        "kind": "hashedrekord",
        "spec": {
            "data": {"hash": {"algorithm": "sha256", "value": _sha256_hex(payload)}},
            "signature": {
                "content": signature,
                "publicKey": {"content": _b64(_utf8(certificate_pem, "certificate"))},
            },
        },
    }


def encode_body(entry: Dict[str, Any]) -> str:
    """Base64 of the canonical entry JSON, as logs store it."""
    return _b64(canonical_json(entry))


def set_payload(body: str, integrated_time: int, log_id: str, log_index: int) -> bytes:
    """Bytes covered by a Signed Entry Timestamp."""
    return canonical_json(
        {
            "body": body,
            "integratedTime": integrated_time,
            "logID": log_id,
            "logIndex": log_index,
        }
    )


def verify_signed_entry_timestamp(
    log_key: Any,
    body: str,
    integrated_time: int,
    log_id: str,
    log_index: int,
    signed_entry_timestamp: str,
) -> bool:
    """
    Verify a Signed Entry Timestamp against the log's public key.

    Returns:
        True if the SET signature covers exactly this entry
    """
    signature = decode_signature(signed_entry_timestamp)
    if not signature:
        return False
    return verify_signature(
        log_key, signature, set_payload(body, integrated_time, log_id, log_index)
    )


def verify_checkpoint(
    log_key: Any, log_id: str, checkpoint: str, root_hash: bytes, tree_size: int
) -> bool:
    """
    Verify a signed checkpoint commits to the given tree head.

    A checkpoint is a signed note: an origin line, the decimal tree size and
    the base64 root hash, then a blank line and signature lines of the form
    ``NOTE_SIGNATURE_PREFIX + name + " " + base64(key hint + signature)``.
    The key hint is the first four bytes of the log ID.

    Returns:
        True if the log key signed a note for exactly this root and size
    """
    text, separator, signature_block = checkpoint.partition("\n\n")
    if not separator:
        return False

    lines = text.split("\n")
    if len(lines) < 3 or not lines[0]:
        return False
    try:
        size = int(lines[1])
        root = base64.b64decode(lines[2], validate=True)
        key_hint = bytes.fromhex(log_id)[:4]
        note = (text + "\n").encode("utf-8")
    except ValueError:
        return False
    if size != tree_size or root != root_hash:
        return False

    for line in signature_block.splitlines():
        if not line.startswith(NOTE_SIGNATURE_PREFIX):
            continue
        parts = line[len(NOTE_SIGNATURE_PREFIX):].split(" ")
        if len(parts) != 2:
            continue
        raw = decode_signature(parts[1])
        if not raw or len(raw) <= 4 or raw[:4] != key_hint:
            continue
        if verify_signature(log_key, raw[4:], note):
            return True
    return False


def leaf_hash(body: str) -> bytes:
    """
    Merkle leaf hash of a base64 entry body.

    Raises:
        ValueError: If the body is not valid base64
    """
    try:
        raw = base64.b64decode(body, validate=True)
    except binascii.Error as e:
        raise ValueError(f"entry body is not valid base64: {e}") from e
    return hash_leaf(raw)
