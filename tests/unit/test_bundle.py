"""Unit tests for bundle.py module."""

import json

import pytest

from keyless.bundle import (
    DSSE_ATTESTATION_TYPE,
    BundleKind,
    DSSEBundle,
    SignedPayload,
    parse_bundle,
)
from keyless.dsse import Envelope, EnvelopeSignature
from keyless.errors import MalformedInputError
from keyless.transparency import InclusionProof, LogEntry

EMPTY_DSSE_BUNDLE = {
    "attestationType": "attestation/dsse",
    "attestation": {"payload": "", "payloadType": "", "signatures": []},
    "certificate": "",
    "integratedTime": 0,
    "signedEntryTimestamp": "",
    "logIndex": 0,
    "logID": "",
}


@pytest.fixture
def dsse_bundle():
    envelope = Envelope.create(b"{}", "application/json", [EnvelopeSignature(sig="c2ln")])
    entry = LogEntry(
        log_index=5,
        log_id="log-id",
        integrated_time=1700000000,
        signed_entry_timestamp="c2V0",
        inclusion_proof=InclusionProof(5, "00" * 32, 6, ()),
    )
    return DSSEBundle.create(envelope, "CERT", entry)


class TestSignedPayload:
    """Tests for SignedPayload class."""

    def test_kind(self):
        """Test discriminant."""
        assert SignedPayload("c2ln", "CERT").kind is BundleKind.PLAIN

    def test_to_dict(self):
        """Test wire shape without log entry."""
        assert SignedPayload("c2ln", "CERT").to_dict() == {
            "base64Signature": "c2ln",
            "cert": "CERT",
        }

    def test_round_trip_with_log_entry(self):
        """Test optional tlogEntry survives serialization."""
        signed = SignedPayload(
            "c2ln", "CERT", LogEntry(1, "log", 1700000000, "c2V0")
        )

        assert SignedPayload.from_dict(json.loads(signed.to_json())) == signed

    def test_from_dict_missing_cert(self):
        """Test missing cert is rejected."""
        with pytest.raises(MalformedInputError, match="cert"):
            SignedPayload.from_dict({"base64Signature": "c2ln"})


class TestDSSEBundle:
    """Tests for DSSEBundle class."""

    def test_create_merges_log_entry(self, dsse_bundle):
        """Test log entry fields are merged in."""
        assert dsse_bundle.kind is BundleKind.DSSE
        assert dsse_bundle.attestation_type == DSSE_ATTESTATION_TYPE
        assert dsse_bundle.log_index == 5
        assert dsse_bundle.log_entry.inclusion_proof.tree_size == 6

    def test_wire_shape(self, dsse_bundle):
        """Test bundle serializes to the documented keys."""
        data = dsse_bundle.to_dict()

        assert set(data) == {
            "attestationType",
            "attestation",
            "certificate",
            "integratedTime",
            "signedEntryTimestamp",
            "logIndex",
            "logID",
            "inclusionProof",
        }
        assert data["attestation"]["payloadType"] == "application/json"

    def test_round_trip(self, dsse_bundle):
        """Test from_dict inverts to_dict."""
        assert DSSEBundle.from_dict(dsse_bundle.to_dict()) == dsse_bundle

    def test_empty_fixture_parses(self):
        """Test the empty bundle is structurally valid."""
        bundle = DSSEBundle.from_dict(EMPTY_DSSE_BUNDLE)

        assert bundle.attestation.signatures == ()
        assert "inclusionProof" not in bundle.to_dict()

    def test_unknown_attestation_type_kept(self):
        """Test discriminant is preserved for the verifier to reject."""
        bundle = DSSEBundle.from_dict(dict(EMPTY_DSSE_BUNDLE, attestationType="other"))

        assert bundle.attestation_type == "other"

    @pytest.mark.parametrize(
        "key,value",
        [
            ("certificate", None),
            ("integratedTime", "0"),
            ("logIndex", 1.5),
            ("logID", 3),
            ("attestation", "not an envelope"),
        ],
    )
    def test_mistyped_field(self, key, value):
        """Test mistyped fields are rejected."""
        with pytest.raises(MalformedInputError):
            DSSEBundle.from_dict(dict(EMPTY_DSSE_BUNDLE, **{key: value}))

    def test_missing_field(self):
        """Test missing fields are rejected."""
        data = dict(EMPTY_DSSE_BUNDLE)
        del data["signedEntryTimestamp"]

        with pytest.raises(MalformedInputError):
            DSSEBundle.from_dict(data)


class TestParseBundle:
    """Tests for parse_bundle function."""

    def test_dsse(self):
        """Test DSSE dispatch."""
        assert parse_bundle(EMPTY_DSSE_BUNDLE).kind is BundleKind.DSSE

    def test_plain_from_json(self):
        """Test plain dispatch from JSON text."""
        bundle = parse_bundle('{"base64Signature": "c2ln", "cert": "CERT"}')

        assert bundle.kind is BundleKind.PLAIN
        assert bundle.cert == "CERT"

    def test_invalid_json(self):
        """Test JSON syntax errors are reported as malformed input."""
        with pytest.raises(MalformedInputError, match="JSON"):
            parse_bundle("{not json")

    def test_unknown_shape(self):
        """Test unrecognized objects are rejected."""
        with pytest.raises(MalformedInputError, match="unrecognized"):
            parse_bundle({"foo": "bar"})
