"""Shared pytest fixtures for all tests."""

import base64
import os
import time
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import jwt
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from keyless.clients.base import (
    CertificateAuthorityClient,
    IssuedCertificate,
    TransparencyLogClient,
)
from keyless.errors import CertificateIssuanceError
from keyless.identity import IdentityToken, StaticTokenProvider
from keyless.keys import decode_signature, key_id, verify_signature
from keyless.merkle import hash_children, hash_leaf
from keyless.transparency import (
    NOTE_SIGNATURE_PREFIX,
    InclusionProof,
    LogEntry,
    canonical_json,
    encode_body,
    set_payload,
)
from keyless.trust import TrustRoot, certificate_pem


def _name(common_name):
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def _san(identity):
    if "@" in identity:
        return x509.RFC822Name(identity)
    return x509.UniformResourceIdentifier(identity)


CODE_SIGNING_EXTENSIONS = (
    x509.KeyUsage(
        digital_signature=True,
        content_commitment=False,
        key_encipherment=False,
        data_encipherment=False,
        key_agreement=False,
        key_cert_sign=False,
        crl_sign=False,
        encipher_only=False,
        decipher_only=False,
    ),
    x509.ExtendedKeyUsage([ExtendedKeyUsageOID.CODE_SIGNING]),
)


def _build_certificate(
    subject,
    public_key,
    issuer,
    issuer_key,
    not_before,
    not_after,
    ca,
    extensions=(),
):
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(public_key)
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=ca, path_length=None), critical=True)
    )
    for extension in extensions:
        builder = builder.add_extension(extension, critical=False)
    return builder.sign(issuer_key, hashes.SHA256())


class CertificateHierarchy:
    """Throwaway root and intermediate CA issuing short-lived leaf certificates."""

    def __init__(self):
        now = datetime.now(timezone.utc).replace(microsecond=0)

        self.root_key = ec.generate_private_key(ec.SECP256R1())
        self.root_cert = _build_certificate(
            _name("Test Root CA"),
            self.root_key.public_key(),
            _name("Test Root CA"),
            self.root_key,
            now - timedelta(days=1),
            now + timedelta(days=365),
            ca=True,
        )

        self.intermediate_key = ec.generate_private_key(ec.SECP256R1())
        self.intermediate_cert = _build_certificate(
            _name("Test Intermediate CA"),
            self.intermediate_key.public_key(),
            self.root_cert.subject,
            self.root_key,
            now - timedelta(days=1),
            now + timedelta(days=365),
            ca=True,
        )

    def issue_leaf(
        self,
        public_key,
        identity,
        not_before=None,
        not_after=None,
        issuer=None,
        usages=CODE_SIGNING_EXTENSIONS,
    ):
        """Issue a signing certificate for public_key bound to identity."""
        now = datetime.now(timezone.utc).replace(microsecond=0)
        issuer_cert, issuer_key = issuer or (self.intermediate_cert, self.intermediate_key)
        return _build_certificate(
            x509.Name([]),
            public_key,
            issuer_cert.subject,
            issuer_key,
            not_before or now - timedelta(minutes=1),
            not_after or now + timedelta(minutes=10),
            ca=False,
            extensions=[x509.SubjectAlternativeName([_san(identity)]), *usages],
        )


class MerkleTree:
    """RFC 6962 tree over leaf hashes, used to produce audit paths."""

    def __init__(self, leaf_hashes: Optional[List[bytes]] = None):
        self.leaf_hashes = list(leaf_hashes or [])

    @classmethod
    def from_data(cls, leaves):
        return cls([hash_leaf(leaf) for leaf in leaves])

    def append(self, data: bytes) -> int:
        self.leaf_hashes.append(hash_leaf(data))
        return len(self.leaf_hashes) - 1

    def root(self) -> bytes:
        return self._root(self.leaf_hashes)

    def audit_path(self, index: int) -> List[bytes]:
        return self._path(index, self.leaf_hashes)

    @staticmethod
    def _split(n):
        k = 1
        while k * 2 < n:
            k *= 2
        return k

    @classmethod
    def _root(cls, hashes_):
        if len(hashes_) == 1:
            return hashes_[0]
        k = cls._split(len(hashes_))
        return hash_children(cls._root(hashes_[:k]), cls._root(hashes_[k:]))

    @classmethod
    def _path(cls, index, hashes_):
        if len(hashes_) == 1:
            return []
        k = cls._split(len(hashes_))
        if index < k:
            return cls._path(index, hashes_[:k]) + [cls._root(hashes_[k:])]
        return cls._path(index - k, hashes_[k:]) + [cls._root(hashes_[:k])]


class FakeCertificateAuthority(CertificateAuthorityClient):
    """In-memory certificate authority backed by CertificateHierarchy."""

    def __init__(self, pki: CertificateHierarchy):
        self.pki = pki
        self.requests = []
        self.reject_reason = None
        self.validity = None  # (not_before, not_after) override

    async def request_certificate(self, request):
        self.requests.append(request)
        if self.reject_reason:
            raise CertificateIssuanceError(
                f"rejected: {self.reject_reason}", reason=self.reject_reason
            )

        public_key = serialization.load_pem_public_key(request.public_key_pem.encode())
        token = IdentityToken.from_jwt(request.identity_token)

        proof = decode_signature(request.proof_of_possession)
        if not proof or not verify_signature(public_key, proof, token.principal.encode()):
            raise CertificateIssuanceError("invalid proof of possession", reason="pop")

        not_before, not_after = self.validity or (None, None)
        cert = self.pki.issue_leaf(public_key, token.principal, not_before, not_after)
        return IssuedCertificate(
            certificate=certificate_pem(cert),
            chain=(certificate_pem(self.pki.intermediate_cert), certificate_pem(self.pki.root_cert)),
        )


class FakeTransparencyLog(TransparencyLogClient):
    """In-memory append-only log that signs entry timestamps and serves proofs."""

    def __init__(self, include_proof=True):
        self.key = ec.generate_private_key(ec.SECP256R1())
        self.log_id = key_id(self.key.public_key())
        self.origin = "log.example.com"
        self.tree = MerkleTree()
        self.entries = []
        self.include_proof = include_proof
        self.integrated_time = None  # fixed time override
        self.fail_with = None

    @property
    def public_key(self):
        return self.key.public_key()

    async def create_entry(self, entry):
        if self.fail_with is not None:
            raise self.fail_with

        body = encode_body(entry)
        index = self.tree.append(canonical_json(entry))
        integrated_time = (
            self.integrated_time if self.integrated_time is not None else int(time.time())
        )
        signature = self.key.sign(
            set_payload(body, integrated_time, self.log_id, index),
            ec.ECDSA(hashes.SHA256()),
        )

        log_entry = LogEntry(
            log_index=index,
            log_id=self.log_id,
            integrated_time=integrated_time,
            signed_entry_timestamp=base64.b64encode(signature).decode(),
            inclusion_proof=self.inclusion_proof(index) if self.include_proof else None,
            body=body,
        )
        self.entries.append(log_entry)
        return log_entry

    async def get_inclusion_proof(self, log_index):
        if log_index >= len(self.tree.leaf_hashes):
            return None
        return self.inclusion_proof(log_index)

    def inclusion_proof(self, index):
        root, size = self.tree.root(), len(self.tree.leaf_hashes)
        return InclusionProof(
            log_index=index,
            root_hash=root.hex(),
            tree_size=size,
            hashes=tuple(h.hex() for h in self.tree.audit_path(index)),
            checkpoint=self.checkpoint(root, size),
        )

    def checkpoint(self, root, size, key=None):
        """Signed note committing to a tree head, signed with key (default: the log key)."""
        key = key or self.key
        note = f"{self.origin}\n{size}\n{base64.b64encode(root).decode()}\n"
        signature = key.sign(note.encode(), ec.ECDSA(hashes.SHA256()))
        hint = bytes.fromhex(self.log_id)[:4]
        return (
            f"{note}\n{NOTE_SIGNATURE_PREFIX}{self.origin} "
            f"{base64.b64encode(hint + signature).decode()}\n"
        )


@pytest.fixture(scope="session")
def pki():
    """Root and intermediate CA shared by the whole test session."""
    return CertificateHierarchy()


@pytest.fixture
def make_pki():
    """Factory for additional, unrelated CA hierarchies."""
    return CertificateHierarchy


@pytest.fixture
def fake_ca(pki):
    return FakeCertificateAuthority(pki)


@pytest.fixture
def fake_log():
    return FakeTransparencyLog()


@pytest.fixture
def merkle_tree_cls():
    return MerkleTree


@pytest.fixture
def trust_root(pki, fake_log):
    """Trust root holding the test CAs and the fake log key."""
    return TrustRoot.create(
        [pki.root_cert, pki.intermediate_cert],
        {fake_log.log_id: fake_log.public_key},
    )


@pytest.fixture
def make_token():
    """Factory for OIDC tokens."""

    def _make_token(subject="repo:owner/repo:ref:refs/heads/main", email=None, **claims):
        now = datetime.now(timezone.utc)
        payload = {
            "iss": "https://token.actions.githubusercontent.com",
            "sub": subject,
            "aud": "sigstore",
            "exp": int((now + timedelta(hours=1)).timestamp()),
            "iat": int(now.timestamp()),
        }
        if email:
            payload["email"] = email
        payload.update(claims)
        return jwt.encode(payload, "secret", algorithm="HS256")

    return _make_token


@pytest.fixture
def mock_oidc_token(make_token):
    """Generate a mock GitHub Actions OIDC JWT token."""
    token = make_token(
        repository="owner/repo",
        workflow=".github/workflows/sign.yml",
        ref="refs/heads/main",
        sha="abc123def456789",
        run_id="987654321",
        actor="bot-user",
    )
    return token, jwt.decode(token, options={"verify_signature": False})


@pytest.fixture
def identity_provider(mock_oidc_token):
    token, _ = mock_oidc_token
    return StaticTokenProvider(token)


@pytest.fixture
def sample_artifact(tmp_path):
    """Create a temporary test artifact file."""
    artifact = tmp_path / "test-artifact.txt"
    artifact.write_text("Test artifact content for signing\n")
    return artifact


@pytest.fixture
def mock_github_env(monkeypatch, mock_oidc_token):
    """Set up GitHub Actions environment variables."""
    token, _ = mock_oidc_token

    monkeypatch.setenv("ACTIONS_ID_TOKEN_REQUEST_URL", "https://example.com/token?api-version=2.0")
    monkeypatch.setenv("ACTIONS_ID_TOKEN_REQUEST_TOKEN", "request-token-123")

    return token


@pytest.fixture(autouse=True)
def reset_environment(monkeypatch):
    """Reset environment variables before each test."""
    for variable in (
        "SIGSTORE_ID_TOKEN",
        "KEYLESS_FULCIO_URL",
        "KEYLESS_REKOR_URL",
        "KEYLESS_SIGNING_ALGORITHM",
        "ACTIONS_ID_TOKEN_REQUEST_URL",
        "ACTIONS_ID_TOKEN_REQUEST_TOKEN",
    ):
        monkeypatch.delenv(variable, raising=False)

    original_env = dict(os.environ)

    yield

    os.environ.clear()
    os.environ.update(original_env)
