"""Unit tests for clients/fulcio.py module."""

import json

import pytest
import requests
import responses

from keyless.clients.base import CertificateRequest
from keyless.clients.fulcio import FulcioClient
from keyless.errors import CertificateIssuanceError

FULCIO_URL = "https://fulcio.example.com"
SIGNING_CERT_URL = f"{FULCIO_URL}/api/v2/signingCert"


@pytest.fixture
def cert_request():
    return CertificateRequest(
        public_key_pem="-----BEGIN PUBLIC KEY-----\nMFk=\n-----END PUBLIC KEY-----\n",
        algorithm="ecdsa-p256",
        identity_token="eyJ.token.sig",
        proof_of_possession="cG9w",
    )


class TestFulcioClient:
    """Tests for FulcioClient class."""

    def test_strips_trailing_slash(self):
        """Test base URL normalization."""
        assert FulcioClient(f"{FULCIO_URL}/").url == FULCIO_URL

    @pytest.mark.asyncio
    @responses.activate
    async def test_request_certificate(self, cert_request):
        """Test successful certificate request."""
        responses.add(
            responses.POST,
            SIGNING_CERT_URL,
            json={
                "signedCertificateEmbeddedSct": {
                    "chain": {"certificates": ["LEAF", "INTERMEDIATE", "ROOT"]}
                }
            },
            status=201,
        )

        issued = await FulcioClient(FULCIO_URL).request_certificate(cert_request)

        assert issued.certificate == "LEAF"
        assert issued.chain == ("INTERMEDIATE", "ROOT")

        body = json.loads(responses.calls[0].request.body)
        assert body["credentials"] == {"oidcIdentityToken": "eyJ.token.sig"}
        assert body["publicKeyRequest"]["publicKey"]["algorithm"] == "ECDSA"
        assert body["publicKeyRequest"]["proofOfPossession"] == "cG9w"

    @pytest.mark.asyncio
    @responses.activate
    async def test_detached_sct_response(self, cert_request):
        """Test detached SCT response shape."""
        responses.add(
            responses.POST,
            SIGNING_CERT_URL,
            json={"signedCertificateDetachedSct": {"chain": {"certificates": ["LEAF"]}}},
            status=201,
        )

        issued = await FulcioClient(FULCIO_URL).request_certificate(cert_request)

        assert issued.certificate == "LEAF"
        assert issued.chain == ()

    @pytest.mark.asyncio
    @responses.activate
    async def test_rejected(self, cert_request):
        """Test rejection carries the server's reason."""
        responses.add(
            responses.POST,
            SIGNING_CERT_URL,
            json={"code": 401, "message": "token expired"},
            status=401,
        )

        with pytest.raises(CertificateIssuanceError) as exc_info:
            await FulcioClient(FULCIO_URL).request_certificate(cert_request)

        assert exc_info.value.reason == "token expired"
        assert isinstance(exc_info.value.__cause__, requests.HTTPError)

    @pytest.mark.asyncio
    @responses.activate
    async def test_unreachable(self, cert_request):
        """Test connection errors map to CertificateIssuanceError."""
        responses.add(
            responses.POST,
            SIGNING_CERT_URL,
            body=requests.ConnectionError("connection refused"),
        )

        with pytest.raises(CertificateIssuanceError, match="unreachable"):
            await FulcioClient(FULCIO_URL).request_certificate(cert_request)

    @pytest.mark.asyncio
    @responses.activate
    async def test_unexpected_response(self, cert_request):
        """Test responses without a certificate chain are rejected."""
        responses.add(responses.POST, SIGNING_CERT_URL, json={}, status=201)

        with pytest.raises(CertificateIssuanceError, match="Unexpected Fulcio response"):
            await FulcioClient(FULCIO_URL).request_certificate(cert_request)
