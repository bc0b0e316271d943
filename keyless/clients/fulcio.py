"""Fulcio certificate authority client."""

import asyncio
import logging
from typing import Any, Dict, List

import requests

from ..errors import CertificateIssuanceError
from .base import CertificateAuthorityClient, CertificateRequest, IssuedCertificate
from .http import error_message

logger = logging.getLogger(__name__)

DEFAULT_FULCIO_URL = "https://fulcio.sigstore.dev"

SIGNING_CERT_PATH = "/api/v2/signingCert"

_KEY_ALGORITHMS = {
    "ecdsa-p256": "ECDSA",
    "ecdsa-p384": "ECDSA",
    "ed25519": "ED25519",
}


class FulcioClient(CertificateAuthorityClient):
    """Requests signing certificates from a Fulcio instance over HTTP."""

    def __init__(self, url: str = DEFAULT_FULCIO_URL, timeout: float = 30):
        """
        Initialize Fulcio client.

        Args:
            url: Fulcio base URL
            timeout: Per-request timeout in seconds
        """
        self.url = url.rstrip("/")
        self.timeout = timeout

    async def request_certificate(self, request: CertificateRequest) -> IssuedCertificate:
        return await asyncio.to_thread(self._post_signing_cert, request)

    def _build_body(self, request: CertificateRequest) -> Dict[str, Any]:
        return {
            "credentials": {"oidcIdentityToken": request.identity_token},
            "publicKeyRequest": {
                "publicKey": {
                    "algorithm": _KEY_ALGORITHMS.get(request.algorithm, "ECDSA"),
                    "content": request.public_key_pem,
                },
                "proofOfPossession": request.proof_of_possession,
            },
        }

    def _post_signing_cert(self, request: CertificateRequest) -> IssuedCertificate:
        try:
            response = requests.post(
                f"{self.url}{SIGNING_CERT_PATH}",
                json=self._build_body(request),
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.HTTPError as e:
            reason = error_message(e.response)
            raise CertificateIssuanceError(
                f"Fulcio rejected certificate request: {reason}", reason=reason
            ) from e
        except requests.RequestException as e:
            raise CertificateIssuanceError(f"Fulcio unreachable: {e}") from e

        try:
            chain = self._extract_chain(response.json())
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise CertificateIssuanceError(f"Unexpected Fulcio response: {e}") from e

        logger.debug("Fulcio issued certificate chain of length %d", len(chain))
        return IssuedCertificate(certificate=chain[0], chain=tuple(chain[1:]))

    @staticmethod
    def _extract_chain(data: Dict[str, Any]) -> List[str]:
        signed = data.get("signedCertificateEmbeddedSct") or data.get(
            "signedCertificateDetachedSct"
        )
        if not signed:
            raise KeyError("no signed certificate in response")

        certificates = signed["chain"]["certificates"]
        if not certificates:
            raise ValueError("empty certificate chain")
        return list(certificates)

