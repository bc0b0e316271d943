"""Identity tokens and the providers that supply them."""

import asyncio
import hashlib
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import jwt
import requests

from .errors import IdentityError

DEFAULT_AUDIENCE = "sigstore"
DEFAULT_TOKEN_VARIABLE = "SIGSTORE_ID_TOKEN"


@dataclass(frozen=True)
class IdentityToken:
    """OIDC bearer token held for the duration of one signing operation."""

    raw: str = field(repr=False)
    issuer: str
    subject: str
    claims: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def principal(self) -> str:
        """Identity claim the certificate will bind (email if present, else subject)."""
        return self.claims.get("email") or self.subject

    @property
    def subject_hash(self) -> str:
        """Get hash of subject for log messages."""
        return hashlib.sha256(self.subject.encode()).hexdigest()[:16]

    @classmethod
    def from_jwt(cls, token: str) -> "IdentityToken":
        """
        Decode an identity token.

        The signature is not verified here; the certificate authority does
        that when it exchanges the token for a certificate.

        Args:
            token: Encoded JWT

        Returns:
            IdentityToken with decoded claims

        Raises:
            IdentityError: If the token is not a decodable JWT
        """
        try:
            claims = jwt.decode(token, options={"verify_signature": False})
        except jwt.PyJWTError as e:
            raise IdentityError(f"Identity token is not a valid JWT: {e}") from e

        if not claims.get("sub") and not claims.get("email"):
            raise IdentityError("Identity token has no subject claim")

        return cls(
            raw=token,
            issuer=claims.get("iss", ""),
            subject=claims.get("sub", ""),
            claims=claims,
        )


class IdentityProvider(ABC):
    """Source of identity tokens."""

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    async def get_token(self) -> Optional[str]:
        """
        Obtain an encoded identity token.

        Returns:
            Token string, or None if this provider has no token to offer

        Raises:
            Exception: Any failure; the signer moves on to the next provider
        """
        pass


class StaticTokenProvider(IdentityProvider):
    """Provider returning a token supplied up front."""

    def __init__(self, token: str):
        self._token = token

    async def get_token(self) -> Optional[str]:
        return self._token


class EnvironmentTokenProvider(IdentityProvider):
    """Provider reading a token from an environment variable."""

    def __init__(self, variable: str = DEFAULT_TOKEN_VARIABLE):
        self.variable = variable

    async def get_token(self) -> Optional[str]:
        return os.getenv(self.variable) or None


class GitHubActionsTokenProvider(IdentityProvider):
    """Provider requesting an OIDC token from the GitHub Actions runtime."""

    def __init__(self, audience: str = DEFAULT_AUDIENCE, timeout: float = 10):
        self.audience = audience
        self.timeout = timeout

    async def get_token(self) -> Optional[str]:
        token_url = os.getenv("ACTIONS_ID_TOKEN_REQUEST_URL")
        token_bearer = os.getenv("ACTIONS_ID_TOKEN_REQUEST_TOKEN")

        if not token_url or not token_bearer:
            raise RuntimeError(
                "Not running in GitHub Actions or id-token permission not granted"
            )

        return await asyncio.to_thread(self._request_token, token_url, token_bearer)

    def _request_token(self, token_url: str, token_bearer: str) -> str:
        response = requests.get(
            f"{token_url}&audience={self.audience}",
            headers={"Authorization": f"bearer {token_bearer}"},
            timeout=self.timeout,
        )
        response.raise_for_status()

        return response.json()["value"]
