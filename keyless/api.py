"""
Module-level signing and verification helpers.

Each helper builds a Signer or Verifier from the given configuration, or from
``.keyless/config.yaml`` when one is found. Without any configuration, signing
uses the public-good Fulcio and Rekor instances and reads the identity token
from ``SIGSTORE_ID_TOKEN``.
"""

from typing import Any, Dict, Optional, Union

from .bundle import DSSEBundle, SignedPayload
from .clients.fulcio import FulcioClient
from .clients.rekor import RekorClient
from .config import SigningConfig, load_default_config
from .errors import ConfigurationError
from .identity import EnvironmentTokenProvider
from .signer import Signer
from .trust import TrustRoot
from .verifier import Verifier


def _resolve_config(config: Optional[SigningConfig]) -> Optional[SigningConfig]:
    if config is None:
        config = load_default_config()
    if config is not None:
        config = config.apply_environment_overrides()
    return config


def create_signer(config: Optional[SigningConfig] = None) -> Signer:
    """Build a Signer from configuration, falling back to public-good services."""
    config = _resolve_config(config)
    if config is not None:
        return Signer.from_config(config)

    return Signer(
        ca=FulcioClient(),
        log=RekorClient(),
        identity_providers=[EnvironmentTokenProvider()],
    )


def create_verifier(
    trust_root: Optional[TrustRoot] = None, config: Optional[SigningConfig] = None
) -> Verifier:
    """
    Build a Verifier.

    An explicit trust_root replaces the configured one; the configuration
    still supplies the log client and verification settings.

    Raises:
        ConfigurationError: If no trust root is given or configured
    """
    config = _resolve_config(config)
    if trust_root is not None:
        if config is None:
            return Verifier(trust_root)
        return Verifier.from_config(config, trust_root=trust_root)

    if config is None or not config.has_trust_root():
        raise ConfigurationError(
            "No trust root: pass trust_root or configure trust_root.ca_certificates"
        )
    return Verifier.from_config(config)


async def sign(payload: bytes, config: Optional[SigningConfig] = None) -> SignedPayload:
    return await create_signer(config).sign_blob(payload)


async def sign_attestation(
    payload: bytes, payload_type: str, config: Optional[SigningConfig] = None
) -> DSSEBundle:
    return await create_signer(config).sign_attestation(payload, payload_type)


async def verify(
    payload: bytes,
    signature: Union[str, bytes],
    cert: Union[str, bytes],
    trust_root: Optional[TrustRoot] = None,
    config: Optional[SigningConfig] = None,
) -> bool:
    return await create_verifier(trust_root, config).verify(payload, signature, cert)


async def verify_dsse(
    bundle: Union[DSSEBundle, Dict[str, Any]],
    trust_root: Optional[TrustRoot] = None,
    config: Optional[SigningConfig] = None,
) -> bool:
    return await create_verifier(trust_root, config).verify_dsse(bundle)
