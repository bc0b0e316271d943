"""Configuration file loading and validation."""

import copy
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import ConfigurationError
from .identity import (
    DEFAULT_AUDIENCE,
    DEFAULT_TOKEN_VARIABLE,
    EnvironmentTokenProvider,
    GitHubActionsTokenProvider,
    IdentityProvider,
    StaticTokenProvider,
)
from .keys import DEFAULT_ALGORITHM, SUPPORTED_ALGORITHMS
from .trust import TrustRoot

CONFIG_DIR = ".keyless"
CONFIG_FILE = "config.yaml"

DEFAULT_TIMEOUT = 30.0

PROVIDER_TYPES = ("static", "env", "github_actions")

DEFAULT_IDENTITY_PROVIDERS = [
    {"type": "env", "variable": DEFAULT_TOKEN_VARIABLE},
    {"type": "github_actions", "audience": DEFAULT_AUDIENCE},
]


class SigningConfig:
    """Configuration for signing and verification operations."""

    def __init__(self, data: Dict[str, Any], base_dir: Optional[str] = None):
        """
        Initialize configuration from dictionary.

        Args:
            data: Configuration dictionary from YAML
            base_dir: Directory that relative trust root paths resolve against

        Raises:
            ConfigurationError: If the configuration is malformed
        """
        self.data = data
        self.base_dir = Path(base_dir) if base_dir else Path(".")
        self._validate()

    def _validate(self) -> None:
        """Validate configuration schema."""
        if not isinstance(self.data, dict):
            raise ConfigurationError("configuration must be a dictionary")

        # Validate service sections
        for section in ("ca", "log"):
            if section not in self.data:
                continue
            service = self.data[section]
            if not isinstance(service, dict):
                raise ConfigurationError(f"{section} must be a dictionary")
            if "url" in service and not isinstance(service["url"], str):
                raise ConfigurationError(f"{section}.url must be a string")
            if "timeout" in service:
                timeout = service["timeout"]
                if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
                    raise ConfigurationError(f"{section}.timeout must be a number")
                if timeout <= 0:
                    raise ConfigurationError(f"{section}.timeout must be positive")

        # Validate identity providers
        if "identity_providers" in self.data:
            providers = self.data["identity_providers"]
            if not isinstance(providers, list) or not providers:
                raise ConfigurationError("identity_providers must be a non-empty list")

            for idx, provider in enumerate(providers):
                if not isinstance(provider, dict):
                    raise ConfigurationError(
                        f"identity_providers[{idx}] must be a dictionary"
                    )
                if provider.get("type") not in PROVIDER_TYPES:
                    raise ConfigurationError(
                        f"identity_providers[{idx}].type must be one of: "
                        f"{', '.join(PROVIDER_TYPES)}"
                    )
                if provider["type"] == "static" and not isinstance(
                    provider.get("token"), str
                ):
                    raise ConfigurationError(
                        f"identity_providers[{idx}] missing required 'token' field"
                    )

        # Validate signing section
        if "signing" in self.data:
            signing = self.data["signing"]
            if not isinstance(signing, dict):
                raise ConfigurationError("signing must be a dictionary")
            algorithm = signing.get("algorithm", DEFAULT_ALGORITHM)
            if algorithm not in SUPPORTED_ALGORITHMS:
                raise ConfigurationError(
                    f"signing.algorithm must be one of: {', '.join(SUPPORTED_ALGORITHMS)}"
                )
            if "upload_blobs" in signing and not isinstance(signing["upload_blobs"], bool):
                raise ConfigurationError("signing.upload_blobs must be boolean")

        # Validate trust root section
        if "trust_root" in self.data:
            trust_root = self.data["trust_root"]
            if not isinstance(trust_root, dict):
                raise ConfigurationError("trust_root must be a dictionary")
            for key in ("ca_certificates", "log_public_keys"):
                paths = trust_root.get(key, [])
                if not isinstance(paths, list) or not all(
                    isinstance(p, str) for p in paths
                ):
                    raise ConfigurationError(f"trust_root.{key} must be a list of paths")

        if "verification" in self.data:
            verification = self.data["verification"]
            if not isinstance(verification, dict):
                raise ConfigurationError("verification must be a dictionary")
            if "require_inclusion_proof" in verification and not isinstance(
                verification["require_inclusion_proof"], bool
            ):
                raise ConfigurationError(
                    "verification.require_inclusion_proof must be boolean"
                )

    def get_service_config(self, section: str) -> Dict[str, Any]:
        """
        Get configuration for the certificate authority or transparency log.

        Args:
            section: "ca" or "log"

        Returns:
            Service configuration dictionary
        """
        return self.data.get(section, {})

    def get_timeout(self, section: str) -> float:
        return float(self.get_service_config(section).get("timeout", DEFAULT_TIMEOUT))

    @property
    def algorithm(self) -> str:
        return self.data.get("signing", {}).get("algorithm", DEFAULT_ALGORITHM)

    @property
    def upload_blobs(self) -> bool:
        return self.data.get("signing", {}).get("upload_blobs", False)

    @property
    def require_inclusion_proof(self) -> bool:
        return self.data.get("verification", {}).get("require_inclusion_proof", False)

    def get_identity_providers(self) -> List[IdentityProvider]:
        """
        Build identity providers in configured order.

        Returns:
            List of IdentityProvider instances
        """
        provider_configs = self.data.get("identity_providers", DEFAULT_IDENTITY_PROVIDERS)

        providers: List[IdentityProvider] = []
        for provider in provider_configs:
            provider_type = provider["type"]
            if provider_type == "static":
                providers.append(StaticTokenProvider(provider["token"]))
            elif provider_type == "env":
                providers.append(
                    EnvironmentTokenProvider(
                        provider.get("variable", DEFAULT_TOKEN_VARIABLE)
                    )
                )
            elif provider_type == "github_actions":
                providers.append(
                    GitHubActionsTokenProvider(
                        audience=provider.get("audience", DEFAULT_AUDIENCE)
                    )
                )

        return providers

    def has_trust_root(self) -> bool:
        return bool(self.data.get("trust_root", {}).get("ca_certificates"))

    def load_trust_root(self) -> TrustRoot:
        """
        Load the trust root from the PEM files named in the configuration.

        Relative paths resolve against the directory of the config file when
        one is known, otherwise the current directory.

        Returns:
            TrustRoot instance

        Raises:
            ConfigurationError: If no trust root is configured or a file cannot be read
        """
        if not self.has_trust_root():
            raise ConfigurationError("trust_root.ca_certificates is not configured")

        trust_root = self.data["trust_root"]
        ca_certificates = []
        for path in trust_root.get("ca_certificates", []):
            ca_certificates.extend(_split_pem(_read_file(self.base_dir, path)))

        log_public_keys = [
            _read_file(self.base_dir, path) for path in trust_root.get("log_public_keys", [])
        ]

        return TrustRoot.create(ca_certificates, log_public_keys)

    def apply_environment_overrides(self) -> "SigningConfig":
        """
        Apply environment variable overrides.

        Environment variables:
        - KEYLESS_FULCIO_URL: Override certificate authority URL
        - KEYLESS_REKOR_URL: Override transparency log URL
        - KEYLESS_SIGNING_ALGORITHM: Override ephemeral key algorithm

        Returns:
            New SigningConfig with environment overrides applied
        """
        merged = copy.deepcopy(self.data)

        fulcio_url = os.getenv("KEYLESS_FULCIO_URL")
        if fulcio_url:
            merged.setdefault("ca", {})["url"] = fulcio_url

        rekor_url = os.getenv("KEYLESS_REKOR_URL")
        if rekor_url:
            merged.setdefault("log", {})["url"] = rekor_url

        algorithm = os.getenv("KEYLESS_SIGNING_ALGORITHM")
        if algorithm:
            merged.setdefault("signing", {})["algorithm"] = algorithm

        return SigningConfig(merged, base_dir=str(self.base_dir))


def _read_file(base_dir: Path, path: str) -> bytes:
    full_path = Path(path)
    if not full_path.is_absolute():
        full_path = base_dir / full_path
    try:
        return full_path.read_bytes()
    except OSError as e:
        raise ConfigurationError(f"Cannot read {full_path}: {e}") from e


def _split_pem(data: bytes) -> List[bytes]:
    """Split a PEM bundle into individual certificate blocks."""
    end_marker = b"-----END CERTIFICATE-----"
    blocks = []
    for part in data.split(end_marker):
        if b"-----BEGIN CERTIFICATE-----" in part:
            blocks.append(part.strip() + b"\n" + end_marker + b"\n")
    return blocks


def load_config(config_path: str) -> SigningConfig:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        SigningConfig instance

    Raises:
        ConfigurationError: If config file is invalid
        FileNotFoundError: If config file doesn't exist
    """
    path = Path(config_path)

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in config file: {e}")

    if data is None:
        data = {}

    return SigningConfig(data, base_dir=str(path.resolve().parent))


def find_default_config() -> Optional[Path]:
    """
    Find default configuration file.

    Searches for .keyless/config.yaml in:
    1. Current directory
    2. Parent directories up to git root
    3. Home directory

    Returns:
        Path to config file, or None if not found
    """
    current = Path.cwd()
    while True:
        config_path = current / CONFIG_DIR / CONFIG_FILE
        if config_path.exists():
            return config_path

        # Check if we're at git root
        if (current / ".git").exists():
            break

        parent = current.parent
        if parent == current:  # Reached filesystem root
            break
        current = parent

    home_config = Path.home() / CONFIG_DIR / CONFIG_FILE
    if home_config.exists():
        return home_config

    return None


def load_default_config() -> Optional[SigningConfig]:
    """
    Load configuration from default location.

    Returns:
        SigningConfig if found, None otherwise
    """
    config_path = find_default_config()
    if config_path:
        return load_config(str(config_path))
    return None
