"""
Secrets management utilities for raindrop-mfa.

Secrets are resolved from, in order:
1. A file named by the {NAME}_FILE environment variable (Docker/K8s secrets)
2. The {NAME} environment variable
3. /run/secrets/{name} (Docker secrets default path)

Usage:
    from raindrop_mfa.utils.secrets import get_secret

    client_secret = get_secret("RAINDROP_CLIENT_SECRET")
"""
import os
import logging
from typing import Optional
from functools import lru_cache

logger = logging.getLogger(__name__)


def _read_secret_file(path: str) -> Optional[str]:
    """Read and strip a secret file, or None if it cannot be read."""
    try:
        with open(path, 'r') as f:
            return f.read().strip()
    except OSError as e:
        logger.warning(f"Failed to read secret file {path}: {e}")
        return None


@lru_cache(maxsize=32)
def get_secret(name: str, default: Optional[str] = None) -> Optional[str]:
    """
    Get a secret value from the first source that defines it.

    Args:
        name: Secret name (e.g., "RAINDROP_CLIENT_SECRET")
        default: Value returned when no source defines the secret

    Returns:
        Secret value or default
    """
    file_path = os.environ.get(f"{name}_FILE")
    if file_path and os.path.isfile(file_path):
        secret = _read_secret_file(file_path)
        if secret is not None:
            logger.debug(f"Loaded secret {name} from file")
            return secret

    env_value = os.environ.get(name)
    if env_value:
        logger.debug(f"Loaded secret {name} from environment")
        return env_value

    docker_secret_path = f"/run/secrets/{name.lower()}"
    if os.path.isfile(docker_secret_path):
        secret = _read_secret_file(docker_secret_path)
        if secret is not None:
            logger.debug(f"Loaded secret {name} from Docker secrets")
            return secret

    return default


def mask_secret(secret: Optional[str], visible_chars: int = 4) -> str:
    """
    Mask a secret for safe logging.

    Returns:
        Masked string like "abc...xyz"
    """
    if not secret or len(secret) <= visible_chars * 2:
        return "***"
    return f"{secret[:visible_chars]}...{secret[-visible_chars:]}"
