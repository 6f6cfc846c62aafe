"""
Security utilities for Dayflow.
- Safe subprocess execution (argument arrays only)
- API key storage (macOS Keychain, environment fallback)
"""

import os
import subprocess
import logging

from dayflow.core.constants import (
    KEYCHAIN_SERVICE_PREFIX,
    KEYCHAIN_ACCOUNT,
    API_KEY_ENV_PREFIX,
)

logger = logging.getLogger(__name__)


# ── Subprocess safety ─────────────────────────────────────────────────

def run_subprocess(args: list[str], **kwargs) -> subprocess.CompletedProcess:
    """
    Execute a subprocess using argument arrays only.
    shell=True is explicitly forbidden.
    """
    if not isinstance(args, (list, tuple)):
        raise TypeError("Subprocess args must be a list/tuple, not a string")

    # Force shell=False regardless of caller kwargs
    kwargs.pop('shell', None)

    logger.debug("Running subprocess: %s", ' '.join(str(a) for a in args))
    return subprocess.run(args, shell=False, **kwargs)


def run_subprocess_capture(args: list[str], timeout: int = 300, **kwargs) -> subprocess.CompletedProcess:
    """Run subprocess and capture stdout/stderr."""
    return run_subprocess(
        args,
        capture_output=True,
        text=True,
        timeout=timeout,
        **kwargs,
    )


# ── Keychain integration (macOS) ──────────────────────────────────────

def _keychain_service(provider: str) -> str:
    return f"{KEYCHAIN_SERVICE_PREFIX}{provider}"


def keychain_get_api_key(provider: str) -> str | None:
    """Retrieve a provider API key from macOS Keychain."""
    try:
        result = run_subprocess_capture([
            "security", "find-generic-password",
            "-s", _keychain_service(provider),
            "-a", KEYCHAIN_ACCOUNT,
            "-w",  # print password only
        ], timeout=10)
        if result.returncode == 0 and result.stdout.strip():
            return result.stdout.strip()
    except (subprocess.TimeoutExpired, FileNotFoundError):
        pass
    except Exception as e:
        logger.warning("Keychain read failed: %s", type(e).__name__)
    return None


def keychain_set_api_key(provider: str, api_key: str) -> bool:
    """Store or update a provider API key in macOS Keychain."""
    try:
        result = run_subprocess_capture([
            "security", "add-generic-password",
            "-s", _keychain_service(provider),
            "-a", KEYCHAIN_ACCOUNT,
            "-w", api_key,
            "-U",  # update if exists
        ], timeout=10)
        return result.returncode == 0
    except Exception as e:
        logger.error("Keychain write failed: %s", type(e).__name__)
        return False


def keychain_delete_api_key(provider: str) -> bool:
    """Delete a provider API key from macOS Keychain."""
    try:
        result = run_subprocess_capture([
            "security", "delete-generic-password",
            "-s", _keychain_service(provider),
            "-a", KEYCHAIN_ACCOUNT,
        ], timeout=10)
        return result.returncode == 0
    except (subprocess.TimeoutExpired, FileNotFoundError):
        return False


# ── Credential stores ─────────────────────────────────────────────────

class KeychainCredentialStore:
    """Reads API keys from the Keychain, then from DAYFLOW_API_KEY_<PROVIDER>."""

    def get_api_key(self, provider: str) -> str | None:
        key = keychain_get_api_key(provider)
        if key:
            return key
        return os.environ.get(API_KEY_ENV_PREFIX + provider.upper()) or None


class StaticCredentialStore:
    """In-memory keys, for headless runs and tests."""

    def __init__(self, keys: dict[str, str] | None = None):
        self._keys = dict(keys or {})

    def get_api_key(self, provider: str) -> str | None:
        return self._keys.get(provider) or None
