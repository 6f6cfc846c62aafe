"""
HTTP plumbing shared by the AI backends.
Maps transport failures onto ProviderError and retries 429 responses
with exponential backoff.
"""

import json
import logging
import random
import time

import requests

from dayflow.core.error_codes import ProviderError, ValidationError
from dayflow.core.constants import ErrorCode, REQUEST_TIMEOUT_SEC

logger = logging.getLogger(__name__)

_MAX_RATE_LIMIT_RETRIES = 4
_RATE_LIMIT_BASE_DELAY = 2.0   # seconds, doubled per retry


def send_request(method: str, url: str, backend: str,
                 timeout: float = REQUEST_TIMEOUT_SEC, **kwargs) -> requests.Response:
    """
    Send one logical request. Returns the 2xx response or raises ProviderError.
    File-like bodies are rewound before each rate-limit retry.
    """
    for attempt in range(_MAX_RATE_LIMIT_RETRIES + 1):
        _rewind_files(kwargs.get('files'))
        try:
            resp = requests.request(method, url, timeout=timeout, **kwargs)
        except requests.exceptions.Timeout:
            raise ProviderError(f"{backend} request timed out",
                                code=ErrorCode.PROVIDER_TIMEOUT)
        except requests.exceptions.ConnectionError:
            raise ProviderError(f"Network error connecting to {backend}",
                                code=ErrorCode.NETWORK_TRANSIENT)
        except requests.exceptions.RequestException as e:
            raise ProviderError(f"{backend} request failed: {type(e).__name__}")

        if resp.status_code == 429:
            if attempt < _MAX_RATE_LIMIT_RETRIES:
                # Exponential backoff with jitter: 2s, 4s, 8s, 16s (+/- 10%)
                delay = _RATE_LIMIT_BASE_DELAY * (2 ** attempt)
                delay *= 1 + random.uniform(-0.1, 0.1)
                logger.warning(
                    "%s rate limited (429) — retrying in %.1fs (attempt %d/%d)",
                    backend, delay, attempt + 1, _MAX_RATE_LIMIT_RETRIES,
                )
                time.sleep(delay)
                continue
            raise ProviderError(
                f"{backend} rate limited (429) after {_MAX_RATE_LIMIT_RETRIES} retries",
                code=ErrorCode.NETWORK_TRANSIENT,
            )

        if resp.status_code in (408, 504):
            raise ProviderError(f"{backend} returned {resp.status_code} timeout",
                                code=ErrorCode.PROVIDER_TIMEOUT)

        if not 200 <= resp.status_code < 300:
            # Sanitize error message (never log API key)
            error_body = resp.text[:300] if resp.text else "No response body"
            raise ProviderError(f"{backend} returned {resp.status_code}: {error_body}")

        return resp

    # Should never reach here
    raise ProviderError(f"{backend} request exhausted retries",
                        code=ErrorCode.NETWORK_TRANSIENT)


def response_json(resp: requests.Response, backend: str):
    """Decode a JSON body; a garbled body is a validation failure."""
    try:
        return resp.json()
    except (json.JSONDecodeError, ValueError):
        raise ValidationError(f"Failed to parse {backend} response JSON")


def _rewind_files(files):
    if not files:
        return
    for value in files.values():
        handle = value[1] if isinstance(value, tuple) else value
        if hasattr(handle, 'seek'):
            handle.seek(0)
