"""
Diagnostics: tool version detection and backend checks.
"""

import logging

import requests

from dayflow.core.chunk_store import ChunkStore
from dayflow.core.constants import ProviderName, GEMINI_CREDENTIAL_NAME, LOCAL_ENDPOINT
from dayflow.core.security_utils import run_subprocess_capture

logger = logging.getLogger(__name__)


def get_ffmpeg_version() -> str:
    """Return ffmpeg version string, or error message."""
    try:
        result = run_subprocess_capture(["ffmpeg", "-version"], timeout=10)
        if result.returncode == 0:
            first_line = result.stdout.strip().splitlines()[0]
            return first_line
        return f"Error (rc={result.returncode})"
    except FileNotFoundError:
        return "Not installed"
    except Exception as e:
        return f"Error: {e}"


def check_local_endpoint(endpoint: str = LOCAL_ENDPOINT) -> dict:
    """Ask the local model server which models it has loaded."""
    info = {"endpoint": endpoint, "reachable": False, "models": []}
    try:
        resp = requests.get(f"{endpoint.rstrip('/')}/api/tags", timeout=5)
    except requests.exceptions.RequestException as e:
        info["error"] = type(e).__name__
        return info
    info["reachable"] = resp.status_code == 200
    if info["reachable"]:
        try:
            info["models"] = [m.get("name") for m in resp.json().get("models", [])]
        except (ValueError, AttributeError):
            pass
    return info


def storage_usage(chunk_store: ChunkStore) -> dict:
    """Chunk count and bytes on disk under recordings/."""
    total = 0
    for path in chunk_store.recordings_dir.rglob("*"):
        if path.is_file():
            total += path.stat().st_size
    return {
        "chunks": chunk_store.db.count_chunks() if chunk_store.db else 0,
        "recordings_bytes": total,
        "root": str(chunk_store.root_dir),
    }


def get_diagnostics(config: dict, credentials, chunk_store: ChunkStore) -> dict:
    """Gather all diagnostic information."""
    provider = config.get("provider")
    info = {
        "provider": provider,
        "ffmpeg_version": get_ffmpeg_version(),
        "storage": storage_usage(chunk_store),
    }
    if provider == ProviderName.LOCAL:
        info["local"] = check_local_endpoint(config.get("local_endpoint", LOCAL_ENDPOINT))
    else:
        info["gemini_key_present"] = bool(credentials.get_api_key(GEMINI_CREDENTIAL_NAME))
    return info
