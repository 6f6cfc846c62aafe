"""
Analysis provider selection.

Both backends expose the same capability,
    analyze_video(path, start, end, stop_event=None) -> AnalysisResult
and are picked by the `provider` config key.
"""

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Protocol

from dayflow.core.constants import (
    ProviderName, LOCAL_ENDPOINT, LOCAL_MODEL, GEMINI_MODEL, REQUEST_TIMEOUT_SEC,
)
from dayflow.core.error_codes import ConfigurationError
from dayflow.core.models_sqlite import AnalysisResult
from dayflow.core.analyze_local import LocalFrameAnalyzer
from dayflow.core.analyze_gemini import CloudVideoAnalyzer

logger = logging.getLogger(__name__)


class AnalysisProvider(Protocol):
    def analyze_video(self, path: Path, start: datetime, end: datetime,
                      stop_event: threading.Event | None = None) -> AnalysisResult:
        ...


class CredentialStore(Protocol):
    def get_api_key(self, provider: str) -> str | None:
        ...


def build_provider(config: dict, credentials: CredentialStore) -> AnalysisProvider:
    """Instantiate the backend named by config['provider']."""
    name = config.get('provider', ProviderName.GEMINI)
    timeout = config.get('request_timeout_sec', REQUEST_TIMEOUT_SEC)

    if name == ProviderName.LOCAL:
        provider = LocalFrameAnalyzer(
            endpoint=config.get('local_endpoint', LOCAL_ENDPOINT),
            model=config.get('local_model', LOCAL_MODEL),
            timeout=timeout,
        )
    elif name == ProviderName.GEMINI:
        provider = CloudVideoAnalyzer(
            credentials,
            model=config.get('gemini_model', GEMINI_MODEL),
            timeout=timeout,
        )
    else:
        raise ConfigurationError(f"Unknown analysis provider {name!r}")

    logger.info("Using %s analysis provider", name)
    return provider
