"""
Gemini video analysis.
Uploads the whole chunk once, then asks for a strict JSON timeline entry
in a single generateContent call.
"""

import json
import logging
import threading
import time
from datetime import datetime
from pathlib import Path

from dayflow.core.constants import (
    ErrorCode, GEMINI_API_BASE, GEMINI_UPLOAD_URL, GEMINI_MODEL,
    GEMINI_CREDENTIAL_NAME, GEMINI_FILE_POLL_ATTEMPTS, GEMINI_FILE_POLL_DELAY,
    CATEGORIES, CHUNK_MIME_TYPE, REQUEST_TIMEOUT_SEC,
)
from dayflow.core.error_codes import ProviderError, ConfigurationError
from dayflow.core.http_request import send_request, response_json
from dayflow.core.models_sqlite import AnalysisResult
from dayflow.core.response_schema import (
    UploadResponse, UploadedFile, GenerateContentResponse, TimelineAnalysis,
    parse_model, parse_json_body, strip_code_fences,
)

logger = logging.getLogger(__name__)

_BACKEND = "Gemini"

ANALYSIS_PROMPT = """Analyze this screen recording video and create a concise timeline entry.

Provide:
1. A brief, descriptive title (5-10 words)
2. A concise summary of the main activity (1-2 sentences)
3. Category: exactly one of {categories}
4. Whether this appears to be a distraction from focused work (true/false)

Respond with JSON only, using exactly these keys:
{{
  "title": "...",
  "summary": "...",
  "category": "...",
  "isDistraction": true
}}"""


class CloudVideoAnalyzer:
    """Single-call video understanding via the Gemini Files + generateContent APIs."""

    def __init__(self, credentials, model: str = GEMINI_MODEL,
                 timeout: float = REQUEST_TIMEOUT_SEC,
                 poll_attempts: int = GEMINI_FILE_POLL_ATTEMPTS,
                 poll_delay: float = GEMINI_FILE_POLL_DELAY):
        self.credentials = credentials
        self.model = model
        self.timeout = timeout
        self.poll_attempts = poll_attempts
        self.poll_delay = poll_delay

    def analyze_video(self, path: Path, start: datetime, end: datetime,
                      stop_event: threading.Event | None = None) -> AnalysisResult:
        api_key = self.credentials.get_api_key(GEMINI_CREDENTIAL_NAME)
        if not api_key:
            raise ConfigurationError("Gemini API key not configured")

        path = Path(path)
        if not path.exists():
            raise ProviderError(f"Chunk file not found: {path}",
                                code=ErrorCode.CHUNKS_MISSING)

        file_uri = self.upload_video(path, api_key, stop_event)
        if stop_event is not None and stop_event.is_set():
            raise ProviderError("Analysis stopped before completion",
                                code=ErrorCode.CANCELLED)
        analysis = self.generate_analysis(file_uri, api_key)

        logger.info("Gemini analysis of %s: %s [%s]", path.name,
                    analysis.title, analysis.category)
        return AnalysisResult(
            title=analysis.title,
            summary=analysis.summary,
            category=analysis.category,
            is_distraction=analysis.is_distraction,
            start_time=start,
            end_time=end,
        )

    # ── Steps ─────────────────────────────────────────────────────────

    def upload_video(self, path: Path, api_key: str,
                     stop_event: threading.Event | None = None) -> str:
        """Upload the chunk and return its file URI once it is usable."""
        metadata = json.dumps({'file': {'display_name': path.name}})
        with open(path, 'rb') as fh:
            resp = send_request(
                'POST', GEMINI_UPLOAD_URL, _BACKEND,
                timeout=self.timeout,
                headers={
                    'x-goog-api-key': api_key,
                    'X-Goog-Upload-Protocol': 'multipart',
                },
                files={
                    'metadata': (None, metadata, 'application/json'),
                    'file': (path.name, fh, CHUNK_MIME_TYPE),
                },
            )
        uploaded = parse_model(UploadResponse, response_json(resp, _BACKEND),
                               "Gemini upload response").file

        if uploaded.state == 'PROCESSING':
            uploaded = self._wait_until_active(uploaded, api_key, stop_event)
        if uploaded.state == 'FAILED':
            raise ProviderError(f"Gemini could not process uploaded file {uploaded.name}")

        logger.debug("Uploaded %s as %s", path.name, uploaded.uri)
        return uploaded.uri

    def _wait_until_active(self, uploaded: UploadedFile, api_key: str,
                           stop_event: threading.Event | None) -> UploadedFile:
        if not uploaded.name:
            raise ProviderError("Gemini upload is still processing but has no resource name")

        for attempt in range(self.poll_attempts):
            if stop_event is not None and stop_event.is_set():
                raise ProviderError("Analysis stopped before completion",
                                    code=ErrorCode.CANCELLED)
            time.sleep(self.poll_delay)
            resp = send_request(
                'GET', f"{GEMINI_API_BASE}/{uploaded.name}", _BACKEND,
                timeout=self.timeout,
                headers={'x-goog-api-key': api_key},
            )
            uploaded = parse_model(UploadedFile, response_json(resp, _BACKEND),
                                   "Gemini file status")
            if uploaded.state != 'PROCESSING':
                return uploaded
            logger.debug("Gemini file %s still processing (poll %d/%d)",
                         uploaded.name, attempt + 1, self.poll_attempts)

        raise ProviderError(f"Gemini file {uploaded.name} not ready after "
                            f"{self.poll_attempts} polls",
                            code=ErrorCode.PROVIDER_TIMEOUT)

    def generate_analysis(self, file_uri: str, api_key: str) -> TimelineAnalysis:
        body = {
            'contents': [{
                'role': 'user',
                'parts': [
                    {'text': ANALYSIS_PROMPT.format(categories=', '.join(CATEGORIES))},
                    {'fileData': {'fileUri': file_uri, 'mimeType': CHUNK_MIME_TYPE}},
                ],
            }],
            'generationConfig': {'responseMimeType': 'application/json'},
        }
        resp = send_request(
            'POST', f"{GEMINI_API_BASE}/models/{self.model}:generateContent", _BACKEND,
            timeout=self.timeout,
            headers={'x-goog-api-key': api_key},
            json=body,
        )
        envelope = parse_model(GenerateContentResponse, response_json(resp, _BACKEND),
                               "Gemini generateContent response")
        text = strip_code_fences(envelope.first_text())
        return parse_json_body(text, TimelineAnalysis, "Gemini analysis JSON")
