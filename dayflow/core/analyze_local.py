"""
Local multimodal analysis (Ollama / LM Studio).
Processes sampled frames one at a time, for models without native
video understanding: 30 frame descriptions, then merge, title,
category and (usually) distraction prompts.
"""

import base64
import logging
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable

from dayflow.core.constants import (
    ErrorCode, LOCAL_ENDPOINT, LOCAL_MODEL, FRAME_SAMPLE_COUNT,
    CATEGORIES, DISTRACTION_CATEGORIES, REQUEST_TIMEOUT_SEC,
)
from dayflow.core.error_codes import ProviderError
from dayflow.core.frames_extract import extract_frames
from dayflow.core.http_request import send_request, response_json
from dayflow.core.models_sqlite import AnalysisResult
from dayflow.core.response_schema import LocalGenerateResponse, parse_model, coerce_category

logger = logging.getLogger(__name__)

_BACKEND = "Local model"

DESCRIBE_PROMPT = "Describe what's happening in this screenshot in one concise sentence."

MERGE_PROMPT = """Merge these frame descriptions into a cohesive 1-2 sentence summary of the activity:

{descriptions}

Provide just the summary, no preamble."""

TITLE_PROMPT = """Create a brief, descriptive title (5-10 words) for this activity:

{summary}

Provide just the title, no quotes or preamble."""

CATEGORY_PROMPT = """Categorize this activity with ONE of these categories:
{categories}

Activity: {summary}

Provide just the category name, nothing else."""

DISTRACTION_PROMPT = """Is this activity likely a distraction from focused work? Answer only 'yes' or 'no'.

Activity: {summary}
Category: {category}"""

FrameExtractor = Callable[[Path, Path, float, int], list[Path]]


class LocalFrameAnalyzer:
    """Per-frame pipeline against a local /api/generate endpoint."""

    def __init__(self, endpoint: str = LOCAL_ENDPOINT, model: str = LOCAL_MODEL,
                 timeout: float = REQUEST_TIMEOUT_SEC,
                 frame_extractor: FrameExtractor | None = None,
                 frame_count: int = FRAME_SAMPLE_COUNT):
        self.endpoint = endpoint.rstrip('/')
        self.model = model
        self.timeout = timeout
        self.frame_count = frame_count
        self._extract = frame_extractor or extract_frames

    @property
    def generate_url(self) -> str:
        return f"{self.endpoint}/api/generate"

    def analyze_video(self, path: Path, start: datetime, end: datetime,
                      stop_event: threading.Event | None = None) -> AnalysisResult:
        path = Path(path)
        if not path.exists():
            raise ProviderError(f"Chunk file not found: {path}",
                                code=ErrorCode.CHUNKS_MISSING)

        duration = (end - start).total_seconds()
        with tempfile.TemporaryDirectory(prefix="dayflow_frames_") as tmp:
            frames = self._extract(path, Path(tmp), duration, self.frame_count)
            if len(frames) != self.frame_count:
                raise ProviderError(
                    f"Expected {self.frame_count} frames, got {len(frames)}",
                    code=ErrorCode.FRAME_EXTRACTION,
                )

            descriptions = []
            for frame in frames:
                _check_stop(stop_event)
                descriptions.append(self.describe_frame(frame))

        _check_stop(stop_event)
        summary = self.merge_descriptions(descriptions)
        _check_stop(stop_event)
        title = self.generate_title(summary)
        _check_stop(stop_event)
        category = self.categorize(summary)
        _check_stop(stop_event)
        is_distraction = self.detect_distraction(summary, category)

        logger.info("Local analysis of %s: %s [%s]", path.name, title, category)
        return AnalysisResult(
            title=title,
            summary=summary,
            category=category,
            is_distraction=is_distraction,
            start_time=start,
            end_time=end,
        )

    # ── Individual prompts ────────────────────────────────────────────

    def describe_frame(self, frame_path: Path) -> str:
        try:
            data = frame_path.read_bytes()
        except OSError as e:
            raise ProviderError(f"Cannot read frame {frame_path.name}: {e}",
                                code=ErrorCode.FRAME_EXTRACTION)
        image = base64.b64encode(data).decode('ascii')
        return self._generate(DESCRIBE_PROMPT, images=[image])

    def merge_descriptions(self, descriptions: list[str]) -> str:
        numbered = '\n'.join(f"{i + 1}. {d}" for i, d in enumerate(descriptions))
        return self._generate(MERGE_PROMPT.format(descriptions=numbered))

    def generate_title(self, summary: str) -> str:
        title = self._generate(TITLE_PROMPT.format(summary=summary))
        return title.strip().strip('"\'')

    def categorize(self, summary: str) -> str:
        answer = self._generate(CATEGORY_PROMPT.format(
            categories=', '.join(CATEGORIES), summary=summary))
        return coerce_category(answer)

    def detect_distraction(self, summary: str, category: str) -> bool:
        if category in DISTRACTION_CATEGORIES:
            return True
        answer = self._generate(DISTRACTION_PROMPT.format(summary=summary, category=category))
        return 'yes' in answer.lower()

    def _generate(self, prompt: str, images: list[str] | None = None) -> str:
        body = {
            'model': self.model,
            'prompt': prompt,
            'stream': False,
        }
        if images:
            body['images'] = images

        resp = send_request('POST', self.generate_url, _BACKEND,
                            timeout=self.timeout, json=body)
        payload = parse_model(LocalGenerateResponse, response_json(resp, _BACKEND),
                              f"{_BACKEND} response")
        return payload.response.strip()


def _check_stop(stop_event: threading.Event | None):
    if stop_event is not None and stop_event.is_set():
        raise ProviderError("Analysis stopped before completion",
                            code=ErrorCode.CANCELLED)
