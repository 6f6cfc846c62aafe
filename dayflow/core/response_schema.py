"""
Response schemas for the AI backends.

Transport envelopes tolerate extra keys (both backends add metadata such as
timings and usage counters); the analysis payload the model writes for us is
strict and rejects anything unexpected.
"""

import json
import re
import logging
from typing import Optional, TypeVar

import pydantic
from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, field_validator

from dayflow.core.constants import CATEGORIES, Category
from dayflow.core.error_codes import ValidationError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_FENCE_RE = re.compile(r"^\s*```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)


# ── Local backend (/api/generate) ─────────────────────────────────────

class LocalGenerateResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    response: StrictStr


# ── Gemini backend ────────────────────────────────────────────────────

class UploadedFile(BaseModel):
    model_config = ConfigDict(extra="ignore")

    uri: StrictStr
    name: Optional[str] = None
    state: Optional[str] = None
    mime_type: Optional[str] = Field(default=None, alias="mimeType")


class UploadResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    file: UploadedFile


class ContentPart(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: Optional[str] = None


class CandidateContent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    parts: list[ContentPart] = Field(min_length=1)


class Candidate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    content: CandidateContent


class GenerateContentResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    candidates: list[Candidate] = Field(min_length=1)

    def first_text(self) -> str:
        text = self.candidates[0].content.parts[0].text
        if not text or not text.strip():
            raise ValidationError("Gemini returned an empty text part")
        return text


class TimelineAnalysis(BaseModel):
    """The JSON object the model is asked to produce."""
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    title: StrictStr = Field(min_length=1)
    summary: StrictStr = Field(min_length=1)
    category: StrictStr
    is_distraction: StrictBool = Field(alias="isDistraction")

    @field_validator("category")
    @classmethod
    def _known_category(cls, value: str) -> str:
        category = match_category(value)
        if category is None:
            raise ValueError(f"unknown category {value!r}")
        return category


# ── Helpers ───────────────────────────────────────────────────────────

def match_category(text: str) -> str | None:
    """Exact (case-insensitive) match against the closed category set."""
    cleaned = text.strip().strip('"\'`*.').strip()
    for category in CATEGORIES:
        if cleaned.lower() == category.lower():
            return category
    return None


def coerce_category(text: str) -> str:
    """
    Lenient mapping of a free-text model answer onto the category set.
    Falls back to Other.
    """
    category = match_category(text)
    if category:
        return category
    lowered = text.lower()
    # longest names first so "Social Media" wins over shorter overlaps
    for candidate in sorted(CATEGORIES, key=len, reverse=True):
        if candidate.lower() in lowered:
            return candidate
    logger.debug("Unrecognised category %r, using Other", text[:80])
    return Category.OTHER


def strip_code_fences(text: str) -> str:
    """Remove a ```json ... ``` wrapper if the model added one."""
    match = _FENCE_RE.match(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def parse_model(model_cls: type[ModelT], data, what: str) -> ModelT:
    """Validate a decoded payload, mapping failures onto ValidationError."""
    try:
        return model_cls.model_validate(data)
    except pydantic.ValidationError as e:
        raise ValidationError(f"{what} has unexpected shape: {_summarise(e)}")


def parse_json_body(body: str, model_cls: type[ModelT], what: str) -> ModelT:
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, TypeError):
        raise ValidationError(f"{what} is not valid JSON: {body[:200]!r}")
    return parse_model(model_cls, data, what)


def _summarise(error: pydantic.ValidationError) -> str:
    parts = []
    for err in error.errors()[:5]:
        loc = ".".join(str(p) for p in err.get("loc", ())) or "<root>"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)
