"""
Pydantic models for AI operation inputs/outputs and response parsing.

Backends are asked for JSON, but models sometimes wrap it in a markdown code
fence or surround it with prose. `parse_json_payload()` makes exactly one
lenient re-extraction attempt before declaring the response malformed; a
malformed response counts as a provider failure and is not retried against
the same provider.
"""
import json
import re
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from eduquest.services.ai.errors import MalformedResponseError

T = TypeVar("T")

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)


LANGUAGE_NAMES = {
    "en": "English",
    "bn": "Bengali",
    "hi": "Hindi",
    "kn": "Kannada",
}


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(code, "English")


class QuestionCriteria(BaseModel):
    """Inputs for question generation."""

    class_num: int = Field(..., ge=1, le=12)
    chapter: str
    marks: int = Field(1, ge=0)
    difficulty: str = "Moderate"
    count: int = Field(5, ge=1, le=50)
    question_type: Optional[str] = None
    keywords: Optional[str] = None
    generate_answer: bool = False
    lang: str = "en"


class GeneratedQuestion(BaseModel):
    text: str
    answer: Optional[str] = None

    @field_validator("text")
    @classmethod
    def validate_text(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("question text must not be empty")
        return value


class ExtractedQuestion(BaseModel):
    text: str
    marks: Optional[float] = None


class Flashcard(BaseModel):
    question: str
    answer: str


class TestAnalysis(BaseModel):
    __test__ = False  # not a pytest test class

    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)
    summary: str


class PracticeSuggestion(BaseModel):
    chapter: str
    topic: str
    reason: str


class DiagramSuggestion(BaseModel):
    name: str
    description: str
    image_prompt: str


class AttemptedQuestion(BaseModel):
    """One question of a student's test attempt."""

    text: str
    chapter: Optional[str] = None
    correct_answer: Optional[str] = None
    student_answer: Optional[str] = None


# Gemini responseSchema (OpenAPI subset) for each output shape.
STRING_LIST_SCHEMA: Dict[str, Any] = {"type": "ARRAY", "items": {"type": "STRING"}}

GENERATED_QUESTIONS_SCHEMA: Dict[str, Any] = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {"text": {"type": "STRING"}, "answer": {"type": "STRING"}},
        "required": ["text"],
    },
}

EXTRACTED_QUESTIONS_SCHEMA: Dict[str, Any] = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {"text": {"type": "STRING"}, "marks": {"type": "NUMBER"}},
        "required": ["text"],
    },
}

FLASHCARDS_SCHEMA: Dict[str, Any] = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {"question": {"type": "STRING"}, "answer": {"type": "STRING"}},
        "required": ["question", "answer"],
    },
}

TEST_ANALYSIS_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "strengths": {"type": "ARRAY", "items": {"type": "STRING"}},
        "weaknesses": {"type": "ARRAY", "items": {"type": "STRING"}},
        "summary": {"type": "STRING"},
    },
    "required": ["strengths", "weaknesses", "summary"],
}

PRACTICE_SUGGESTIONS_SCHEMA: Dict[str, Any] = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "chapter": {"type": "STRING"},
            "topic": {"type": "STRING"},
            "reason": {"type": "STRING"},
        },
        "required": ["chapter", "topic", "reason"],
    },
}

DIAGRAM_SUGGESTIONS_SCHEMA: Dict[str, Any] = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "name": {"type": "STRING"},
            "description": {"type": "STRING"},
            "image_prompt": {"type": "STRING"},
        },
        "required": ["name", "description", "image_prompt"],
    },
}


def _lenient_extract(text: str) -> Optional[str]:
    """Pull a JSON document out of a fenced block or surrounding prose."""
    match = _FENCE_RE.search(text)
    if match and match.group(1).strip():
        return match.group(1).strip()

    starts = [i for i in (text.find("["), text.find("{")) if i != -1]
    if not starts:
        return None
    start = min(starts)
    end = max(text.rfind("]"), text.rfind("}"))
    if end <= start:
        return None
    return text[start:end + 1]


def parse_json_payload(text: str) -> Any:
    """
    Parse a backend text payload as JSON.

    Raises:
        MalformedResponseError: if neither the raw text nor the one lenient
            re-extraction parses
    """
    stripped = (text or "").strip()
    try:
        return json.loads(stripped)
    except json.JSONDecodeError:
        pass

    candidate = _lenient_extract(stripped)
    if candidate is None:
        raise MalformedResponseError("AI response was not valid JSON.", raw_output=text)
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise MalformedResponseError(
            "AI response was not valid JSON, even after extraction.",
            raw_output=text,
        ) from exc


def _unwrap_list(payload: Any) -> Any:
    """Unwrap `{"items": [...]}`-style objects when a list is expected."""
    if isinstance(payload, dict):
        lists = [value for value in payload.values() if isinstance(value, list)]
        if len(lists) == 1:
            return lists[0]
    return payload


def validate_list(payload: Any, item_type: Type[T], *, allow_empty: bool = True) -> List[T]:
    """
    Validate a decoded payload as a list of `item_type`.

    Raises:
        MalformedResponseError: wrong shape, or empty when not allowed
    """
    payload = _unwrap_list(payload)
    if not isinstance(payload, list):
        raise MalformedResponseError(
            "AI response was not in the expected array format.",
            raw_output=json.dumps(payload, default=str),
        )
    try:
        items = TypeAdapter(List[item_type]).validate_python(payload)
    except ValidationError as exc:
        raise MalformedResponseError(f"Invalid AI payload: {exc}") from exc
    if not items and not allow_empty:
        raise MalformedResponseError("AI response was an empty list.")
    return items


def validate_object(payload: Any, model: Type[BaseModel]) -> Any:
    """
    Validate a decoded payload as `model`.

    Raises:
        MalformedResponseError: if validation fails
    """
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise MalformedResponseError(f"Invalid AI payload: {exc}") from exc


def validate_string_list(payload: Any) -> List[str]:
    """Non-empty list of non-blank strings (subjects, chapters)."""
    items = validate_list(payload, str, allow_empty=False)
    cleaned = [item.strip() for item in items if item.strip()]
    if not cleaned:
        raise MalformedResponseError("AI response contained no usable entries.")
    return cleaned
