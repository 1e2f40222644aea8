"""Per-field similarity judgments between a reference and a candidate."""

from __future__ import annotations

import json
import re
from collections.abc import Sequence
from typing import Protocol

import httpx
import structlog
from pydantic import BaseModel, Field, ValidationError
from rapidfuzz import fuzz, utils

from citematch.models import Author, FieldMatchDetail, ReferenceMetadata
from citematch.settings import Settings
from citematch.utils import (
    extract_arxiv_id,
    normalize_identifier,
    normalize_text,
    parse_page_range,
)
from .fields import field_value
from .scoring import round_half_up

logger = structlog.get_logger(__name__)


class OracleError(RuntimeError):
    """Raised when the oracle cannot produce usable field scores."""


class SimilarityOracle(Protocol):
    """Scores each requested field in [0, 100]."""

    async def compare(
        self,
        reference: ReferenceMetadata,
        candidate: ReferenceMetadata,
        fields: Sequence[str],
    ) -> list[FieldMatchDetail]:
        ...


MATCHING_RULES: dict[str, tuple[str, str]] = {
    "ignore-spelling-variation": (
        "Ignore minor spelling variations in the text.",
        '"color" = "colour"',
    ),
    "ignore-typographic-variation": (
        "Ignore typographic variations such as different quotation marks or dashes.",
        '"smart quotes" = "straight quotes"',
    ),
    "ignore-case-format": (
        "Ignore case differences in text. Treat capitalized and lowercased words as equivalent.",
        '"Machine Learning Methods" = "machine learning methods"',
    ),
    "ignore-abbreviation-variants": (
        "Ignore variations in abbreviations.",
        '"Proc." = "Proceedings"',
    ),
    "ignore-author-name-format": (
        "Ignore variations in author name formatting.",
        '"John Smith" = "Smith, John", "Doe, J." = "John Doe"',
    ),
    "ignore-date-format": (
        "Ignore variations in date formats.",
        '"2023-01-01" = "January 1, 2023"',
    ),
    "ignore-identifier-variation": (
        "Ignore variations in identifier formats such as DOIs or ISBNs.",
        '"10.1000/xyz123" = "https://doi.org/10.1000/XYZ123"',
    ),
    "ignore-character-variation": (
        "Ignore variations in characters that do not affect meaning.",
        '"café" = "cafe"',
    ),
    "ignore-whitespace": (
        "Ignore extra whitespace in the text.",
        '"Hello   World" = "Hello World"',
    ),
}


class _OracleReply(BaseModel):
    field_details: list[FieldMatchDetail] = Field(alias="fieldDetails")


class OpenAISimilarityOracle:
    """Asks an OpenAI-compatible chat model to score each field."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: Settings,
        *,
        rules: Sequence[str] = (),
    ) -> None:
        self._client = client
        self._settings = settings
        self._rules = [rule for rule in rules if rule in MATCHING_RULES]

    async def compare(
        self,
        reference: ReferenceMetadata,
        candidate: ReferenceMetadata,
        fields: Sequence[str],
    ) -> list[FieldMatchDetail]:
        if not fields:
            return []
        if not self._settings.openai_api_key:
            raise OracleError("An OpenAI API key is required for AI field matching")
        payload = {
            "model": self._settings.openai_model,
            "temperature": self._settings.openai_temperature,
            "messages": [
                {"role": "system", "content": self._system_message(fields)},
                {"role": "user", "content": self._user_message(reference, candidate, fields)},
            ],
            "response_format": {"type": "json_schema", "json_schema": _response_schema(fields)},
        }
        try:
            response = await self._client.post(
                f"{self._settings.openai_base_url.rstrip('/')}/chat/completions",
                json=payload,
                headers={"Authorization": f"Bearer {self._settings.openai_api_key}"},
                timeout=self._settings.oracle_timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("oracle.http_error", error=str(exc))
            raise OracleError(f"Failed to match fields: {exc}") from exc
        return _parse_reply(response)

    def _system_message(self, fields: Sequence[str]) -> str:
        count = len(fields)
        lines = [
            "You are an expert bibliographic matching assistant. "
            "Your task is to provide field-by-field matching scores.",
            "",
            "CRITICAL INSTRUCTIONS:",
            f"- Evaluate ALL of the {count} available fields listed in the prompt",
            f"- Return EXACTLY {count} field evaluations, one per listed field",
            "- Evaluate each field independently, even if other fields don't match",
            "- A DOI match does NOT mean you can skip evaluating title, authors, etc.",
            "- Each field gets its own integer score from 0-100",
        ]
        lines.append("")
        if self._rules:
            lines.append(
                "IMPORTANT: Apply the following rules when comparing fields. "
                "Do NOT apply any other rules beyond those listed below:"
            )
            for rule in self._rules:
                prompt, example = MATCHING_RULES[rule]
                lines.append(f"- {prompt} Example: {example}")
        else:
            lines.append("Compare fields as they are without modifications.")
        return "\n".join(lines)

    def _user_message(
        self,
        reference: ReferenceMetadata,
        candidate: ReferenceMetadata,
        fields: Sequence[str],
    ) -> str:
        field_list = ", ".join(fields)
        return (
            f"Available fields for matching:\n{field_list}\n\n"
            f"Reference:\n{_render(reference)}\n\n"
            f"Source:\n{_render(candidate)}\n\n"
            f"IMPORTANT: Return matching scores for ALL of these fields: {field_list}"
        )


def _render(metadata: ReferenceMetadata) -> str:
    return json.dumps(
        metadata.model_dump(mode="json", by_alias=True, exclude_none=True),
        indent=2,
        ensure_ascii=False,
    )


def _response_schema(fields: Sequence[str]) -> dict:
    return {
        "name": "field_matching",
        "strict": True,
        "schema": {
            "type": "object",
            "properties": {
                "fieldDetails": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "field": {"type": "string", "enum": list(fields)},
                            "match_score": {"type": "integer", "minimum": 0, "maximum": 100},
                        },
                        "required": ["field", "match_score"],
                        "additionalProperties": False,
                    },
                }
            },
            "required": ["fieldDetails"],
            "additionalProperties": False,
        },
    }


def _parse_reply(response: httpx.Response) -> list[FieldMatchDetail]:
    try:
        data = response.json()
        content = data["choices"][0]["message"]["content"]
    except (ValueError, KeyError, IndexError, TypeError) as exc:
        raise OracleError("No content in matching response") from exc
    if not isinstance(content, str) or not content.strip():
        raise OracleError("No content in matching response")
    try:
        reply = _OracleReply.model_validate_json(content)
    except ValidationError as exc:
        logger.warning("oracle.invalid_reply", content=content[:500])
        raise OracleError("Invalid matching response") from exc
    return reply.field_details


_IDENTIFIER_FIELDS = {"doi", "isbn", "issn", "pmid", "pmcid"}
_NUMERIC_FIELDS = {"volume", "issue", "articleNumber", "edition"}
_DIGITS = re.compile(r"\d+")


class LexicalSimilarityOracle:
    """Deterministic local oracle built on normalized string similarity."""

    async def compare(
        self,
        reference: ReferenceMetadata,
        candidate: ReferenceMetadata,
        fields: Sequence[str],
    ) -> list[FieldMatchDetail]:
        details: list[FieldMatchDetail] = []
        for field in fields:
            left = field_value(reference, field)
            right = field_value(candidate, field)
            if left is None or right is None:
                continue
            score = self.score_field(field, left, right)
            details.append(FieldMatchDetail(field=field, match_score=round_half_up(score)))
        return details

    def score_field(self, field: str, left: object, right: object) -> float:
        if field == "authors":
            return _author_similarity(list(left), list(right))
        if field in _IDENTIFIER_FIELDS:
            return 100.0 if normalize_identifier(str(left)) == normalize_identifier(str(right)) else 0.0
        if field == "arxivId":
            return 100.0 if extract_arxiv_id(str(left)) == extract_arxiv_id(str(right)) else 0.0
        if field == "year":
            return _year_similarity(left, right)
        if field in _NUMERIC_FIELDS:
            if _DIGITS.findall(str(left)) and _DIGITS.findall(str(left)) == _DIGITS.findall(str(right)):
                return 100.0
        if field == "pages":
            overlap = _page_overlap(str(left), str(right))
            if overlap is not None:
                return overlap
        if field == "url":
            left, right = _strip_scheme(str(left)), _strip_scheme(str(right))
        return _text_similarity(str(left), str(right))


def _text_similarity(left: str, right: str) -> float:
    return fuzz.token_sort_ratio(normalize_text(left), normalize_text(right), processor=utils.default_process)


def _author_name(author: object) -> str:
    if isinstance(author, Author):
        return author.full_name
    return str(author)


def _author_similarity(left: list, right: list) -> float:
    if not left or not right:
        return 0.0
    candidates = [_author_name(author) for author in right]
    best_scores = []
    for author in left:
        name = _author_name(author)
        best_scores.append(max(_text_similarity(name, other) for other in candidates))
    return sum(best_scores) / len(best_scores)


def _year_similarity(left: object, right: object) -> float:
    try:
        delta = abs(int(str(left)) - int(str(right)))
    except ValueError:
        return _text_similarity(str(left), str(right))
    if delta == 0:
        return 100.0
    if delta == 1:
        return 50.0
    return 0.0


def _page_overlap(left: str, right: str) -> float | None:
    first, second = parse_page_range(left), parse_page_range(right)
    if first is None or second is None:
        return None
    low, high = max(first[0], second[0]), min(first[1], second[1])
    if high < low:
        return 0.0
    union = max(first[1], second[1]) - min(first[0], second[0]) + 1
    return 100.0 * (high - low + 1) / union


def _strip_scheme(url: str) -> str:
    return re.sub(r"^https?://(www\.)?", "", url.strip(), flags=re.IGNORECASE).rstrip("/")
