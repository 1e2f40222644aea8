"""Field eligibility and weight validation for candidate scoring."""

from __future__ import annotations

import math
from collections.abc import Callable, Mapping

from citematch.models import ReferenceMetadata
from citematch.services.scoring import effective_weight

FieldGetter = Callable[[ReferenceMetadata], object]

# Weight-table keys mapped onto the nested metadata model.
FIELD_ACCESSORS: dict[str, FieldGetter] = {
    "title": lambda m: m.title,
    "authors": lambda m: m.authors,
    "year": lambda m: m.date.year,
    "month": lambda m: m.date.month,
    "day": lambda m: m.date.day,
    "doi": lambda m: m.identifiers.doi,
    "isbn": lambda m: m.identifiers.isbn,
    "issn": lambda m: m.identifiers.issn,
    "pmid": lambda m: m.identifiers.pmid,
    "pmcid": lambda m: m.identifiers.pmcid,
    "arxivId": lambda m: m.identifiers.arxiv_id,
    "containerTitle": lambda m: m.source.container_title,
    "subtitle": lambda m: m.source.subtitle,
    "volume": lambda m: m.source.volume,
    "issue": lambda m: m.source.issue,
    "pages": lambda m: m.source.pages,
    "publisher": lambda m: m.source.publisher,
    "url": lambda m: m.source.url,
    "sourceType": lambda m: m.source.source_type,
    "conference": lambda m: m.source.conference,
    "institution": lambda m: m.source.institution,
    "edition": lambda m: m.source.edition,
    "articleNumber": lambda m: m.source.article_number,
}


class FieldWeightsError(ValueError):
    """Raised when a weight table cannot be used for validated matching."""


def field_value(metadata: ReferenceMetadata, field: str) -> object:
    """Return the raw value for ``field`` or ``None`` when the field is unknown."""
    getter = FIELD_ACCESSORS.get(field)
    if getter is None:
        return None
    return getter(metadata)


def has_value(value: object) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) > 0
    return True


def available_fields(
    reference: ReferenceMetadata,
    candidate: ReferenceMetadata,
    weights: Mapping[str, float],
) -> list[str]:
    """Fields with a nonzero weight that are populated on both sides.

    Order follows the weight table so the oracle sees a stable field list.
    """
    eligible: list[str] = []
    for field, weight in weights.items():
        if effective_weight(weight) <= 0:
            continue
        if not has_value(field_value(reference, field)):
            continue
        if not has_value(field_value(candidate, field)):
            continue
        eligible.append(field)
    return eligible


def validate_field_weights(weights: Mapping[str, float]) -> None:
    """Check that weights are finite, lie in [0, 100] and that enabled ones sum to 100."""
    if not weights:
        raise FieldWeightsError("At least one field weight must be configured")
    for field, weight in weights.items():
        if not math.isfinite(weight):
            raise FieldWeightsError(f"Weight for {field!r} must be a finite number, got {weight}")
        if weight < 0 or weight > 100:
            raise FieldWeightsError(f"Weight for {field!r} must be between 0 and 100, got {weight}")
    enabled = {field: weight for field, weight in weights.items() if weight > 0}
    if not enabled:
        raise FieldWeightsError("At least one field must be enabled")
    total = sum(enabled.values())
    if abs(total - 100) > 1e-9:
        raise FieldWeightsError(f"Invalid field weights: {total:g}% (expected 100%)")
