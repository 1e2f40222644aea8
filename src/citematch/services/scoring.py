"""Weighted aggregation of per-field similarity scores."""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping

from citematch.models import (
    FieldMatchDetail,
    MatchDetails,
    MatchQuality,
    MatchQualityThresholds,
)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def effective_weight(weight: float | None) -> float:
    """Missing, negative and non-finite weights all count as 0."""
    if not weight or not math.isfinite(weight) or weight < 0:
        return 0.0
    return float(weight)


def aggregate(field_details: Iterable[FieldMatchDetail], weights: Mapping[str, float]) -> int:
    """Weighted mean of the evaluated fields, renormalized by their weight mass.

    Fields missing from ``weights`` or carrying a non-finite weight contribute
    nothing. Empty input or a zero weight sum yields 0.
    """
    weighted_total = 0.0
    weight_total = 0.0
    for detail in field_details:
        weight = effective_weight(weights.get(detail.field))
        weighted_total += detail.match_score * weight
        weight_total += weight
    if weight_total <= 0:
        return 0
    return min(100, max(0, round_half_up(weighted_total / weight_total)))


def build_match_details(
    field_details: list[FieldMatchDetail], weights: Mapping[str, float]
) -> MatchDetails:
    return MatchDetails(overall_score=aggregate(field_details, weights), field_details=field_details)


def classify_match(
    score: float, thresholds: MatchQualityThresholds | None = None
) -> MatchQuality:
    thresholds = thresholds or MatchQualityThresholds()
    if score >= thresholds.exact_match_threshold:
        return MatchQuality.EXACT
    if score >= thresholds.high_match_threshold:
        return MatchQuality.HIGH
    return MatchQuality.NONE
