"""Search-and-match orchestration for a single reference or a batch."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence

import httpx
import structlog

from citematch.models import (
    Candidate,
    FieldMatchDetail,
    MatchDetails,
    MatchingResult,
    MatchingSettings,
    Reference,
    SourceEvaluation,
)
from citematch.settings import Settings
from .fields import available_fields, validate_field_weights
from .oracle import LexicalSimilarityOracle, OpenAISimilarityOracle, SimilarityOracle
from .providers import default_providers
from .scoring import build_match_details
from .search import EarlyTerminationPolicy, SearchCoordinator

logger = structlog.get_logger(__name__)


class MatchingOrchestrator:
    """Evaluates references against every registered database.

    Provider and oracle failures never escape :meth:`evaluate`: a failed
    provider contributes no candidate and a failed oracle call scores its
    candidate 0. Only an invalid weight table is reported to the caller,
    and that happens before any provider is contacted.
    """

    def __init__(
        self,
        coordinator: SearchCoordinator,
        oracle: SimilarityOracle,
        *,
        validate_weights: bool = True,
        batch_concurrency: int = 4,
    ) -> None:
        self._coordinator = coordinator
        self._oracle = oracle
        self._validate_weights = validate_weights
        self._batch_concurrency = max(1, batch_concurrency)

    async def evaluate(self, reference: Reference, settings: MatchingSettings) -> MatchingResult:
        weights = settings.field_weights
        if self._validate_weights:
            validate_field_weights(weights)

        async def evaluate_candidate(candidate: Candidate) -> SourceEvaluation:
            return await self.score_candidate(reference, candidate, weights)

        early = settings.early_termination
        if early.enabled:
            evaluations = await self._coordinator.search_until(
                reference,
                evaluate_candidate,
                EarlyTerminationPolicy(threshold=early.threshold),
            )
        else:
            candidates = await self._coordinator.search_all(reference)
            if not candidates:
                logger.info("match.no_candidates", reference=reference.id)
                return MatchingResult()
            evaluations = list(
                await asyncio.gather(*(evaluate_candidate(candidate) for candidate in candidates))
            )
        result = _ranked(evaluations)
        logger.info(
            "match.complete",
            reference=reference.id,
            evaluations=len(result.source_evaluations),
            best=result.best.match_details.overall_score if result.best else None,
            early_termination=early.enabled,
        )
        return result

    async def evaluate_many(
        self, references: Sequence[Reference], settings: MatchingSettings
    ) -> list[MatchingResult]:
        """Evaluate several references with bounded concurrency, in input order."""
        if self._validate_weights:
            validate_field_weights(settings.field_weights)
        semaphore = asyncio.Semaphore(self._batch_concurrency)

        async def run(reference: Reference) -> MatchingResult:
            async with semaphore:
                return await self.evaluate(reference, settings)

        return list(await asyncio.gather(*(run(reference) for reference in references)))

    async def score_candidate(
        self,
        reference: Reference,
        candidate: Candidate,
        weights: Mapping[str, float],
    ) -> SourceEvaluation:
        fields = available_fields(reference.metadata, candidate.metadata, weights)
        if not fields:
            return SourceEvaluation(source=candidate, match_details=MatchDetails())
        try:
            raw_details = await self._oracle.compare(reference.metadata, candidate.metadata, fields)
        except Exception as exc:
            logger.warning(
                "match.oracle_error",
                reference=reference.id,
                candidate=candidate.id,
                source=candidate.source.value,
                error=str(exc),
            )
            return SourceEvaluation(source=candidate, match_details=MatchDetails())
        details = _requested_only(raw_details, fields)
        return SourceEvaluation(source=candidate, match_details=build_match_details(details, weights))


def _requested_only(
    details: Sequence[FieldMatchDetail], fields: Sequence[str]
) -> list[FieldMatchDetail]:
    requested = set(fields)
    seen: set[str] = set()
    kept: list[FieldMatchDetail] = []
    for detail in details:
        if detail.field not in requested or detail.field in seen:
            continue
        seen.add(detail.field)
        kept.append(detail)
    return kept


def _ranked(evaluations: Sequence[SourceEvaluation]) -> MatchingResult:
    ordered = sorted(evaluations, key=lambda item: item.match_details.overall_score, reverse=True)
    return MatchingResult(source_evaluations=ordered)


def create_orchestrator(
    client: httpx.AsyncClient,
    settings: Settings,
    *,
    oracle: SimilarityOracle | None = None,
    matching_rules: Sequence[str] = (),
) -> MatchingOrchestrator:
    """Wire the default providers and oracle around one shared HTTP client."""
    if oracle is None:
        if settings.openai_api_key:
            oracle = OpenAISimilarityOracle(client, settings, rules=matching_rules)
        else:
            logger.info("match.lexical_oracle", reason="no OpenAI API key configured")
            oracle = LexicalSimilarityOracle()
    coordinator = SearchCoordinator(
        default_providers(client, settings), timeout=settings.provider_timeout
    )
    return MatchingOrchestrator(
        coordinator,
        oracle,
        validate_weights=settings.strict_weights,
        batch_concurrency=settings.batch_concurrency,
    )
