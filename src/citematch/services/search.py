"""Fan a reference out to the registered candidate providers."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass

import structlog

from citematch.models import Candidate, Reference, SourceEvaluation
from .providers import CandidateProvider

logger = structlog.get_logger(__name__)

Evaluator = Callable[[Candidate], Awaitable[SourceEvaluation]]


@dataclass(frozen=True, slots=True)
class EarlyTerminationPolicy:
    """Stop sequential search once a score reaches the threshold."""

    threshold: float

    def should_stop(self, overall_score: float) -> bool:
        return overall_score >= self.threshold


class SearchCoordinator:
    """Runs provider searches in parallel or in priority order."""

    def __init__(
        self,
        providers: Iterable[CandidateProvider],
        *,
        timeout: float | None = None,
    ) -> None:
        self._providers = list(providers)
        self._timeout = timeout

    @property
    def providers(self) -> list[CandidateProvider]:
        return list(self._providers)

    def by_priority(self) -> list[CandidateProvider]:
        """Providers ordered by ``priority``; ties keep declaration order."""
        return sorted(self._providers, key=lambda provider: getattr(provider, "priority", 0))

    async def search_all(self, reference: Reference) -> list[Candidate]:
        """Query every provider concurrently and keep the successful hits."""
        if not self._providers:
            return []
        results = await asyncio.gather(
            *(self._search_one(provider, reference) for provider in self._providers)
        )
        candidates = [candidate for candidate in results if candidate is not None]
        logger.info(
            "search.parallel_done",
            reference=reference.id,
            providers=len(self._providers),
            candidates=len(candidates),
        )
        return candidates

    async def search_until(
        self,
        reference: Reference,
        evaluate: Evaluator,
        policy: EarlyTerminationPolicy,
    ) -> list[SourceEvaluation]:
        """Search providers one at a time, scoring each hit before moving on."""
        providers = self.by_priority()
        evaluations: list[SourceEvaluation] = []
        for checked, provider in enumerate(providers, start=1):
            candidate = await self._search_one(provider, reference)
            if candidate is None:
                continue
            evaluation = await evaluate(candidate)
            evaluations.append(evaluation)
            score = evaluation.match_details.overall_score
            if policy.should_stop(score):
                logger.info(
                    "search.early_stop",
                    reference=reference.id,
                    provider=provider.name,
                    score=score,
                    threshold=policy.threshold,
                    checked=checked,
                    total=len(providers),
                )
                break
        return evaluations

    async def _search_one(
        self, provider: CandidateProvider, reference: Reference
    ) -> Candidate | None:
        logger.debug("search.provider_invoke", provider=provider.name, reference=reference.id)
        try:
            if self._timeout is None:
                candidate = await provider.search(reference.metadata)
            else:
                candidate = await asyncio.wait_for(
                    provider.search(reference.metadata), timeout=self._timeout
                )
        except asyncio.TimeoutError:
            logger.warning("search.provider_timeout", provider=provider.name, reference=reference.id)
            return None
        except Exception as exc:
            logger.warning(
                "search.provider_error",
                provider=provider.name,
                reference=reference.id,
                error=str(exc),
            )
            return None
        if candidate is None:
            logger.info("search.provider_miss", provider=provider.name, reference=reference.id)
        else:
            logger.info(
                "search.provider_hit",
                provider=provider.name,
                reference=reference.id,
                candidate=candidate.id,
            )
        return candidate
