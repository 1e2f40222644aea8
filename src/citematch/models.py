"""Core data models used throughout citematch."""

from __future__ import annotations

from enum import Enum
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class Author(_Frozen):
    """Represents a single contributor to a work."""

    first_name: str | None = Field(default=None, alias="firstName")
    last_name: str = Field(alias="lastName")

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)


AuthorName = Author | str


class DateInfo(_Frozen):
    """Publication date; any part may be missing."""

    year: int | None = None
    month: str | None = None
    day: int | None = None


class SourceInfo(_Frozen):
    """Where the work was published."""

    container_title: str | None = Field(default=None, alias="containerTitle")
    subtitle: str | None = None
    volume: str | None = None
    issue: str | None = None
    pages: str | None = None
    publisher: str | None = None
    url: str | None = None
    source_type: str | None = Field(default=None, alias="sourceType")
    conference: str | None = None
    institution: str | None = None
    edition: str | None = None
    article_number: str | None = Field(default=None, alias="articleNumber")


class ExternalIdentifiers(_Frozen):
    doi: str | None = None
    isbn: str | None = None
    issn: str | None = None
    pmid: str | None = None
    pmcid: str | None = None
    arxiv_id: str | None = Field(default=None, alias="arxivId")


class ReferenceMetadata(_Frozen):
    """Normalized bibliographic metadata shared by references and candidates."""

    title: str | None = None
    authors: list[AuthorName] = Field(default_factory=list)
    date: DateInfo = Field(default_factory=DateInfo)
    source: SourceInfo = Field(default_factory=SourceInfo)
    identifiers: ExternalIdentifiers = Field(default_factory=ExternalIdentifiers)


class Reference(_Frozen):
    """A parsed citation that should be resolved to an authoritative record."""

    id: str
    metadata: ReferenceMetadata


class SourceDatabase(str, Enum):
    OPENALEX = "openalex"
    CROSSREF = "crossref"
    EUROPEPMC = "europepmc"
    SEMANTIC_SCHOLAR = "semanticscholar"
    ARXIV = "arxiv"


class Candidate(_Frozen):
    """A record returned by one external database."""

    id: str
    source: SourceDatabase
    metadata: ReferenceMetadata
    url: str | None = None


class FieldMatchDetail(_Frozen):
    field: str
    match_score: int = Field(ge=0, le=100)


class MatchDetails(_Frozen):
    overall_score: int = Field(default=0, ge=0, le=100, alias="overallScore")
    field_details: list[FieldMatchDetail] = Field(default_factory=list, alias="fieldDetails")


class SourceEvaluation(_Frozen):
    source: Candidate
    match_details: MatchDetails = Field(alias="matchDetails")


class MatchingResult(_Frozen):
    """Ranked evaluations for one reference, best first."""

    source_evaluations: list[SourceEvaluation] = Field(
        default_factory=list, alias="sourceEvaluations"
    )

    @property
    def best(self) -> SourceEvaluation | None:
        return self.source_evaluations[0] if self.source_evaluations else None


class EarlyTerminationConfig(_Frozen):
    enabled: bool = True
    threshold: float = Field(default=85, ge=0, le=100)


class MatchQuality(str, Enum):
    EXACT = "exact"
    HIGH = "high"
    NONE = "none"


class MatchQualityThresholds(_Frozen):
    exact_match_threshold: float = Field(default=95, ge=0, le=100, alias="exactMatchThreshold")
    high_match_threshold: float = Field(default=70, ge=0, le=100, alias="highMatchThreshold")


DEFAULT_FIELD_WEIGHTS: dict[str, float] = {
    "title": 25,
    "authors": 20,
    "year": 5,
    "doi": 15,
    "arxivId": 8,
    "pmid": 3,
    "pmcid": 2,
    "isbn": 1,
    "issn": 1,
    "containerTitle": 10,
    "volume": 5,
    "issue": 3,
    "pages": 2,
}


class MatchingSettings(_Frozen):
    """Caller-supplied knobs for one matching operation."""

    early_termination: EarlyTerminationConfig = Field(
        default_factory=EarlyTerminationConfig, alias="earlyTermination"
    )
    field_weights: dict[str, Annotated[float, Field(allow_inf_nan=False)]] = Field(
        default_factory=lambda: dict(DEFAULT_FIELD_WEIGHTS), alias="fieldWeights"
    )

    @field_validator("field_weights", mode="before")
    @classmethod
    def _flatten_field_configurations(cls, value: object) -> object:
        # Accept the older {field: {"enabled": bool, "weight": n}} layout.
        if not isinstance(value, dict):
            return value
        flattened: dict[str, object] = {}
        for name, entry in value.items():
            if isinstance(entry, dict):
                enabled = entry.get("enabled", True)
                flattened[name] = entry.get("weight", 0) if enabled else 0
            else:
                flattened[name] = entry
        return flattened
