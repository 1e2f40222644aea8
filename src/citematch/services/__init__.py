"""Service abstractions for citematch."""

from .fields import (
    FIELD_ACCESSORS,
    FieldWeightsError,
    available_fields,
    field_value,
    validate_field_weights,
)
from .matching import MatchingOrchestrator, create_orchestrator
from .oracle import (
    MATCHING_RULES,
    LexicalSimilarityOracle,
    OpenAISimilarityOracle,
    OracleError,
    SimilarityOracle,
)
from .providers import (
    ArxivProvider,
    CandidateProvider,
    CrossrefProvider,
    EuropePmcProvider,
    OpenAlexProvider,
    ProviderError,
    SemanticScholarProvider,
    default_providers,
)
from .scoring import aggregate, build_match_details, classify_match
from .search import EarlyTerminationPolicy, SearchCoordinator

__all__ = [
    "FIELD_ACCESSORS",
    "FieldWeightsError",
    "available_fields",
    "field_value",
    "validate_field_weights",
    "MatchingOrchestrator",
    "create_orchestrator",
    "MATCHING_RULES",
    "LexicalSimilarityOracle",
    "OpenAISimilarityOracle",
    "OracleError",
    "SimilarityOracle",
    "ArxivProvider",
    "CandidateProvider",
    "CrossrefProvider",
    "EuropePmcProvider",
    "OpenAlexProvider",
    "ProviderError",
    "SemanticScholarProvider",
    "default_providers",
    "aggregate",
    "build_match_details",
    "classify_match",
    "EarlyTerminationPolicy",
    "SearchCoordinator",
]
