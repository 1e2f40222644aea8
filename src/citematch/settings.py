"""Configuration helpers for citematch."""

from __future__ import annotations

import logging
import os

import structlog
from dotenv import load_dotenv
from pydantic import BaseModel


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Settings(BaseModel):
    """Runtime configuration loaded from env vars with sensible defaults."""

    log_level: str = "INFO"
    user_agent: str = "citematch/0.1"
    contact_email: str | None = None
    provider_timeout: float = 20.0
    oracle_timeout: float = 60.0
    openalex_base_url: str = "https://api.openalex.org"
    crossref_base_url: str = "https://api.crossref.org/works"
    europepmc_base_url: str = "https://www.ebi.ac.uk/europepmc/webservices/rest"
    semantic_scholar_base_url: str = "https://api.semanticscholar.org/graph/v1"
    semantic_scholar_api_key: str | None = None
    arxiv_base_url: str = "https://export.arxiv.org/api/query"
    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o-mini"
    openai_temperature: float = 0.0
    strict_weights: bool = True
    batch_concurrency: int = 4

    @property
    def polite_user_agent(self) -> str:
        if self.contact_email:
            return f"{self.user_agent} (mailto:{self.contact_email})"
        return self.user_agent

    @classmethod
    def load(cls) -> "Settings":
        load_dotenv()
        return cls(
            log_level=os.environ.get("CITEMATCH_LOG_LEVEL", "INFO"),
            user_agent=os.environ.get("CITEMATCH_USER_AGENT", "citematch/0.1"),
            contact_email=os.environ.get("CITEMATCH_CONTACT_EMAIL"),
            provider_timeout=float(os.environ.get("CITEMATCH_PROVIDER_TIMEOUT", "20")),
            oracle_timeout=float(os.environ.get("CITEMATCH_ORACLE_TIMEOUT", "60")),
            openalex_base_url=os.environ.get(
                "CITEMATCH_OPENALEX_URL", "https://api.openalex.org"
            ),
            crossref_base_url=os.environ.get(
                "CITEMATCH_CROSSREF_URL", "https://api.crossref.org/works"
            ),
            europepmc_base_url=os.environ.get(
                "CITEMATCH_EUROPEPMC_URL", "https://www.ebi.ac.uk/europepmc/webservices/rest"
            ),
            semantic_scholar_base_url=os.environ.get(
                "CITEMATCH_SEMANTIC_SCHOLAR_URL", "https://api.semanticscholar.org/graph/v1"
            ),
            semantic_scholar_api_key=os.environ.get("CITEMATCH_SEMANTIC_SCHOLAR_API_KEY"),
            arxiv_base_url=os.environ.get(
                "CITEMATCH_ARXIV_URL", "https://export.arxiv.org/api/query"
            ),
            openai_api_key=os.environ.get("CITEMATCH_OPENAI_API_KEY"),
            openai_base_url=os.environ.get(
                "CITEMATCH_OPENAI_BASE_URL", "https://api.openai.com/v1"
            ),
            openai_model=os.environ.get("CITEMATCH_OPENAI_MODEL", "gpt-4o-mini"),
            openai_temperature=float(os.environ.get("CITEMATCH_OPENAI_TEMPERATURE", "0")),
            strict_weights=_env_bool("CITEMATCH_STRICT_WEIGHTS", True),
            batch_concurrency=int(os.environ.get("CITEMATCH_BATCH_CONCURRENCY", "4")),
        )


def get_settings() -> Settings:
    """Convenience accessor for lazy modules."""
    settings = Settings.load()
    configure_logging(settings)
    return settings


def configure_logging(settings: Settings) -> None:
    """Filter structlog output below the configured level."""
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(level))
