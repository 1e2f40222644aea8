"""Utility helpers for identifier and text normalization."""

from __future__ import annotations

import re
import unicodedata

DOI_PATTERN = re.compile(r"(10\.\d{4,9}/[^\s\"<>]+)", flags=re.IGNORECASE)
ARXIV_PATTERN = re.compile(
    r"(\d{4}\.\d{4,5}|[a-z\-]+(?:\.[A-Z]{2})?/\d{7})(?:v\d+)?", flags=re.IGNORECASE
)
PAGE_RANGE_PATTERN = re.compile(r"(\d+)\s*(?:[-\u2010-\u2015\u2212]+\s*(\d+))?")
_DASHES = re.compile("[\u2010-\u2015\u2212]")
_QUOTES = re.compile("[\u201c\u201d\u201e\u201f\u2018\u2019']")
_ZERO_WIDTH = re.compile("[\u200b-\u200d\ufeff]")
_WHITESPACE = re.compile(r"\s+")


def extract_doi(identifier: str | None) -> str | None:
    """Return a normalized DOI if the identifier contains one."""
    if not identifier:
        return None
    match = DOI_PATTERN.search(identifier.strip())
    if not match:
        return None
    doi = match.group(1).rstrip(".,;")
    return doi.lower()


def extract_arxiv_id(identifier: str | None) -> str | None:
    """Return the arXiv id without version suffix or URL prefix."""
    if not identifier:
        return None
    value = identifier.strip()
    value = re.sub(r"^(?:arxiv:|https?://arxiv\.org/(?:abs|pdf)/)", "", value, flags=re.IGNORECASE)
    match = ARXIV_PATTERN.search(value)
    if not match:
        return None
    return match.group(1).lower()


def normalize_text(value: str) -> str:
    """Lowercase, unify dashes/quotes and collapse whitespace."""
    value = unicodedata.normalize("NFKC", value)
    value = _ZERO_WIDTH.sub("", value)
    value = _DASHES.sub("-", value)
    value = _QUOTES.sub('"', value)
    return _WHITESPACE.sub(" ", value).strip().lower()


def normalize_identifier(value: str) -> str:
    """Strip resolver prefixes and punctuation so identifiers compare exactly."""
    doi = extract_doi(value)
    if doi:
        return doi
    value = re.sub(r"^(?:pmid|pmcid|isbn|issn)\s*:?\s*", "", value.strip(), flags=re.IGNORECASE)
    return re.sub(r"[\s\-]", "", value).lower()


def parse_page_range(value: str) -> tuple[int, int] | None:
    """Parse ``"123-145"`` or ``"7"`` into an inclusive range."""
    match = PAGE_RANGE_PATTERN.search(value or "")
    if not match:
        return None
    start = int(match.group(1))
    end = int(match.group(2)) if match.group(2) else start
    if end < start:
        # "1234-56" shorthand
        prefix = str(start)[: len(str(start)) - len(str(end))]
        end = int(prefix + str(end)) if prefix else start
        if end < start:
            end = start
    return start, end
