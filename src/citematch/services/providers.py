"""Candidate providers wrapping external bibliographic databases.

Every provider answers one question: given reference metadata, which single
record in my database best matches it? Identifier lookups run first, then a
title query. ``None`` means "not found"; transport and parse failures raise
:class:`ProviderError` so the coordinator can tell the two apart.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import Any, Protocol
from urllib.parse import quote

import httpx
import structlog

from citematch.models import (
    Author,
    AuthorName,
    Candidate,
    DateInfo,
    ExternalIdentifiers,
    ReferenceMetadata,
    SourceDatabase,
    SourceInfo,
)
from citematch.settings import Settings
from citematch.utils import extract_arxiv_id, extract_doi

logger = structlog.get_logger(__name__)


class ProviderError(RuntimeError):
    """Raised when a provider cannot complete a search."""


class CandidateProvider(Protocol):
    """Protocol for candidate providers."""

    name: str
    source: SourceDatabase
    priority: int

    async def search(self, metadata: ReferenceMetadata) -> Candidate | None:
        ...


class _HTTPProvider:
    name: str
    source: SourceDatabase
    priority: int = 0

    def __init__(self, client: httpx.AsyncClient, settings: Settings) -> None:
        self._client = client
        self._settings = settings

    def _headers(self) -> dict[str, str]:
        return {"User-Agent": self._settings.polite_user_agent}

    async def _get(self, url: str, params: dict[str, Any] | None = None) -> httpx.Response | None:
        try:
            response = await self._client.get(
                url,
                params=params,
                headers=self._headers(),
                timeout=self._settings.provider_timeout,
            )
        except httpx.HTTPError as exc:
            logger.warning("provider.http_error", provider=self.name, url=url, error=str(exc))
            raise ProviderError(f"{self.name} request failed: {exc}") from exc
        if response.status_code == 404:
            return None
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning("provider.bad_status", provider=self.name, status=response.status_code)
            raise ProviderError(f"{self.name} returned HTTP {response.status_code}") from exc
        return response

    async def _get_json(self, url: str, params: dict[str, Any] | None = None) -> dict | None:
        response = await self._get(url, params)
        if response is None:
            return None
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError(f"{self.name} returned malformed JSON") from exc
        if not isinstance(payload, dict):
            raise ProviderError(f"{self.name} returned an unexpected payload")
        return payload


class OpenAlexProvider(_HTTPProvider):
    name = "OpenAlex"
    source = SourceDatabase.OPENALEX
    priority = 1

    async def search(self, metadata: ReferenceMetadata) -> Candidate | None:
        doi = extract_doi(metadata.identifiers.doi)
        if doi:
            work = await self._get_json(
                f"{self._settings.openalex_base_url}/works/{quote('https://doi.org/' + doi, safe=':/')}"
            )
            if work and work.get("id"):
                return self._to_candidate(work)
        if not metadata.title:
            return None
        params: dict[str, Any] = {"search": metadata.title, "per-page": 1}
        if metadata.date.year:
            params["filter"] = f"publication_year:{metadata.date.year}"
        if self._settings.contact_email:
            params["mailto"] = self._settings.contact_email
        payload = await self._get_json(f"{self._settings.openalex_base_url}/works", params)
        results = (payload or {}).get("results") or []
        if not results:
            return None
        return self._to_candidate(results[0])

    def _to_candidate(self, work: dict) -> Candidate:
        ids = work.get("ids") or {}
        biblio = work.get("biblio") or {}
        location = work.get("primary_location") or {}
        venue = location.get("source") or {}
        first_page, last_page = biblio.get("first_page"), biblio.get("last_page")
        pages = first_page
        if first_page and last_page and last_page != first_page:
            pages = f"{first_page}-{last_page}"
        doi = extract_doi(work.get("doi"))
        metadata = ReferenceMetadata(
            title=work.get("display_name") or work.get("title"),
            authors=[
                name
                for name in (
                    (entry.get("author") or {}).get("display_name")
                    for entry in work.get("authorships") or []
                )
                if name
            ],
            date=DateInfo(year=work.get("publication_year")),
            source=SourceInfo(
                container_title=venue.get("display_name"),
                volume=biblio.get("volume"),
                issue=biblio.get("issue"),
                pages=pages,
                url=location.get("landing_page_url"),
                source_type=work.get("type"),
            ),
            identifiers=ExternalIdentifiers(
                doi=doi,
                issn=venue.get("issn_l"),
                pmid=_last_segment(ids.get("pmid")),
                pmcid=_last_segment(ids.get("pmcid")),
            ),
        )
        url = f"https://doi.org/{doi}" if doi else work.get("id")
        return Candidate(id=work["id"], source=self.source, metadata=metadata, url=url)


class CrossrefProvider(_HTTPProvider):
    name = "Crossref"
    source = SourceDatabase.CROSSREF
    priority = 2

    async def search(self, metadata: ReferenceMetadata) -> Candidate | None:
        base_url = self._settings.crossref_base_url
        doi = extract_doi(metadata.identifiers.doi)
        if doi:
            payload = await self._get_json(f"{base_url}/{quote(doi)}")
            message = (payload or {}).get("message")
            if message:
                return self._to_candidate(message)
        if not metadata.title:
            return None
        query = metadata.title
        first_author = _first_author_family(metadata.authors)
        if first_author:
            query = f"{query} {first_author}"
        params: dict[str, Any] = {"query.bibliographic": query, "rows": 1}
        if self._settings.contact_email:
            params["mailto"] = self._settings.contact_email
        payload = await self._get_json(base_url, params)
        items = ((payload or {}).get("message") or {}).get("items") or []
        if not items:
            return None
        return self._to_candidate(items[0])

    def _to_candidate(self, payload: dict) -> Candidate:
        issued = (payload.get("issued") or {}).get("date-parts") or [[]]
        parts = issued[0] or []
        authors: list[AuthorName] = [
            Author(first_name=entry.get("given") or None, last_name=entry["family"])
            for entry in payload.get("author") or []
            if entry.get("family")
        ]
        doi = (payload.get("DOI") or "").lower() or None
        metadata = ReferenceMetadata(
            title=_first(payload.get("title")),
            authors=authors,
            date=DateInfo(
                year=parts[0] if len(parts) > 0 else None,
                month=str(parts[1]) if len(parts) > 1 else None,
                day=parts[2] if len(parts) > 2 else None,
            ),
            source=SourceInfo(
                container_title=_first(payload.get("container-title")),
                subtitle=_first(payload.get("subtitle")),
                volume=payload.get("volume"),
                issue=payload.get("issue"),
                pages=payload.get("page"),
                publisher=payload.get("publisher"),
                url=payload.get("URL"),
                source_type=payload.get("type"),
                article_number=payload.get("article-number"),
            ),
            identifiers=ExternalIdentifiers(
                doi=doi,
                issn=_first(payload.get("ISSN")),
                isbn=_first(payload.get("ISBN")),
            ),
        )
        return Candidate(
            id=doi or payload.get("URL") or "",
            source=self.source,
            metadata=metadata,
            url=payload.get("URL"),
        )


class EuropePmcProvider(_HTTPProvider):
    name = "EuropePMC"
    source = SourceDatabase.EUROPEPMC
    priority = 3

    async def search(self, metadata: ReferenceMetadata) -> Candidate | None:
        identifiers = metadata.identifiers
        queries: list[str] = []
        doi = extract_doi(identifiers.doi)
        if doi:
            queries.append(f'DOI:"{doi}"')
        if identifiers.pmid:
            queries.append(f"EXT_ID:{identifiers.pmid.strip()} AND SRC:MED")
        if identifiers.pmcid:
            queries.append(f"PMCID:{identifiers.pmcid.strip().upper()}")
        if metadata.title:
            title = metadata.title.replace('"', " ")
            queries.append(f'TITLE:"{title}"')
        for query in queries:
            payload = await self._get_json(
                f"{self._settings.europepmc_base_url}/search",
                {"query": query, "format": "json", "resultType": "core", "pageSize": 1},
            )
            results = (((payload or {}).get("resultList") or {}).get("result")) or []
            if results:
                return self._to_candidate(results[0])
        return None

    def _to_candidate(self, result: dict) -> Candidate:
        journal_info = result.get("journalInfo") or {}
        journal = journal_info.get("journal") or {}
        authors: list[AuthorName] = []
        for entry in (result.get("authorList") or {}).get("author") or []:
            if entry.get("lastName"):
                authors.append(Author(first_name=entry.get("firstName"), last_name=entry["lastName"]))
            elif entry.get("fullName"):
                authors.append(entry["fullName"])
        year = result.get("pubYear")
        pmid = result.get("pmid")
        metadata = ReferenceMetadata(
            title=(result.get("title") or "").rstrip(".") or None,
            authors=authors,
            date=DateInfo(year=int(year) if year and str(year).isdigit() else None),
            source=SourceInfo(
                container_title=journal.get("title"),
                volume=journal_info.get("volume"),
                issue=journal_info.get("issue"),
                pages=result.get("pageInfo"),
                source_type=result.get("pubType"),
            ),
            identifiers=ExternalIdentifiers(
                doi=extract_doi(result.get("doi")),
                issn=journal.get("issn"),
                pmid=pmid,
                pmcid=result.get("pmcid"),
            ),
        )
        record_id = str(result.get("id") or pmid or "")
        url = f"https://europepmc.org/article/{result.get('source', 'MED')}/{record_id}"
        return Candidate(id=record_id, source=self.source, metadata=metadata, url=url)


class SemanticScholarProvider(_HTTPProvider):
    name = "Semantic Scholar"
    source = SourceDatabase.SEMANTIC_SCHOLAR
    priority = 4

    _FIELDS = "paperId,title,authors,year,venue,journal,externalIds,url,publicationTypes"

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        if self._settings.semantic_scholar_api_key:
            headers["x-api-key"] = self._settings.semantic_scholar_api_key
        return headers

    async def search(self, metadata: ReferenceMetadata) -> Candidate | None:
        base_url = self._settings.semantic_scholar_base_url
        identifiers = metadata.identifiers
        lookups: list[str] = []
        doi = extract_doi(identifiers.doi)
        if doi:
            lookups.append(f"DOI:{doi}")
        arxiv_id = extract_arxiv_id(identifiers.arxiv_id)
        if arxiv_id:
            lookups.append(f"ARXIV:{arxiv_id}")
        if identifiers.pmid:
            lookups.append(f"PMID:{identifiers.pmid.strip()}")
        for lookup in lookups:
            paper = await self._get_json(f"{base_url}/paper/{lookup}", {"fields": self._FIELDS})
            if paper and paper.get("paperId"):
                return self._to_candidate(paper)
        if not metadata.title:
            return None
        payload = await self._get_json(
            f"{base_url}/paper/search/match",
            {"query": metadata.title, "fields": self._FIELDS},
        )
        data = (payload or {}).get("data") or []
        if not data:
            return None
        return self._to_candidate(data[0])

    def _to_candidate(self, paper: dict) -> Candidate:
        external = paper.get("externalIds") or {}
        journal = paper.get("journal") or {}
        pmcid = external.get("PubMedCentral")
        metadata = ReferenceMetadata(
            title=paper.get("title"),
            authors=[entry["name"] for entry in paper.get("authors") or [] if entry.get("name")],
            date=DateInfo(year=paper.get("year")),
            source=SourceInfo(
                container_title=journal.get("name") or paper.get("venue") or None,
                volume=(journal.get("volume") or "").strip() or None,
                pages=(journal.get("pages") or "").strip() or None,
                url=paper.get("url"),
                source_type=_first(paper.get("publicationTypes")),
            ),
            identifiers=ExternalIdentifiers(
                doi=extract_doi(external.get("DOI")),
                arxiv_id=external.get("ArXiv"),
                pmid=external.get("PubMed"),
                pmcid=f"PMC{pmcid}" if pmcid and not str(pmcid).upper().startswith("PMC") else pmcid,
            ),
        )
        return Candidate(id=paper["paperId"], source=self.source, metadata=metadata, url=paper.get("url"))


_ATOM_NS = "http://www.w3.org/2005/Atom"
_ARXIV_NS = "http://arxiv.org/schemas/atom"


class ArxivProvider(_HTTPProvider):
    name = "ArXiv"
    source = SourceDatabase.ARXIV
    priority = 5

    async def search(self, metadata: ReferenceMetadata) -> Candidate | None:
        arxiv_id = extract_arxiv_id(metadata.identifiers.arxiv_id)
        if arxiv_id:
            params: dict[str, Any] = {"id_list": arxiv_id, "max_results": 1}
        elif metadata.title:
            title = " ".join(metadata.title.replace('"', " ").split())
            params = {"search_query": f'ti:"{title}"', "max_results": 1}
        else:
            return None
        response = await self._get(self._settings.arxiv_base_url, params)
        if response is None:
            return None
        entries = _parse_atom_feed(response.text)
        if not entries:
            return None
        return self._to_candidate(entries[0])

    def _to_candidate(self, entry: dict) -> Candidate:
        published = entry.get("published") or ""
        year = int(published[:4]) if published[:4].isdigit() else None
        metadata = ReferenceMetadata(
            title=entry.get("title"),
            authors=entry.get("authors") or [],
            date=DateInfo(year=year),
            source=SourceInfo(
                container_title=entry.get("journal_ref"),
                url=entry.get("id_url"),
                source_type="preprint",
            ),
            identifiers=ExternalIdentifiers(doi=entry.get("doi"), arxiv_id=entry.get("id")),
        )
        return Candidate(id=entry["id"], source=self.source, metadata=metadata, url=entry.get("id_url"))


def default_providers(client: httpx.AsyncClient, settings: Settings) -> list[CandidateProvider]:
    """The five databases in their default search priority."""
    return [
        OpenAlexProvider(client, settings),
        CrossrefProvider(client, settings),
        EuropePmcProvider(client, settings),
        SemanticScholarProvider(client, settings),
        ArxivProvider(client, settings),
    ]


def _parse_atom_feed(xml_text: str) -> list[dict]:
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as exc:
        raise ProviderError("ArXiv returned malformed XML") from exc
    ns = {"atom": _ATOM_NS, "arxiv": _ARXIV_NS}
    entries: list[dict] = []
    for entry in root.findall("atom:entry", ns):
        id_url = _clean(entry.findtext("atom:id", default="", namespaces=ns))
        title = _clean(entry.findtext("atom:title", default="", namespaces=ns))
        if not id_url or not title or title.lower() == "error":
            continue
        entries.append(
            {
                "id": extract_arxiv_id(id_url) or id_url,
                "id_url": id_url,
                "title": title,
                "published": _clean(entry.findtext("atom:published", default="", namespaces=ns)),
                "authors": [
                    name
                    for name in (
                        _clean(author.findtext("atom:name", default="", namespaces=ns))
                        for author in entry.findall("atom:author", ns)
                    )
                    if name
                ],
                "doi": extract_doi(entry.findtext("arxiv:doi", default="", namespaces=ns)),
                "journal_ref": _clean(entry.findtext("arxiv:journal_ref", default="", namespaces=ns)),
            }
        )
    return entries


def _clean(value: str | None) -> str | None:
    if not value:
        return None
    cleaned = " ".join(value.split())
    return cleaned or None


def _first(values: Any) -> Any:
    if isinstance(values, list):
        return values[0] if values else None
    return values


def _last_segment(value: str | None) -> str | None:
    if not value:
        return None
    return value.rstrip("/").rsplit("/", 1)[-1] or None


def _first_author_family(authors: list[AuthorName]) -> str | None:
    if not authors:
        return None
    first = authors[0]
    if isinstance(first, Author):
        return first.last_name
    name = first.strip()
    if "," in name:
        return name.split(",", 1)[0].strip()
    return name.split()[-1] if name else None
