import json

import httpx
import pytest

from citematch.models import Author, DateInfo, ExternalIdentifiers, ReferenceMetadata, SourceInfo
from citematch.services.oracle import LexicalSimilarityOracle, OpenAISimilarityOracle, OracleError
from citematch.settings import Settings

REFERENCE = ReferenceMetadata(
    title="Notes on the Analytical Engine",
    authors=[Author(first_name="Ada", last_name="Lovelace")],
    date=DateInfo(year=1843),
    source=SourceInfo(pages="10-19", volume="Vol. 3"),
    identifiers=ExternalIdentifiers(doi="https://doi.org/10.1000/ENGINE"),
)


@pytest.mark.asyncio
async def test_lexical_oracle_identical_work_scores_full_marks() -> None:
    candidate = ReferenceMetadata(
        title="notes on the analytical engine",
        authors=["Lovelace, Ada"],
        date=DateInfo(year=1843),
        source=SourceInfo(volume="3"),
        identifiers=ExternalIdentifiers(doi="10.1000/engine"),
    )
    oracle = LexicalSimilarityOracle()

    details = await oracle.compare(REFERENCE, candidate, ["title", "authors", "year", "doi", "volume"])

    assert {detail.field: detail.match_score for detail in details} == {
        "title": 100,
        "authors": 100,
        "year": 100,
        "doi": 100,
        "volume": 100,
    }


@pytest.mark.asyncio
async def test_lexical_oracle_partial_agreement() -> None:
    candidate = ReferenceMetadata(
        title="Notes on the Analytical Engine",
        date=DateInfo(year=1844),
        source=SourceInfo(pages="15-24"),
        identifiers=ExternalIdentifiers(doi="10.1000/other"),
    )
    oracle = LexicalSimilarityOracle()

    details = await oracle.compare(REFERENCE, candidate, ["year", "pages", "doi"])

    assert {detail.field: detail.match_score for detail in details} == {"year": 50, "pages": 33, "doi": 0}


@pytest.mark.asyncio
async def test_lexical_oracle_skips_fields_missing_on_either_side() -> None:
    details = await LexicalSimilarityOracle().compare(REFERENCE, ReferenceMetadata(), ["title", "year"])
    assert details == []


def _chat_reply(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


@pytest.mark.asyncio
async def test_openai_oracle_parses_structured_reply() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        content = json.dumps(
            {"fieldDetails": [{"field": "title", "match_score": 97}, {"field": "year", "match_score": 100}]}
        )
        return httpx.Response(200, json=_chat_reply(content))

    settings = Settings(openai_api_key="sk-test", openai_base_url="https://llm.example/v1/")
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        oracle = OpenAISimilarityOracle(client, settings, rules=["ignore-case-format", "not-a-rule"])
        details = await oracle.compare(REFERENCE, REFERENCE, ["title", "year"])

    assert [(detail.field, detail.match_score) for detail in details] == [("title", 97), ("year", 100)]
    assert seen["url"] == "https://llm.example/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    json_schema = seen["body"]["response_format"]["json_schema"]
    assert json_schema["strict"] is True
    schema = json_schema["schema"]
    assert schema["properties"]["fieldDetails"]["items"]["properties"]["field"]["enum"] == ["title", "year"]
    system_prompt = seen["body"]["messages"][0]["content"]
    assert "Ignore case differences" in system_prompt
    assert "Return EXACTLY 2 field evaluations" in system_prompt


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, json=_chat_reply("not json at all")),
        httpx.Response(200, json=_chat_reply('{"fieldDetails": [{"field": "title", "match_score": 150}]}')),
        httpx.Response(200, json={"choices": []}),
        httpx.Response(500, json={"error": "overloaded"}),
    ],
)
async def test_openai_oracle_rejects_unusable_replies(response: httpx.Response) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return response

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        oracle = OpenAISimilarityOracle(client, Settings(openai_api_key="sk-test"))
        with pytest.raises(OracleError):
            await oracle.compare(REFERENCE, REFERENCE, ["title"])


@pytest.mark.asyncio
async def test_openai_oracle_requires_api_key() -> None:
    async with httpx.AsyncClient() as client:
        oracle = OpenAISimilarityOracle(client, Settings())
        with pytest.raises(OracleError):
            await oracle.compare(REFERENCE, REFERENCE, ["title"])
