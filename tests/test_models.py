import pytest
from pydantic import ValidationError

from citematch.models import (
    DEFAULT_FIELD_WEIGHTS,
    Author,
    MatchingResult,
    MatchingSettings,
    Reference,
    ReferenceMetadata,
)


def test_author_full_name() -> None:
    author = Author(first_name="Ada", last_name="Lovelace")
    assert author.full_name == "Ada Lovelace"


def test_author_accepts_camel_case_keys() -> None:
    author = Author.model_validate({"firstName": "Grace", "lastName": "Hopper"})
    assert author.full_name == "Grace Hopper"


def test_empty_result_serializes_with_wire_names() -> None:
    assert MatchingResult().model_dump(by_alias=True) == {"sourceEvaluations": []}


def test_default_weights_sum_to_one_hundred() -> None:
    assert sum(DEFAULT_FIELD_WEIGHTS.values()) == 100
    assert MatchingSettings().field_weights == DEFAULT_FIELD_WEIGHTS


def test_settings_flatten_legacy_field_configurations() -> None:
    settings = MatchingSettings.model_validate(
        {
            "earlyTermination": {"enabled": False, "threshold": 90},
            "fieldWeights": {
                "title": {"enabled": True, "weight": 60},
                "authors": {"enabled": False, "weight": 40},
                "year": 40,
            },
        }
    )
    assert settings.field_weights == {"title": 60, "authors": 0, "year": 40}
    assert settings.early_termination.enabled is False
    assert settings.early_termination.threshold == 90


def test_threshold_outside_range_is_rejected() -> None:
    with pytest.raises(ValidationError):
        MatchingSettings.model_validate({"earlyTermination": {"enabled": True, "threshold": 120}})


def test_non_finite_field_weights_are_rejected() -> None:
    payload = '{"earlyTermination": {"enabled": false, "threshold": 80}, "fieldWeights": {"title": 100, "year": NaN}}'
    with pytest.raises(ValidationError):
        MatchingSettings.model_validate_json(payload)
    with pytest.raises(ValidationError):
        MatchingSettings(field_weights={"title": 100, "year": float("inf")})
    with pytest.raises(ValidationError):
        MatchingSettings.model_validate({"fieldWeights": {"title": {"enabled": True, "weight": float("nan")}}})


def test_reference_is_immutable() -> None:
    reference = Reference(id="r1", metadata=ReferenceMetadata(title="Sample"))
    with pytest.raises(ValidationError):
        reference.id = "r2"


def test_authors_accept_plain_and_structured_names() -> None:
    metadata = ReferenceMetadata.model_validate(
        {"authors": ["Lovelace, Ada", {"firstName": "Charles", "lastName": "Babbage"}]}
    )
    assert metadata.authors[0] == "Lovelace, Ada"
    assert isinstance(metadata.authors[1], Author)


def test_reference_keeps_only_id_and_metadata() -> None:
    reference = Reference.model_validate(
        {
            "id": "r1",
            "originalText": "Lovelace, A. (1843). Notes.",
            "metadata": {"title": "Notes", "authors": [{"lastName": "Lovelace", "role": "author"}]},
        }
    )
    assert set(reference.model_dump()) == {"id", "metadata"}
    assert set(reference.metadata.authors[0].model_dump()) == {"first_name", "last_name"}
