import pytest

from app.domain.errors import (
    EmbeddingProviderError, MissingDescriptionError, RequestNotFoundError, VectorIndexMissingError,
)
from app.models.items import MatchOptions, Prefilters
from app.services.embedding_cache import EmbeddingEnsurer

from conftest import CountingProvider, StaticIndex


def test_similar_descriptions_match(store, hashing_provider, make_engine):
    store.add_found("A", "black Jansport backpack")
    EmbeddingEnsurer(store, hashing_provider).ensure(store.get_found_item("A"))
    store.add_request("R", "lost my black backpack, JanSport brand")

    engine = make_engine(provider=hashing_provider)
    result = engine.match_request("R", MatchOptions(limit=10, distance_threshold=0.6))

    assert result.request_id == "R"
    assert [m.found_item_id for m in result.matches] == ["A"]
    assert result.matches[0].rank == 0
    assert result.matches[0].confidence > 0.5
    stored = store.list_matches("R")
    assert [m.found_item_id for m in stored] == ["A"]
    assert stored[0].status == "pending"


def test_unrelated_item_is_not_matched(store, hashing_provider, make_engine):
    ensurer = EmbeddingEnsurer(store, hashing_provider)
    store.add_found("A", "black Jansport backpack")
    store.add_found("B", "silver casio calculator")
    ensurer.ensure(store.get_found_item("A"))
    ensurer.ensure(store.get_found_item("B"))
    store.add_request("R", "lost my black backpack, JanSport brand")

    result = make_engine(provider=hashing_provider).match_request("R")

    assert [m.found_item_id for m in result.matches] == ["A"]


def test_empty_description_fails_and_leaves_no_matches(store, make_engine):
    store.add_request("R", "")
    engine = make_engine()
    with pytest.raises(MissingDescriptionError):
        engine.match_request("R")
    assert store.list_matches("R") == []
    assert store.replace_calls == []


def test_missing_description_keeps_previous_matches(store, make_engine):
    store.add_request("R", "")
    store.seed_matches("R", ["X", "Y"])
    with pytest.raises(MissingDescriptionError):
        make_engine().match_request("R")
    assert [m.found_item_id for m in store.list_matches("R")] == ["X", "Y"]


def test_stale_matches_cleared_when_nothing_qualifies(store, make_engine):
    store.add_request("R", "grey hoodie")
    store.seed_matches("R", ["old1", "old2", "old3"])
    engine = make_engine(index=StaticIndex([("F", 0.9)]))

    result = engine.match_request("R")

    assert result.matches == []
    assert store.list_matches("R") == []


def test_replacement_has_no_carryover(store, make_engine):
    store.add_request("R", "grey hoodie")
    store.seed_matches("R", ["old1", "F2"])
    engine = make_engine(index=StaticIndex([("F1", 0.1), ("F2", 0.3), ("F3", 0.7)]))

    engine.match_request("R")

    stored = store.list_matches("R")
    assert [m.found_item_id for m in stored] == ["F1", "F2"]
    assert [m.rank for m in stored] == [0, 1]


def test_limit_applies_before_threshold(store, make_engine):
    store.add_request("R", "water bottle")
    index = StaticIndex([("A", 0.1), ("B", 0.4)])

    result = make_engine(index=index).match_request("R", MatchOptions(limit=1, distance_threshold=0.6))

    assert [m.found_item_id for m in result.matches] == ["A"]
    assert index.queries[0]["limit"] == 1
    assert [m.found_item_id for m in store.list_matches("R")] == ["A"]


def test_unknown_request(store, make_engine):
    with pytest.raises(RequestNotFoundError):
        make_engine().match_request("nope")


def test_zero_limit_rejected():
    with pytest.raises(ValueError):
        MatchOptions(limit=0)


def test_prefilters_passed_to_index(store, make_engine):
    store.add_request("R", "airpods case")
    index = StaticIndex([])
    opts = MatchOptions(prefilters=Prefilters(category="electronics", campus="north"))

    make_engine(index=index).match_request("R", opts)

    assert index.queries[0]["prefilters"] == {"category": "electronics", "campus": "north"}
    assert index.queries[0]["metric"] == "COSINE"


def test_missing_vector_index_keeps_previous_matches(store, make_engine):
    store.add_request("R", "airpods case")
    store.seed_matches("R", ["X"])
    engine = make_engine(index=StaticIndex(error=VectorIndexMissingError("lost")))

    with pytest.raises(VectorIndexMissingError):
        engine.match_request("R")
    assert [m.found_item_id for m in store.list_matches("R")] == ["X"]


def test_provider_failure_propagates(store, make_engine):
    store.add_request("R", "airpods case")
    engine = make_engine(index=StaticIndex([]), provider=CountingProvider(fail=True))
    with pytest.raises(EmbeddingProviderError):
        engine.match_request("R")
    assert store.replace_calls == []


def test_default_options_used(store, make_engine):
    store.add_request("R", "airpods case")
    index = StaticIndex([])
    make_engine(index=index).match_request("R")
    assert index.queries[0]["limit"] == 10
    assert index.queries[0]["prefilters"] is None


def test_result_serialises_found_item_reference_as_lost_ref_id(store, make_engine):
    store.add_request("R", "green scarf")
    result = make_engine(index=StaticIndex([("F", 0.2)])).match_request("R")

    payload = result.model_dump(by_alias=True)

    assert payload["requestId"] == "R"
    assert set(payload["matches"][0]) == {"lostRefId", "distance", "confidence", "rank"}
    assert payload["matches"][0]["lostRefId"] == "F"
