import numpy as np
import pytest

from app.domain.errors import EmbeddingProviderError
from app.services import embedding_providers as ep


def _cos(a, b):
    return float(np.dot(a, b) / (np.linalg.norm(a) * np.linalg.norm(b)))


def test_hashing_vectors_are_unit_length_and_fixed_dim(hashing_provider):
    vec = hashing_provider.embed("Black JanSport backpack")
    assert len(vec) == 512
    assert np.linalg.norm(vec) == pytest.approx(1.0, abs=1e-4)


def test_hashing_is_deterministic_and_case_insensitive(hashing_provider):
    assert hashing_provider.embed("Blue Umbrella") == hashing_provider.embed("blue umbrella")


def test_shared_words_are_closer(hashing_provider):
    a = hashing_provider.embed("black Jansport backpack")
    b = hashing_provider.embed("lost my black backpack, JanSport brand")
    c = hashing_provider.embed("silver casio calculator")
    assert _cos(a, b) > 0.5
    assert _cos(a, b) > _cos(a, c)


def test_text_without_tokens_fails(hashing_provider):
    with pytest.raises(EmbeddingProviderError):
        hashing_provider.embed("!!! ...")


def test_provider_exceptions_are_wrapped():
    class Broken(ep.BaseEmbeddingProvider):
        name = "broken"
        model = "broken-1"

        def _embed(self, text):
            raise TimeoutError("read timed out")

    with pytest.raises(EmbeddingProviderError) as exc:
        Broken(dim=4).embed("anything")
    assert "TimeoutError" in str(exc.value)


def test_short_vectors_are_padded_to_dim():
    class Short(ep.BaseEmbeddingProvider):
        name = "short"
        model = "short-1"

        def _embed(self, text):
            return np.asarray([3.0, 4.0], dtype="float32")

    vec = Short(dim=4).embed("x")
    assert vec == pytest.approx([0.6, 0.8, 0.0, 0.0], abs=1e-5)


def test_unknown_provider_name():
    with pytest.raises(ValueError):
        ep.build_provider("word2vec")
