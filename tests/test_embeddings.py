# tests/test_embeddings.py
import os
from types import SimpleNamespace
from unittest.mock import patch

import numpy as np
import pytest

from esg_mapping.core.errors import ProviderError
from esg_mapping.core.types import CanonicalKPIDefinition
from esg_mapping.embeddings.cache import DictionaryEmbeddingCache, EmbeddingSnapshot, cosine_similarity
from esg_mapping.embeddings.provider import OpenAIEmbeddingProvider, retry_with_backoff
from esg_mapping.matching.dictionary import JsonDictionaryStore, KPIDictionary


# ---------------------------------------------------------------------
# Dictionary embedding cache
# ---------------------------------------------------------------------

def test_regenerate_publishes_new_snapshot(dictionary, fake_embed):
    cache = DictionaryEmbeddingCache()
    old = cache.snapshot

    snapshot = cache.regenerate(dictionary, fake_embed)

    assert cache.snapshot is snapshot
    assert old is not snapshot
    assert len(old) == 0
    assert len(snapshot) == len(dictionary.active())
    assert np.allclose(np.linalg.norm(snapshot.matrix, axis=1), 1.0)


def test_snapshot_matrix_is_read_only(cache):
    with pytest.raises(ValueError):
        cache.snapshot.matrix[0, 0] = 5.0


def test_failed_regeneration_keeps_current_snapshot(dictionary, cache):
    current = cache.snapshot
    calls = []

    def flaky(text):
        calls.append(text)
        if len(calls) > 2:
            raise ProviderError()
        return [1.0] * 20

    with pytest.raises(ProviderError):
        cache.regenerate(dictionary, flaky)

    assert cache.snapshot is current


def test_regenerate_writes_vectors_to_store(dictionary, fake_embed):
    store = JsonDictionaryStore()
    DictionaryEmbeddingCache().regenerate(dictionary, fake_embed, store=store)

    definitions = store.load_definitions()
    assert all(d.embedding_vector is not None for d in definitions if d.is_active)


def test_inactive_definitions_are_not_cached():
    active = CanonicalKPIDefinition(id="A", name="A", category="Social", preferred_unit="people")
    retired = CanonicalKPIDefinition(id="B", name="B", category="Social", preferred_unit="people", is_active=False)
    dictionary = KPIDictionary([active, retired])

    snapshot = DictionaryEmbeddingCache().regenerate(dictionary, lambda text: [1.0, 0.0])
    assert [d.id for d in snapshot.definitions] == ["A"]


def test_snapshot_rejects_wrong_dimension(cache):
    with pytest.raises(ValueError):
        cache.snapshot.similarities([1.0, 0.0])


def test_empty_snapshot():
    snapshot = EmbeddingSnapshot.empty()
    assert snapshot.is_empty
    assert snapshot.similarities([1.0]).size == 0


def test_cosine_similarity():
    assert cosine_similarity([1, 0], [0, 1]) == 0.0
    assert cosine_similarity([1, 1], [2, 2]) == pytest.approx(1.0)
    assert cosine_similarity([1, 0], [-1, 0]) == pytest.approx(-1.0)
    assert cosine_similarity([0, 0], [1, 1]) == 0.0


# ---------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------

def _failing(errors, value="ok"):
    errors = list(errors)

    def fn():
        if errors:
            raise errors.pop(0)
        return value

    return fn


def test_generic_errors_back_off_by_two():
    sleeps = []
    fn = _failing([RuntimeError("boom"), RuntimeError("boom")])

    assert retry_with_backoff(fn, max_attempts=3, base_delay=1.0, sleep=sleeps.append) == "ok"
    assert sleeps == [1.0, 2.0]


def test_rate_limits_back_off_by_three():
    sleeps = []
    fn = _failing([RuntimeError("429 rate limit"), RuntimeError("quota exceeded")])

    retry_with_backoff(fn, max_attempts=3, base_delay=0.5, sleep=sleeps.append)
    assert sleeps == [0.5, 1.5]


def test_words_containing_rate_are_not_rate_limits():
    sleeps = []
    fn = _failing([RuntimeError("failed to generate embedding"), RuntimeError("accurate input required")])

    retry_with_backoff(fn, max_attempts=3, base_delay=1.0, sleep=sleeps.append)
    assert sleeps == [1.0, 2.0]


def test_exhausted_retries_raise_provider_error():
    sleeps = []
    cause = RuntimeError("429 Too Many Requests")
    fn = _failing([RuntimeError("a"), RuntimeError("b"), cause])

    with pytest.raises(ProviderError) as excinfo:
        retry_with_backoff(fn, max_attempts=3, base_delay=1.0, sleep=sleeps.append)

    assert excinfo.value.__cause__ is cause
    assert excinfo.value.rate_limited is True
    assert "429" not in str(excinfo.value)
    assert len(sleeps) == 2


# ---------------------------------------------------------------------
# OpenAI provider
# ---------------------------------------------------------------------

def _response(*vectors):
    return SimpleNamespace(
        data=[SimpleNamespace(embedding=list(v), index=i) for i, v in enumerate(vectors)]
    )


@patch.dict(os.environ, {}, clear=True)
def test_missing_api_key_raises_provider_error():
    provider = OpenAIEmbeddingProvider()
    with pytest.raises(ProviderError):
        provider("text")


@patch("esg_mapping.embeddings.provider.OpenAI")
def test_embed_calls_openai(mock_openai):
    client = mock_openai.return_value
    client.embeddings.create.return_value = _response([0.1, 0.2])

    provider = OpenAIEmbeddingProvider(model="text-embedding-3-small", api_key="dummy")

    assert provider("CO2 emissions") == [0.1, 0.2]
    mock_openai.assert_called_once_with(api_key="dummy")
    client.embeddings.create.assert_called_once_with(model="text-embedding-3-small", input="CO2 emissions")


@patch("esg_mapping.embeddings.provider.OpenAI")
def test_embed_batch_keeps_input_order(mock_openai):
    client = mock_openai.return_value
    client.embeddings.create.return_value = SimpleNamespace(
        data=[
            SimpleNamespace(embedding=[2.0], index=1),
            SimpleNamespace(embedding=[1.0], index=0),
        ]
    )

    provider = OpenAIEmbeddingProvider(api_key="dummy")
    assert provider.embed_batch(["a", "b"]) == [[1.0], [2.0]]


@patch("esg_mapping.embeddings.provider.OpenAI")
def test_embed_batch_falls_back_to_single_requests(mock_openai):
    client = mock_openai.return_value
    client.embeddings.create.side_effect = [
        RuntimeError("batch too large"),
        _response([1.0]),
        _response([2.0]),
    ]

    provider = OpenAIEmbeddingProvider(api_key="dummy", max_attempts=1, sleep=lambda s: None)
    assert provider.embed_batch(["a", "b"]) == [[1.0], [2.0]]
    assert client.embeddings.create.call_count == 3


@patch("esg_mapping.embeddings.provider.OpenAI")
def test_provider_retries_then_gives_up(mock_openai):
    client = mock_openai.return_value
    client.embeddings.create.side_effect = RuntimeError("service unavailable")
    sleeps = []

    provider = OpenAIEmbeddingProvider(api_key="dummy", max_attempts=3, base_delay=0.1, sleep=sleeps.append)
    with pytest.raises(ProviderError):
        provider.embed("text")

    assert client.embeddings.create.call_count == 3
    assert sleeps == pytest.approx([0.1, 0.2])
