"""
Tests for the embedding client wrapper and the embedding backfill.
"""
from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import pytest
from openai import APIConnectionError

from wikihub.core.errors import EmbeddingUnavailableError
from wikihub.core.sources import Source
from wikihub.models.article import EMBEDDING_DIM
from wikihub.services.embeddings import Embedder, backfill_embeddings, prepare_text


def _response(vectors, reverse=False):
    data = [SimpleNamespace(index=i, embedding=v) for i, v in enumerate(vectors)]
    if reverse:
        data.reverse()
    return SimpleNamespace(data=data)


def _client(dims=EMBEDDING_DIM):
    """OpenAI stand-in that embeds every input as a constant vector."""
    client = MagicMock()
    client.embeddings.create.side_effect = lambda model, input: _response(
        [[float(i + 1)] * dims for i in range(len(input))]
    )
    return client


class TestEmbedder:

    def test_vectors_follow_input_order(self):
        client = MagicMock()
        client.embeddings.create.return_value = _response([[1.0, 0.0], [0.0, 1.0]], reverse=True)

        vectors = Embedder(client, "nomic-embed-text", 2).embed_batch(["a", "b"])

        assert vectors == [[1.0, 0.0], [0.0, 1.0]]
        client.embeddings.create.assert_called_once_with(model="nomic-embed-text", input=["a", "b"])

    def test_empty_batch_makes_no_request(self):
        client = MagicMock()
        assert Embedder(client, "m", 2).embed_batch([]) == []
        client.embeddings.create.assert_not_called()

    def test_dimension_mismatch(self):
        embedder = Embedder(_client(dims=3), "m", EMBEDDING_DIM)
        with pytest.raises(EmbeddingUnavailableError):
            embedder.embed("whip")

    def test_count_mismatch(self):
        client = MagicMock()
        client.embeddings.create.return_value = _response([[1.0, 0.0]])
        with pytest.raises(EmbeddingUnavailableError):
            Embedder(client, "m", 2).embed_batch(["a", "b"])

    def test_connection_error_is_unavailable(self):
        client = MagicMock()
        client.embeddings.create.side_effect = APIConnectionError(
            request=httpx.Request("POST", "http://ollama:11434/v1/embeddings")
        )
        embedder = Embedder(client, "m", 2)

        with pytest.raises(EmbeddingUnavailableError):
            embedder.embed("whip")
        assert embedder.health_check() is False

    def test_prepare_text(self):
        assert prepare_text("Air rune", "  Used for spells. ") == "Air rune\n\nUsed for spells."
        assert prepare_text("Air rune", None) == "Air rune\n\n"
        assert prepare_text("Air rune", "x" * 100, max_chars=12) == "Air rune\n\nxx"


class TestBackfillEmbeddings:

    def test_embeds_only_missing(self, db, make_article):
        make_article(Source.OSRS, "A")
        make_article(Source.OSRS, "B")
        embedder = Embedder(_client(), "m", EMBEDDING_DIM)

        assert backfill_embeddings(db, embedder) == 2
        assert backfill_embeddings(db, embedder) == 0

    def test_full_reembeds_everything(self, db, make_article):
        make_article(Source.OSRS, "A")
        embedder = Embedder(_client(), "m", EMBEDDING_DIM)
        backfill_embeddings(db, embedder)

        assert backfill_embeddings(db, embedder, full=True) == 1

    def test_batches_and_source_filter(self, db, make_article):
        for slug in ("A", "B", "C"):
            make_article(Source.OSRS, slug)
        make_article(Source.NLAB, "d")
        client = _client()

        count = backfill_embeddings(db, Embedder(client, "m", EMBEDDING_DIM), source=Source.OSRS, batch_size=2)

        assert count == 3
        assert client.embeddings.create.call_count == 2

    def test_stores_vector_and_timestamp(self, db, make_article):
        article = make_article(Source.OSRS, "A")

        backfill_embeddings(db, Embedder(_client(), "m", EMBEDDING_DIM))

        db.refresh(article)
        assert article.embedded_at is not None
        assert len(article.embedding) == EMBEDDING_DIM

    def test_failure_keeps_committed_batches(self, db, make_article):
        first = make_article(Source.OSRS, "A")
        second = make_article(Source.OSRS, "B")
        client = _client()
        good = client.embeddings.create.side_effect

        def flaky(model, input):
            if client.embeddings.create.call_count > 1:
                raise APIConnectionError(request=httpx.Request("POST", "http://ollama/v1/embeddings"))
            return good(model=model, input=input)

        client.embeddings.create.side_effect = flaky

        with pytest.raises(EmbeddingUnavailableError):
            backfill_embeddings(db, Embedder(client, "m", EMBEDDING_DIM), batch_size=1)

        db.refresh(first)
        db.refresh(second)
        assert first.embedded_at is not None
        assert second.embedded_at is None
