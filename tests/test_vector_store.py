"""Tests for the Pinecone vector store with a mocked index."""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from app.core.vector_store import (
    ChunkVector,
    VectorStoreError,
    check_connection,
    delete_document_chunks,
    get_index_stats,
    search_chunks,
    store_chunks,
)


def _chunk(i: int) -> ChunkVector:
    return ChunkVector(
        id=f"doc-1-chunk-{i}",
        values=[0.1] * 4,
        document_id="doc-1",
        document_title="Guide",
        document_author=None,
        chunk_index=i,
        token_count=12,
        content=f"chunk {i}",
    )


def _match(chunk_id, score, **metadata):
    return SimpleNamespace(id=chunk_id, score=score, metadata=metadata)


@pytest.fixture
def index():
    index = MagicMock()
    with patch("app.core.vector_store.get_index", return_value=index):
        yield index


def test_metadata_layout():
    vector = _chunk(3).to_pinecone()
    assert vector["metadata"] == {
        "documentId": "doc-1",
        "documentTitle": "Guide",
        "documentAuthor": "",
        "chunkIndex": 3,
        "tokenCount": 12,
        "content": "chunk 3",
    }


class TestStoreChunks:
    def test_upserts_in_batches_of_100(self, index):
        written = store_chunks([_chunk(i) for i in range(250)])

        assert written == 250
        sizes = [len(c.kwargs["vectors"]) for c in index.upsert.call_args_list]
        assert sizes == [100, 100, 50]
        assert index.upsert.call_args.kwargs["namespace"] == "default"

    def test_empty_is_a_no_op(self, index):
        assert store_chunks([]) == 0
        index.upsert.assert_not_called()

    def test_retries_with_backoff(self, index):
        sleep = MagicMock()
        index.upsert.side_effect = [RuntimeError("timeout"), None]

        assert store_chunks([_chunk(0)], sleep=sleep) == 1
        sleep.assert_called_once_with(1)

    def test_gives_up_after_three_attempts(self, index):
        sleep = MagicMock()
        index.upsert.side_effect = RuntimeError("timeout")

        with pytest.raises(VectorStoreError, match="upsert failed"):
            store_chunks([_chunk(0)], sleep=sleep)
        assert [c.args[0] for c in sleep.call_args_list] == [1, 2]


class TestSearch:
    def test_maps_metadata_and_filters_low_scores(self, index):
        index.query.return_value = SimpleNamespace(
            matches=[
                _match("c1", 0.91, documentId="doc-1", documentTitle="Guide", documentAuthor="Ada",
                       chunkIndex=4, tokenCount=50, content="text"),
                _match("c2", 0.2, documentId="doc-2"),
            ]
        )

        matches = search_chunks([0.1] * 4, top_k=5, min_score=0.5)

        assert len(matches) == 1
        assert (matches[0].document_title, matches[0].chunk_index, matches[0].token_count) == ("Guide", 4, 50)
        kwargs = index.query.call_args.kwargs
        assert kwargs["top_k"] == 5
        assert kwargs["include_metadata"] is True
        assert "filter" not in kwargs

    def test_document_filter(self, index):
        index.query.return_value = SimpleNamespace(matches=[])
        search_chunks([0.1], document_ids=["doc-1"])
        assert index.query.call_args.kwargs["filter"] == {"documentId": {"$in": ["doc-1"]}}


def test_delete_document_chunks_queries_then_deletes_ids(index):
    index.query.return_value = SimpleNamespace(matches=[_match("c1", 0), _match("c2", 0)])

    assert delete_document_chunks("doc-1") == 2

    query = index.query.call_args.kwargs
    assert query["filter"] == {"documentId": {"$eq": "doc-1"}}
    assert len(query["vector"]) == 1024
    index.delete.assert_called_once_with(ids=["c1", "c2"], namespace="default")


def test_delete_with_no_vectors(index):
    index.query.return_value = SimpleNamespace(matches=[])
    assert delete_document_chunks("doc-1") == 0
    index.delete.assert_not_called()


def test_index_stats(index):
    index.describe_index_stats.return_value = SimpleNamespace(
        total_vector_count=12,
        dimension=1024,
        namespaces={"default": SimpleNamespace(vector_count=12)},
    )
    assert get_index_stats() == {"total_vector_count": 12, "dimension": 1024, "namespaces": {"default": 12}}


def test_check_connection(index):
    assert check_connection() is True
    index.describe_index_stats.side_effect = RuntimeError("unreachable")
    assert check_connection() is False
