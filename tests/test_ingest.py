"""Tests for the upload pipeline, vector processing and document storage."""

from datetime import UTC, datetime
from unittest.mock import MagicMock, patch

import pytest

from app.core import storage
from app.core.cache import CacheNamespace, cache
from app.core.document_processing import ExtractionError
from app.core.file_security import FileSecurityError
from app.core.ingest import (
    DuplicateDocumentError,
    IngestError,
    IngestResult,
    delete_document_everywhere,
    ingest_upload,
    process_document_vectors,
)
from app.core.storage import StorageError, build_storage_path, upload_file
from tests.fixtures import mock_supabase

DOC_ID = "3f2a9c1e-0000-4000-8000-000000000042"
CONTENT = "Vectors live in Pinecone. Chunks are stored in Postgres."


@pytest.fixture
def db():
    with (
        patch("app.db.documents.get_document", return_value={"id": DOC_ID, "title": "Guide", "author": "Ada", "content": CONTENT}) as get_document,
        patch("app.db.documents.create_ingest_job", return_value={"id": "job-1"}) as create_job,
        patch(
            "app.db.documents.insert_chunks",
            side_effect=lambda rows: [{**row, "id": f"chunk-{row['chunk_index']}"} for row in rows],
        ) as insert_chunks,
        patch("app.db.documents.complete_ingest_job") as complete,
        patch("app.db.documents.fail_ingest_job") as fail,
        patch("app.db.documents.mark_processed") as mark_processed,
    ):
        yield {
            "get_document": get_document,
            "create_job": create_job,
            "insert_chunks": insert_chunks,
            "complete": complete,
            "fail": fail,
            "mark_processed": mark_processed,
        }


class TestProcessDocumentVectors:
    def test_chunks_embeds_and_indexes(self, db):
        cache.set(CacheNamespace.SEARCH_RESULTS, "search:old", ["stale"])
        with (
            patch("app.core.ingest.embed_texts", side_effect=lambda texts: [[0.1] * 4 for _ in texts]),
            patch("app.core.ingest.store_chunks") as store,
        ):
            result = process_document_vectors(DOC_ID)

        assert result == IngestResult(document_id=DOC_ID, document_title="Guide", chunks_created=1)
        row = db["insert_chunks"].call_args.args[0][0]
        assert row["content"] == CONTENT
        assert row["metadata"]["documentAuthor"] == "Ada"
        vector = store.call_args.args[0][0]
        assert (vector.id, vector.document_title, vector.values) == ("chunk-0", "Guide", [0.1] * 4)
        db["create_job"].assert_called_once_with(DOC_ID, triggered_by=None)
        db["complete"].assert_called_once_with("job-1", 1)
        db["mark_processed"].assert_called_once_with(DOC_ID)
        assert cache.get(CacheNamespace.SEARCH_RESULTS, "search:old") is None

    def test_records_who_triggered_the_run(self, db):
        with (
            patch("app.core.ingest.embed_texts", side_effect=lambda texts: [[0.1] * 4 for _ in texts]),
            patch("app.core.ingest.store_chunks"),
        ):
            process_document_vectors(DOC_ID, "user-7")

        db["create_job"].assert_called_once_with(DOC_ID, triggered_by="user-7")

    def test_failure_marks_job_failed_and_reraises(self, db):
        with (
            patch("app.core.ingest.embed_texts", side_effect=RuntimeError("voyage down")),
            patch("app.core.ingest.store_chunks") as store,
        ):
            with pytest.raises(RuntimeError):
                process_document_vectors(DOC_ID)

        db["fail"].assert_called_once_with("job-1", "voyage down")
        db["complete"].assert_not_called()
        store.assert_not_called()

    def test_missing_document(self, db):
        db["get_document"].return_value = None
        with pytest.raises(IngestError, match="not found"):
            process_document_vectors(DOC_ID)

    def test_document_without_content(self, db):
        db["get_document"].return_value = {"id": DOC_ID, "content": ""}
        with pytest.raises(IngestError, match="no content"):
            process_document_vectors(DOC_ID)


class TestIngestUpload:
    @pytest.fixture
    def pipeline(self):
        with (
            patch("app.db.documents.find_by_checksum", return_value=None),
            patch("app.db.documents.create_document", return_value={"id": DOC_ID, "title": "notes.txt"}) as create,
            patch("app.core.ingest.upload_file") as upload,
            patch("app.core.ingest.remove_file") as remove,
            patch(
                "app.core.ingest.process_document_vectors",
                return_value=IngestResult(DOC_ID, "notes.txt", 1),
            ) as process,
        ):
            yield {"create": create, "upload": upload, "remove": remove, "process": process}

    @pytest.mark.asyncio
    async def test_text_upload(self, pipeline):
        document, result = await ingest_upload(
            CONTENT.encode(), "notes.txt", "application/octet-stream", "user-1", title=" <b>Notes</b> "
        )

        assert document["id"] == DOC_ID
        assert result.chunks_created == 1
        kwargs = pipeline["create"].call_args.kwargs
        assert kwargs["title"] == "Notes"
        assert kwargs["author"] is None
        assert kwargs["mime_type"] == "text/plain"
        assert kwargs["content"] == CONTENT
        assert kwargs["word_count"] == 9
        assert kwargs["storage_path"].endswith("_notes.txt")
        pipeline["upload"].assert_called_once()
        pipeline["process"].assert_called_once_with(DOC_ID, "user-1")

    @pytest.mark.asyncio
    async def test_title_defaults_to_filename(self, pipeline):
        await ingest_upload(CONTENT.encode(), "notes.txt", "text/plain", "user-1")
        assert pipeline["create"].call_args.kwargs["title"] == "notes.txt"

    @pytest.mark.asyncio
    async def test_duplicate_upload(self, pipeline):
        with patch("app.db.documents.find_by_checksum", return_value={"id": "old", "title": "Notes"}):
            with pytest.raises(DuplicateDocumentError, match="already uploaded as 'Notes'"):
                await ingest_upload(CONTENT.encode(), "notes.txt", "text/plain", "user-1")
        pipeline["upload"].assert_not_called()

    @pytest.mark.asyncio
    async def test_unsupported_type(self, pipeline):
        with pytest.raises(ExtractionError, match="Unsupported file type"):
            await ingest_upload(b"PK\x03\x04", "archive.zip", "application/zip", "user-1")

    @pytest.mark.asyncio
    async def test_malicious_text(self, pipeline):
        with pytest.raises(FileSecurityError):
            await ingest_upload(b"<script>alert(1)</script>", "x.txt", "text/plain", "user-1")

    @pytest.mark.asyncio
    async def test_vector_failure_keeps_document(self, pipeline):
        pipeline["process"].side_effect = RuntimeError("pinecone down")

        document, result = await ingest_upload(CONTENT.encode(), "notes.txt", "text/plain", "user-1")

        assert document["id"] == DOC_ID
        assert result is None

    @pytest.mark.asyncio
    async def test_row_failure_removes_stored_file(self, pipeline):
        pipeline["create"].side_effect = RuntimeError("insert failed")

        with pytest.raises(RuntimeError):
            await ingest_upload(CONTENT.encode(), "notes.txt", "text/plain", "user-1")

        stored_path = pipeline["upload"].call_args.args[0]
        pipeline["remove"].assert_called_once_with(stored_path)


def test_delete_document_everywhere():
    with (
        patch("app.core.ingest.delete_document_chunks") as delete_vectors,
        patch("app.db.documents.delete_chunks") as delete_chunks,
        patch("app.core.ingest.remove_file") as remove,
        patch("app.db.documents.delete_document") as delete_row,
    ):
        delete_document_everywhere({"id": DOC_ID, "storage_path": "123_notes.txt"})

    delete_vectors.assert_called_once_with(DOC_ID)
    delete_chunks.assert_called_once_with(DOC_ID)
    remove.assert_called_once_with("123_notes.txt")
    delete_row.assert_called_once_with(DOC_ID)


class TestStorage:
    def test_storage_path(self):
        now = datetime(2026, 1, 2, tzinfo=UTC)
        assert build_storage_path("my report/v2.pdf", now) == f"{int(now.timestamp() * 1000)}_my_report_v2.pdf"

    def test_upload_retries_then_succeeds(self):
        sb = mock_supabase()
        bucket = sb.storage.from_.return_value
        bucket.upload.side_effect = [RuntimeError("502"), None]
        sleep = MagicMock()
        with patch.object(storage, "get_supabase", return_value=sb):
            assert upload_file("1_a.txt", b"data", "text/plain", sleep=sleep) == "1_a.txt"

        sb.storage.from_.assert_called_with("documents")
        sleep.assert_called_once_with(1)

    def test_upload_gives_up(self):
        sb = mock_supabase()
        sb.storage.from_.return_value.upload.side_effect = RuntimeError("502")
        with patch.object(storage, "get_supabase", return_value=sb):
            with pytest.raises(StorageError):
                upload_file("1_a.txt", b"data", "text/plain", sleep=MagicMock())

    def test_remove_failures_are_swallowed(self):
        sb = mock_supabase()
        sb.storage.from_.return_value.remove.side_effect = RuntimeError("gone")
        with patch.object(storage, "get_supabase", return_value=sb):
            storage.remove_file("1_a.txt")

    def test_signed_download_url(self):
        sb = mock_supabase()
        sb.storage.from_.return_value.create_signed_url.return_value = {"signedURL": "https://signed"}
        with patch.object(storage, "get_supabase", return_value=sb):
            assert storage.create_download_url("1_a.txt") == "https://signed"
