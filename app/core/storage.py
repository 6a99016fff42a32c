"""Original file storage in a Supabase Storage bucket."""

import time
from datetime import UTC, datetime

from app.core.config import get_settings
from app.core.file_security import sanitize_filename
from app.core.logging import get_logger
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)

UPLOAD_ATTEMPTS = 3
SIGNED_URL_TTL = 60 * 60


class StorageError(Exception):
    """Raised when a storage operation fails."""


def build_storage_path(filename: str, now: datetime | None = None) -> str:
    """``<epoch millis>_<sanitized filename>``, unique per upload."""
    now = now or datetime.now(UTC)
    safe_name = sanitize_filename(filename).replace(" ", "_")
    return f"{int(now.timestamp() * 1000)}_{safe_name}"


def upload_file(path: str, data: bytes, content_type: str, sleep=None) -> str:
    """
    Upload bytes to the documents bucket, retrying transient failures.

    Returns:
        The storage path

    Raises:
        StorageError: After the final failed attempt
    """
    bucket = get_settings().STORAGE_BUCKET
    storage = get_supabase().storage.from_(bucket)

    for attempt in range(1, UPLOAD_ATTEMPTS + 1):
        try:
            storage.upload(path, data, {"content-type": content_type, "upsert": "false"})
            logger.info(f"Uploaded {path} to {bucket}", extra={"extra_data": {"size": len(data)}})
            return path
        except Exception as e:
            if attempt == UPLOAD_ATTEMPTS:
                raise StorageError(f"Upload failed: {e}") from e
            logger.warning(f"Upload attempt {attempt} for {path} failed: {e}")
            (sleep or time.sleep)(attempt)
    raise AssertionError("unreachable")


def download_file(path: str) -> bytes:
    bucket = get_settings().STORAGE_BUCKET
    return get_supabase().storage.from_(bucket).download(path)


def remove_file(path: str) -> None:
    """Remove a stored file. Failures are logged, not raised."""
    bucket = get_settings().STORAGE_BUCKET
    try:
        get_supabase().storage.from_(bucket).remove([path])
    except Exception as e:
        logger.warning(f"Failed to remove {path} from storage: {e}")


def create_download_url(path: str, expires_in: int = SIGNED_URL_TTL) -> str:
    bucket = get_settings().STORAGE_BUCKET
    result = get_supabase().storage.from_(bucket).create_signed_url(path, expires_in)
    url = result.get("signedURL") or result.get("signedUrl") if isinstance(result, dict) else None
    if not url:
        raise StorageError(f"Could not create download URL for {path}")
    return url
