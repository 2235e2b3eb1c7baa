"""
Upload gate - validates and stages incoming spreadsheet files.

This module handles:
1. Type checks against a CSV/Excel allow-list (MIME aliases or extension)
2. Size enforcement while streaming to disk
3. Collision-free naming for concurrent uploads
4. Metadata sidecars so imports can load a staged file by id
5. Reclaiming staged files that were never imported

Nothing downstream ever sees a file that has not passed through stage().
"""
import os
import re
import secrets
import threading
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, Sequence

from fastapi import UploadFile

from sheetport.models.upload import UploadedFile
from sheetport.utils.logger import get_logger
from sheetport.utils.errors import (
    FileTooLargeError,
    InvalidFileTypeError,
    InvalidRequestError,
    NotFoundError,
    TooManyFilesError,
)

logger = get_logger(__name__)

ALLOWED_MIME_TYPES = frozenset({
    "text/csv",
    "application/csv",
    "text/x-csv",
    "application/x-csv",
    "application/vnd.ms-excel",
    "application/excel",
    "application/x-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
})
ALLOWED_EXTENSIONS = frozenset({".csv", ".xls", ".xlsx"})

# Stored extension for files accepted on MIME type alone
EXTENSION_BY_MIME_TYPE = {
    "text/csv": ".csv",
    "application/csv": ".csv",
    "text/x-csv": ".csv",
    "application/x-csv": ".csv",
    "application/vnd.ms-excel": ".xls",
    "application/excel": ".xls",
    "application/x-excel": ".xls",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": ".xlsx",
}

CHUNK_SIZE = 1024 * 1024
MAX_PREFIX_LENGTH = 30
PART_SUFFIX = ".part"
META_SUFFIX = ".json"

FILE_ID_PATTERN = re.compile(r"^\d{19,}-[0-9a-f]{16}$")

_clock_lock = threading.Lock()
_last_timestamp_ns = 0


def _next_timestamp_ns() -> int:
    """Wall-clock nanoseconds, strictly increasing within this process."""
    global _last_timestamp_ns
    with _clock_lock:
        now = time.time_ns()
        if now <= _last_timestamp_ns:
            now = _last_timestamp_ns + 1
        _last_timestamp_ns = now
        return now


def new_file_id() -> str:
    return f"{_next_timestamp_ns()}-{secrets.token_hex(8)}"


def sanitize_name(filename: str) -> str:
    """Readable prefix for the stored name. Cosmetic only."""
    stem = Path(filename).stem
    cleaned = re.sub(r"[^a-zA-Z0-9]", "_", stem)[:MAX_PREFIX_LENGTH]
    return cleaned or "upload"


def is_allowed(filename: str, mime_type: str) -> bool:
    ext = Path(filename or "").suffix.lower()
    return (mime_type or "").lower() in ALLOWED_MIME_TYPES or ext in ALLOWED_EXTENSIONS


def stored_extension(filename: str, mime_type: str) -> str:
    """Extension for the staged copy; always one of ALLOWED_EXTENSIONS."""
    ext = Path(filename or "").suffix.lower()
    if ext in ALLOWED_EXTENSIONS:
        return ext
    return EXTENSION_BY_MIME_TYPE.get((mime_type or "").lower(), ".csv")


class UploadGate:
    """
    Validates and stages uploaded spreadsheets.

    Usage:
        gate = UploadGate(upload_dir, max_bytes)
        staged = await gate.stage(files)
        staged = gate.load(staged.file_id)
    """

    def __init__(self, upload_dir: Path, max_bytes: int, ttl_hours: int = 24):
        self.upload_dir = Path(upload_dir)
        self.max_bytes = max_bytes
        self.ttl = timedelta(hours=ttl_hours)

    def ensure_dir(self) -> None:
        # exist_ok makes concurrent first callers safe
        self.upload_dir.mkdir(parents=True, exist_ok=True)

    async def stage(self, files: Sequence[UploadFile]) -> UploadedFile:
        """
        Validate a single uploaded file and write it to the staging directory.

        Args:
            files: Every file part found in the request

        Returns:
            UploadedFile describing the staged copy

        Raises:
            TooManyFilesError: More than one file was sent
            InvalidFileTypeError: Not a CSV/XLS/XLSX file
            FileTooLargeError: File exceeds the size ceiling
        """
        if not files:
            raise InvalidRequestError("No file was uploaded.")
        if len(files) > 1:
            logger.warning(f"Rejected upload with {len(files)} files")
            raise TooManyFilesError(len(files))

        upload = files[0]
        filename = upload.filename or ""
        mime_type = upload.content_type or ""

        if not is_allowed(filename, mime_type):
            logger.warning(f"Rejected upload '{filename}' with type {mime_type}")
            raise InvalidFileTypeError(mime_type, filename)

        if upload.size is not None and upload.size > self.max_bytes:
            logger.warning(f"Rejected upload '{filename}': declared size {upload.size}")
            raise FileTooLargeError(self.max_bytes)

        self.ensure_dir()
        file_id = new_file_id()
        ext = stored_extension(filename, mime_type)
        final_path = self.upload_dir / f"{sanitize_name(filename)}-{file_id}{ext}"
        part_path = final_path.with_name(final_path.name + PART_SUFFIX)

        size = await self._write_limited(upload, part_path)
        os.replace(part_path, final_path)

        staged = UploadedFile(
            file_id=file_id,
            original_name=filename,
            storage_path=str(final_path),
            size_bytes=size,
            declared_mime_type=mime_type,
            created_at=datetime.now(timezone.utc),
        )
        self._meta_path(file_id).write_text(staged.model_dump_json(), encoding="utf-8")

        logger.info(f"Staged upload {file_id} ({size} bytes) from '{filename}'")
        return staged

    async def _write_limited(self, upload: UploadFile, part_path: Path) -> int:
        """Stream the upload to part_path, aborting once the size limit is crossed."""
        written = 0
        try:
            with open(part_path, "xb") as out:
                while True:
                    chunk = await upload.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    written += len(chunk)
                    if written > self.max_bytes:
                        raise FileTooLargeError(self.max_bytes)
                    out.write(chunk)
        except BaseException:
            part_path.unlink(missing_ok=True)
            raise
        return written

    def _meta_path(self, file_id: str) -> Path:
        return self.upload_dir / f"{file_id}{META_SUFFIX}"

    def _is_staged_path(self, path: Path) -> bool:
        return path.resolve().parent == self.upload_dir.resolve()

    def load(self, file_id: str) -> UploadedFile:
        """
        Look up a staged file by id.

        Raises:
            NotFoundError: Unknown, malformed or reclaimed id
        """
        if not FILE_ID_PATTERN.match(file_id or ""):
            raise NotFoundError(f"Uploaded file '{file_id}' was not found.")

        meta_path = self._meta_path(file_id)
        try:
            staged = UploadedFile.model_validate_json(meta_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raise NotFoundError(f"Uploaded file '{file_id}' was not found.")

        content_path = Path(staged.storage_path)
        if not self._is_staged_path(content_path) or not content_path.is_file():
            logger.warning(f"Staged file {file_id} has metadata but no content")
            raise NotFoundError(f"Uploaded file '{file_id}' is no longer available.")
        return staged

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Delete staged files older than the TTL plus abandoned .part files."""
        if not self.upload_dir.is_dir():
            return 0

        cutoff = (now or datetime.now(timezone.utc)) - self.ttl
        removed = 0
        for meta_path in self.upload_dir.glob(f"*{META_SUFFIX}"):
            if not FILE_ID_PATTERN.match(meta_path.stem):
                continue
            try:
                staged = UploadedFile.model_validate_json(meta_path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                logger.warning(f"Skipping unreadable sidecar {meta_path.name}: {e}")
                continue
            if staged.created_at >= cutoff:
                continue

            content_path = Path(staged.storage_path)
            if self._is_staged_path(content_path):
                content_path.unlink(missing_ok=True)
            else:
                logger.warning(f"Sidecar {meta_path.name} points outside the upload dir; content left alone")
            meta_path.unlink(missing_ok=True)
            removed += 1

        for part_path in self.upload_dir.glob(f"*{PART_SUFFIX}"):
            mtime = datetime.fromtimestamp(part_path.stat().st_mtime, tz=timezone.utc)
            if mtime < cutoff:
                part_path.unlink(missing_ok=True)

        if removed:
            logger.info(f"Reclaimed {removed} expired staged uploads")
        return removed

