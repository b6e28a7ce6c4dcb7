"""File storage for submission attachments.

Contract: `save()` stores an upload under a caller-chosen folder (the
submission id) and returns a durable URL plus an opaque file id; `delete()`
removes a stored file by that id. `LocalFileStorage` keeps files under
UPLOAD_DIR, which the app serves as static files.
"""

from __future__ import annotations

import logging
import os
import re
import uuid
from dataclasses import dataclass
from typing import Protocol

from issue_tracker.core.config import settings

logger = logging.getLogger("issue_tracker.storage")

CHUNK_SIZE = 1024 * 1024

_SAFE_FOLDER = re.compile(r"[^A-Za-z0-9_-]+")


class StorageError(Exception):
    pass


class FileTooLarge(StorageError):
    pass


@dataclass(frozen=True, slots=True)
class StoredFile:
    url: str
    file_id: str
    file_name: str
    file_size: int


class FileStorage(Protocol):
    async def save(self, folder: str, upload, max_bytes: int) -> StoredFile: ...

    def delete(self, file_id: str) -> None: ...


def _display_name(filename: str | None) -> str:
    # Browsers on some platforms send the full client path.
    name = os.path.basename((filename or "").replace("\\", "/")).strip()
    return name or "attachment"


class LocalFileStorage:
    def __init__(self, root: str, url_prefix: str = "/uploads"):
        self.root = root
        self.url_prefix = url_prefix.rstrip("/")

    def _path(self, file_id: str) -> str:
        return os.path.join(self.root, *file_id.split("/"))

    async def save(self, folder: str, upload, max_bytes: int) -> StoredFile:
        safe_folder = _SAFE_FOLDER.sub("_", folder).strip("_") or "misc"
        file_name = _display_name(getattr(upload, "filename", None))
        ext = os.path.splitext(file_name)[1].lower()
        file_id = f"{safe_folder}/{uuid.uuid4().hex}{ext}"
        dest = self._path(file_id)

        try:
            os.makedirs(os.path.dirname(dest), exist_ok=True)
            size = 0
            with open(dest, "wb") as out:
                while True:
                    chunk = await upload.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    size += len(chunk)
                    if size > max_bytes:
                        raise FileTooLarge(f"{file_name} exceeds the remaining upload allowance")
                    out.write(chunk)
        except FileTooLarge:
            self.delete(file_id)
            raise
        except OSError as exc:
            self.delete(file_id)
            raise StorageError(f"could not store {file_name}: {exc}") from exc

        logger.info("Stored attachment %s (%d bytes) for %s", file_id, size, folder)
        return StoredFile(
            url=f"{self.url_prefix}/{file_id}",
            file_id=file_id,
            file_name=file_name,
            file_size=size,
        )

    def delete(self, file_id: str) -> None:
        try:
            os.remove(self._path(file_id))
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.warning("Could not remove stored file %s: %s", file_id, exc)


def get_storage() -> FileStorage:
    """FastAPI dependency; override in tests or to plug in another backend."""
    return LocalFileStorage(settings.UPLOAD_DIR, settings.UPLOAD_URL_PREFIX)
