"""
Receipt blob storage.

Uploads land in a temp directory first and are only moved into permanent
storage when a transaction is created for them. Temp files that are never
promoted are removed by the janitor (purge_expired).

Naming:
- temp:      temp-receipt-<epoch ms>-<random><ext>
- permanent: receipt-<epoch ms>-<random><ext>
"""

import logging
import mimetypes
import random
import shutil
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path, PurePath
from typing import Any, Optional

logger = logging.getLogger(__name__)


class FileMoveError(Exception):
    """Raised when a temp blob cannot be moved into permanent storage."""

    pass


class ReceiptAlreadyPromotedError(Exception):
    """Raised when a temp upload is promoted a second time."""

    def __init__(self, temp_id: str, filename: Optional[str] = None):
        self.temp_id = temp_id
        self.filename = filename
        detail = f" (already stored as {filename})" if filename else ""
        super().__init__(f"Receipt upload {temp_id} was already promoted{detail}")


@dataclass
class StoredBlob:
    """A blob written to temp storage."""

    id: str
    ref: str
    size_bytes: int


def unique_suffix() -> str:
    """<epoch ms>-<random 0..1e9>."""
    return f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}"


def file_extension(original_name: Optional[str], mime_type: Optional[str] = None) -> str:
    """Extension from the original name, else guessed from the MIME type."""
    suffix = PurePath(original_name).suffix.lower() if original_name else ""
    if suffix:
        return suffix
    if mime_type:
        return mimetypes.guess_extension(mime_type) or ""
    return ""


def temp_filename(original_name: Optional[str], mime_type: Optional[str] = None) -> str:
    return f"temp-receipt-{unique_suffix()}{file_extension(original_name, mime_type)}"


def permanent_filename(original_name: Optional[str], mime_type: Optional[str] = None) -> str:
    return f"receipt-{unique_suffix()}{file_extension(original_name, mime_type)}"


class BlobStore(ABC):
    """Write/move/delete contract for receipt files."""

    @abstractmethod
    def write_temp(
        self, data: bytes, original_name: str, mime_type: Optional[str] = None
    ) -> StoredBlob:
        """Store an upload in temp storage."""
        pass

    @abstractmethod
    def move(self, temp_ref: str, filename: str) -> str:
        """
        Move a temp blob into permanent storage under filename.

        Returns:
            Permanent reference

        Raises:
            FileMoveError: On any I/O failure
        """
        pass

    @abstractmethod
    def delete(self, ref: str) -> bool:
        """Delete a blob. Returns False if it did not exist."""
        pass


class FilesystemBlobStore(BlobStore):
    """Blob store backed by two local directories."""

    def __init__(self, temp_dir: Path | str, permanent_dir: Path | str):
        self.temp_dir = Path(temp_dir)
        self.permanent_dir = Path(permanent_dir)

    def write_temp(
        self, data: bytes, original_name: str, mime_type: Optional[str] = None
    ) -> StoredBlob:
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        name = temp_filename(original_name, mime_type)
        path = self.temp_dir / name
        path.write_bytes(data)
        logger.debug("Stored temp upload %s (%d bytes)", name, len(data))
        return StoredBlob(id=name, ref=str(path), size_bytes=len(data))

    def move(self, temp_ref: str, filename: str) -> str:
        source = Path(temp_ref)
        target = self.permanent_dir / filename

        if not source.is_file():
            raise FileMoveError(f"Temp file not found: {source.name}")
        if target.exists():
            raise FileMoveError(f"Refusing to overwrite existing receipt {filename}")

        try:
            self.permanent_dir.mkdir(parents=True, exist_ok=True)
            shutil.move(str(source), str(target))
        except OSError as e:
            raise FileMoveError(f"Failed to move {source.name} to {filename}: {e}") from e

        logger.info("Promoted receipt %s -> %s", source.name, filename)
        return str(target)

    def delete(self, ref: str) -> bool:
        path = Path(ref)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def purge_expired(self, max_age: timedelta) -> int:
        """
        Remove temp uploads older than max_age.

        Returns:
            Number of files removed
        """
        if not self.temp_dir.exists():
            return 0

        cutoff = time.time() - max_age.total_seconds()
        removed = 0
        for path in self.temp_dir.glob("temp-receipt-*"):
            try:
                if path.is_file() and path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
            except OSError as e:
                logger.warning("Could not purge %s: %s", path.name, e)

        if removed:
            logger.info("Purged %d expired temp uploads", removed)
        return removed

    def stats(self) -> dict[str, Any]:
        """File counts and sizes of both directories."""

        def summarize(directory: Path) -> tuple[int, int]:
            if not directory.exists():
                return 0, 0
            files = [p for p in directory.iterdir() if p.is_file()]
            return len(files), sum(p.stat().st_size for p in files)

        temp_files, temp_bytes = summarize(self.temp_dir)
        permanent_files, permanent_bytes = summarize(self.permanent_dir)
        return {
            "temp_files": temp_files,
            "temp_bytes": temp_bytes,
            "permanent_files": permanent_files,
            "permanent_bytes": permanent_bytes,
        }
