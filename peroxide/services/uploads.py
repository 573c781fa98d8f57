"""UploadStore — size enforcement, digesting and temp-file placement for uploads.

Uploaded files live on local disk only for the duration of their scan: the
:class:`~peroxide.workers.scan_worker.ScanWorker` deletes each file once it
has been processed.  Nothing here is durable.

Each stored file is named ``{uuid}_{sanitised original name}`` inside
``settings.upload_dir`` so that concurrent uploads of the same filename never
collide.

Usage::

    from peroxide.services.uploads import UploadStore

    store = UploadStore(upload_dir="/tmp/peroxide/uploads", max_upload_bytes=10_000_000)
    stored = store.save("sample.exe", data)
    print(stored.path, stored.file_info.digest_hex)
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from pathlib import Path

from peroxide.core.digest import sha256_hex
from peroxide.core.models import FileInfo

logger = logging.getLogger(__name__)

#: Name used when the client supplies no usable filename.
DEFAULT_FILENAME = "uploaded_file"

_MAX_NAME_LENGTH = 200

_MIB = 1024 * 1024


def format_size_limit(limit: int) -> str:
    """Render *limit* as whole megabytes, or as bytes when it is not a whole number of MB."""
    if limit >= _MIB and limit % _MIB == 0:
        return f"{limit // _MIB}MB"
    return f"{limit} bytes"


class UploadError(Exception):
    """Base class for rejected uploads."""


class UploadTooLargeError(UploadError):
    """Raised when an upload exceeds the configured size limit."""

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(
            f"File size exceeds maximum limit of {format_size_limit(limit)}"
        )
        self.size = size
        self.limit = limit


@dataclass(frozen=True)
class StoredUpload:
    """A persisted upload awaiting its scan."""

    path: Path
    file_info: FileInfo


def sanitise_filename(filename: str | None) -> str:
    """Reduce a client-supplied filename to a safe basename."""
    name = (filename or "").replace("\\", "/").split("/")[-1].strip()
    name = name.replace("\x00", "")
    if name in ("", ".", ".."):
        return DEFAULT_FILENAME
    return name[:_MAX_NAME_LENGTH]


class UploadStore:
    """Write uploads to a local directory after enforcing the size limit.

    Args:
        upload_dir: Directory for temporary upload files.  Created on first
            use when missing.
        max_upload_bytes: Largest accepted upload, in bytes.
    """

    def __init__(self, upload_dir: str | Path, max_upload_bytes: int) -> None:
        if max_upload_bytes < 1:
            raise ValueError("max_upload_bytes must be at least 1")
        self._dir = Path(upload_dir)
        self._max_bytes = max_upload_bytes

    @property
    def upload_dir(self) -> Path:
        return self._dir

    @property
    def max_upload_bytes(self) -> int:
        return self._max_bytes

    def check_size(self, size: int) -> None:
        """Raise :class:`UploadTooLargeError` when *size* exceeds the limit."""
        if size > self._max_bytes:
            logger.info(
                "File size %d exceeds limit of %d bytes",
                size,
                self._max_bytes,
            )
            raise UploadTooLargeError(size, self._max_bytes)

    def save(self, filename: str | None, data: bytes) -> StoredUpload:
        """Validate and persist *data*, returning its path and metadata.

        The size check runs before anything touches the disk.

        Raises:
            UploadTooLargeError: If *data* exceeds ``max_upload_bytes``.
            OSError: If the file cannot be written.
        """
        self.check_size(len(data))

        name = sanitise_filename(filename)
        digest = sha256_hex(data)

        self._dir.mkdir(parents=True, exist_ok=True)
        path = self._dir / f"{uuid.uuid4().hex}_{name}"
        path.write_bytes(data)

        logger.info("File saved: %s (%d bytes, sha256=%s)", path, len(data), digest)
        return StoredUpload(
            path=path,
            file_info=FileInfo(original_name=name, size_bytes=len(data), digest_hex=digest),
        )

    def discard(self, path: str | Path) -> None:
        """Delete *path*, tolerating a file that is already gone."""
        try:
            Path(path).unlink(missing_ok=True)
        except OSError as exc:
            logger.error("Failed to delete upload %s: %s", path, exc)
