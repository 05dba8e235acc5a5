"""Media Storage — persists uploaded files and returns their public URL.

Invariants:
    - Stored name = <field>-<epoch_ms>-<random suffix><original extension>: no client-controlled paths
    - Uploads larger than max_bytes are rejected and the partial file is removed
    - Any failure removes the partial file and raises MediaUploadError
    - delete() only touches names under root that this storage issued (url_prefix match)

Design Decisions:
    - MediaStorage Protocol: routes/services depend on the contract, tests swap the backend
    - aiofiles chunked writes: an upload never blocks the worker's event loop
"""

import contextlib
import logging
import secrets
import time
from pathlib import Path
from typing import Protocol

import aiofiles
import aiofiles.os
from fastapi import UploadFile

from vidhub.core.errors import MediaUploadError

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


class MediaStorage(Protocol):
    """Contract for blob storage — implemented by the shell."""
    async def save(self, upload: UploadFile, field: str) -> str: ...
    async def delete(self, url: str) -> None: ...


class LocalMediaStorage:
    """Writes uploads under `root`, served back under `url_prefix`."""

    def __init__(self, root: str | Path, url_prefix: str, max_bytes: int):
        self.root = Path(root)
        self.url_prefix = url_prefix.rstrip("/")
        self.max_bytes = max_bytes

    def _target_name(self, upload: UploadFile, field: str) -> str:
        suffix = Path(upload.filename or "").suffix.lower()[:10]
        return f"{field}-{int(time.time() * 1000)}-{secrets.token_hex(4)}{suffix}"

    async def save(self, upload: UploadFile, field: str) -> str:
        self.root.mkdir(parents=True, exist_ok=True)
        name = self._target_name(upload, field)
        target = self.root / name
        written = 0
        try:
            async with aiofiles.open(target, "wb") as out:
                while chunk := await upload.read(_CHUNK_SIZE):
                    written += len(chunk)
                    if written > self.max_bytes:
                        raise ValueError(f"{field} exceeds {self.max_bytes} bytes")
                    await out.write(chunk)
        except Exception as e:
            target.unlink(missing_ok=True)
            logger.error(
                f"Upload of {field} failed: {e}", extra={"service": "media"},
            )
            raise MediaUploadError(field) from e
        logger.info(
            f"Stored {field} ({written} bytes) as {name}", extra={"service": "media"},
        )
        return f"{self.url_prefix}/{name}"

    async def delete(self, url: str) -> None:
        """Remove a stored file by the URL save() returned."""
        prefix = f"{self.url_prefix}/"
        if not url.startswith(prefix):
            return
        name = Path(url[len(prefix):]).name
        with contextlib.suppress(FileNotFoundError):
            await aiofiles.os.remove(self.root / name)
        logger.info(f"Removed {name}", extra={"service": "media"})
