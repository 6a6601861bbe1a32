"""
File storage collaborator.

Stores signature images, damage photos and driver license scans and returns
a URL to reference them from documents and records. Calls go through the
storage circuit breaker so a dead backend fails fast with
``StorageUnavailableError`` instead of stalling every handover.
"""

import asyncio
import logging
import uuid
from pathlib import Path
from typing import Optional, Protocol

from rental_backend.app.core.config import settings
from rental_backend.app.core.exceptions import StorageUnavailableError
from rental_backend.app.core.reliability import CircuitBreaker, CircuitOpenError, storage_circuit_breaker

logger = logging.getLogger("rental.storage")


class FileStorage(Protocol):
    async def store(self, folder: str, filename: str, content: bytes) -> str:
        """Persist ``content`` and return a URL referencing it."""
        ...


class LocalFileStorage:
    """Writes files under a local root directory."""

    def __init__(self, root: Optional[str] = None, public_url: Optional[str] = None):
        self.root = Path(root or settings.storage_root)
        self.public_url = (public_url or settings.storage_public_url).rstrip("/")

    async def store(self, folder: str, filename: str, content: bytes) -> str:
        # Never trust the client-supplied name beyond its extension
        stored_name = f"{uuid.uuid4().hex}{Path(filename).suffix.lower()}"
        target = self.root / folder / stored_name
        await asyncio.to_thread(self._write, target, content)
        return f"{self.public_url}/{folder}/{stored_name}"

    @staticmethod
    def _write(target: Path, content: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)


async def store_file(
    storage: FileStorage,
    folder: str,
    filename: str,
    content: bytes,
    breaker: CircuitBreaker = storage_circuit_breaker
) -> str:
    """
    Upload through the circuit breaker.

    Raises:
        StorageUnavailableError: If the circuit is open or the upload fails
    """
    try:
        return await breaker.call(storage.store, folder, filename, content)
    except CircuitOpenError:
        logger.warning("Storage circuit open, refusing upload to %s", folder)
        raise StorageUnavailableError()
    except OSError as e:
        logger.error("Upload to %s failed: %s", folder, e)
        raise StorageUnavailableError()
