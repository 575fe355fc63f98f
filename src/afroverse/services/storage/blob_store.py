"""Blob store interface and filesystem implementation.

Refs are opaque strings produced by ``store``; callers pass them back to
``fetch`` unchanged.
"""

import asyncio
from pathlib import Path
from typing import Protocol

from afroverse.services.exceptions import BlobNotFoundError, InvalidInputError

LOCAL_REF_SCHEME = "local://"


class BlobStore(Protocol):
    """Capability contract for artifact storage."""

    async def fetch(self, ref: str) -> bytes: ...

    async def store(self, data: bytes, path: str, content_type: str = "image/png") -> str: ...


class LocalBlobStore:
    """Blob store backed by a directory on the local filesystem.

    Used for development and tests. Refs take the form ``local://<relative path>``.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        target = (self.root / path.lstrip("/")).resolve()
        if not target.is_relative_to(self.root):
            raise InvalidInputError(f"Blob path escapes store root: {path}")
        return target

    async def fetch(self, ref: str) -> bytes:
        """Read blob contents.

        Raises:
            BlobNotFoundError: If ref is not a local ref or the file is absent
        """
        if not ref.startswith(LOCAL_REF_SCHEME):
            raise BlobNotFoundError(f"Not a local blob ref: {ref}")
        target = self._resolve(ref[len(LOCAL_REF_SCHEME) :])
        if not target.is_file():
            raise BlobNotFoundError(f"Blob not found: {ref}")
        return await asyncio.to_thread(target.read_bytes)

    async def store(self, data: bytes, path: str, content_type: str = "image/png") -> str:
        """Write blob contents and return its ref."""
        target = self._resolve(path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        await asyncio.to_thread(_write)
        return f"{LOCAL_REF_SCHEME}{target.relative_to(self.root).as_posix()}"
