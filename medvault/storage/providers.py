"""
Content-addressed blob store backends (in-memory, filesystem, IPFS).
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

import aiofiles
import aiofiles.os
import httpx

from ..errors import BlobIntegrityError, BlobNotFoundError, BlobStoreError

logger = logging.getLogger(__name__)

ADDRESS_PREFIX = "sha256-"


def content_address(data: bytes) -> str:
    """Deterministic address of ``data``: ``sha256-<hex digest>``."""
    return ADDRESS_PREFIX + hashlib.sha256(data).hexdigest()


def verify_content(data: bytes, address: str) -> bool:
    """Check ``data`` against a ``sha256-`` address."""
    return hmac.compare_digest(content_address(data), address)


class BlobStore(ABC):
    """Abstract base class for blob store backends."""

    @abstractmethod
    async def put(self, data: bytes) -> str:
        """Store ``data`` and return its content address."""
        pass

    @abstractmethod
    async def get(self, address: str) -> bytes:
        """Return the bytes stored under ``address``.

        Raises:
            BlobNotFoundError: If nothing is stored under ``address``.
        """
        pass

    @abstractmethod
    async def exists(self, address: str) -> bool:
        pass

    async def aclose(self) -> None:
        return None


class InMemoryBlobStore(BlobStore):
    """Dict-backed store for tests and single-process use."""

    def __init__(self) -> None:
        self._blobs: Dict[str, bytes] = {}

    async def put(self, data: bytes) -> str:
        data = bytes(data)
        address = content_address(data)
        self._blobs[address] = data
        return address

    async def get(self, address: str) -> bytes:
        try:
            return self._blobs[address]
        except KeyError:
            raise BlobNotFoundError(f"Blob {address} not found") from None

    async def exists(self, address: str) -> bool:
        return address in self._blobs

    def __len__(self) -> int:
        return len(self._blobs)


class FilesystemBlobStore(BlobStore):
    """
    Filesystem store laid out by address prefix.

    ``sha256-abcdef...`` is written to ``<base>/ab/cd/abcdef...``. Reads are
    verified against the address before being returned.
    """

    def __init__(self, base_path: str) -> None:
        self.base_path = Path(base_path)

    def _get_object_path(self, address: str) -> Path:
        if not address.startswith(ADDRESS_PREFIX):
            raise BlobNotFoundError(f"Blob {address} not found")
        digest = address[len(ADDRESS_PREFIX):]
        if len(digest) != 64 or any(c not in "0123456789abcdef" for c in digest):
            raise BlobNotFoundError(f"Blob {address} not found")
        return self.base_path / digest[:2] / digest[2:4] / digest

    async def put(self, data: bytes) -> str:
        data = bytes(data)
        address = content_address(data)
        object_path = self._get_object_path(address)
        tmp_path = object_path.with_suffix(".tmp")
        try:
            if await aiofiles.os.path.exists(object_path):
                return address
            await aiofiles.os.makedirs(object_path.parent, exist_ok=True)
            async with aiofiles.open(tmp_path, "wb") as f:
                await f.write(data)
            await aiofiles.os.replace(tmp_path, object_path)
        except OSError as e:
            raise BlobStoreError(f"Failed to write blob {address}: {e}") from e
        return address

    async def get(self, address: str) -> bytes:
        object_path = self._get_object_path(address)
        if not await aiofiles.os.path.exists(object_path):
            raise BlobNotFoundError(f"Blob {address} not found")

        async with aiofiles.open(object_path, "rb") as f:
            data = await f.read()

        if not verify_content(data, address):
            logger.error("Integrity check failed for blob %s", address)
            raise BlobIntegrityError(f"Blob {address} failed integrity check")
        return data

    async def exists(self, address: str) -> bool:
        try:
            return await aiofiles.os.path.exists(self._get_object_path(address))
        except BlobNotFoundError:
            return False


class IpfsBlobStore(BlobStore):
    """
    IPFS store speaking the node's HTTP RPC API (``/api/v0/add``, ``/api/v0/cat``).

    The content address is the CID the node returns; it is derived by the
    node from the content and is stable for identical bytes.
    """

    def __init__(
        self,
        api_url: str = "http://127.0.0.1:5001",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self._client = client or httpx.AsyncClient(base_url=self.api_url, timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def put(self, data: bytes) -> str:
        try:
            r = await self._client.post(
                "/api/v0/add",
                params={"pin": "true", "quieter": "true"},
                files={"file": ("blob", bytes(data), "application/octet-stream")},
            )
            r.raise_for_status()
            cid = r.json()["Hash"]
        except (httpx.HTTPError, KeyError, ValueError) as e:
            raise BlobStoreError(f"IPFS add failed: {e}") from e
        logger.info("Blob added to IPFS: %s", cid)
        return cid

    async def get(self, address: str) -> bytes:
        try:
            r = await self._client.post("/api/v0/cat", params={"arg": address})
        except httpx.HTTPError as e:
            raise BlobStoreError(f"IPFS cat failed: {e}") from e
        if r.status_code >= 400:
            # Kubo reports unknown/invalid CIDs as 500 with a JSON error body
            raise BlobNotFoundError(f"Blob {address} not found")
        return r.content

    async def exists(self, address: str) -> bool:
        try:
            r = await self._client.post(
                "/api/v0/block/stat", params={"arg": address, "offline": "true"}
            )
        except httpx.HTTPError:
            return False
        return r.status_code == 200
