"""
Blob store backends.
"""

import json

import httpx
import pytest

from medvault.errors import BlobIntegrityError, BlobNotFoundError, BlobStoreError, NotFoundError
from medvault.storage import FilesystemBlobStore, InMemoryBlobStore, IpfsBlobStore, content_address


def test_content_address_is_deterministic():
    assert content_address(b"abc") == content_address(b"abc")
    assert content_address(b"abc").startswith("sha256-")
    assert content_address(b"abc") != content_address(b"abd")


class TestInMemory:
    @pytest.mark.asyncio
    async def test_put_get(self):
        store = InMemoryBlobStore()
        address = await store.put(b"report")
        assert address == content_address(b"report")
        assert await store.get(address) == b"report"
        assert await store.exists(address) is True
        assert await store.put(b"report") == address
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_missing(self):
        store = InMemoryBlobStore()
        with pytest.raises(BlobNotFoundError):
            await store.get(content_address(b"nothing"))
        assert await store.exists("sha256-00") is False


class TestFilesystem:
    @pytest.mark.asyncio
    async def test_sharded_layout(self, tmp_path):
        store = FilesystemBlobStore(str(tmp_path))
        address = await store.put(b"scan bytes")
        digest = address[len("sha256-"):]
        assert (tmp_path / digest[:2] / digest[2:4] / digest).read_bytes() == b"scan bytes"
        assert await store.get(address) == b"scan bytes"
        assert await store.exists(address) is True

    @pytest.mark.asyncio
    async def test_missing_and_malformed(self, tmp_path):
        store = FilesystemBlobStore(str(tmp_path))
        with pytest.raises(BlobNotFoundError):
            await store.get(content_address(b"never stored"))
        with pytest.raises(NotFoundError):
            await store.get("../../etc/passwd")
        assert await store.exists("sha256-zz") is False

    @pytest.mark.asyncio
    async def test_corruption_detected(self, tmp_path):
        store = FilesystemBlobStore(str(tmp_path))
        address = await store.put(b"original")
        digest = address[len("sha256-"):]
        (tmp_path / digest[:2] / digest[2:4] / digest).write_bytes(b"tampered")
        with pytest.raises(BlobIntegrityError):
            await store.get(address)

    @pytest.mark.asyncio
    async def test_unwritable_base_is_store_error(self, tmp_path):
        (tmp_path / "file").write_bytes(b"not a directory")
        store = FilesystemBlobStore(str(tmp_path / "file" / "blobs"))
        with pytest.raises(BlobStoreError):
            await store.put(b"scan bytes")


def _ipfs_store(handler):
    client = httpx.AsyncClient(base_url="http://ipfs.test", transport=httpx.MockTransport(handler))
    return IpfsBlobStore("http://ipfs.test", client=client)


class TestIpfs:
    @pytest.mark.asyncio
    async def test_add_and_cat(self):
        blobs = {}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/api/v0/add":
                blobs["QmTestCid"] = request.content
                return httpx.Response(200, text=json.dumps({"Name": "blob", "Hash": "QmTestCid", "Size": "9"}))
            if request.url.path == "/api/v0/cat":
                cid = request.url.params["arg"]
                if cid not in blobs:
                    return httpx.Response(500, json={"Message": "invalid path", "Code": 0})
                return httpx.Response(200, content=b"ipfs data")
            if request.url.path == "/api/v0/block/stat":
                return httpx.Response(200 if request.url.params["arg"] in blobs else 500, json={})
            return httpx.Response(404)

        store = _ipfs_store(handler)
        try:
            cid = await store.put(b"ipfs data")
            assert cid == "QmTestCid"
            assert await store.get(cid) == b"ipfs data"
            assert await store.exists(cid) is True
            assert await store.exists("QmMissing") is False
            with pytest.raises(BlobNotFoundError):
                await store.get("QmMissing")
        finally:
            await store.aclose()

    @pytest.mark.asyncio
    async def test_node_down_is_store_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        store = _ipfs_store(handler)
        try:
            with pytest.raises(BlobStoreError):
                await store.put(b"data")
            with pytest.raises(BlobStoreError):
                await store.get("QmAnything")
            assert await store.exists("QmAnything") is False
        finally:
            await store.aclose()

    @pytest.mark.asyncio
    async def test_bad_add_response_is_store_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"unexpected": True})

        store = _ipfs_store(handler)
        try:
            with pytest.raises(BlobStoreError):
                await store.put(b"data")
        finally:
            await store.aclose()
