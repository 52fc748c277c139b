"""
Content-addressed document storage.

This module provides:
- Blob store backends (in-memory, filesystem, IPFS)
- Upload/download orchestration with per-subject encryption
- Placeholder fallback when the blob store is unavailable
"""

from .providers import (
    BlobStore,
    FilesystemBlobStore,
    InMemoryBlobStore,
    IpfsBlobStore,
    content_address,
)
from .service import DocumentService, UploadResult, create_blob_store, text_only_address

__all__ = [
    "BlobStore",
    "FilesystemBlobStore",
    "InMemoryBlobStore",
    "IpfsBlobStore",
    "content_address",
    "DocumentService",
    "UploadResult",
    "create_blob_store",
    "text_only_address",
]
