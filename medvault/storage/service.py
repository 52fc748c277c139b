"""
Document upload/download orchestration: encrypt -> put, get -> decrypt.

If the blob store rejects an upload, the caller still gets an address: a
locally synthesised placeholder. The record can then be written, but the
document bytes are NOT durable. Every such fallback is logged at WARNING and
audited as ``blob_store_fallback`` so operators can see the loss.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..audit.models import AuditCategory
from ..audit.service import AuditLevel, AuditService
from ..config.settings import BlobBackend, Settings
from ..errors import BlobNotFoundError, BlobStoreError
from ..security.encryption import RecordEncryption
from ..subject import subject_fingerprint
from .providers import BlobStore, FilesystemBlobStore, InMemoryBlobStore, IpfsBlobStore

logger = logging.getLogger(__name__)

PLACEHOLDER_PREFIX = "placeholder-"
TEXT_ONLY_PREFIX = "text-only-"


def placeholder_address(file_name: str, when: datetime) -> str:
    """Address recorded when the blob store was unavailable."""
    seed = f"{file_name}{int(when.timestamp() * 1000)}".encode()
    return PLACEHOLDER_PREFIX + hashlib.sha256(seed).hexdigest()[:44]


def text_only_address(when: datetime) -> str:
    """Address for a record that carries no attached document."""
    return f"{TEXT_ONLY_PREFIX}{int(when.timestamp() * 1000)}"


def is_local_address(address: str) -> bool:
    """True for addresses that do not resolve to stored bytes."""
    return address.startswith((PLACEHOLDER_PREFIX, TEXT_ONLY_PREFIX))


@dataclass
class UploadResult:
    content_address: str
    is_encrypted: bool
    is_placeholder: bool = False
    encryption_metadata: Optional[Dict[str, Any]] = None


def create_blob_store(settings: Settings) -> BlobStore:
    """Build the backend selected by ``settings.blob_backend``."""
    if settings.blob_backend == BlobBackend.FILESYSTEM:
        return FilesystemBlobStore(settings.blob_path)
    if settings.blob_backend == BlobBackend.IPFS:
        return IpfsBlobStore(settings.ipfs_api_url, timeout=settings.ipfs_timeout_seconds)
    return InMemoryBlobStore()


class DocumentService:
    """Moves documents between callers and the blob store."""

    def __init__(
        self,
        blob_store: BlobStore,
        encryption: RecordEncryption,
        audit_service: AuditService,
        clock=None,
    ):
        self.blob_store = blob_store
        self.encryption = encryption
        self.audit_service = audit_service
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))

    async def upload(
        self,
        content: bytes,
        file_name: str,
        subject_id: Optional[str] = None,
        encrypt: bool = True,
    ) -> UploadResult:
        """
        Encrypt (when requested and a subject is given) and store a document.

        Args:
            content: Raw document bytes
            file_name: Original file name, used only for placeholder derivation
            subject_id: Subject the document belongs to; the encryption key is bound to it
            encrypt: Whether to encrypt before storing

        Returns:
            UploadResult with the content address. ``is_placeholder`` is True
            when the store failed and the bytes were not persisted.

        Raises:
            EncryptionFailedError: If sealing fails.
            ConfigurationError: If encryption is requested without a secret.
        """
        payload = bytes(content)
        metadata: Optional[Dict[str, Any]] = None
        encrypted = bool(encrypt and subject_id)

        if encrypted:
            payload, metadata = await asyncio.to_thread(
                self.encryption.encrypt_with_metadata, payload, subject_id
            )

        try:
            address = await self.blob_store.put(payload)
        except BlobStoreError as e:
            address = placeholder_address(file_name, self._clock())
            logger.warning(
                "Blob store unavailable, recorded placeholder %s; document is NOT durable: %s",
                address,
                e,
            )
            await self.audit_service.log_event(
                event_type="blob_store_fallback",
                category=AuditCategory.STORAGE,
                action="upload",
                result="degraded",
                description="Blob store failed; placeholder address recorded",
                resource_type="document",
                resource_id=address,
                level=AuditLevel.DETAILED,
                phi_involved=True,
                details={"error": type(e).__name__, "size_bytes": len(payload)},
            )
            return UploadResult(content_address=address, is_encrypted=False, is_placeholder=True)

        await self.audit_service.log_event(
            event_type="document_stored",
            category=AuditCategory.STORAGE,
            action="upload",
            result="success",
            description="Document stored",
            resource_type="document",
            resource_id=address,
            level=AuditLevel.STANDARD,
            phi_involved=True,
            details={"encrypted": encrypted, "size_bytes": len(payload)},
        )
        if subject_id:
            logger.info("Stored document %s for subject %s", address, subject_fingerprint(subject_id))
        return UploadResult(
            content_address=address, is_encrypted=encrypted, encryption_metadata=metadata
        )

    async def download(
        self, content_address: str, subject_id: Optional[str] = None, is_encrypted: bool = False
    ) -> bytes:
        """
        Fetch a document and decrypt it when it was stored encrypted.

        Raises:
            BlobNotFoundError: For unknown, placeholder or text-only addresses.
            DecryptionFailedError: If the package does not open for ``subject_id``.
        """
        if is_local_address(content_address):
            raise BlobNotFoundError(f"No stored document behind {content_address}")

        data = await self.blob_store.get(content_address)
        if is_encrypted:
            if not subject_id:
                raise ValueError("subject_id is required to decrypt a document")
            data = await asyncio.to_thread(self.encryption.decrypt, data, subject_id)
        return data
