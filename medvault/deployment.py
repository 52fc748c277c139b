"""
Component wiring and the document workflows that span several components.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Tuple

from .audit.service import AuditService
from .clinical.store import ClinicalRecordStore
from .config.settings import Settings
from .errors import NotFoundError, PatientInactiveError, UnauthorizedError
from .identity.registry import IdentityRegistry
from .ledger import Ledger
from .messaging.event_bus import EventBus
from .patient.store import PatientSelfServiceStore
from .security.encryption import RecordEncryption
from .storage.providers import BlobStore
from .storage.service import DocumentService, UploadResult, create_blob_store, text_only_address
from .subject import is_valid_subject, normalize_subject
from .sync.propagator import AuthorizationPropagator

logger = logging.getLogger(__name__)

TEXT_ONLY_FILE_NAME = "Text record only"


@dataclass
class Deployment:
    owner: str
    settings: Settings
    ledger: Ledger
    event_bus: EventBus
    audit_service: AuditService
    propagator: AuthorizationPropagator
    registry: IdentityRegistry
    clinical_store: ClinicalRecordStore
    self_service_store: PatientSelfServiceStore
    encryption: RecordEncryption
    blob_store: BlobStore
    documents: DocumentService = field(repr=False)

    async def _require_writer(self, patient_id: str, caller: str) -> None:
        """Reject a submission before any bytes reach the blob store."""
        if not is_valid_subject(caller) or not await self.propagator.reconcile_doctor(normalize_subject(caller)):
            raise UnauthorizedError("Not authorized doctor")
        await self._require_active_patient(patient_id)

    async def _require_active_patient(self, patient_id: str) -> None:
        if not is_valid_subject(patient_id) or not await self.propagator.patient_active(
            normalize_subject(patient_id)
        ):
            raise PatientInactiveError("Patient is not active")

    async def submit_clinical_document(
        self,
        patient_id: str,
        diagnosis: str,
        treatment: str,
        content: Optional[bytes] = None,
        file_name: Optional[str] = None,
        *,
        caller: str,
    ) -> Tuple[int, Optional[UploadResult]]:
        """Store an optional document for ``patient_id`` and record it as ``caller``.

        Without ``content`` the record gets a ``text-only-`` address. The
        caller and patient are checked before the document is uploaded; the
        clinical store checks them again when the record is written.
        """
        upload: Optional[UploadResult] = None
        if content:
            await self._require_writer(patient_id, caller)
            file_name = file_name or "document"
            upload = await self.documents.upload(
                content,
                file_name,
                subject_id=patient_id,
                encrypt=self.settings.encrypt_uploads,
            )
            address = upload.content_address
        else:
            address = text_only_address(self.ledger.now())
            file_name = TEXT_ONLY_FILE_NAME

        index = await self.clinical_store.add_medical_record(
            address,
            file_name,
            patient_id,
            diagnosis,
            treatment,
            caller=caller,
            is_encrypted=bool(upload and upload.is_encrypted),
        )
        return index, upload

    async def upload_self_document(
        self,
        content: bytes,
        file_name: str,
        record_type: str,
        description: str,
        *,
        caller: str,
    ) -> int:
        await self._require_active_patient(caller)
        upload = await self.documents.upload(
            content, file_name, subject_id=caller, encrypt=self.settings.encrypt_uploads
        )
        return await self.self_service_store.upload_self_record(
            upload.content_address,
            file_name,
            record_type,
            description,
            upload.is_encrypted,
            caller=caller,
        )

    async def download_self_document(self, index: int, *, caller: str) -> bytes:
        records = await self.self_service_store.get_my_self_records(caller=caller)
        if index < 0 or index >= len(records):
            raise NotFoundError("Self record not found")
        record = records[index]
        return await self.documents.download(
            record.content_address, subject_id=caller, is_encrypted=record.is_encrypted
        )

    async def download_clinical_document(self, patient_id: str, index: int, *, caller: str) -> bytes:
        """Fetch the document behind a clinical record the caller may read."""
        records = await self.clinical_store.get_medical_records(patient_id, caller=caller)
        if index < 0 or index >= len(records):
            raise NotFoundError("Medical record not found")
        record = records[index]
        return await self.documents.download(
            record.content_address, subject_id=record.patient_id, is_encrypted=record.is_encrypted
        )

    async def aclose(self) -> None:
        await self.blob_store.aclose()


async def build_deployment(
    owner: str,
    settings: Optional[Settings] = None,
    blob_store: Optional[BlobStore] = None,
    ledger: Optional[Ledger] = None,
) -> Deployment:
    """Construct every component and wire them the way the owner would.

    The registry pushes into the clinical store, the self-service store reads
    the clinical store and the registry through the shared propagator.
    """
    owner = normalize_subject(owner)
    settings = settings or Settings.from_env()
    ledger = ledger or Ledger()
    event_bus = EventBus()
    audit_service = AuditService()
    propagator = AuthorizationPropagator(audit_service=audit_service)

    registry = IdentityRegistry(owner, ledger, propagator, event_bus, audit_service)
    clinical_store = ClinicalRecordStore(owner, ledger, propagator, event_bus, audit_service)
    self_service_store = PatientSelfServiceStore(
        owner, ledger, propagator, event_bus=event_bus, audit_service=audit_service
    )
    await registry.set_clinical_store(clinical_store, caller=owner)
    await clinical_store.set_self_service_store(self_service_store, caller=owner)
    await self_service_store.set_clinical_store(clinical_store, caller=owner)

    encryption = RecordEncryption(settings.secret_value(), iterations=settings.kdf_iterations)
    if not encryption.is_configured:
        logger.warning("No encryption secret configured; document encryption will fail until one is set")
    blob_store = blob_store or create_blob_store(settings)
    documents = DocumentService(blob_store, encryption, audit_service, clock=ledger.now)

    logger.info(
        "medvault deployment ready (registry=%s, clinical=%s, self_service=%s, blobs=%s)",
        registry.address,
        clinical_store.address,
        self_service_store.address,
        settings.blob_backend,
    )
    return Deployment(
        owner=owner,
        settings=settings,
        ledger=ledger,
        event_bus=event_bus,
        audit_service=audit_service,
        propagator=propagator,
        registry=registry,
        clinical_store=clinical_store,
        self_service_store=self_service_store,
        encryption=encryption,
        blob_store=blob_store,
        documents=documents,
    )
