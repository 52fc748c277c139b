"""
Patient Self-Service Store: patient-authored records and profile.

Patient activity is a live read-only query against the Identity Registry
through the propagator, so an unset or failing registry means "inactive".
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Protocol

from ..audit.models import AuditCategory
from ..audit.service import AuditLevel, AuditService
from ..clinical.models import ClinicalRecord
from ..errors import (
    AlreadyRegisteredError,
    EmptyContentAddressError,
    EmptyFieldError,
    EmptyFileNameError,
    IndexOutOfRangeError,
    NotFoundError,
    PatientInactiveError,
    UnauthorizedError,
)
from ..ledger import Ledger
from ..messaging.event_bus import EventBus
from ..messaging.models import EventType
from ..subject import is_valid_subject, new_subject, normalize_subject, subject_fingerprint
from ..sync.propagator import AuthorizationPropagator
from .models import PatientProfile, SelfRecord

logger = logging.getLogger(__name__)


class ClinicalRecordSource(Protocol):
    address: str

    async def get_active_medical_records(self, patient_id: str, *, caller: str) -> List[ClinicalRecord]: ...


def _key(subject_id: str) -> Optional[str]:
    return normalize_subject(subject_id) if is_valid_subject(subject_id) else None


def _blank(value: Optional[str]) -> bool:
    return not value or not value.strip()


class PatientSelfServiceStore:
    def __init__(
        self,
        owner: str,
        ledger: Optional[Ledger] = None,
        propagator: Optional[AuthorizationPropagator] = None,
        clinical_store: Optional[ClinicalRecordSource] = None,
        event_bus: Optional[EventBus] = None,
        audit_service: Optional[AuditService] = None,
        address: Optional[str] = None,
    ):
        self.owner = normalize_subject(owner)
        self.address = normalize_subject(address) if address else new_subject()
        self.ledger = ledger or Ledger()
        self.event_bus = event_bus or EventBus()
        self.audit_service = audit_service or AuditService()
        self.propagator = propagator or AuthorizationPropagator(audit_service=self.audit_service)
        self.clinical_store = clinical_store

        self._profiles: Dict[str, PatientProfile] = {}
        self._records: Dict[str, List[SelfRecord]] = {}

    async def _deny(self, action: str, caller: str, reason: str) -> None:
        await self.audit_service.log_event(
            event_type="self_service_access_denied",
            category=AuditCategory.SECURITY,
            action=action,
            result="denied",
            description=reason,
            resource_type="self_record",
            user_id=subject_fingerprint(caller) if is_valid_subject(caller) else None,
            level=AuditLevel.DETAILED,
        )
        raise UnauthorizedError(reason)

    async def _require_active(self, caller: str) -> str:
        patient = _key(caller)
        if patient is None or not await self.propagator.patient_active(patient):
            raise PatientInactiveError("Patient not active")
        return patient

    async def set_clinical_store(self, store: ClinicalRecordSource, *, caller: str) -> None:
        async with self.ledger.transaction():
            if _key(caller) != self.owner:
                await self._deny("set_clinical_store", caller, "Only the owner can wire stores")
            self.clinical_store = store

    # Profile

    async def update_profile(self, name: str, email: str, phone_number: str, *, caller: str) -> PatientProfile:
        """Create or overwrite the caller's profile; ``profile_completed`` is left as is."""
        async with self.ledger.transaction():
            patient = await self._require_active(caller)
            existing = self._profiles.get(patient)
            fields = {
                "name": name,
                "email": email,
                "phone_number": phone_number,
                "last_updated": self.ledger.now(),
            }
            profile = existing.model_copy(update=fields) if existing else PatientProfile(**fields)
            self._profiles[patient] = profile
            await self.event_bus.emit(EventType.PROFILE_UPDATED, source=self.address, patient_id=patient)
            return profile.model_copy()

    async def self_register(self, name: str, email: str, phone_number: str, *, caller: str) -> PatientProfile:
        """First-time profile creation by an active patient."""
        async with self.ledger.transaction():
            patient = await self._require_active(caller)
            if patient in self._profiles:
                raise AlreadyRegisteredError("Profile already exists")
            if _blank(name) or _blank(email) or _blank(phone_number):
                raise EmptyFieldError("name, email and phone_number are required")

            profile = PatientProfile(
                name=name,
                email=email,
                phone_number=phone_number,
                profile_completed=True,
                last_updated=self.ledger.now(),
            )
            self._profiles[patient] = profile
            await self.event_bus.emit(EventType.PROFILE_UPDATED, source=self.address, patient_id=patient)
            logger.info("Patient %s self-registered", subject_fingerprint(patient))
            return profile.model_copy()

    async def get_my_profile(self, *, caller: str) -> PatientProfile:
        profile = self._profiles.get(_key(caller))
        if profile is None:
            raise NotFoundError("Profile not found")
        return profile.model_copy()

    # Self records

    async def upload_self_record(
        self,
        content_address: str,
        file_name: str,
        record_type: str,
        description: str,
        is_encrypted: bool = True,
        *,
        caller: str,
    ) -> int:
        async with self.ledger.transaction():
            if _blank(content_address):
                raise EmptyContentAddressError("Content address cannot be empty")
            if _blank(file_name):
                raise EmptyFileNameError("File name cannot be empty")
            patient = await self._require_active(caller)

            records = self._records.setdefault(patient, [])
            records.append(
                SelfRecord(
                    content_address=content_address,
                    file_name=file_name,
                    record_type=record_type,
                    description=description,
                    created_at=self.ledger.now(),
                    is_encrypted=is_encrypted,
                )
            )
            index = len(records) - 1
            await self.event_bus.emit(
                EventType.SELF_RECORD_UPLOADED, source=self.address, patient_id=patient, index=index
            )
            return index

    async def get_my_self_records(self, *, caller: str) -> List[SelfRecord]:
        return [r.model_copy() for r in self._records.get(_key(caller), [])]

    async def get_my_self_record_count(self, *, caller: str) -> int:
        return len(self._records.get(_key(caller), []))

    def _record_list(self, caller: str, index: int) -> List[SelfRecord]:
        records = self._records.get(_key(caller), [])
        if index < 0 or index >= len(records):
            raise IndexOutOfRangeError("Invalid record index")
        return records

    async def delete_self_record(self, index: int, *, caller: str) -> None:
        """Remove by moving the last record into ``index``; order is not kept."""
        async with self.ledger.transaction():
            records = self._record_list(caller, index)
            records[index] = records[-1]
            records.pop()
            await self.event_bus.emit(
                EventType.SELF_RECORD_DELETED, source=self.address, patient_id=_key(caller), index=index
            )

    async def update_self_record(self, index: int, record_type: str, description: str, *, caller: str) -> SelfRecord:
        async with self.ledger.transaction():
            records = self._record_list(caller, index)
            records[index] = records[index].model_copy(
                update={"record_type": record_type, "description": description}
            )
            await self.event_bus.emit(
                EventType.SELF_RECORD_UPDATED, source=self.address, patient_id=_key(caller), index=index
            )
            return records[index].model_copy()

    # Clinical view

    async def get_my_medical_records(self, *, caller: str) -> List[ClinicalRecord]:
        """Caller's active clinical records, read through this store's principal."""
        if self.clinical_store is None:
            await self._deny("get_my_medical_records", caller, "Clinical store not configured")
        try:
            return await self.clinical_store.get_active_medical_records(caller, caller=self.address)
        except Exception as e:  # noqa: BLE001
            logger.warning("Clinical store query failed for %s: %s", subject_fingerprint(str(caller)), e)
            await self._deny("get_my_medical_records", caller, "Clinical records unavailable")

    # Third-party reads

    async def _require_viewer(self, action: str, patient_id: str, caller: str) -> Optional[str]:
        patient = _key(patient_id)
        viewer = _key(caller)
        if viewer is not None and (
            viewer == patient or viewer == self.owner or await self.propagator.doctor_authorized(viewer)
        ):
            return patient
        await self._deny(action, caller, "Not authorized to view patient data")

    async def get_patient_self_records(self, patient_id: str, *, caller: str) -> List[SelfRecord]:
        patient = await self._require_viewer("get_patient_self_records", patient_id, caller)
        return [r.model_copy() for r in self._records.get(patient, [])]

    async def get_patient_profile(self, patient_id: str, *, caller: str) -> PatientProfile:
        patient = await self._require_viewer("get_patient_profile", patient_id, caller)
        profile = self._profiles.get(patient)
        if profile is None:
            raise NotFoundError("Profile not found")
        return profile.model_copy()
