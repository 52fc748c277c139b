"""
Clinical Record Store: doctor-authored records per patient.

Records are appended and soft-deleted only; the list index is the external
reference and stays stable. The per-doctor authorization flag held here is a
cache of the Identity Registry and is reconciled before every write.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from ..audit.models import AuditCategory
from ..audit.service import AuditLevel, AuditService
from ..errors import (
    EmptyContentAddressError,
    IndexOutOfRangeError,
    NotOwnerError,
    PatientInactiveError,
    UnauthorizedError,
)
from ..ledger import Ledger
from ..messaging.event_bus import EventBus
from ..messaging.models import EventType
from ..subject import is_valid_subject, new_subject, normalize_subject, subject_fingerprint
from ..sync.propagator import AuthorizationPropagator
from .models import ClinicalRecord

logger = logging.getLogger(__name__)


def _key(subject_id: str) -> Optional[str]:
    return normalize_subject(subject_id) if is_valid_subject(subject_id) else None


class ClinicalRecordStore:
    def __init__(
        self,
        owner: str,
        ledger: Optional[Ledger] = None,
        propagator: Optional[AuthorizationPropagator] = None,
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
        self.propagator.bind(sink=self)
        self.self_service_address: Optional[str] = None

        self._authorized: Dict[str, bool] = {}
        self._records: Dict[str, List[ClinicalRecord]] = {}

    async def _deny(self, action: str, caller: str, reason: str) -> None:
        await self.audit_service.log_event(
            event_type="clinical_access_denied",
            category=AuditCategory.SECURITY,
            action=action,
            result="denied",
            description=reason,
            resource_type="clinical_record",
            user_id=subject_fingerprint(caller) if is_valid_subject(caller) else None,
            level=AuditLevel.DETAILED,
        )
        raise UnauthorizedError(reason)

    def _is_owner(self, caller: str) -> bool:
        return _key(caller) == self.owner

    def _is_registry(self, caller: str) -> bool:
        return self.propagator.is_directory(_key(caller))

    async def set_self_service_store(self, store, *, caller: str) -> None:
        """Allow ``store`` to read active records on a patient's behalf."""
        async with self.ledger.transaction():
            if not self._is_owner(caller):
                await self._deny("set_self_service_store", caller, "Only the owner can wire stores")
            self.self_service_address = normalize_subject(store.address)

    # Authorization cache, fed by the registry

    async def authorize_doctor(self, doctor_id: str, *, caller: str) -> None:
        async with self.ledger.transaction():
            if not (self._is_owner(caller) or self._is_registry(caller)):
                await self._deny("authorize_doctor", caller, "Only the owner or the registry can authorize")
            doctor_id = normalize_subject(doctor_id)
            self._authorized[doctor_id] = True
            await self.event_bus.emit(EventType.DOCTOR_AUTHORIZED, source=self.address, doctor_id=doctor_id)

    async def revoke_doctor(self, doctor_id: str, *, caller: str) -> None:
        async with self.ledger.transaction():
            if not (self._is_owner(caller) or self._is_registry(caller)):
                await self._deny("revoke_doctor", caller, "Only the owner or the registry can revoke")
            doctor_id = normalize_subject(doctor_id)
            if not self._authorized.get(doctor_id):
                return
            self._authorized[doctor_id] = False
            await self.event_bus.emit(
                EventType.DOCTOR_AUTHORIZATION_REVOKED, source=self.address, doctor_id=doctor_id
            )

    async def is_doctor_authorized(self, doctor_id: str) -> bool:
        """Cached flag only; writes always re-check the registry."""
        key = _key(doctor_id)
        return bool(key and self._authorized.get(key))

    # Writes

    async def add_medical_record(
        self,
        content_address: str,
        file_name: str,
        patient_id: str,
        diagnosis: str,
        treatment: str,
        *,
        caller: str,
        is_encrypted: bool = False,
    ) -> int:
        """Append a record authored by ``caller`` and return its index."""
        return await self._append(
            content_address, file_name, patient_id, diagnosis, treatment, caller, is_encrypted
        )

    async def add_medical_record_for(
        self,
        content_address: str,
        file_name: str,
        patient_id: str,
        diagnosis: str,
        treatment: str,
        doctor_id: str,
        *,
        caller: str,
        is_encrypted: bool = False,
    ) -> int:
        """Owner relay: append a record authored by ``doctor_id``."""
        if not self._is_owner(caller):
            await self._deny("add_medical_record_for", caller, "Only the owner can add records for a doctor")
        return await self._append(
            content_address, file_name, patient_id, diagnosis, treatment, doctor_id, is_encrypted
        )

    async def _append(
        self,
        content_address: str,
        file_name: str,
        patient_id: str,
        diagnosis: str,
        treatment: str,
        doctor_id: str,
        is_encrypted: bool,
    ) -> int:
        async with self.ledger.transaction():
            doctor = _key(doctor_id)
            if doctor is None or not await self.propagator.reconcile_doctor(doctor):
                await self._deny("add_medical_record", doctor_id, "Not authorized doctor")

            patient = _key(patient_id)
            if patient is None or not await self.propagator.patient_active(patient):
                raise PatientInactiveError("Patient is not active")

            if not content_address or not content_address.strip():
                raise EmptyContentAddressError("Content address cannot be empty")

            records = self._records.setdefault(patient, [])
            records.append(
                ClinicalRecord(
                    content_address=content_address,
                    file_name=file_name,
                    patient_id=patient,
                    diagnosis=diagnosis,
                    treatment=treatment,
                    doctor_id=doctor,
                    created_at=self.ledger.now(),
                    is_active=True,
                    is_encrypted=is_encrypted,
                )
            )
            index = len(records) - 1
            await self.event_bus.emit(
                EventType.MEDICAL_RECORD_ADDED,
                source=self.address,
                patient_id=patient,
                doctor_id=doctor,
                index=index,
            )
            logger.info(
                "Record %d added for patient %s by doctor %s",
                index,
                subject_fingerprint(patient),
                subject_fingerprint(doctor),
            )
            return index

    async def deactivate_record(self, patient_id: str, index: int, *, caller: str) -> None:
        async with self.ledger.transaction():
            patient = _key(patient_id)
            records = self._records.get(patient, []) if patient else []
            if index < 0 or index >= len(records):
                raise IndexOutOfRangeError("Invalid record index")
            record = records[index]
            if record.doctor_id != _key(caller):
                raise NotOwnerError("Only the authoring doctor can deactivate a record")

            records[index] = record.model_copy(update={"is_active": False})
            await self.event_bus.emit(
                EventType.RECORD_DEACTIVATED, source=self.address, patient_id=patient, index=index
            )

    # Reads

    async def _require_reader(self, action: str, patient_id: str, caller: str, self_service: bool = False) -> None:
        caller_key = _key(caller)
        if caller_key is not None:
            if caller_key == _key(patient_id) or self._is_registry(caller_key):
                return
            if self_service and caller_key == self.self_service_address:
                return
            if await self.propagator.doctor_authorized(caller_key):
                return
        await self._deny(action, caller, "Not authorized to view records")

    async def get_medical_records(self, patient_id: str, *, caller: str) -> List[ClinicalRecord]:
        """Full history for ``patient_id``, deactivated records included."""
        await self._require_reader("get_medical_records", patient_id, caller)
        return [r.model_copy() for r in self._records.get(_key(patient_id), [])]

    async def get_active_medical_records(self, patient_id: str, *, caller: str) -> List[ClinicalRecord]:
        await self._require_reader("get_active_medical_records", patient_id, caller, self_service=True)
        return [r.model_copy() for r in self._records.get(_key(patient_id), []) if r.is_active]

    async def get_record_count(self, patient_id: str, *, caller: str) -> int:
        await self._require_reader("get_record_count", patient_id, caller)
        return len(self._records.get(_key(patient_id), []))
