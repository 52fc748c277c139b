from __future__ import annotations

from typing import Dict, List, Optional
import logging

from ..audit.models import AuditCategory
from ..audit.service import AuditLevel, AuditService
from ..errors import (
    AlreadyRegisteredError,
    InvalidSubjectError,
    NotFoundError,
    UnauthorizedError,
)
from ..ledger import Ledger
from ..messaging.event_bus import EventBus
from ..messaging.models import EventType
from ..subject import NULL_SUBJECT, is_valid_subject, new_subject, normalize_subject, subject_fingerprint
from ..sync.propagator import AuthorizationPropagator, AuthorizationSink
from .models import Doctor, Patient


class IdentityRegistry:
    """Authoritative doctor and patient registry.

    Only the owner may mutate it. Revoked doctors and deactivated patients
    are kept for audit; enumeration filters them out at read time.
    """

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
        self.propagator.bind(directory=self)
        self.logger = logging.getLogger(__name__)

        self._doctors: Dict[str, Doctor] = {}
        self._doctor_ids: List[str] = []
        self._patients: Dict[str, Patient] = {}
        self._patient_ids: List[str] = []

    async def _require_owner(self, caller: str, action: str) -> None:
        if is_valid_subject(caller) and normalize_subject(caller) == self.owner:
            return
        await self.audit_service.log_event(
            event_type="registry_access_denied",
            category=AuditCategory.SECURITY,
            action=action,
            result="denied",
            description=f"Non-owner attempted {action}",
            resource_type="identity_registry",
            user_id=subject_fingerprint(caller) if is_valid_subject(caller) else None,
            level=AuditLevel.DETAILED,
        )
        raise UnauthorizedError(f"Only the registry owner can {action}")

    @staticmethod
    def _registrable(subject_id: str) -> str:
        if not is_valid_subject(subject_id):
            raise InvalidSubjectError(f"Invalid subject identifier: {subject_id!r}")
        subject_id = normalize_subject(subject_id)
        if subject_id == NULL_SUBJECT:
            raise InvalidSubjectError("The null identifier cannot be registered")
        return subject_id

    @staticmethod
    def _lookup_key(subject_id: str) -> Optional[str]:
        return normalize_subject(subject_id) if is_valid_subject(subject_id) else None

    async def _emit(self, event_type: EventType, **payload) -> None:
        await self.event_bus.emit(event_type, source=self.address, **payload)

    async def set_clinical_store(self, store: AuthorizationSink, *, caller: str) -> None:
        """Configure the downstream component that receives push syncs."""
        async with self.ledger.transaction():
            await self._require_owner(caller, "set the clinical store")
            self.propagator.bind(sink=store)
            self.logger.info("Clinical store %s wired to identity registry", store.address)

    # Doctors

    async def register_doctor(
        self,
        doctor_id: str,
        name: str,
        specialization: str,
        license_number: str,
        *,
        caller: str,
    ) -> Doctor:
        async with self.ledger.transaction():
            await self._require_owner(caller, "register doctors")
            doctor_id = self._registrable(doctor_id)
            existing = self._doctors.get(doctor_id)
            if existing is not None and existing.is_authorized:
                raise AlreadyRegisteredError("Doctor already registered")

            doctor = Doctor(
                id=doctor_id,
                name=name,
                specialization=specialization,
                license_number=license_number,
                is_authorized=True,
                registered_at=self.ledger.now(),
            )
            # Sync first: a failed push must leave the registry untouched
            await self.propagator.push_authorize(doctor_id)

            self._doctors[doctor_id] = doctor
            if existing is None:
                self._doctor_ids.append(doctor_id)
            await self._emit(EventType.DOCTOR_REGISTERED, doctor_id=doctor_id)
            self.logger.info("Registered doctor %s", subject_fingerprint(doctor_id))
            return doctor.model_copy()

    async def revoke_doctor(self, doctor_id: str, *, caller: str) -> None:
        async with self.ledger.transaction():
            await self._require_owner(caller, "revoke doctors")
            key = self._lookup_key(doctor_id)
            doctor = self._doctors.get(key) if key else None
            if doctor is None or not doctor.is_authorized:
                raise NotFoundError("Doctor does not exist or is not authorized")

            await self.propagator.push_revoke(key)

            self._doctors[key] = doctor.model_copy(update={"is_authorized": False})
            await self._emit(EventType.DOCTOR_REVOKED, doctor_id=key)
            self.logger.info("Revoked doctor %s", subject_fingerprint(key))

    async def is_doctor_authorized(self, doctor_id: str) -> bool:
        key = self._lookup_key(doctor_id)
        doctor = self._doctors.get(key) if key else None
        return bool(doctor and doctor.is_authorized)

    async def get_doctor_info(self, doctor_id: str) -> Optional[Doctor]:
        key = self._lookup_key(doctor_id)
        doctor = self._doctors.get(key) if key else None
        return doctor.model_copy() if doctor else None

    async def get_all_doctors(self) -> List[Doctor]:
        return [
            self._doctors[d].model_copy()
            for d in self._doctor_ids
            if self._doctors[d].is_authorized
        ]

    # Patients

    async def register_patient(
        self,
        patient_id: str,
        name: str,
        date_of_birth: str,
        phone_number: str,
        emergency_contact: str,
        *,
        caller: str,
    ) -> Patient:
        async with self.ledger.transaction():
            await self._require_owner(caller, "register patients")
            patient_id = self._registrable(patient_id)
            existing = self._patients.get(patient_id)
            if existing is not None and existing.is_active:
                raise AlreadyRegisteredError("Patient already registered")

            patient = Patient(
                id=patient_id,
                name=name,
                date_of_birth=date_of_birth,
                phone_number=phone_number,
                emergency_contact=emergency_contact,
                is_active=True,
                registered_at=self.ledger.now(),
            )
            self._patients[patient_id] = patient
            if existing is None:
                self._patient_ids.append(patient_id)
            await self._emit(EventType.PATIENT_REGISTERED, patient_id=patient_id)
            self.logger.info("Registered patient %s", subject_fingerprint(patient_id))
            return patient.model_copy()

    async def deactivate_patient(self, patient_id: str, *, caller: str) -> None:
        async with self.ledger.transaction():
            await self._require_owner(caller, "deactivate patients")
            key = self._lookup_key(patient_id)
            patient = self._patients.get(key) if key else None
            if patient is None or not patient.is_active:
                raise NotFoundError("Patient does not exist or is not active")

            self._patients[key] = patient.model_copy(update={"is_active": False})
            await self._emit(EventType.PATIENT_DEACTIVATED, patient_id=key)
            self.logger.info("Deactivated patient %s", subject_fingerprint(key))

    async def update_patient_info(
        self,
        patient_id: str,
        name: str,
        date_of_birth: str,
        phone_number: str,
        emergency_contact: str,
        *,
        caller: str,
    ) -> Patient:
        async with self.ledger.transaction():
            await self._require_owner(caller, "update patient information")
            key = self._lookup_key(patient_id)
            patient = self._patients.get(key) if key else None
            if patient is None or not patient.is_active:
                raise NotFoundError("Patient does not exist or is not active")

            updated = patient.model_copy(
                update={
                    "name": name,
                    "date_of_birth": date_of_birth,
                    "phone_number": phone_number,
                    "emergency_contact": emergency_contact,
                }
            )
            self._patients[key] = updated
            await self._emit(EventType.PATIENT_INFO_UPDATED, patient_id=key)
            return updated.model_copy()

    async def is_patient_active(self, patient_id: str) -> bool:
        key = self._lookup_key(patient_id)
        patient = self._patients.get(key) if key else None
        return bool(patient and patient.is_active)

    async def get_patient_info(self, patient_id: str) -> Optional[Patient]:
        key = self._lookup_key(patient_id)
        patient = self._patients.get(key) if key else None
        return patient.model_copy() if patient else None

    async def get_all_patients(self) -> List[Patient]:
        return [
            self._patients[p].model_copy()
            for p in self._patient_ids
            if self._patients[p].is_active
        ]
