"""
Domain event models emitted by the registries and stores.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class EventType(str, Enum):
    """Events emitted on successful state transitions."""

    DOCTOR_REGISTERED = "DoctorRegistered"
    DOCTOR_REVOKED = "DoctorRevoked"
    PATIENT_REGISTERED = "PatientRegistered"
    PATIENT_DEACTIVATED = "PatientDeactivated"
    PATIENT_INFO_UPDATED = "PatientInfoUpdated"
    DOCTOR_AUTHORIZED = "DoctorAuthorized"
    DOCTOR_AUTHORIZATION_REVOKED = "DoctorAuthorizationRevoked"
    MEDICAL_RECORD_ADDED = "MedicalRecordAdded"
    RECORD_DEACTIVATED = "RecordDeactivated"
    PROFILE_UPDATED = "ProfileUpdated"
    SELF_RECORD_UPLOADED = "SelfRecordUploaded"
    SELF_RECORD_UPDATED = "SelfRecordUpdated"
    SELF_RECORD_DELETED = "SelfRecordDeleted"


class Event(BaseModel):
    """A state-transition notice published by one component."""

    model_config = ConfigDict(use_enum_values=True)

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    event_type: EventType
    source: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))
    payload: Dict[str, Any] = Field(default_factory=dict)
