from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class SelfRecord(BaseModel):
    """A document the patient uploaded about themselves."""

    content_address: str
    file_name: str
    record_type: str
    description: str
    created_at: datetime
    is_encrypted: bool = True


class PatientProfile(BaseModel):
    name: str
    email: str
    phone_number: str
    profile_completed: bool = False
    last_updated: datetime
