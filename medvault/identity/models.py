from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class Doctor(BaseModel):
    id: str
    name: str
    specialization: str
    license_number: str
    is_authorized: bool = True
    registered_at: datetime


class Patient(BaseModel):
    id: str
    name: str
    date_of_birth: str
    phone_number: str
    emergency_contact: str
    is_active: bool = True
    registered_at: datetime
