from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class ClinicalRecord(BaseModel):
    """A doctor-authored record. Only ``is_active`` ever changes.

    ``is_encrypted`` tells readers whether the bytes behind ``content_address``
    were sealed for ``patient_id`` when the record was written.
    """

    content_address: str
    file_name: str
    patient_id: str
    diagnosis: str
    treatment: str
    doctor_id: str
    created_at: datetime
    is_active: bool = True
    is_encrypted: bool = False
