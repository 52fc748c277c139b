from .models import PatientProfile, SelfRecord
from .store import ClinicalRecordSource, PatientSelfServiceStore

__all__ = ["PatientProfile", "SelfRecord", "ClinicalRecordSource", "PatientSelfServiceStore"]
