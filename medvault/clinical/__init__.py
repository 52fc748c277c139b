from .models import ClinicalRecord
from .store import ClinicalRecordStore

__all__ = ["ClinicalRecord", "ClinicalRecordStore"]
