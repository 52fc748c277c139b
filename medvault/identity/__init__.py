"""
Identity registry: doctors, patients and their authorization/activity flags.
"""

from .models import Doctor, Patient
from .registry import IdentityRegistry

__all__ = ["Doctor", "Patient", "IdentityRegistry"]
