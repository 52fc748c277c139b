"""
Audit logging with PHI/PII redaction.
"""

from .models import AuditCategory
from .service import AuditLevel, AuditService

__all__ = ["AuditCategory", "AuditLevel", "AuditService"]
