"""
Structured audit logging for registry, record and storage operations.

Audit payloads are emitted as one JSON line on this module's logger and kept
in a bounded per-service buffer for inspection. Details are sanitised first:
names, diagnoses, contact data and similar PHI never reach the log.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
import json
import logging

from .models import AuditCategory


class AuditLevel(str, Enum):
    MINIMAL = "minimal"
    STANDARD = "standard"
    DETAILED = "detailed"
    COMPREHENSIVE = "comprehensive"


logger = logging.getLogger(__name__)

DEFAULT_BUFFER_LIMIT = 1000


class AuditService:
    SENSITIVE_KEYS = {
        "name",
        "dob",
        "date_of_birth",
        "phone",
        "phone_number",
        "email",
        "emergency_contact",
        "address",
        "diagnosis",
        "treatment",
        "description",
        "file_name",
        "plaintext",
        "secret",
        "medical_record",
        "phi",
        "pii",
    }

    def __init__(self, buffer_limit: int = DEFAULT_BUFFER_LIMIT) -> None:
        self._buffer: List[Dict[str, Any]] = []
        self._buffer_limit = buffer_limit

    @staticmethod
    def _mask_value(value: Any) -> Any:
        return "[REDACTED]"

    @classmethod
    def _sanitize(cls, data: Any) -> Any:
        """Recursively sanitize potentially sensitive structures."""
        if isinstance(data, str):
            return "[REDACTED]" if any(c in data for c in ("@", "+", "(", ")")) else data
        if isinstance(data, bytes):
            return "[REDACTED]"
        if isinstance(data, dict):
            out: Dict[str, Any] = {}
            for k, v in data.items():
                key_l = str(k).lower()
                if key_l in cls.SENSITIVE_KEYS or any(
                    t in key_l for t in ("email", "phone", "diagnosis", "treatment", "secret")
                ):
                    out[k] = cls._mask_value(v)
                else:
                    out[k] = cls._sanitize(v)
            return out
        if isinstance(data, (list, tuple)):
            return [cls._sanitize(x) for x in list(data)[:50]]  # cap length
        if isinstance(data, (int, float, bool)) or data is None:
            return data
        return "[REDACTED]"

    async def log_event(
        self,
        event_type: str,
        category: Any,
        action: str,
        result: str,
        description: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        user_id: Optional[str] = None,
        level: AuditLevel = AuditLevel.STANDARD,
        phi_involved: bool = False,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        # Only meta-information is recorded; PHI content is masked by _sanitize
        category_str = category.value if isinstance(category, AuditCategory) else str(category)

        payload = {
            "type": event_type,
            "category": category_str,
            "action": action,
            "result": result,
            "level": level.value,
            "phi_involved": bool(phi_involved),
            "resource_type": resource_type,
            "resource_id": resource_id,
            "user_id": user_id,
            "description": description,
            "details": self._sanitize(details or {}),
            "ts": datetime.now(tz=timezone.utc).isoformat(),
        }
        logger.info("audit_event=%s", json.dumps(payload, separators=(",", ":")))
        self._buffer.append(payload)
        if len(self._buffer) > self._buffer_limit:
            del self._buffer[: len(self._buffer) - self._buffer_limit]

    async def list_events(
        self, limit: int = 100, offset: int = 0, event_type: Optional[str] = None
    ) -> dict:
        items = [e for e in self._buffer if event_type is None or e["type"] == event_type]
        items.reverse()
        return {
            "items": items[offset : offset + limit],
            "total": len(items),
            "limit": limit,
            "offset": offset,
        }
