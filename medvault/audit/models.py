from enum import Enum


class AuditCategory(str, Enum):
    SYSTEM = "system"
    SECURITY = "security"
    REGISTRY = "registry"
    RECORDS = "records"
    STORAGE = "storage"
