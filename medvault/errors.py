"""
Error kinds raised by the registries, stores and encryption pipeline.

Each exception carries a stable ``kind`` string so an outer transport layer
can map failures to status codes without parsing messages.
"""

from __future__ import annotations


class MedVaultError(Exception):
    """Base class for all medvault errors."""

    kind = "MedVaultError"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind


class AlreadyRegisteredError(MedVaultError):
    kind = "AlreadyRegistered"


class NotFoundError(MedVaultError):
    kind = "NotFound"


class InvalidSubjectError(MedVaultError):
    kind = "InvalidSubject"


class UnauthorizedError(MedVaultError):
    kind = "Unauthorized"


class PatientInactiveError(MedVaultError):
    kind = "PatientInactive"


class IndexOutOfRangeError(MedVaultError):
    kind = "IndexOutOfRange"


class NotOwnerError(MedVaultError):
    kind = "NotOwner"


class EmptyFieldError(MedVaultError):
    kind = "EmptyField"


class EmptyContentAddressError(EmptyFieldError):
    kind = "EmptyContentAddress"


class EmptyFileNameError(EmptyFieldError):
    kind = "EmptyFileName"


class EncryptionFailedError(MedVaultError):
    kind = "EncryptionFailed"


class DecryptionFailedError(MedVaultError):
    kind = "DecryptionFailed"


class RemoteUnavailableError(MedVaultError):
    kind = "RemoteUnavailable"


class ConfigurationError(MedVaultError):
    """Raised when required process configuration (e.g. the secret) is absent."""

    kind = "Misconfigured"


class BlobStoreError(MedVaultError):
    kind = "BlobStoreError"


class BlobNotFoundError(BlobStoreError, NotFoundError):
    kind = "NotFound"


class BlobIntegrityError(BlobStoreError):
    kind = "BlobIntegrity"
