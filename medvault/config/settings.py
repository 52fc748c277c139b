"""
Process settings loaded once at startup from the environment.
"""

from __future__ import annotations

import os
from enum import Enum
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

MIN_KDF_ITERATIONS = 100_000


class BlobBackend(str, Enum):
    MEMORY = "memory"
    FILESYSTEM = "filesystem"
    IPFS = "ipfs"


def _env_bool(value: Optional[str], default: bool) -> bool:
    return default if value is None else value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """Runtime configuration for the encryption pipeline and blob store."""

    model_config = ConfigDict(use_enum_values=True, frozen=True)

    encryption_secret: Optional[SecretStr] = None
    kdf_iterations: int = MIN_KDF_ITERATIONS
    blob_backend: BlobBackend = BlobBackend.MEMORY
    blob_path: str = "./data/blobs"
    ipfs_api_url: str = "http://127.0.0.1:5001"
    ipfs_timeout_seconds: float = Field(default=30.0, gt=0)
    encrypt_uploads: bool = True
    log_level: str = "INFO"

    @field_validator("kdf_iterations")
    @classmethod
    def _kdf_floor(cls, v: int) -> int:
        if v < MIN_KDF_ITERATIONS:
            raise ValueError(f"kdf_iterations must be >= {MIN_KDF_ITERATIONS}")
        return v

    @field_validator("encryption_secret")
    @classmethod
    def _blank_secret_is_absent(cls, v: Optional[SecretStr]) -> Optional[SecretStr]:
        if v is not None and not v.get_secret_value():
            return None
        return v

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        secret = env.get("MEDVAULT_ENCRYPTION_SECRET") or env.get("ENCRYPTION_SECRET")
        return cls(
            encryption_secret=secret,
            kdf_iterations=int(env.get("MEDVAULT_KDF_ITERATIONS", MIN_KDF_ITERATIONS)),
            blob_backend=env.get("MEDVAULT_BLOB_BACKEND", BlobBackend.MEMORY.value).lower(),
            blob_path=env.get("MEDVAULT_BLOB_PATH", "./data/blobs"),
            ipfs_api_url=env.get("IPFS_API_URL", "http://127.0.0.1:5001"),
            ipfs_timeout_seconds=float(env.get("IPFS_TIMEOUT_SECONDS", "30")),
            encrypt_uploads=_env_bool(env.get("MEDVAULT_ENCRYPT_UPLOADS"), True),
            log_level=env.get("LOG_LEVEL", "INFO"),
        )

    def secret_value(self) -> Optional[str]:
        return self.encryption_secret.get_secret_value() if self.encryption_secret else None
