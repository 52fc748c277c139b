"""
Per-subject authenticated encryption for medical documents (AES-256-GCM).

A document is bound to the subject (patient) it belongs to:

- a passphrase is derived from the process secret and the subject id with a
  fast keyed hash (SHA-256 over secret || subject_id)
- a fresh 16-byte salt is drawn for every encryption and the 256-bit key is
  derived from the passphrase with PBKDF2-HMAC-SHA256 (>= 100k rounds)
- the payload is sealed with AES-256-GCM, a 16-byte IV, a 16-byte tag and a
  fixed associated-data string for the medical-record domain

The output is a flat, self-describing package::

    salt (16) || iv (16) || tag (16) || ciphertext (variable)

Key derivation is stateless: nothing but the process secret is needed to
decrypt a package for a given subject.

Note: the secret is a single process-wide value. Rotating it makes every
existing package unreadable; production key management belongs in a KMS/HSM.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple
import hashlib
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..config.settings import MIN_KDF_ITERATIONS
from ..errors import ConfigurationError, DecryptionFailedError, EncryptionFailedError
from ..subject import normalize_subject, subject_fingerprint

logger = logging.getLogger(__name__)

ALGORITHM = "aes-256-gcm"
KEY_DERIVATION = "pbkdf2-sha256-100k"
KEY_LENGTH = 32
SALT_LENGTH = 16
IV_LENGTH = 16
TAG_LENGTH = 16
HEADER_LENGTH = SALT_LENGTH + IV_LENGTH + TAG_LENGTH
ASSOCIATED_DATA = b"medical-record"

_DECRYPTION_FAILED = "Decryption failed"


class RecordEncryption:
    """AES-256-GCM encryption bound to a subject identifier."""

    def __init__(self, secret: Optional[str], iterations: int = MIN_KDF_ITERATIONS):
        if iterations < MIN_KDF_ITERATIONS:
            raise ValueError(f"iterations must be >= {MIN_KDF_ITERATIONS}")
        # Absence is reported when a document is actually sealed or opened
        self._secret: Optional[bytes] = secret.encode() if secret else None
        self.iterations = int(iterations)

    @property
    def is_configured(self) -> bool:
        return self._secret is not None

    def _require_secret(self) -> bytes:
        if self._secret is None:
            raise ConfigurationError(
                "Encryption secret is not configured; set MEDVAULT_ENCRYPTION_SECRET"
            )
        return self._secret

    def derive_passphrase(self, subject_id: str) -> bytes:
        """Fast keyed hash of secret || canonical subject_id, hex encoded."""
        secret = self._require_secret()
        return hashlib.sha256(secret + normalize_subject(subject_id).encode()).hexdigest().encode()

    def derive_key(self, subject_id: str, salt: bytes) -> bytes:
        """Derive the 32-byte AES key for ``subject_id`` under ``salt``."""
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=self.iterations,
        )
        return kdf.derive(self.derive_passphrase(subject_id))

    def encrypt(self, plaintext: bytes, subject_id: str) -> bytes:
        """Seal ``plaintext`` for ``subject_id`` and return the package."""
        package, _ = self.encrypt_with_metadata(plaintext, subject_id)
        return package

    def encrypt_with_metadata(self, plaintext: bytes, subject_id: str) -> Tuple[bytes, Dict[str, Any]]:
        """Seal ``plaintext`` and also return non-secret metadata for bookkeeping."""
        self._require_secret()
        salt = os.urandom(SALT_LENGTH)
        iv = os.urandom(IV_LENGTH)
        try:
            key = self.derive_key(subject_id, salt)
            encryptor = Cipher(algorithms.AES(key), modes.GCM(iv)).encryptor()
            encryptor.authenticate_additional_data(ASSOCIATED_DATA)
            ciphertext = encryptor.update(bytes(plaintext)) + encryptor.finalize()
            tag = encryptor.tag
        except (ValueError, TypeError) as e:
            logger.error("Encryption failed: %s", e)
            raise EncryptionFailedError(f"Encryption failed: {e}") from e

        metadata: Dict[str, Any] = {
            "encrypted": True,
            "algorithm": ALGORITHM,
            "key_derivation": KEY_DERIVATION,
            "subject_hash": subject_fingerprint(subject_id),
        }
        logger.info("Document encrypted for subject %s", metadata["subject_hash"])  # no PHI in logs
        return salt + iv + tag + ciphertext, metadata

    def decrypt(self, package: bytes, subject_id: str) -> bytes:
        """Open a package produced by :meth:`encrypt` for the same subject.

        Raises:
            DecryptionFailedError: On a truncated package, a failed tag check
                or any cipher error. The cause is not distinguished.
            ConfigurationError: If no secret is configured.
        """
        self._require_secret()
        package = bytes(package)
        if len(package) < HEADER_LENGTH:
            logger.warning("Rejected package for subject %s", subject_fingerprint(subject_id))
            raise DecryptionFailedError(_DECRYPTION_FAILED)

        salt = package[:SALT_LENGTH]
        iv = package[SALT_LENGTH : SALT_LENGTH + IV_LENGTH]
        tag = package[SALT_LENGTH + IV_LENGTH : HEADER_LENGTH]
        ciphertext = package[HEADER_LENGTH:]

        try:
            key = self.derive_key(subject_id, salt)
            decryptor = Cipher(
                algorithms.AES(key), modes.GCM(iv, tag, min_tag_length=TAG_LENGTH)
            ).decryptor()
            decryptor.authenticate_additional_data(ASSOCIATED_DATA)
            # finalize() verifies the tag; nothing is returned unless it passes
            plaintext = decryptor.update(ciphertext) + decryptor.finalize()
        except (InvalidTag, ValueError, TypeError):
            logger.warning("Rejected package for subject %s", subject_fingerprint(subject_id))
            raise DecryptionFailedError(_DECRYPTION_FAILED) from None
        return plaintext
