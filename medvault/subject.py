"""
Subject identifiers: fixed-length 20-byte account addresses.

Every doctor, patient, owner and component principal is named by one. The
canonical text form is ``0x`` followed by 40 lower-case hex digits.
"""

from __future__ import annotations

import hashlib
import os
import re

SUBJECT_ID_BYTES = 20
NULL_SUBJECT = "0x" + "00" * SUBJECT_ID_BYTES

_SUBJECT_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def is_valid_subject(value: object) -> bool:
    """Return True if ``value`` looks like a subject identifier."""
    return isinstance(value, str) and bool(_SUBJECT_RE.match(value))


def normalize_subject(value: str) -> str:
    """Return the canonical lower-case form of a subject identifier.

    Raises:
        ValueError: If ``value`` is not a ``0x``-prefixed 20-byte hex string.
    """
    if not is_valid_subject(value):
        raise ValueError(f"Invalid subject identifier: {value!r}")
    return value.lower()


def new_subject() -> str:
    """Generate a random subject identifier (component principals, tests)."""
    return "0x" + os.urandom(SUBJECT_ID_BYTES).hex()


def subject_fingerprint(value: str) -> str:
    """Short non-reversible tag for log lines; never log raw ids next to PHI."""
    return hashlib.sha256(value.lower().encode()).hexdigest()[:12]
