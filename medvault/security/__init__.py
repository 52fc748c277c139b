"""
Document encryption.
"""

from .encryption import RecordEncryption, ASSOCIATED_DATA, HEADER_LENGTH

__all__ = ["RecordEncryption", "ASSOCIATED_DATA", "HEADER_LENGTH"]
