"""
Environment-driven configuration.
"""

from .settings import BlobBackend, Settings, MIN_KDF_ITERATIONS

__all__ = ["BlobBackend", "Settings", "MIN_KDF_ITERATIONS"]
