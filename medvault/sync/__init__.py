"""
Cross-component authorization propagation.
"""

from .propagator import (
    AuthorizationPropagator,
    AuthorizationSink,
    DoctorAuthorizationStatus,
    IdentityDirectory,
)

__all__ = [
    "AuthorizationPropagator",
    "AuthorizationSink",
    "DoctorAuthorizationStatus",
    "IdentityDirectory",
]
