"""
medvault: identity registry, clinical and self-service record stores, and a
per-subject encrypted document pipeline.
"""

from .deployment import Deployment, build_deployment
from .errors import MedVaultError

__version__ = "1.0.0"

__all__ = ["Deployment", "build_deployment", "MedVaultError", "__version__"]
