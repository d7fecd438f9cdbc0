"""
Database models package
"""

from .application import Application
from .deployment import Deployment, VerificationStatus

__all__ = [
    "Application",
    "Deployment",
    "VerificationStatus",
]
