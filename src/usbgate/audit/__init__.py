"""
Audit System.

Append-only persistent log of authorization decisions.
"""

from usbgate.audit.database import AuditDatabase
from usbgate.audit.models import Base, DecisionRecord

__all__ = [
    "AuditDatabase",
    "Base",
    "DecisionRecord",
]
