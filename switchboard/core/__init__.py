"""
Core primitives for Switchboard.

This module contains the data model shared by every gateway component:
- Credential snapshots and credential stores
- Sessions and session kinds
"""

from switchboard.core.credentials import CredentialStore, InMemoryCredentialStore
from switchboard.core.models import Credential, Session, SessionKind, expiry_after, utcnow

__all__ = [
    "Credential",
    "CredentialStore",
    "InMemoryCredentialStore",
    "Session",
    "SessionKind",
    "expiry_after",
    "utcnow",
]
