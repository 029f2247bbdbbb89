"""Contact roster, sighting history and storage backends."""
from .backends import FileBackend, FirestoreBackend, RosterBackend, get_backend, storage_kind
from .seed import PLACEHOLDER_AVATAR, RELATIONSHIP_OPTIONS, SEED_CONTACTS
from .store import (
    RECENT_LIMIT,
    Contact,
    ContactStore,
    Sighting,
    StoreEvent,
    format_last_seen,
)

__all__ = [
    # Store
    "Contact",
    "ContactStore",
    "Sighting",
    "StoreEvent",
    "RECENT_LIMIT",
    "format_last_seen",
    # Storage
    "RosterBackend",
    "FileBackend",
    "FirestoreBackend",
    "get_backend",
    "storage_kind",
    # Seed data
    "PLACEHOLDER_AVATAR",
    "RELATIONSHIP_OPTIONS",
    "SEED_CONTACTS",
]
