"""Persistent contact roster with sighting history and a recency projection.

One ``ContactStore`` owns the roster of a single user. Every read and write
goes through it, and every mutation is persisted before it becomes visible to
callers or listeners.
"""
from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from ..errors import NotFoundError, StorageError, ValidationError
from .backends import RosterBackend, get_backend
from .seed import PLACEHOLDER_AVATAR, SEED_CONTACTS

logger = logging.getLogger(__name__)

RECENT_LIMIT = 4
EDITABLE_FIELDS = ("name", "relationship", "avatar", "location", "notes", "phone")
REQUIRED_FIELDS = ("name", "relationship")


@dataclass(slots=True)
class Contact:
    """A remembered person."""

    id: str
    name: str
    relationship: str
    avatar: str = PLACEHOLDER_AVATAR
    location: Optional[str] = None
    notes: Optional[str] = None
    phone: Optional[str] = None
    last_seen: Optional[str] = None
    created_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Contact":
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            relationship=data.get("relationship", ""),
            avatar=data.get("avatar") or PLACEHOLDER_AVATAR,
            location=data.get("location"),
            notes=data.get("notes"),
            phone=data.get("phone", data.get("contact")),
            last_seen=data.get("last_seen", data.get("lastSeen")),
            created_at=data.get("created_at", ""),
        )

    def to_api_dict(self) -> Dict[str, Any]:
        """Convert to API response format (camelCase)."""
        return {
            "id": self.id,
            "name": self.name,
            "relationship": self.relationship,
            "avatar": self.avatar,
            "location": self.location,
            "notes": self.notes,
            "contact": self.phone,
            "lastSeen": self.last_seen,
            "createdAt": self.created_at or None,
        }


@dataclass(slots=True, frozen=True)
class Sighting:
    """One append-only record that a contact was observed."""

    contact_id: str
    name: str
    relationship: str
    avatar: str
    timestamp: datetime
    phone: Optional[str] = None
    location: Optional[str] = None
    image_ref: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contact_id": self.contact_id,
            "name": self.name,
            "relationship": self.relationship,
            "avatar": self.avatar,
            "phone": self.phone,
            "location": self.location,
            "timestamp": self.timestamp.isoformat(),
            "image_ref": self.image_ref,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Sighting":
        timestamp = data["timestamp"]
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        return cls(
            contact_id=str(data["contact_id"]),
            name=data.get("name", ""),
            relationship=data.get("relationship", ""),
            avatar=data.get("avatar") or PLACEHOLDER_AVATAR,
            timestamp=timestamp,
            phone=data.get("phone"),
            location=data.get("location"),
            image_ref=data.get("image_ref"),
        )

    def to_api_dict(self) -> Dict[str, Any]:
        return {
            "contactId": self.contact_id,
            "name": self.name,
            "relationship": self.relationship,
            "avatar": self.avatar,
            "contact": self.phone,
            "location": self.location,
            "timestamp": self.timestamp.isoformat(),
            "imageRef": self.image_ref,
        }


@dataclass(slots=True, frozen=True)
class StoreEvent:
    """Delivered to listeners after a mutation has been persisted."""

    kind: str  # "created", "updated", "deleted" or "sighted"
    contact: Contact


Listener = Callable[[StoreEvent], None]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def format_last_seen(moment: datetime, location: Optional[str] = None) -> str:
    """Render a sighting as ``"6:05 PM • Park"`` (bare time without a location)."""
    local = moment.astimezone()
    time_text = local.strftime("%I:%M %p").lstrip("0")
    return f"{time_text} • {location}" if location else time_text


def _check_fields(values: Mapping[str, Any]) -> None:
    if "id" in values:
        raise ValidationError("Contact id is assigned by the store and cannot be set.")
    unknown = sorted(set(values) - set(EDITABLE_FIELDS))
    if unknown:
        raise ValidationError(f"Unknown contact field(s): {', '.join(unknown)}")


class ContactStore:
    """Single source of truth for one user's roster.

    Args:
        user_id: Owner of the roster; storage is keyed under it.
        backend: Storage engine. Defaults to Firestore with file fallback.
        clock: Returns the current aware datetime (injectable for tests).
    """

    def __init__(
        self,
        user_id: str,
        backend: Optional[RosterBackend] = None,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.user_id = user_id
        self._backend = backend if backend is not None else get_backend()
        self._clock = clock or _now
        self._lock = threading.RLock()
        self._listeners: List[Listener] = []
        self._contacts: List[Contact] = []
        self._sightings: List[Sighting] = []
        self._last_sighting_index: Dict[str, int] = {}
        self._load()

    # ------------------------------------------------------------------
    # Loading and persistence
    # ------------------------------------------------------------------

    def _load(self) -> None:
        stored = self._backend.load_roster(self.user_id)
        if stored is None:
            logger.info(f"[Contacts] No roster for {self.user_id}, seeding example contacts")
            created_at = self._clock().isoformat()
            contacts = [
                replace(Contact.from_dict(data), created_at=created_at)
                for data in SEED_CONTACTS
            ]
            self._backend.save_roster(self.user_id, [c.to_dict() for c in contacts])
        else:
            contacts = [Contact.from_dict(data) for data in stored]

        self._contacts = contacts
        self._sightings = [
            Sighting.from_dict(entry) for entry in self._backend.load_sightings(self.user_id)
        ]
        self._last_sighting_index = {
            sighting.contact_id: index for index, sighting in enumerate(self._sightings)
        }
        logger.debug(
            f"[Contacts] Loaded {len(self._contacts)} contacts and "
            f"{len(self._sightings)} sightings for {self.user_id}"
        )

    def _commit(self, contacts: List[Contact]) -> None:
        """Persist ``contacts`` and only then make them the live roster."""
        self._backend.save_roster(self.user_id, [c.to_dict() for c in contacts])
        self._contacts = contacts

    def _find(self, contact_id: str) -> Tuple[int, Contact]:
        for index, contact in enumerate(self._contacts):
            if contact.id == contact_id:
                return index, contact
        raise NotFoundError(contact_id)

    def _new_id(self) -> str:
        taken = {c.id for c in self._contacts} | set(self._last_sighting_index)
        while True:
            contact_id = uuid.uuid4().hex
            if contact_id not in taken:
                return contact_id

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` for store events; returns an unsubscribe callable."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, kind: str, contact: Contact) -> None:
        event = StoreEvent(kind=kind, contact=replace(contact))
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"[Contacts] Listener failed while handling '{kind}' event")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list(self) -> List[Contact]:
        """Return the full roster in insertion order."""
        with self._lock:
            return [replace(c) for c in self._contacts]

    def get(self, contact_id: str) -> Contact:
        with self._lock:
            return replace(self._find(contact_id)[1])

    def search(self, term: Optional[str]) -> List[Contact]:
        """Contacts whose name or relationship contains ``term`` (case-insensitive)."""
        needle = (term or "").strip().lower()
        with self._lock:
            return [
                replace(c)
                for c in self._contacts
                if not needle
                or needle in c.name.lower()
                or needle in c.relationship.lower()
            ]

    def recent(self, n: int = RECENT_LIMIT) -> List[Contact]:
        """Top ``n`` contacts by most recent sighting.

        Never-sighted contacts rank after every sighted one; ties keep roster order.
        """
        if n <= 0:
            return []

        def rank(item: Tuple[int, Contact]) -> Tuple[int, int, int]:
            position, contact = item
            index = self._last_sighting_index.get(contact.id)
            if index is None:
                return (1, 0, position)
            return (0, -index, position)

        with self._lock:
            ordered = sorted(enumerate(self._contacts), key=rank)
            return [replace(contact) for _, contact in ordered[:n]]

    def sightings(self, contact_id: Optional[str] = None) -> List[Sighting]:
        """Return the sighting log (oldest first), optionally for one contact."""
        with self._lock:
            if contact_id is None:
                return list(self._sightings)
            return [s for s in self._sightings if s.contact_id == contact_id]

    def last_sighting(self, contact_id: str) -> Optional[Sighting]:
        with self._lock:
            index = self._last_sighting_index.get(contact_id)
            return self._sightings[index] if index is not None else None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(self, draft: Mapping[str, Any]) -> Contact:
        """Validate ``draft``, assign a fresh id, append and persist.

        Raises:
            ValidationError: if name or relationship is blank, or a field is unknown.
            StorageError: if the roster could not be written.
        """
        _check_fields(draft)
        values = {key: _clean(value) for key, value in draft.items()}
        for required in REQUIRED_FIELDS:
            if not values.get(required):
                raise ValidationError(f"'{required}' is required.")
        values["avatar"] = values.get("avatar") or PLACEHOLDER_AVATAR

        with self._lock:
            contact = Contact(
                id=self._new_id(),
                created_at=self._clock().isoformat(),
                **values,
            )
            self._commit(self._contacts + [contact])
        logger.info(f"[Contacts] Created contact {contact.id} ({contact.name})")
        self._notify("created", contact)
        return replace(contact)

    def update(self, contact_id: str, patch: Mapping[str, Any]) -> Contact:
        """Merge ``patch`` into an existing contact and persist.

        Raises:
            NotFoundError: if ``contact_id`` is not in the roster.
            ValidationError: on an empty patch, unknown fields, an id change,
                or a blank name/relationship.
        """
        if not patch:
            raise ValidationError("No updates provided.")
        _check_fields(patch)
        values = {key: _clean(value) for key, value in patch.items()}
        for required in REQUIRED_FIELDS:
            if required in values and not values[required]:
                raise ValidationError(f"'{required}' cannot be blank.")
        if "avatar" in values and not values["avatar"]:
            values["avatar"] = PLACEHOLDER_AVATAR

        with self._lock:
            index, current = self._find(contact_id)
            updated = replace(current, **values)
            contacts = list(self._contacts)
            contacts[index] = updated
            self._commit(contacts)
        self._notify("updated", updated)
        return replace(updated)

    def delete(self, contact_id: str) -> None:
        """Remove a contact from the roster and the recency projection.

        A second delete of the same id raises ``NotFoundError``; callers treat
        that as already done.
        """
        with self._lock:
            index, removed = self._find(contact_id)
            self._commit(self._contacts[:index] + self._contacts[index + 1:])
        logger.info(f"[Contacts] Deleted contact {contact_id}")
        self._notify("deleted", removed)

    def record_sighting(
        self,
        contact_id: str,
        location: Optional[str] = None,
        image_ref: Optional[str] = None,
    ) -> Sighting:
        """Record that ``contact_id`` was just seen, optionally at ``location``.

        Updates ``last_seen``, appends exactly one sighting and moves the
        contact to the front of ``recent()``.
        """
        location = _clean(location)
        with self._lock:
            index, current = self._find(contact_id)
            moment = self._clock()
            updated = replace(
                current,
                last_seen=format_last_seen(moment, location),
                location=location or current.location,
            )
            sighting = Sighting(
                contact_id=updated.id,
                name=updated.name,
                relationship=updated.relationship,
                avatar=updated.avatar,
                timestamp=moment,
                phone=updated.phone,
                location=location,
                image_ref=image_ref,
            )

            previous = self._contacts
            contacts = list(previous)
            contacts[index] = updated
            self._commit(contacts)
            try:
                self._backend.append_sighting(self.user_id, sighting.to_dict())
            except StorageError:
                logger.error(
                    f"[Contacts] Sighting log write failed for {contact_id}, restoring roster"
                )
                try:
                    self._commit(previous)
                finally:
                    self._contacts = previous
                raise

            self._sightings.append(sighting)
            self._last_sighting_index[contact_id] = len(self._sightings) - 1

        logger.info(f"[Contacts] Recorded sighting of {contact_id} at {location or 'unknown place'}")
        self._notify("sighted", updated)
        return sighting
