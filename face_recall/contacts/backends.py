"""Durable storage for rosters and sighting logs - Firestore with file fallback.

Layout:
- Firestore: users/{user_id}/roster/contacts  ({"contacts": [...], "updated_at": ...})
             users/{user_id}/sightings/{auto_id}
- File fallback: {FR_CONTACTS_DIR}/{user_id}/roster.json
                 {FR_CONTACTS_DIR}/{user_id}/sightings.jsonl

A roster record that does not exist (``None``) is different from an empty one
(``[]``): only the former triggers first-run seeding.
"""
from __future__ import annotations

import json
import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from ..errors import StorageError

logger = logging.getLogger(__name__)

ROSTER_FILE = "roster.json"
SIGHTINGS_FILE = "sightings.jsonl"

_firestore_client = None


class RosterBackend(Protocol):
    """What the contact store needs from a storage engine."""

    def load_roster(self, user_id: str) -> Optional[List[Dict[str, Any]]]: ...

    def save_roster(self, user_id: str, contacts: List[Dict[str, Any]]) -> None: ...

    def append_sighting(self, user_id: str, entry: Dict[str, Any]) -> None: ...

    def load_sightings(self, user_id: str) -> List[Dict[str, Any]]: ...


def _use_file_storage() -> bool:
    """Check if we should use file-based storage."""
    return os.getenv("FR_CONTACTS_FORCE_FILE", "").strip() == "1"


def _get_contacts_dir() -> Path:
    """Get the roster storage directory."""
    env_dir = os.getenv("FR_CONTACTS_DIR", "").strip()
    if env_dir:
        return Path(env_dir)
    return Path.cwd() / "contacts_store"


def _get_firestore_client():
    """Get a cached Firestore client, or None if not available."""
    global _firestore_client

    if _use_file_storage():
        return None
    if _firestore_client is not None:
        return _firestore_client

    try:
        import firebase_admin
        from firebase_admin import firestore

        if not firebase_admin._apps:
            firebase_admin.initialize_app()
        _firestore_client = firestore.client()
    except Exception as exc:
        logger.warning(f"[Contacts] Firestore unavailable, using local files: {exc}")
        return None
    return _firestore_client


def _safe_user(user_id: str) -> str:
    return re.sub(r"[^A-Za-z0-9@._-]", "_", user_id) or "_"


class FileBackend:
    """JSON roster plus JSONL sighting log, one directory per user."""

    def __init__(self, directory: Optional[Path] = None) -> None:
        self.directory = Path(directory) if directory else _get_contacts_dir()

    def _user_dir(self, user_id: str) -> Path:
        path = self.directory / _safe_user(user_id)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def load_roster_record(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Return the stored payload (``contacts`` and ``updated_at``), or None."""
        path = self.directory / _safe_user(user_id) / ROSTER_FILE
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as handle:
                return json.load(handle)
        except (json.JSONDecodeError, OSError) as exc:
            raise StorageError(f"Roster file unreadable at {path}: {exc}") from exc

    def load_roster(self, user_id: str) -> Optional[List[Dict[str, Any]]]:
        record = self.load_roster_record(user_id)
        if record is None:
            return None
        return list(record.get("contacts", []))

    def save_roster(self, user_id: str, contacts: List[Dict[str, Any]]) -> None:
        path = self._user_dir(user_id) / ROSTER_FILE
        tmp_path = path.with_suffix(".json.tmp")
        payload = {
            "contacts": contacts,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            with tmp_path.open("w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, path)
        except OSError as exc:
            raise StorageError(f"Could not write roster to {path}: {exc}") from exc

    def append_sighting(self, user_id: str, entry: Dict[str, Any]) -> None:
        path = self._user_dir(user_id) / SIGHTINGS_FILE
        try:
            with path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(entry) + "\n")
        except OSError as exc:
            raise StorageError(f"Could not append sighting to {path}: {exc}") from exc

    def has_sightings(self, user_id: str) -> bool:
        return (self.directory / _safe_user(user_id) / SIGHTINGS_FILE).exists()

    def load_sightings(self, user_id: str) -> List[Dict[str, Any]]:
        path = self.directory / _safe_user(user_id) / SIGHTINGS_FILE
        if not path.exists():
            return []

        entries = []
        try:
            with path.open("r", encoding="utf-8") as handle:
                for line in handle:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entries.append(json.loads(line))
                    except json.JSONDecodeError:
                        logger.warning(f"[Contacts] Skipping corrupt sighting line in {path}")
        except OSError as exc:
            raise StorageError(f"Sighting log unreadable at {path}: {exc}") from exc
        return entries


def _newer(remote: Dict[str, Any], local: Dict[str, Any]) -> Dict[str, Any]:
    """The roster record with the later ``updated_at``; the local copy wins ties."""
    def stamp(record: Dict[str, Any]) -> datetime:
        try:
            return datetime.fromisoformat(str(record.get("updated_at")))
        except ValueError:
            return datetime.min.replace(tzinfo=timezone.utc)

    return remote if stamp(remote) > stamp(local) else local


class FirestoreBackend:
    """Firestore storage backed by local files.

    Writes that Firestore rejects land in the file backend, and reads consult
    both: the newer roster wins and locally logged sightings are merged in.
    """

    def __init__(self, db: Any, fallback: Optional[FileBackend] = None) -> None:
        self.db = db
        self.fallback = fallback or FileBackend()

    def _user_doc(self, user_id: str):
        return self.db.collection("users").document(user_id)

    def load_roster(self, user_id: str) -> Optional[List[Dict[str, Any]]]:
        remote: Optional[Dict[str, Any]] = None
        remote_failed = False
        try:
            doc = self._user_doc(user_id).collection("roster").document("contacts").get()
            if doc.exists:
                remote = doc.to_dict() or {}
        except Exception as exc:
            logger.warning(f"[Contacts] Firestore roster read failed, falling back to local: {exc}")
            remote_failed = True

        local = self.fallback.load_roster_record(user_id)
        if remote_failed and local is None:
            raise StorageError(f"Roster for {user_id} is unavailable: Firestore read failed")

        if remote is not None and local is not None:
            record = _newer(remote, local)
            if record is local:
                logger.info(f"[Contacts] Local roster for {user_id} is newer than Firestore")
        else:
            record = remote if remote is not None else local
        if record is None:
            return None
        return list(record.get("contacts", []))

    def save_roster(self, user_id: str, contacts: List[Dict[str, Any]]) -> None:
        payload = {
            "contacts": contacts,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            self._user_doc(user_id).collection("roster").document("contacts").set(payload)
        except Exception as exc:
            logger.warning(f"[Contacts] Firestore roster write failed, falling back to local: {exc}")
            self.fallback.save_roster(user_id, contacts)

    def append_sighting(self, user_id: str, entry: Dict[str, Any]) -> None:
        try:
            self._user_doc(user_id).collection("sightings").add(entry)
        except Exception as exc:
            logger.warning(f"[Contacts] Firestore sighting write failed, falling back to local: {exc}")
            self.fallback.append_sighting(user_id, entry)

    def load_sightings(self, user_id: str) -> List[Dict[str, Any]]:
        try:
            query = self._user_doc(user_id).collection("sightings").order_by("timestamp")
            remote = [doc.to_dict() for doc in query.stream()]
        except Exception as exc:
            if not self.fallback.has_sightings(user_id):
                raise StorageError(
                    f"Sighting log for {user_id} is unavailable: Firestore read failed"
                ) from exc
            logger.warning(f"[Contacts] Firestore sighting read failed, falling back to local: {exc}")
            return self.fallback.load_sightings(user_id)

        local = self.fallback.load_sightings(user_id)
        if not local:
            return remote
        # Stable sort keeps log order among equal timestamps.
        return sorted(remote + local, key=lambda entry: str(entry.get("timestamp", "")))


def get_backend(contacts_dir: Optional[Path] = None) -> RosterBackend:
    """Return the Firestore backend when available, else the file backend.

    Args:
        contacts_dir: Directory for local files; defaults to ``FR_CONTACTS_DIR``.
    """
    files = FileBackend(contacts_dir)
    db = _get_firestore_client()
    if db is not None:
        return FirestoreBackend(db, fallback=files)
    return files


def storage_kind() -> str:
    """Name of the backend ``get_backend()`` would serve: "firestore" or "file"."""
    return "firestore" if _get_firestore_client() is not None else "file"
