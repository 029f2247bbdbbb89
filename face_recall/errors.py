"""Error taxonomy shared by the contact store and the recognition flow."""
from __future__ import annotations


class FaceRecallError(RuntimeError):
    """Base class for every error raised by Face Recall."""


class ValidationError(FaceRecallError):
    """Raised when a store mutation receives bad input (e.g. a blank name)."""


class NotFoundError(FaceRecallError):
    """Raised when an operation references a contact id that does not exist."""

    def __init__(self, contact_id: str) -> None:
        super().__init__(f"Contact not found: {contact_id}")
        self.contact_id = contact_id


class StorageError(FaceRecallError):
    """Raised when the roster or sighting log cannot be persisted."""


class DeviceError(FaceRecallError):
    """Raised when the capture device is unavailable or yields no image."""


class AuthError(FaceRecallError):
    """Raised when no authenticated user is available."""


class NetworkError(FaceRecallError):
    """Raised when the remote matcher is unreachable or answers with an error."""


class FlowError(FaceRecallError):
    """Raised when a recognition session receives an event its state does not allow."""
