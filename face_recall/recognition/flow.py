"""Capture -> recognition -> disposition state machine for one session.

Every state lists the events it accepts in ``TRANSITIONS``; anything else is
rejected with ``FlowError`` and leaves the session untouched. The only
transition that mutates the contact store is ``save()``.

    CAPTURING --capture--> PROCESSING --matched--> RECOGNIZED --save--> ENDED
                                      --no_match--> UNRECOGNIZED
                                      --match_failed/self_report--> NOT_REMEMBERED
"""
from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

from ..contacts.store import ContactStore, Sighting
from ..errors import AuthError, DeviceError, FlowError, NetworkError, NotFoundError
from .capture import CaptureDevice, CapturedImage
from .matcher import Candidate, Matcher, select_candidate

logger = logging.getLogger(__name__)

REMEMBER_PROMPT = "Did you remember who this was?"
NO_MATCH_MESSAGE = "No familiar faces detected"
SIGN_IN_MESSAGE = "Sign in to recognize faces."


class FlowState(str, Enum):
    CAPTURING = "capturing"
    PROCESSING = "processing"
    RECOGNIZED = "recognized"
    UNRECOGNIZED = "unrecognized"
    NOT_REMEMBERED = "not_remembered"
    ENDED = "ended"


class FlowEvent(str, Enum):
    CAPTURE = "capture"
    ABORT = "abort"  # no authenticated user
    MATCHED = "matched"
    NO_MATCH = "no_match"
    MATCH_FAILED = "match_failed"
    SELF_REPORT = "self_report"
    REMEMBERED = "remembered"
    DECLINE = "decline"
    ADD_NEW = "add_new"
    RECAPTURE = "recapture"
    SAVE = "save"
    DISCARD = "discard"
    CANCEL = "cancel"


class SessionOutcome(str, Enum):
    SAVED = "saved"
    ADD_NEW = "add_new"
    NOT_REMEMBERED = "not_remembered"
    CANCELLED = "cancelled"
    ABORTED = "aborted"


TRANSITIONS: Dict[FlowState, Dict[FlowEvent, FlowState]] = {
    FlowState.CAPTURING: {
        FlowEvent.CAPTURE: FlowState.PROCESSING,
        FlowEvent.ABORT: FlowState.ENDED,
        FlowEvent.CANCEL: FlowState.ENDED,
    },
    FlowState.PROCESSING: {
        FlowEvent.MATCHED: FlowState.RECOGNIZED,
        FlowEvent.NO_MATCH: FlowState.UNRECOGNIZED,
        FlowEvent.MATCH_FAILED: FlowState.NOT_REMEMBERED,
        FlowEvent.SELF_REPORT: FlowState.NOT_REMEMBERED,
        FlowEvent.CANCEL: FlowState.ENDED,
    },
    FlowState.RECOGNIZED: {
        FlowEvent.SAVE: FlowState.ENDED,
        FlowEvent.DISCARD: FlowState.CAPTURING,
        FlowEvent.CANCEL: FlowState.ENDED,
    },
    FlowState.UNRECOGNIZED: {
        FlowEvent.ADD_NEW: FlowState.ENDED,
        FlowEvent.RECAPTURE: FlowState.CAPTURING,
        FlowEvent.CANCEL: FlowState.ENDED,
    },
    FlowState.NOT_REMEMBERED: {
        FlowEvent.REMEMBERED: FlowState.RECOGNIZED,
        FlowEvent.DECLINE: FlowState.ENDED,
        FlowEvent.ADD_NEW: FlowState.ENDED,
        FlowEvent.RECAPTURE: FlowState.CAPTURING,
        FlowEvent.CANCEL: FlowState.ENDED,
    },
    FlowState.ENDED: {},
}

ENDING_OUTCOMES: Dict[FlowEvent, SessionOutcome] = {
    FlowEvent.SAVE: SessionOutcome.SAVED,
    FlowEvent.ADD_NEW: SessionOutcome.ADD_NEW,
    FlowEvent.DECLINE: SessionOutcome.NOT_REMEMBERED,
    FlowEvent.CANCEL: SessionOutcome.CANCELLED,
    FlowEvent.ABORT: SessionOutcome.ABORTED,
}


def _check_transition_table() -> None:
    missing = set(FlowState) - set(TRANSITIONS)
    if missing:
        raise RuntimeError(f"No transitions declared for: {sorted(s.value for s in missing)}")
    for state, edges in TRANSITIONS.items():
        for event, target in edges.items():
            if target is FlowState.ENDED and event not in ENDING_OUTCOMES:
                raise RuntimeError(f"{state.value} --{event.value}--> ended has no outcome")


_check_transition_table()


@dataclass(slots=True, frozen=True)
class FlowStatus:
    """Current state plus the data that belongs to it."""

    state: FlowState
    image: Optional[CapturedImage] = None
    candidate: Optional[Candidate] = None
    display_text: Optional[str] = None
    message: Optional[str] = None
    outcome: Optional[SessionOutcome] = None


@dataclass(slots=True, frozen=True)
class SessionView:
    """Serializable snapshot of a session for callers and the API."""

    session_id: str
    state: FlowState
    outcome: Optional[SessionOutcome]
    candidate: Optional[Candidate]
    display_text: Optional[str]
    message: Optional[str]
    image_ref: Optional[str]

    def to_api_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "state": self.state.value,
            "outcome": self.outcome.value if self.outcome else None,
            "candidate": self.candidate.to_api_dict() if self.candidate else None,
            "displayText": self.display_text,
            "message": self.message,
            "imageRef": self.image_ref,
        }


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}" if count == 1 else f"{count} {unit}s"


def describe_recency(
    last: Optional[Sighting],
    now: datetime,
    last_seen_text: Optional[str] = None,
) -> str:
    """Phrase such as ``"last seen 3 days ago"`` for the recognition card."""
    if last is None:
        return f"last seen {last_seen_text}" if last_seen_text else "not seen before"

    seconds = max(0.0, (now - last.timestamp).total_seconds())
    if seconds < 60:
        return "last seen just now"
    minutes = int(seconds // 60)
    if minutes < 60:
        return f"last seen {_plural(minutes, 'minute')} ago"
    hours = minutes // 60
    if hours < 24:
        return f"last seen {_plural(hours, 'hour')} ago"
    return f"last seen {_plural(hours // 24, 'day')} ago"


class RecognitionSession:
    """Drives one capture-to-disposition session.

    The capture device is held from ``open()`` until the session ends, however
    it ends. Use it as a context manager to guarantee release.
    """

    def __init__(
        self,
        store: ContactStore,
        device: CaptureDevice,
        matcher: Matcher,
        user_provider: Callable[[], Optional[str]],
        *,
        on_add_new: Optional[Callable[[CapturedImage], None]] = None,
        default_location: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.id = uuid.uuid4().hex
        self._store = store
        self._device = device
        self._matcher = matcher
        self._user_provider = user_provider
        self._on_add_new = on_add_new
        self._default_location = default_location
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._status: Optional[FlowStatus] = None
        self._device_held = False
        self._lock = threading.RLock()
        self._capture_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def __enter__(self) -> "RecognitionSession":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def open(self) -> SessionView:
        """Acquire the capture device and start capturing."""
        with self._lock:
            if self._status is not None:
                raise FlowError("Session has already been opened.")
            self._device.open()
            self._device_held = True
            self._status = FlowStatus(state=FlowState.CAPTURING)
            logger.debug(f"[Recognition] Session {self.id} opened")
            return self.snapshot()

    def close(self) -> None:
        """End the session if it is still live; always releases the device."""
        with self._lock:
            if self._status is None or self._status.state is not FlowState.ENDED:
                self.cancel()
            self._release()

    def _release(self) -> None:
        if not self._device_held:
            return
        self._device_held = False
        try:
            self._device.close()
        except Exception as exc:
            logger.warning(f"[Recognition] Capture device did not close cleanly: {exc}")

    # ------------------------------------------------------------------
    # State plumbing
    # ------------------------------------------------------------------

    @property
    def state(self) -> Optional[FlowState]:
        """Current state, ``None`` before ``open()``."""
        return self._status.state if self._status else None

    @property
    def outcome(self) -> Optional[SessionOutcome]:
        return self._status.outcome if self._status else None

    @property
    def device_held(self) -> bool:
        return self._device_held

    def snapshot(self) -> SessionView:
        status = self._status or FlowStatus(state=FlowState.ENDED)
        return SessionView(
            session_id=self.id,
            state=status.state,
            outcome=status.outcome,
            candidate=status.candidate,
            display_text=status.display_text,
            message=status.message,
            image_ref=status.image.ref if status.image else None,
        )

    def _target(self, event: FlowEvent) -> FlowState:
        if self._status is None:
            raise FlowError("Session has not been opened.")
        current = self._status.state
        target = TRANSITIONS[current].get(event)
        if target is None:
            raise FlowError(f"Cannot {event.value.replace('_', ' ')} while {current.value}.")
        return target

    def _fire(self, event: FlowEvent, **data: Any) -> FlowStatus:
        target = self._target(event)
        previous = self._status.state
        if target is FlowState.ENDED:
            self._status = FlowStatus(
                state=target,
                outcome=ENDING_OUTCOMES[event],
                message=data.get("message"),
            )
            self._release()
        elif target is FlowState.CAPTURING:
            self._status = FlowStatus(state=target)
        else:
            self._status = replace(self._status, state=target, **data)
        logger.debug(
            f"[Recognition] Session {self.id}: {previous.value} --{event.value}--> {target.value}"
        )
        return self._status

    def _recognized_data(self, candidate: Candidate) -> Dict[str, Any]:
        last_seen_text = None
        try:
            last_seen_text = self._store.get(candidate.contact_id).last_seen
        except NotFoundError:
            logger.warning(f"[Recognition] Candidate {candidate.contact_id} is not in the roster")
        phrase = describe_recency(
            self._store.last_sighting(candidate.contact_id), self._clock(), last_seen_text
        )
        return {
            "candidate": candidate,
            "display_text": f"Your {candidate.relationship.lower()} — {phrase}",
            "message": f"You just saw {candidate.name}",
        }

    # ------------------------------------------------------------------
    # Capturing
    # ------------------------------------------------------------------

    def capture(self, self_report: bool = False) -> SessionView:
        """Take a still image and run it through the matcher.

        Args:
            self_report: The user says they do not recognize the face; skip the
                matcher and go straight to the "did you remember?" prompt.

        Raises:
            FlowError: if not capturing, or a capture is already in flight.
            AuthError: if no user is signed in (the session is aborted).
            DeviceError: if no image could be taken (still capturing).
        """
        if not self._capture_lock.acquire(blocking=False):
            raise FlowError("A capture is already in progress for this session.")
        try:
            with self._lock:
                self._target(FlowEvent.CAPTURE)
                user_id = self._user_provider()
                if not user_id:
                    self._fire(FlowEvent.ABORT, message=SIGN_IN_MESSAGE)
                    raise AuthError("No authenticated user for this session.")

                image = self._device.capture()
                if image is None or not image.data:
                    raise DeviceError("The camera did not return an image.")
                self._fire(FlowEvent.CAPTURE, image=image)

                if self_report:
                    self._fire(FlowEvent.SELF_REPORT, message=REMEMBER_PROMPT)
                    return self.snapshot()

            # The matcher call runs outside the state lock so cancel() stays responsive.
            try:
                candidates = self._matcher.match(image, user_id)
            except NetworkError as exc:
                logger.warning(f"[Recognition] Matcher failed for session {self.id}: {exc}")
                return self._match_failed()
            except Exception:
                logger.exception(f"[Recognition] Matcher raised unexpectedly for session {self.id}")
                return self._match_failed()

            with self._lock:
                if self.state is not FlowState.PROCESSING:
                    # Cancelled while the matcher was working.
                    return self.snapshot()
                candidate = select_candidate(candidates)
                if candidate is None:
                    self._fire(FlowEvent.NO_MATCH, message=NO_MATCH_MESSAGE)
                else:
                    self._fire(FlowEvent.MATCHED, **self._recognized_data(candidate))
                return self.snapshot()
        finally:
            self._capture_lock.release()

    def _match_failed(self) -> SessionView:
        with self._lock:
            if self.state is FlowState.PROCESSING:
                self._fire(
                    FlowEvent.MATCH_FAILED,
                    message=f"Recognition is unavailable right now. {REMEMBER_PROMPT}",
                )
            return self.snapshot()

    # ------------------------------------------------------------------
    # Dispositions
    # ------------------------------------------------------------------

    def remembered(self, contact_id: str) -> SessionView:
        """The user does remember: they name the person from their roster."""
        with self._lock:
            self._target(FlowEvent.REMEMBERED)
            contact = self._store.get(contact_id)
            self._fire(FlowEvent.REMEMBERED, **self._recognized_data(Candidate.from_contact(contact)))
            return self.snapshot()

    def not_remembered(self) -> SessionView:
        """The user does not remember: end without recording anything."""
        with self._lock:
            self._fire(FlowEvent.DECLINE)
            return self.snapshot()

    def add_new(self) -> CapturedImage:
        """Leave the flow for contact creation, handing over the captured image."""
        with self._lock:
            self._target(FlowEvent.ADD_NEW)
            image = self._status.image
            self._fire(FlowEvent.ADD_NEW)
        if self._on_add_new is not None:
            self._on_add_new(image)
        return image

    def recapture(self) -> SessionView:
        with self._lock:
            self._fire(FlowEvent.RECAPTURE)
            return self.snapshot()

    def discard(self) -> SessionView:
        """Drop the image and candidate and go back to capturing."""
        with self._lock:
            self._fire(FlowEvent.DISCARD)
            return self.snapshot()

    def save(self, location: Optional[str] = None) -> Sighting:
        """Commit a sighting for the recognized contact and end the session.

        A store error propagates and the session stays recognized.
        """
        with self._lock:
            self._target(FlowEvent.SAVE)
            status = self._status
            sighting = self._store.record_sighting(
                status.candidate.contact_id,
                location or self._default_location,
                image_ref=status.image.ref if status.image else None,
            )
            self._fire(FlowEvent.SAVE)
        logger.info(f"[Recognition] Session {self.id} saved sighting of {sighting.contact_id}")
        return sighting

    def cancel(self) -> SessionView:
        """Abort from any live state; a no-op once the session has ended."""
        with self._lock:
            if self._status is None:
                self._status = FlowStatus(
                    state=FlowState.ENDED, outcome=SessionOutcome.CANCELLED
                )
            elif self._status.state is not FlowState.ENDED:
                self._fire(FlowEvent.CANCEL)
            return self.snapshot()
