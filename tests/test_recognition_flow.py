"""Tests for the recognition session state machine."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from face_recall.contacts import ContactStore, FileBackend
from face_recall.errors import AuthError, DeviceError, FlowError, NetworkError, NotFoundError
from face_recall.recognition import (
    TRANSITIONS,
    Candidate,
    CapturedImage,
    FixtureMatcher,
    FlowState,
    RecognitionSession,
    SessionOutcome,
    describe_recency,
    select_candidate,
)

USER = "tester@example.com"
PHOTO = CapturedImage(data=b"\xff\xd8photo-of-sarah")


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2025, 6, 3, 17, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeDevice:
    """Capture device that hands out a fixed image and counts open/close calls."""

    def __init__(self, image=PHOTO) -> None:
        self.image = image
        self.opened = 0
        self.closed = 0

    def open(self) -> None:
        self.opened += 1

    def capture(self):
        return self.image

    def close(self) -> None:
        self.closed += 1


class FailingMatcher:
    def __init__(self) -> None:
        self.calls = 0

    def match(self, image, user_id):
        self.calls += 1
        raise NetworkError("connection refused")


def _sarah(confidence=0.92) -> Candidate:
    return Candidate("2", "Sarah J", "Daughter", confidence=confidence)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path, clock):
    return ContactStore(USER, FileBackend(tmp_path / "contacts"), clock=clock)


@pytest.fixture
def device():
    return FakeDevice()


def _session(store, device, matcher, clock, user=USER, **kwargs) -> RecognitionSession:
    session = RecognitionSession(
        store, device, matcher, user_provider=lambda: user, clock=clock, **kwargs
    )
    session.open()
    return session


class TestTransitionTable:
    def test_every_state_declares_its_events(self):
        assert set(TRANSITIONS) == set(FlowState)

    def test_ended_accepts_nothing(self):
        assert TRANSITIONS[FlowState.ENDED] == {}


class TestSelectCandidate:
    """Tests for candidate selection."""

    def test_highest_confidence_wins(self):
        low = Candidate("1", "Samantha R.", "Wife", confidence=0.41)
        assert select_candidate([low, _sarah()]).contact_id == "2"

    def test_tie_goes_to_first(self):
        first = Candidate("3", "Liam Torres", "Grandson", confidence=0.8)
        second = Candidate("4", "Brianna Lee", "Neice", confidence=0.8)
        assert select_candidate([first, second]).contact_id == "3"

    def test_empty_list(self):
        assert select_candidate([]) is None


class TestRecognizedFlow:
    """A familiar face: capture -> recognized -> save or discard."""

    def test_best_candidate_is_shown(self, store, device, clock):
        matcher = FixtureMatcher(
            {PHOTO.ref: [Candidate("1", "Samantha R.", "Wife", confidence=0.41), _sarah()]}
        )
        session = _session(store, device, matcher, clock)

        view = session.capture()

        assert view.state is FlowState.RECOGNIZED
        assert view.candidate.contact_id == "2"
        assert view.message == "You just saw Sarah J"
        assert view.display_text == "Your daughter — last seen 5pm • Peet's Cafe"
        assert view.image_ref == PHOTO.ref
        assert matcher.calls == [(PHOTO.ref, USER)]

    def test_recognition_alone_does_not_touch_store(self, store, device, clock):
        before = store.get("2")
        session = _session(store, device, FixtureMatcher(default=[_sarah()]), clock)

        session.capture()

        assert store.get("2") == before
        assert store.sightings() == []

    def test_save_records_exactly_one_sighting(self, store, device, clock):
        session = _session(store, device, FixtureMatcher(default=[_sarah()]), clock)
        session.capture()

        sighting = session.save("Library")

        assert sighting.contact_id == "2"
        assert sighting.image_ref == PHOTO.ref
        assert len(store.sightings()) == 1
        assert store.get("2").location == "Library"
        assert store.recent()[0].id == "2"
        assert session.state is FlowState.ENDED
        assert session.outcome is SessionOutcome.SAVED
        assert device.closed == 1

    def test_save_uses_default_location(self, store, device, clock):
        session = _session(
            store, device, FixtureMatcher(default=[_sarah()]), clock, default_location="Home"
        )
        session.capture()

        sighting = session.save()

        assert sighting.location == "Home"

    def test_recency_phrase_uses_sighting_log(self, store, device, clock):
        store.record_sighting("2", "Cafe")
        clock.advance(days=3, hours=2)
        session = _session(store, device, FixtureMatcher(default=[_sarah()]), clock)

        view = session.capture()

        assert view.display_text == "Your daughter — last seen 3 days ago"

    def test_discard_returns_to_capturing(self, store, device, clock):
        session = _session(store, device, FixtureMatcher(default=[_sarah()]), clock)
        session.capture()

        view = session.discard()

        assert view.state is FlowState.CAPTURING
        assert view.candidate is None
        assert view.image_ref is None
        assert store.sightings() == []
        assert session.device_held

    def test_save_for_deleted_contact_keeps_session_recognized(self, store, device, clock):
        session = _session(store, device, FixtureMatcher(default=[_sarah()]), clock)
        session.capture()
        store.delete("2")

        with pytest.raises(NotFoundError):
            session.save()

        assert session.state is FlowState.RECOGNIZED
        assert store.sightings() == []


class TestUnrecognizedFlow:
    """No candidates: the prompt to add a new contact."""

    def test_no_match_leaves_store_untouched(self, store, device, clock):
        before = store.list()
        session = _session(store, device, FixtureMatcher(), clock)

        view = session.capture()

        assert view.state is FlowState.UNRECOGNIZED
        assert view.message == "No familiar faces detected"
        assert view.candidate is None
        assert store.list() == before
        assert store.sightings() == []

    def test_add_new_hands_image_to_collaborator(self, store, device, clock):
        received = []
        session = _session(
            store, device, FixtureMatcher(), clock, on_add_new=received.append
        )
        session.capture()

        image = session.add_new()

        assert image == PHOTO
        assert received == [PHOTO]
        assert session.outcome is SessionOutcome.ADD_NEW
        assert device.closed == 1

    def test_recapture(self, store, device, clock):
        session = _session(store, device, FixtureMatcher(), clock)
        session.capture()

        assert session.recapture().state is FlowState.CAPTURING
        assert session.capture().state is FlowState.UNRECOGNIZED

    def test_save_is_not_allowed(self, store, device, clock):
        session = _session(store, device, FixtureMatcher(), clock)
        session.capture()

        with pytest.raises(FlowError):
            session.save()

        assert session.state is FlowState.UNRECOGNIZED


class TestNotRememberedFlow:
    """Self-reported or matcher-failed captures ask whether the user remembers."""

    def test_self_report_skips_matcher(self, store, device, clock):
        matcher = FixtureMatcher(default=[_sarah()])
        session = _session(store, device, matcher, clock)

        view = session.capture(self_report=True)

        assert view.state is FlowState.NOT_REMEMBERED
        assert view.message == "Did you remember who this was?"
        assert matcher.calls == []

    def test_remembered_goes_to_recognized(self, store, device, clock):
        session = _session(store, device, FixtureMatcher(), clock)
        session.capture(self_report=True)

        view = session.remembered("3")

        assert view.state is FlowState.RECOGNIZED
        assert view.candidate.name == "Liam Torres"
        assert view.candidate.confidence is None
        session.save()
        assert store.sightings()[0].contact_id == "3"

    def test_remembered_unknown_contact(self, store, device, clock):
        session = _session(store, device, FixtureMatcher(), clock)
        session.capture(self_report=True)

        with pytest.raises(NotFoundError):
            session.remembered("missing")

        assert session.state is FlowState.NOT_REMEMBERED

    def test_not_remembered_ends_without_recording(self, store, device, clock):
        session = _session(store, device, FixtureMatcher(), clock)
        session.capture(self_report=True)

        view = session.not_remembered()

        assert view.state is FlowState.ENDED
        assert view.outcome is SessionOutcome.NOT_REMEMBERED
        assert store.sightings() == []

    def test_matcher_failure_is_not_reported_as_no_match(self, store, device, clock):
        matcher = FailingMatcher()
        session = _session(store, device, matcher, clock)

        view = session.capture()

        assert view.state is FlowState.NOT_REMEMBERED
        assert "unavailable" in view.message
        assert matcher.calls == 1

    def test_unexpected_matcher_error_does_not_strand_session(self, store, device, clock):
        class BrokenMatcher:
            def match(self, image, user_id):
                raise ValueError("model weights missing")

        session = _session(store, device, BrokenMatcher(), clock)

        view = session.capture()

        assert view.state is FlowState.NOT_REMEMBERED
        assert view.message.endswith("Did you remember who this was?")
        assert session.remembered("2").state is FlowState.RECOGNIZED


class TestCaptureFailures:
    def test_missing_user_aborts_session(self, store, device, clock):
        session = _session(store, device, FixtureMatcher(), clock, user=None)

        with pytest.raises(AuthError):
            session.capture()

        assert session.state is FlowState.ENDED
        assert session.outcome is SessionOutcome.ABORTED
        assert not session.device_held
        assert device.closed == 1

    def test_empty_image_stays_capturing(self, store, clock):
        device = FakeDevice(image=None)
        matcher = FixtureMatcher()
        session = _session(store, device, matcher, clock)

        with pytest.raises(DeviceError):
            session.capture()

        assert session.state is FlowState.CAPTURING
        assert matcher.calls == []

    def test_capture_before_open(self, store, device, clock):
        session = RecognitionSession(
            store, device, FixtureMatcher(), user_provider=lambda: USER, clock=clock
        )

        with pytest.raises(FlowError):
            session.capture()

    def test_open_twice(self, store, device, clock):
        session = _session(store, device, FixtureMatcher(), clock)

        with pytest.raises(FlowError):
            session.open()

    def test_reentrant_capture_is_rejected(self, store, device, clock):
        errors = []

        class ReentrantMatcher:
            def match(self, image, user_id):
                try:
                    session.capture()
                except FlowError as exc:
                    errors.append(exc)
                return [_sarah()]

        session = _session(store, device, ReentrantMatcher(), clock)

        view = session.capture()

        assert len(errors) == 1
        assert view.state is FlowState.RECOGNIZED


class TestCancelAndRelease:
    """The capture device is released exactly once however a session ends."""

    def test_cancel_from_recognized(self, store, device, clock):
        session = _session(store, device, FixtureMatcher(default=[_sarah()]), clock)
        session.capture()

        view = session.cancel()

        assert view.outcome is SessionOutcome.CANCELLED
        assert store.sightings() == []
        assert device.closed == 1

    def test_cancel_after_end_is_noop(self, store, device, clock):
        session = _session(store, device, FixtureMatcher(default=[_sarah()]), clock)
        session.capture()
        session.save()

        view = session.cancel()

        assert view.outcome is SessionOutcome.SAVED
        assert device.closed == 1

    def test_cancel_during_matching_discards_result(self, store, device, clock):
        class CancellingMatcher:
            def match(self, image, user_id):
                session.cancel()
                return [_sarah()]

        session = _session(store, device, CancellingMatcher(), clock)

        view = session.capture()

        assert view.state is FlowState.ENDED
        assert view.outcome is SessionOutcome.CANCELLED
        assert device.closed == 1

    def test_context_manager_releases_device(self, store, device, clock):
        session = RecognitionSession(
            store, device, FixtureMatcher(default=[_sarah()]), user_provider=lambda: USER, clock=clock
        )

        with session:
            session.capture()
            assert session.device_held

        assert session.outcome is SessionOutcome.CANCELLED
        assert device.opened == 1
        assert device.closed == 1

    def test_context_manager_releases_on_error(self, store, device, clock):
        session = RecognitionSession(
            store, device, FixtureMatcher(), user_provider=lambda: USER, clock=clock
        )

        with pytest.raises(FlowError):
            with session:
                session.save()

        assert device.closed == 1
        assert not session.device_held

    def test_events_after_end_are_rejected(self, store, device, clock):
        session = _session(store, device, FixtureMatcher(), clock)
        session.cancel()

        with pytest.raises(FlowError):
            session.capture()
        with pytest.raises(FlowError):
            session.discard()


class TestDescribeRecency:
    def test_never_seen(self, clock):
        assert describe_recency(None, clock.now) == "not seen before"

    def test_falls_back_to_last_seen_text(self, clock):
        assert describe_recency(None, clock.now, "6pm • Golden Gate") == "last seen 6pm • Golden Gate"

    def test_units(self, store, clock):
        sighting = store.record_sighting("1")

        assert describe_recency(sighting, clock.now + timedelta(seconds=20)) == "last seen just now"
        assert describe_recency(sighting, clock.now + timedelta(minutes=1)) == "last seen 1 minute ago"
        assert describe_recency(sighting, clock.now + timedelta(hours=5)) == "last seen 5 hours ago"
        assert describe_recency(sighting, clock.now + timedelta(days=1)) == "last seen 1 day ago"
