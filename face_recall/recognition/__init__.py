"""Capture, matching and the recognition session state machine."""
from .capture import CaptureDevice, CapturedImage, FileImageDevice, UploadedImageDevice
from .flow import (
    TRANSITIONS,
    FlowEvent,
    FlowState,
    RecognitionSession,
    SessionOutcome,
    SessionView,
    describe_recency,
)
from .matcher import (
    Candidate,
    FixtureMatcher,
    HttpMatcher,
    Matcher,
    build_matcher,
    select_candidate,
)

__all__ = [
    # Capture
    "CaptureDevice",
    "CapturedImage",
    "FileImageDevice",
    "UploadedImageDevice",
    # Matching
    "Candidate",
    "Matcher",
    "HttpMatcher",
    "FixtureMatcher",
    "build_matcher",
    "select_candidate",
    # Flow
    "FlowState",
    "FlowEvent",
    "SessionOutcome",
    "SessionView",
    "RecognitionSession",
    "TRANSITIONS",
    "describe_recency",
]
