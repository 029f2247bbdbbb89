"""Tests for the HTTP matcher client and matcher selection."""
from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import requests

from face_recall.config import ConfigError, Settings
from face_recall.errors import DeviceError, NetworkError
from face_recall.recognition import (
    CapturedImage,
    FixtureMatcher,
    HttpMatcher,
    UploadedImageDevice,
    build_matcher,
)

IMAGE = CapturedImage(data=b"fake-jpeg-bytes")


def _response(status_code=200, payload=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.text = text
    response.json.return_value = payload if payload is not None else {}
    return response


class TestHttpMatcher:
    """Tests for HttpMatcher.match()."""

    def test_parses_candidates_in_service_order(self):
        matcher = HttpMatcher("https://matcher.test/", api_key="secret", timeout=3)
        payload = {
            "matches": [
                {"contactId": "2", "name": "Sarah J", "relationship": "Daughter", "confidence": 0.9},
                {"contactId": 1, "name": "Samantha R.", "relationship": "Wife", "confidence": 0.4},
            ]
        }

        with patch.object(requests.Session, "post", return_value=_response(payload=payload)) as post:
            candidates = matcher.match(IMAGE, "tester@example.com")

        assert [c.contact_id for c in candidates] == ["2", "1"]
        assert candidates[0].confidence == 0.9
        args, kwargs = post.call_args
        assert args[0] == "https://matcher.test/recognize"
        assert kwargs["json"]["userId"] == "tester@example.com"
        assert kwargs["json"]["contentType"] == "image/jpeg"
        assert kwargs["headers"]["Authorization"] == "Bearer secret"
        assert kwargs["timeout"] == 3

    def test_empty_matches(self):
        matcher = HttpMatcher("https://matcher.test")

        with patch.object(requests.Session, "post", return_value=_response(payload={"matches": []})):
            assert matcher.match(IMAGE, "u") == []

    def test_timeout_raises_network_error(self):
        matcher = HttpMatcher("https://matcher.test", timeout=1)

        with patch.object(requests.Session, "post", side_effect=requests.Timeout("slow")):
            with pytest.raises(NetworkError, match="timed out"):
                matcher.match(IMAGE, "u")

    def test_connection_error_raises_network_error(self):
        matcher = HttpMatcher("https://matcher.test")

        with patch.object(requests.Session, "post", side_effect=requests.ConnectionError("refused")):
            with pytest.raises(NetworkError, match="unreachable"):
                matcher.match(IMAGE, "u")

    def test_http_error_raises_network_error(self):
        matcher = HttpMatcher("https://matcher.test")

        with patch.object(
            requests.Session, "post", return_value=_response(503, text="overloaded")
        ):
            with pytest.raises(NetworkError, match="503"):
                matcher.match(IMAGE, "u")

    def test_malformed_body_raises_network_error(self):
        matcher = HttpMatcher("https://matcher.test")

        with patch.object(
            requests.Session, "post", return_value=_response(payload={"matches": [{"name": "x"}]})
        ):
            with pytest.raises(NetworkError, match="parsed"):
                matcher.match(IMAGE, "u")


class TestFixtureMatcher:
    def test_keyed_by_image_ref(self):
        other = CapturedImage(data=b"other")
        matcher = FixtureMatcher({IMAGE.ref: []}, default=[])

        assert matcher.match(IMAGE, "u") == []
        assert matcher.match(other, "u") == []
        assert matcher.calls == [(IMAGE.ref, "u"), (other.ref, "u")]


class TestBuildMatcher:
    """Tests for matcher source selection."""

    def test_stub(self):
        matcher, warning = build_matcher(Settings(matcher_url="https://matcher.test"), "stub")
        assert isinstance(matcher, FixtureMatcher)
        assert warning is None

    def test_configured_url_uses_http(self):
        settings = Settings(matcher_url="https://matcher.test", matcher_timeout=2.5)
        matcher, warning = build_matcher(settings, "auto")

        assert isinstance(matcher, HttpMatcher)
        assert matcher.timeout == 2.5
        assert warning is None

    def test_auto_falls_back_with_warning(self):
        matcher, warning = build_matcher(Settings(), "auto")

        assert isinstance(matcher, FixtureMatcher)
        assert "FR_MATCHER_URL" in warning

    def test_live_without_url_fails(self):
        with pytest.raises(ConfigError):
            build_matcher(Settings(), "live")

    def test_unknown_source(self):
        with pytest.raises(ValueError):
            build_matcher(Settings(), "magic")


class TestCapturedImage:
    def test_from_data_url(self):
        image = CapturedImage.from_base64("data:image/png;base64,aGVsbG8=")

        assert image.data == b"hello"
        assert image.content_type == "image/png"
        assert image.data_url == "data:image/png;base64,aGVsbG8="

    def test_invalid_base64(self):
        with pytest.raises(DeviceError):
            CapturedImage.from_base64("not base64!!")

    def test_empty_payload(self):
        with pytest.raises(DeviceError):
            CapturedImage.from_base64("")


class TestUploadedImageDevice:
    def test_capture_consumes_latest_upload(self):
        device = UploadedImageDevice()
        device.open()
        device.submit(CapturedImage(data=b"first"))
        device.submit(CapturedImage(data=b"second"))

        assert device.capture().data == b"second"
        with pytest.raises(DeviceError):
            device.capture()

    def test_capture_when_closed(self):
        device = UploadedImageDevice()
        device.submit(IMAGE)

        with pytest.raises(DeviceError):
            device.capture()
