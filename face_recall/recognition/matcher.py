"""Remote face matcher client and a deterministic fixture double.

The matcher contract: given image bytes and a user id, return candidates in
the matcher's own ranking order, ``[]`` when nobody matches, or fail with
``NetworkError``. Failure is never reported as "no matches".
"""
from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple

import requests

from ..config import ConfigError, Settings
from ..contacts.store import Contact
from ..errors import NetworkError
from .capture import CapturedImage

logger = logging.getLogger(__name__)

RECOGNIZE_PATH = "/recognize"


@dataclass(slots=True, frozen=True)
class Candidate:
    """A possible identity for a captured face.

    ``confidence`` is ``None`` when the user picked the person by hand.
    """

    contact_id: str
    name: str
    relationship: str
    avatar: Optional[str] = None
    confidence: Optional[float] = None

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "Candidate":
        return cls(
            contact_id=str(data["contactId"]),
            name=str(data.get("name", "")),
            relationship=str(data.get("relationship", "")),
            avatar=data.get("avatar"),
            confidence=float(data.get("confidence", 0.0)),
        )

    @classmethod
    def from_contact(cls, contact: Contact) -> "Candidate":
        return cls(
            contact_id=contact.id,
            name=contact.name,
            relationship=contact.relationship,
            avatar=contact.avatar,
        )

    def to_api_dict(self) -> Dict[str, Any]:
        return {
            "contactId": self.contact_id,
            "name": self.name,
            "relationship": self.relationship,
            "avatar": self.avatar,
            "confidence": self.confidence,
        }


class Matcher(Protocol):
    def match(self, image: CapturedImage, user_id: str) -> List[Candidate]: ...


def select_candidate(candidates: Sequence[Candidate]) -> Optional[Candidate]:
    """Highest confidence wins; the earliest candidate wins a tie.

    The matcher's order is used as-is and never re-sorted.
    """
    if not candidates:
        return None
    # max() returns the first of several equal maxima.
    return max(
        candidates,
        key=lambda c: c.confidence if c.confidence is not None else 0.0,
    )


class HttpMatcher:
    """Calls the recognition service over HTTP."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def match(self, image: CapturedImage, user_id: str) -> List[Candidate]:
        payload = {
            "image": base64.b64encode(image.data).decode("ascii"),
            "contentType": image.content_type,
            "userId": user_id,
        }
        url = f"{self.base_url}{RECOGNIZE_PATH}"

        try:
            response = self.session.post(
                url, json=payload, headers=self._headers(), timeout=self.timeout
            )
        except requests.Timeout as exc:
            raise NetworkError(f"Matcher timed out after {self.timeout}s") from exc
        except requests.RequestException as exc:
            raise NetworkError(f"Matcher unreachable: {exc}") from exc

        if not response.ok:
            raise NetworkError(
                f"Matcher returned HTTP {response.status_code}: {response.text[:200]}"
            )

        try:
            body = response.json()
            candidates = [Candidate.from_payload(item) for item in body.get("matches", [])]
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise NetworkError(f"Matcher response could not be parsed: {exc}") from exc

        logger.debug(f"[Matcher] {len(candidates)} candidate(s) for {image.ref[:19]}")
        return candidates


class FixtureMatcher:
    """Deterministic matcher keyed by image reference, for stubs and tests."""

    def __init__(
        self,
        responses: Optional[Mapping[str, Iterable[Candidate]]] = None,
        default: Iterable[Candidate] = (),
    ) -> None:
        self.responses = {ref: list(items) for ref, items in (responses or {}).items()}
        self.default = list(default)
        self.calls: List[Tuple[str, str]] = []

    def match(self, image: CapturedImage, user_id: str) -> List[Candidate]:
        self.calls.append((image.ref, user_id))
        return list(self.responses.get(image.ref, self.default))


def build_matcher(settings: Settings, source: str = "auto") -> Tuple[Matcher, Optional[str]]:
    """Pick the matcher for ``source`` ("auto", "live" or "stub").

    Returns:
        Tuple of (matcher, warning). ``warning`` is set when "auto" falls back
        to the stub because no matcher URL is configured.

    Raises:
        ConfigError: if "live" is requested without ``FR_MATCHER_URL``.
    """
    if source not in ("auto", "live", "stub"):
        raise ValueError(f"Unknown matcher source: {source}")

    if source == "stub":
        return FixtureMatcher(), None

    if settings.matcher_configured:
        return (
            HttpMatcher(
                settings.matcher_url,
                api_key=settings.matcher_api_key,
                timeout=settings.matcher_timeout,
            ),
            None,
        )

    if source == "live":
        raise ConfigError("Missing matcher URL. Export FR_MATCHER_URL to use the live matcher.")

    return (
        FixtureMatcher(),
        "FR_MATCHER_URL not set; using the stub matcher (no faces will be recognized).",
    )
