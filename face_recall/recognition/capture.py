"""Still-image capture devices used by recognition sessions."""
from __future__ import annotations

import base64
import binascii
import hashlib
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from ..errors import DeviceError


@dataclass(slots=True, frozen=True)
class CapturedImage:
    """Raw bytes of one still image."""

    data: bytes
    content_type: str = "image/jpeg"

    @property
    def ref(self) -> str:
        """Content-addressed reference stored alongside sightings."""
        return "sha256:" + hashlib.sha256(self.data).hexdigest()

    @property
    def data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.content_type};base64,{encoded}"

    @classmethod
    def from_base64(cls, payload: str, content_type: str = "image/jpeg") -> "CapturedImage":
        """Decode a base64 string or a ``data:image/...;base64,`` URL."""
        if payload.startswith("data:"):
            header, _, payload = payload.partition(",")
            media = header[len("data:"):].split(";", 1)[0]
            content_type = media or content_type
        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise DeviceError(f"Image payload is not valid base64: {exc}") from exc
        if not data:
            raise DeviceError("Image payload is empty.")
        return cls(data=data, content_type=content_type)


class CaptureDevice(Protocol):
    """A camera-like source of still images."""

    def open(self) -> None: ...

    def capture(self) -> Optional[CapturedImage]: ...

    def close(self) -> None: ...


class FileImageDevice:
    """Reads the still image from a file on disk (CLI use)."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.is_open = False

    def open(self) -> None:
        if not self.path.is_file():
            raise DeviceError(f"Image file not found: {self.path}")
        self.is_open = True

    def capture(self) -> Optional[CapturedImage]:
        if not self.is_open:
            raise DeviceError("Capture device is not open.")
        try:
            data = self.path.read_bytes()
        except OSError as exc:
            raise DeviceError(f"Could not read {self.path}: {exc}") from exc
        content_type = mimetypes.guess_type(self.path.name)[0] or "image/jpeg"
        return CapturedImage(data=data, content_type=content_type) if data else None

    def close(self) -> None:
        self.is_open = False


class UploadedImageDevice:
    """Holds the image uploaded by a remote client until the session captures it.

    Only the latest upload is kept.
    """

    def __init__(self) -> None:
        self.is_open = False
        self._pending: Optional[CapturedImage] = None

    def submit(self, image: CapturedImage) -> None:
        self._pending = image

    def open(self) -> None:
        self.is_open = True

    def capture(self) -> Optional[CapturedImage]:
        if not self.is_open:
            raise DeviceError("Capture device is not open.")
        if self._pending is None:
            raise DeviceError("No image has been uploaded for this session.")
        image, self._pending = self._pending, None
        return image

    def close(self) -> None:
        self.is_open = False
        self._pending = None
