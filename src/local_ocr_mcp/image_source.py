"""Image reference classification.

The raw `image` tool argument is classified by prefix, in a fixed order:

1. ``data:image/``            -> InlineData (decoded here)
2. ``scheme://`` URL          -> RemoteURL (scheme checked at resolution time)
3. anything else              -> LocalPath

Classification is total and deterministic; a path that starts with
``http://`` is always treated as a URL.
"""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass
from typing import Union

from .errors import decode_failure, invalid_format

DATA_URL_PREFIX = "data:image/"
BASE64_MARKER = "base64,"

_URL_SCHEME_RE = re.compile(r"^([A-Za-z][A-Za-z0-9+.-]*)://")
_WHITESPACE_RE = re.compile(r"\s+")

_MIME_EXTENSIONS: dict[str, str] = {
    "jpeg": "jpg",
    "jpg": "jpg",
    "png": "png",
    "gif": "gif",
    "webp": "webp",
    "bmp": "bmp",
    "x-bmp": "bmp",
    "tiff": "tiff",
    "tif": "tiff",
}

DEFAULT_INLINE_EXTENSION = "png"


@dataclass(frozen=True, slots=True)
class InlineData:
    """Decoded ``data:image/...;base64,`` payload."""

    mime_type: str
    raw_bytes: bytes

    @property
    def extension(self) -> str:
        return extension_for_mime(self.mime_type) or DEFAULT_INLINE_EXTENSION


@dataclass(frozen=True, slots=True)
class LocalPath:
    """Caller-owned file on the local filesystem."""

    path: str


@dataclass(frozen=True, slots=True)
class RemoteURL:
    """Image to be downloaded."""

    url: str

    @property
    def scheme(self) -> str:
        match = _URL_SCHEME_RE.match(self.url)
        return match.group(1).lower() if match else ""


ImageReference = Union[InlineData, LocalPath, RemoteURL]


def extension_for_mime(mime_type: str) -> str | None:
    """Map an image MIME type (``png`` or ``image/png``) to a file extension.

    Returns None for unrecognized types so callers can pick their own default.
    """
    subtype = mime_type.strip().lower()
    subtype = subtype.split(";", 1)[0].strip()
    if subtype.startswith("image/"):
        subtype = subtype[len("image/"):]
    return _MIME_EXTENSIONS.get(subtype)


def decode_data_url(raw: str) -> InlineData:
    """Decode a ``data:image/<type>;base64,<payload>`` string.

    Raises:
        SafeError: InvalidFormat if the markers are missing, DecodeFailure if
            the payload is empty or not standard base64.
    """
    marker_at = raw.find(BASE64_MARKER)
    if marker_at < 0:
        raise invalid_format()

    mime_start = len(DATA_URL_PREFIX)
    mime_end = raw.find(";", mime_start)
    if mime_end < 0 or mime_end > marker_at:
        raise invalid_format()

    mime_type = raw[mime_start:mime_end]
    payload = _WHITESPACE_RE.sub("", raw[marker_at + len(BASE64_MARKER):])
    if not payload:
        raise decode_failure("payload is empty")

    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise decode_failure() from exc

    return InlineData(mime_type=mime_type, raw_bytes=data)


def classify(raw: str) -> ImageReference:
    """Classify a raw `image` argument into exactly one ImageReference variant."""
    if raw.startswith(DATA_URL_PREFIX):
        return decode_data_url(raw)
    if _URL_SCHEME_RE.match(raw):
        return RemoteURL(url=raw)
    return LocalPath(path=raw)
