"""Input resolution: turn an `image` argument into a local file.

Inline payloads and downloads are written to uniquely named files under a
dedicated temp root and must be released by the caller. Local paths are used
as-is and are never deleted.
"""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from dataclasses import dataclass
from pathlib import Path

import httpx

from .config import LimitsConfig
from .errors import (
    download_failure,
    download_timeout,
    not_found,
    payload_too_large,
    unreadable,
    unsupported_scheme,
)
from .image_source import InlineData, LocalPath, RemoteURL, classify, extension_for_mime

logger = logging.getLogger(__name__)

ALLOWED_URL_SCHEMES = frozenset({"http", "https"})
DEFAULT_REMOTE_EXTENSION = "jpg"
TEMP_FILE_PREFIX = "ocr-"


@dataclass(frozen=True, slots=True)
class ResolvedImage:
    """A readable image file plus ownership information."""

    path: Path
    is_temporary: bool


class InputResolver:
    """Resolves inline, local and remote image references to files."""

    def __init__(
        self,
        *,
        temp_dir: Path,
        limits: LimitsConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Create a resolver.

        Args:
            temp_dir: Root directory for temporary files. Only files below it
                are ever deleted by `release`.
            limits: Download timeout and payload ceiling.
            transport: Optional httpx transport for tests.
        """
        self._temp_dir = temp_dir
        self._limits = limits
        self._transport = transport

    @property
    def temp_dir(self) -> Path:
        return self._temp_dir

    async def resolve(self, raw: str) -> ResolvedImage:
        """Materialize `raw` as a local file.

        Raises:
            SafeError: InvalidFormat, DecodeFailure, NotFound, Unreadable,
                DownloadFailure, DownloadTimeout, UnsupportedScheme or
                PayloadTooLarge.
        """
        ref = classify(raw)
        if isinstance(ref, InlineData):
            return self._write_inline(ref)
        if isinstance(ref, RemoteURL):
            return await self._download(ref)
        if isinstance(ref, LocalPath):
            return self._check_local(ref)
        raise AssertionError(f"unhandled image reference: {ref!r}")

    def release(self, image: ResolvedImage) -> None:
        """Delete a temporary image. Safe to call more than once."""
        if not image.is_temporary:
            return
        if not self._is_under_temp_root(image.path):
            logger.warning("Refusing to delete file outside temp root: %s", image.path)
            return
        try:
            image.path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Failed to delete temp file %s: %s", image.path, exc)

    # ─── Variants ────────────────────────────────────────────────────────

    def _write_inline(self, ref: InlineData) -> ResolvedImage:
        if len(ref.raw_bytes) > self._limits.max_download_bytes:
            raise payload_too_large(self._limits.max_download_bytes)

        target = self._new_temp_path(ref.extension)
        try:
            with target.open("xb") as fh:
                fh.write(ref.raw_bytes)
        except BaseException:
            self._discard(target)
            raise

        logger.debug("Wrote %d inline bytes (%s) to %s", len(ref.raw_bytes), ref.mime_type, target)
        return ResolvedImage(path=target, is_temporary=True)

    def _check_local(self, ref: LocalPath) -> ResolvedImage:
        path = Path(ref.path)
        if not path.is_file():
            raise not_found(ref.path)
        if not os.access(path, os.R_OK):
            raise unreadable(ref.path)
        return ResolvedImage(path=path, is_temporary=False)

    async def _download(self, ref: RemoteURL) -> ResolvedImage:
        if ref.scheme not in ALLOWED_URL_SCHEMES:
            raise unsupported_scheme(ref.scheme)

        timeout_s = self._limits.download_timeout_s
        # httpx timeouts apply per connect/read/write step; this bounds the whole request.
        try:
            target, received = await asyncio.wait_for(self._fetch(ref.url), timeout=timeout_s)
        except asyncio.TimeoutError as exc:
            raise download_timeout(timeout_s) from exc

        logger.debug("Downloaded %d bytes from %s to %s", received, ref.url, target)
        return ResolvedImage(path=target, is_temporary=True)

    async def _fetch(self, url: str) -> tuple[Path, int]:
        """Stream `url` into a new temp file. The file is discarded on any failure."""
        max_bytes = self._limits.max_download_bytes
        timeout_s = self._limits.download_timeout_s
        target: Path | None = None
        received = 0

        try:
            async with httpx.AsyncClient(
                follow_redirects=True,
                timeout=httpx.Timeout(timeout_s),
                limits=httpx.Limits(max_connections=1, max_keepalive_connections=0),
                transport=self._transport,
            ) as client:
                async with client.stream("GET", url) as resp:
                    if not resp.is_success:
                        raise download_failure(f"HTTP {resp.status_code}")

                    content_type = resp.headers.get("content-type", "")
                    if not content_type.strip().lower().startswith("image/"):
                        raise download_failure(f"unexpected content type '{content_type or 'none'}'")

                    declared = resp.headers.get("content-length", "")
                    if declared.isdigit() and int(declared) > max_bytes:
                        raise payload_too_large(max_bytes)

                    target = self._new_temp_path(_remote_extension(content_type, resp.url))
                    with target.open("xb") as fh:
                        async for chunk in resp.aiter_bytes():
                            received += len(chunk)
                            if received > max_bytes:
                                raise payload_too_large(max_bytes)
                            fh.write(chunk)
        except httpx.TimeoutException as exc:
            self._discard(target)
            raise download_timeout(timeout_s) from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            self._discard(target)
            raise download_failure(str(exc) or type(exc).__name__) from exc
        except BaseException:
            self._discard(target)
            raise

        if target is None or received == 0:
            self._discard(target)
            raise download_failure("empty response body")
        return target, received

    # ─── Temp files ──────────────────────────────────────────────────────

    def _new_temp_path(self, extension: str) -> Path:
        self._temp_dir.mkdir(parents=True, exist_ok=True)
        return self._temp_dir / f"{TEMP_FILE_PREFIX}{uuid.uuid4().hex}.{extension}"

    def _discard(self, target: Path | None) -> None:
        if target is not None:
            self.release(ResolvedImage(path=target, is_temporary=True))

    def _is_under_temp_root(self, path: Path) -> bool:
        try:
            root = self._temp_dir.resolve()
            relative = path.resolve().relative_to(root)
        except (OSError, ValueError):
            return False
        return relative != Path(".")


def _remote_extension(content_type: str, url: httpx.URL) -> str:
    """Pick a file extension: content type, then URL suffix, then jpg."""
    ext = extension_for_mime(content_type)
    if ext:
        return ext
    suffix = Path(url.path).suffix.lstrip(".")
    if suffix:
        ext = extension_for_mime(suffix)
        if ext:
            return ext
    return DEFAULT_REMOTE_EXTENSION
