"""Bridge between the asyncio protocol loop and a blocking OCR engine.

OCR runs on a dedicated worker thread so stdin reads and response writes keep
flowing while an image is being recognized. The engine may not be thread safe,
so the worker pool has exactly one thread and calls are serialized.

Completion is a one-shot handshake: the worker settles a single asyncio future
with either the recognized lines or the exception it raised, and the awaiting
request reads it once.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor

from .engine import OCREngine, OCRRequest
from .errors import no_text_found, processing_failed

logger = logging.getLogger(__name__)


class OCREngineBridge:
    """Runs OCR requests off the event loop."""

    def __init__(self, engine: OCREngine, *, executor: ThreadPoolExecutor | None = None) -> None:
        self._engine = engine
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="ocr-worker")

    @property
    def engine(self) -> OCREngine:
        return self._engine

    async def run(self, request: OCRRequest) -> str:
        """Recognize text in `request.path`.

        Returns:
            Detected lines joined by newlines, in the engine's order.

        Raises:
            SafeError: NoTextFound if the engine found nothing,
                ProcessingFailed wrapping any engine exception.
        """
        loop = asyncio.get_running_loop()
        try:
            lines = await loop.run_in_executor(self._executor, self._recognize, request)
        except asyncio.CancelledError:
            # The worker keeps running; its result is dropped.
            logger.info("OCR request for %s cancelled", request.path)
            raise
        except Exception as exc:  # pylint: disable=broad-exception-caught
            logger.error("OCR engine failed on %s: %s", request.path, exc)
            raise processing_failed(exc) from exc

        if not lines:
            raise no_text_found()
        return "\n".join(lines)

    def _recognize(self, request: OCRRequest) -> list[str]:
        lines = self._engine.recognize(
            request.path,
            request.languages,
            request.quality,
            request.use_language_correction,
        )
        return list(lines)

    def shutdown(self) -> None:
        """Stop accepting work. In-flight OCR is not waited for."""
        self._executor.shutdown(wait=False, cancel_futures=True)
