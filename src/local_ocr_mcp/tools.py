"""Tool registry and dispatch layer.

This module:
- defines the single `ocr_extract_text` tool (public contract surface)
- parses tool arguments, applying documented defaults
- drives resolve -> OCR -> release for each call
- builds a per-server runtime from host-provided config
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any

from .bridge import OCREngineBridge
from .config import AppConfig, load_config_from_env
from .engine import DEFAULT_LANGUAGES, OCRRequest, QualityLevel, TesseractEngine
from .errors import invalid_parameter, missing_parameter, unknown_tool
from .resolver import InputResolver

logger = logging.getLogger(__name__)

TOOL_NAME = "ocr_extract_text"

TOOL_METADATA: dict[str, dict[str, Any]] = {
    TOOL_NAME: {
        "description": (
            "OCR - Extract text from images, screenshots, and photos using a local OCR engine. "
            "Fully offline processing, no image uploads.\n\n"
            "Use this tool when users ask to:\n"
            "- Extract text from an image, screenshot, or photo\n"
            "- OCR an image, read text from a picture\n"
            "- Transcribe text from a screenshot\n"
            "- Convert image text to digital format\n\n"
            "Supported inputs: Base64 data URLs (pasted images), local file paths, "
            "remote http/https URLs"
        ),
        "inputSchema": {
            "type": "object",
            "required": ["image"],
            "properties": {
                "image": {
                    "type": "string",
                    "description": (
                        "Image input in one of three formats: "
                        "(1) Base64 data URL: data:image/xxx;base64,... - for pasted images, "
                        "(2) Local file path: /path/to/image.jpg, "
                        "(3) Remote URL: https://example.com/image.jpg"
                    ),
                },
                "languages": {
                    "type": "array",
                    "description": 'Recognition languages (e.g., ["en-US", "zh-Hans"])',
                    "items": {"type": "string"},
                    "default": list(DEFAULT_LANGUAGES),
                },
                "recognitionLevel": {
                    "type": "string",
                    "description": "Recognition speed/accuracy tradeoff: fast or accurate",
                    "enum": ["fast", "accurate"],
                    "default": "accurate",
                },
                "usesLanguageCorrection": {
                    "type": "boolean",
                    "description": "Enable language model for better accuracy",
                    "default": True,
                },
            },
        },
    },
}


@dataclass(frozen=True, slots=True)
class OCRToolArguments:
    """Parsed `ocr_extract_text` arguments."""

    image: str
    languages: tuple[str, ...] = DEFAULT_LANGUAGES
    quality: QualityLevel = QualityLevel.ACCURATE
    use_language_correction: bool = True


def parse_quality(value: Any) -> QualityLevel:
    """Map `recognitionLevel` to a QualityLevel.

    Unrecognized values fall back to ACCURATE instead of failing the call.
    """
    if isinstance(value, str):
        normalized = value.strip().lower()
        for level in QualityLevel:
            if level.value == normalized:
                return level
    logger.debug("Unrecognized recognitionLevel %r, using accurate", value)
    return QualityLevel.ACCURATE


def parse_arguments(arguments: dict[str, Any]) -> OCRToolArguments:
    """Validate tool arguments and apply defaults.

    Raises:
        SafeError: MissingParameter or InvalidParameter.
    """
    if "image" not in arguments or arguments["image"] is None:
        raise missing_parameter("image")
    image = arguments["image"]
    if not isinstance(image, str):
        raise invalid_parameter("image", "must be a string")
    if not image.strip():
        raise invalid_parameter("image", "must not be empty")

    languages = DEFAULT_LANGUAGES
    raw_languages = arguments.get("languages")
    if raw_languages is not None:
        if not isinstance(raw_languages, list) or not all(isinstance(x, str) for x in raw_languages):
            raise invalid_parameter("languages", "must be an array of strings")
        cleaned = tuple(x.strip() for x in raw_languages if x.strip())
        if not cleaned:
            raise invalid_parameter("languages", "must contain at least one language")
        languages = cleaned

    quality = QualityLevel.ACCURATE
    if "recognitionLevel" in arguments:
        quality = parse_quality(arguments["recognitionLevel"])

    use_correction = True
    raw_correction = arguments.get("usesLanguageCorrection")
    if raw_correction is not None:
        if not isinstance(raw_correction, bool):
            raise invalid_parameter("usesLanguageCorrection", "must be a boolean")
        use_correction = raw_correction

    return OCRToolArguments(
        image=image,
        languages=languages,
        quality=quality,
        use_language_correction=use_correction,
    )


def _describe_image(image: str) -> str:
    """Short, log-safe description of an image argument."""
    if image.startswith("data:"):
        return f"<inline data, {len(image)} chars>"
    return image if len(image) <= 200 else image[:200] + "..."


class ToolDispatcher:
    """Routes tool calls through input resolution and OCR."""

    def __init__(self, *, resolver: InputResolver, bridge: OCREngineBridge) -> None:
        self._resolver = resolver
        self._bridge = bridge

    async def handle(self, name: str, arguments: dict[str, Any]) -> str:
        """Execute a tool call and return the extracted text.

        The resolved image is always released, whether OCR succeeds, fails or
        the call is cancelled.

        Raises:
            SafeError: UnknownTool, MissingParameter, InvalidParameter, or any
                resolver/engine failure unchanged.
        """
        if name not in TOOL_METADATA:
            raise unknown_tool(name, sorted(TOOL_METADATA))

        params = parse_arguments(arguments)
        correlation_id = uuid.uuid4().hex[:8]
        start = time.monotonic()
        logger.info("[%s] %s image=%s", correlation_id, name, _describe_image(params.image))

        resolved = await self._resolver.resolve(params.image)
        try:
            text = await self._bridge.run(
                OCRRequest(
                    path=resolved.path,
                    languages=params.languages,
                    quality=params.quality,
                    use_language_correction=params.use_language_correction,
                )
            )
        finally:
            self._resolver.release(resolved)

        duration_ms = int((time.monotonic() - start) * 1000)
        logger.info("[%s] OCR extraction complete: %d characters in %dms", correlation_id, len(text), duration_ms)
        return text


@dataclass(frozen=True, slots=True)
class Runtime:
    """Per-server dependencies shared across tool calls."""

    config: AppConfig
    engine: TesseractEngine
    resolver: InputResolver
    bridge: OCREngineBridge
    dispatcher: ToolDispatcher


_RUNTIME: Runtime | None = None


def initialize_runtime_from_env() -> Runtime:
    """Initialize and cache runtime from environment.

    Called at server startup (fail-fast), and can also be used lazily.
    """
    global _RUNTIME  # pylint: disable=global-statement
    if _RUNTIME is not None:
        return _RUNTIME

    config = load_config_from_env()
    engine = TesseractEngine(tesseract_cmd=config.tesseract_cmd)
    resolver = InputResolver(temp_dir=config.temp_dir, limits=config.limits)
    bridge = OCREngineBridge(engine)
    dispatcher = ToolDispatcher(resolver=resolver, bridge=bridge)

    _RUNTIME = Runtime(config=config, engine=engine, resolver=resolver, bridge=bridge, dispatcher=dispatcher)
    return _RUNTIME


async def dispatch_tool(name: str, arguments: dict[str, Any]) -> str:
    """Dispatch a tool call using the process-wide runtime."""
    runtime = initialize_runtime_from_env()
    return await runtime.dispatcher.handle(name, arguments)
