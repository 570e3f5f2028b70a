"""OCR engine contract and the default Tesseract adapter.

The server treats the engine as a black box:

    recognize(path, languages, quality, use_language_correction) -> list of lines

An empty list means the engine ran and found nothing. Any exception means the
engine itself failed. Engines are synchronous and may be CPU bound; callers go
through `OCREngineBridge`, never call them on the event loop directly.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, Sequence

import pytesseract  # type: ignore[import-untyped]
from PIL import Image

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGES: tuple[str, ...] = ("en-US",)


class QualityLevel(enum.Enum):
    """Speed/accuracy tradeoff."""

    FAST = "fast"
    ACCURATE = "accurate"


@dataclass(frozen=True, slots=True)
class OCRRequest:
    """A single OCR job."""

    path: Path
    languages: tuple[str, ...] = DEFAULT_LANGUAGES
    quality: QualityLevel = QualityLevel.ACCURATE
    use_language_correction: bool = True


class OCREngine(Protocol):
    """Anything that can turn an image file into lines of text."""

    def recognize(
        self,
        path: Path,
        languages: Sequence[str],
        quality: QualityLevel,
        use_language_correction: bool,
    ) -> list[str]:
        ...


# BCP-47 language (or language-script) -> Tesseract traineddata name.
_TESSERACT_LANGUAGES: dict[str, str] = {
    "en": "eng",
    "de": "deu",
    "fr": "fra",
    "es": "spa",
    "it": "ita",
    "pt": "por",
    "nl": "nld",
    "sv": "swe",
    "da": "dan",
    "no": "nor",
    "nb": "nor",
    "fi": "fin",
    "pl": "pol",
    "cs": "ces",
    "tr": "tur",
    "ru": "rus",
    "uk": "ukr",
    "el": "ell",
    "ar": "ara",
    "he": "heb",
    "hi": "hin",
    "th": "tha",
    "vi": "vie",
    "ja": "jpn",
    "ko": "kor",
    "zh-hans": "chi_sim",
    "zh-hant": "chi_tra",
    "zh-cn": "chi_sim",
    "zh-tw": "chi_tra",
    "zh": "chi_sim",
}

# Longest side, in pixels, for FAST recognition.
FAST_MAX_DIMENSION = 1600


def tesseract_language(tag: str) -> str:
    """Translate a BCP-47 tag (``en-US``, ``zh-Hans``) to a Tesseract code.

    Tags that are not recognized are passed through unchanged so callers can
    name Tesseract languages directly (``eng``, ``chi_sim``).
    """
    normalized = tag.strip().replace("_", "-").lower()
    if normalized in _TESSERACT_LANGUAGES:
        return _TESSERACT_LANGUAGES[normalized]
    parts = normalized.split("-")
    if len(parts) > 1:
        script = "-".join(parts[:2])
        if script in _TESSERACT_LANGUAGES:
            return _TESSERACT_LANGUAGES[script]
    if parts[0] in _TESSERACT_LANGUAGES:
        return _TESSERACT_LANGUAGES[parts[0]]
    return tag.strip()


def tesseract_language_spec(languages: Sequence[str]) -> str:
    codes: list[str] = []
    for tag in languages:
        code = tesseract_language(tag)
        if code and code not in codes:
            codes.append(code)
    return "+".join(codes) or "eng"


def tesseract_config(use_language_correction: bool) -> str:
    # LSTM engine, fully automatic page segmentation.
    options = ["--oem 1", "--psm 3"]
    if not use_language_correction:
        options.append("-c load_system_dawg=0")
        options.append("-c load_freq_dawg=0")
    return " ".join(options)


def group_lines(data: dict[str, list[Any]]) -> list[str]:
    """Collapse `image_to_data` word rows into lines, in reading order."""
    lines: list[str] = []
    current: list[str] = []
    current_key: tuple[int, int, int] | None = None

    for i, text in enumerate(data.get("text", [])):
        key = (int(data["block_num"][i]), int(data["par_num"][i]), int(data["line_num"][i]))
        if key != current_key:
            if current:
                lines.append(" ".join(current))
            current = []
            current_key = key

        word = str(text).strip()
        if word and float(data["conf"][i]) >= 0:
            current.append(word)

    if current:
        lines.append(" ".join(current))
    return lines


class TesseractEngine:
    """Local OCR through the Tesseract binary (pytesseract + Pillow)."""

    def __init__(self, *, tesseract_cmd: str | None = None) -> None:
        self._tesseract_cmd = tesseract_cmd

    def _configure(self) -> None:
        if self._tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = self._tesseract_cmd

    def version(self) -> str | None:
        """Return the Tesseract version, or None when it cannot be run."""
        try:
            self._configure()
            return str(pytesseract.get_tesseract_version())
        except Exception as exc:  # pylint: disable=broad-exception-caught
            logger.debug("Tesseract unavailable: %s", exc)
            return None

    def available(self) -> bool:
        return self.version() is not None

    def recognize(
        self,
        path: Path,
        languages: Sequence[str],
        quality: QualityLevel,
        use_language_correction: bool,
    ) -> list[str]:
        self._configure()

        with Image.open(path) as image:
            image.load()
            if quality is QualityLevel.FAST:
                image.thumbnail((FAST_MAX_DIMENSION, FAST_MAX_DIMENSION))
            data = pytesseract.image_to_data(
                image,
                lang=tesseract_language_spec(languages),
                config=tesseract_config(use_language_correction),
                output_type=pytesseract.Output.DICT,
            )

        return group_lines(data)
