"""Configuration loading for local-ocr-mcp.

Configuration is supplied by the host environment (e.g., the MCP client config
that launches the server), never by tool arguments.
"""

from __future__ import annotations

import logging
import os
import sys
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ErrorCode, SafeError

SUPERVISED_ENV_VAR = "LOCAL_OCR_MCP_SUPERVISED"
SERVER_SCRIPT_NAME = "local-ocr-mcp-server"


@dataclass(frozen=True, slots=True)
class LimitsConfig:
    """Input resolution limits."""

    download_timeout_s: float = 30.0
    max_download_bytes: int = 10 * 1024 * 1024


@dataclass(frozen=True, slots=True)
class RestartPolicy:
    """Crash-restart policy for the process supervisor."""

    max_restarts: int = 5
    window_s: float = 60.0
    initial_delay_s: float = 1.0
    max_delay_s: float = 30.0


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Server and supervisor configuration."""

    temp_dir: Path
    log_level: int
    tesseract_cmd: str | None
    server_bin: Path
    supervised: bool
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    restart: RestartPolicy = field(default_factory=RestartPolicy)


def default_temp_dir() -> Path:
    return Path(tempfile.gettempdir()) / "local-ocr-mcp"


def default_server_bin() -> Path:
    # Console scripts are installed next to the interpreter in a venv.
    return Path(sys.executable).parent / SERVER_SCRIPT_NAME


def _parse_bool(value: str | None) -> bool:
    if value is None:
        return False
    normalized = value.strip().lower()
    return normalized in {"1", "true", "yes", "on"}


def _parse_positive_float(name: str, value: str | None, default: float) -> float:
    if value is None or not value.strip():
        return default
    try:
        parsed = float(value)
    except ValueError as exc:
        raise SafeError(code=ErrorCode.CONFIG, message=f"{name} must be a number") from exc
    if parsed <= 0:
        raise SafeError(code=ErrorCode.CONFIG, message=f"{name} must be greater than zero")
    return parsed


def _parse_positive_int(name: str, value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    try:
        parsed = int(value)
    except ValueError as exc:
        raise SafeError(code=ErrorCode.CONFIG, message=f"{name} must be an integer") from exc
    if parsed <= 0:
        raise SafeError(code=ErrorCode.CONFIG, message=f"{name} must be greater than zero")
    return parsed


def _parse_log_level(value: str | None) -> int:
    if not value:
        return logging.INFO
    level = logging.getLevelName(value.strip().upper())
    if not isinstance(level, int):
        raise SafeError(code=ErrorCode.CONFIG, message="LOCAL_OCR_MCP_LOG_LEVEL must be a logging level name")
    return level


def _parse_absolute_path(name: str, value: str | None, default: Path) -> Path:
    if not value:
        return default
    p = Path(value)
    if not p.is_absolute():
        raise SafeError(code=ErrorCode.CONFIG, message=f"{name} must be an absolute path when set")
    return p


def load_config_from_env() -> AppConfig:
    """Load and validate configuration from environment variables.

    Raises:
        SafeError: If a configured value is invalid.
    """
    limits_default = LimitsConfig()
    restart_default = RestartPolicy()

    limits = LimitsConfig(
        download_timeout_s=_parse_positive_float(
            "LOCAL_OCR_MCP_DOWNLOAD_TIMEOUT_S",
            os.getenv("LOCAL_OCR_MCP_DOWNLOAD_TIMEOUT_S"),
            limits_default.download_timeout_s,
        ),
        max_download_bytes=_parse_positive_int(
            "LOCAL_OCR_MCP_MAX_DOWNLOAD_BYTES",
            os.getenv("LOCAL_OCR_MCP_MAX_DOWNLOAD_BYTES"),
            limits_default.max_download_bytes,
        ),
    )

    restart = RestartPolicy(
        max_restarts=_parse_positive_int(
            "LOCAL_OCR_MCP_MAX_RESTARTS",
            os.getenv("LOCAL_OCR_MCP_MAX_RESTARTS"),
            restart_default.max_restarts,
        ),
        window_s=_parse_positive_float(
            "LOCAL_OCR_MCP_RESTART_WINDOW_S",
            os.getenv("LOCAL_OCR_MCP_RESTART_WINDOW_S"),
            restart_default.window_s,
        ),
        initial_delay_s=_parse_positive_float(
            "LOCAL_OCR_MCP_INITIAL_DELAY_S",
            os.getenv("LOCAL_OCR_MCP_INITIAL_DELAY_S"),
            restart_default.initial_delay_s,
        ),
        max_delay_s=_parse_positive_float(
            "LOCAL_OCR_MCP_MAX_DELAY_S",
            os.getenv("LOCAL_OCR_MCP_MAX_DELAY_S"),
            restart_default.max_delay_s,
        ),
    )
    if restart.initial_delay_s > restart.max_delay_s:
        raise SafeError(
            code=ErrorCode.CONFIG,
            message="LOCAL_OCR_MCP_INITIAL_DELAY_S must not exceed LOCAL_OCR_MCP_MAX_DELAY_S",
        )

    tesseract_cmd = os.getenv("LOCAL_OCR_MCP_TESSERACT_CMD") or None

    return AppConfig(
        temp_dir=_parse_absolute_path("LOCAL_OCR_MCP_TEMP_DIR", os.getenv("LOCAL_OCR_MCP_TEMP_DIR"), default_temp_dir()),
        log_level=_parse_log_level(os.getenv("LOCAL_OCR_MCP_LOG_LEVEL")),
        tesseract_cmd=tesseract_cmd,
        server_bin=_parse_absolute_path(
            "LOCAL_OCR_MCP_SERVER_BIN", os.getenv("LOCAL_OCR_MCP_SERVER_BIN"), default_server_bin()
        ),
        supervised=_parse_bool(os.getenv(SUPERVISED_ENV_VAR)),
        limits=limits,
        restart=restart,
    )
