"""Foundational tests: configuration loading."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest
from local_ocr_mcp.config import (SUPERVISED_ENV_VAR, default_temp_dir,
                                  load_config_from_env)
from local_ocr_mcp.errors import SafeError

_ENV_VARS = (
    "LOCAL_OCR_MCP_TEMP_DIR",
    "LOCAL_OCR_MCP_DOWNLOAD_TIMEOUT_S",
    "LOCAL_OCR_MCP_MAX_DOWNLOAD_BYTES",
    "LOCAL_OCR_MCP_LOG_LEVEL",
    "LOCAL_OCR_MCP_TESSERACT_CMD",
    "LOCAL_OCR_MCP_SERVER_BIN",
    "LOCAL_OCR_MCP_MAX_RESTARTS",
    "LOCAL_OCR_MCP_RESTART_WINDOW_S",
    "LOCAL_OCR_MCP_INITIAL_DELAY_S",
    "LOCAL_OCR_MCP_MAX_DELAY_S",
    SUPERVISED_ENV_VAR,
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_load_config_defaults() -> None:
    cfg = load_config_from_env()

    assert cfg.temp_dir == default_temp_dir()
    assert cfg.log_level == logging.INFO
    assert cfg.tesseract_cmd is None
    assert cfg.supervised is False
    assert cfg.limits.download_timeout_s == 30.0
    assert cfg.limits.max_download_bytes == 10 * 1024 * 1024
    assert cfg.restart.max_restarts == 5
    assert cfg.restart.window_s == 60.0
    assert cfg.restart.initial_delay_s == 1.0
    assert cfg.restart.max_delay_s == 30.0


def test_load_config_parses_env_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("LOCAL_OCR_MCP_TEMP_DIR", str(tmp_path))
    monkeypatch.setenv("LOCAL_OCR_MCP_DOWNLOAD_TIMEOUT_S", "5.5")
    monkeypatch.setenv("LOCAL_OCR_MCP_MAX_DOWNLOAD_BYTES", "2048")
    monkeypatch.setenv("LOCAL_OCR_MCP_LOG_LEVEL", "debug")
    monkeypatch.setenv("LOCAL_OCR_MCP_TESSERACT_CMD", "/opt/tesseract/bin/tesseract")
    monkeypatch.setenv("LOCAL_OCR_MCP_MAX_RESTARTS", "3")
    monkeypatch.setenv("LOCAL_OCR_MCP_RESTART_WINDOW_S", "10")
    monkeypatch.setenv("LOCAL_OCR_MCP_INITIAL_DELAY_S", "0.5")
    monkeypatch.setenv("LOCAL_OCR_MCP_MAX_DELAY_S", "4")
    monkeypatch.setenv(SUPERVISED_ENV_VAR, "true")

    cfg = load_config_from_env()

    assert cfg.temp_dir == tmp_path
    assert cfg.limits.download_timeout_s == 5.5
    assert cfg.limits.max_download_bytes == 2048
    assert cfg.log_level == logging.DEBUG
    assert cfg.tesseract_cmd == "/opt/tesseract/bin/tesseract"
    assert cfg.restart.max_restarts == 3
    assert cfg.restart.window_s == 10.0
    assert cfg.restart.initial_delay_s == 0.5
    assert cfg.restart.max_delay_s == 4.0
    assert cfg.supervised is True


def test_load_config_rejects_relative_temp_dir(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOCAL_OCR_MCP_TEMP_DIR", "relative/tmp")

    with pytest.raises(SafeError) as exc:
        _ = load_config_from_env()

    assert exc.value.code == "Config"
    assert "absolute" in exc.value.message


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("LOCAL_OCR_MCP_DOWNLOAD_TIMEOUT_S", "soon"),
        ("LOCAL_OCR_MCP_DOWNLOAD_TIMEOUT_S", "0"),
        ("LOCAL_OCR_MCP_MAX_DOWNLOAD_BYTES", "1.5"),
        ("LOCAL_OCR_MCP_MAX_DOWNLOAD_BYTES", "-1"),
        ("LOCAL_OCR_MCP_MAX_RESTARTS", "many"),
        ("LOCAL_OCR_MCP_RESTART_WINDOW_S", "-60"),
    ],
)
def test_load_config_rejects_invalid_numbers(monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(SafeError) as exc:
        _ = load_config_from_env()

    assert name in exc.value.message


def test_load_config_rejects_unknown_log_level(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOCAL_OCR_MCP_LOG_LEVEL", "chatty")

    with pytest.raises(SafeError) as exc:
        _ = load_config_from_env()

    assert "LOCAL_OCR_MCP_LOG_LEVEL" in exc.value.message


def test_load_config_rejects_initial_delay_above_cap(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOCAL_OCR_MCP_INITIAL_DELAY_S", "10")
    monkeypatch.setenv("LOCAL_OCR_MCP_MAX_DELAY_S", "5")

    with pytest.raises(SafeError):
        _ = load_config_from_env()


def test_supervised_flag_is_false_for_other_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(SUPERVISED_ENV_VAR, "nope")
    assert load_config_from_env().supervised is False
