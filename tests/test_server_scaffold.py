"""Smoke tests for the MCP server surface."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import local_ocr_mcp.tools as tools
import pytest
from local_ocr_mcp import __version__
from local_ocr_mcp.bridge import OCREngineBridge
from local_ocr_mcp.config import AppConfig, LimitsConfig
from local_ocr_mcp.errors import ErrorCode, SafeError
from local_ocr_mcp.resolver import InputResolver
from local_ocr_mcp.server import STATUS_URI, call_tool, list_resources, list_tools, read_resource, server
from local_ocr_mcp.tools import TOOL_NAME, Runtime, ToolDispatcher
from mcp import types

PNG_DATA_URL = (
    "data:image/png;base64,"
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)


class DummyEngine:
    def __init__(self, lines=None, version: str | None = "5.3.4", exc: Exception | None = None) -> None:  # noqa: ANN001
        self.lines = ["HELLO", "WORLD"] if lines is None else lines
        self._version = version
        self.exc = exc

    def version(self) -> str | None:
        return self._version

    def recognize(self, path, languages, quality, use_language_correction):  # noqa: ANN001, ANN201
        if self.exc is not None:
            raise self.exc
        return list(self.lines)


@pytest.fixture
def runtime(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):  # noqa: ANN201
    def build(engine: DummyEngine | None = None) -> Runtime:
        engine = engine or DummyEngine()
        config = AppConfig(
            temp_dir=tmp_path / "ocr-tmp",
            log_level=logging.INFO,
            tesseract_cmd=None,
            server_bin=tmp_path / "local-ocr-mcp-server",
            supervised=False,
        )
        resolver = InputResolver(temp_dir=config.temp_dir, limits=LimitsConfig())
        bridge = OCREngineBridge(engine)
        rt = Runtime(
            config=config,
            engine=engine,  # type: ignore[arg-type]
            resolver=resolver,
            bridge=bridge,
            dispatcher=ToolDispatcher(resolver=resolver, bridge=bridge),
        )
        monkeypatch.setattr(tools, "_RUNTIME", rt)
        built.append(rt)
        return rt

    built: list[Runtime] = []
    yield build
    for rt in built:
        rt.bridge.shutdown()


@pytest.mark.asyncio
async def test_server_lists_exactly_one_tool() -> None:
    listed = await list_tools()

    assert [t.name for t in listed] == [TOOL_NAME]
    schema = listed[0].inputSchema
    assert schema["required"] == ["image"]
    assert schema["properties"]["recognitionLevel"]["enum"] == ["fast", "accurate"]
    assert schema["properties"]["recognitionLevel"]["default"] == "accurate"
    assert schema["properties"]["languages"]["default"] == ["en-US"]
    assert schema["properties"]["usesLanguageCorrection"]["default"] is True


@pytest.mark.asyncio
async def test_server_lists_status_resource() -> None:
    resources = await list_resources()

    assert [str(r.uri) for r in resources] == [STATUS_URI]
    assert resources[0].mimeType == "application/json"


@pytest.mark.asyncio
async def test_call_tool_returns_single_text_block(runtime) -> None:  # noqa: ANN001
    runtime()

    content = await call_tool(TOOL_NAME, {"image": PNG_DATA_URL})

    assert len(content) == 1
    assert content[0].type == "text"
    assert content[0].text == "HELLO\nWORLD"


@pytest.mark.asyncio
async def test_call_tool_raises_safe_error_for_tool_failures(runtime) -> None:  # noqa: ANN001
    runtime()

    with pytest.raises(SafeError) as exc:
        await call_tool(TOOL_NAME, {"image": "/nonexistent/path.png"})

    assert exc.value.code == ErrorCode.NOT_FOUND
    assert str(exc.value).startswith("NotFound: ")


@pytest.mark.asyncio
async def test_call_tool_wraps_unexpected_exceptions(runtime, monkeypatch: pytest.MonkeyPatch) -> None:  # noqa: ANN001
    runtime()

    async def broken(name, arguments):  # noqa: ANN001, ANN202
        raise KeyError("oops")

    monkeypatch.setattr("local_ocr_mcp.server.dispatch_tool", broken)

    with pytest.raises(SafeError) as exc:
        await call_tool(TOOL_NAME, {"image": PNG_DATA_URL})

    assert exc.value.code == ErrorCode.INTERNAL
    assert "oops" in exc.value.message


@pytest.mark.asyncio
async def test_tool_errors_reach_client_as_is_error_results(runtime) -> None:  # noqa: ANN001
    runtime()
    handler = server.request_handlers[types.CallToolRequest]

    result = await handler(
        types.CallToolRequest(
            method="tools/call",
            params=types.CallToolRequestParams(name=TOOL_NAME, arguments={"image": "/nonexistent/path.png"}),
        )
    )

    assert result.root.isError is True
    assert "NotFound" in result.root.content[0].text


@pytest.mark.asyncio
async def test_lenient_recognition_level_passes_through_sdk(runtime) -> None:  # noqa: ANN001
    runtime()
    handler = server.request_handlers[types.CallToolRequest]

    result = await handler(
        types.CallToolRequest(
            method="tools/call",
            params=types.CallToolRequestParams(
                name=TOOL_NAME,
                arguments={"image": PNG_DATA_URL, "recognitionLevel": "medium"},
            ),
        )
    )

    assert result.root.isError is False
    assert result.root.content[0].text == "HELLO\nWORLD"


@pytest.mark.asyncio
async def test_status_resource_reports_engine_and_limits(runtime) -> None:  # noqa: ANN001
    runtime(DummyEngine(version="5.3.4"))

    status = json.loads(await read_resource(STATUS_URI))

    assert status["server"] == "local-ocr"
    assert status["version"] == __version__
    assert status["tool_names"] == [TOOL_NAME]
    assert status["configured"] is True
    assert status["supervised"] is False
    assert status["engine"] == {"name": "tesseract", "available": True, "version": "5.3.4"}
    assert status["limits"]["max_download_bytes"] == 10 * 1024 * 1024


@pytest.mark.asyncio
async def test_status_resource_reports_missing_engine(runtime) -> None:  # noqa: ANN001
    runtime(DummyEngine(version=None))

    status = json.loads(await read_resource(STATUS_URI))

    assert status["engine"]["available"] is False


@pytest.mark.asyncio
async def test_status_resource_reports_config_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(tools, "_RUNTIME", None)
    monkeypatch.setenv("LOCAL_OCR_MCP_TEMP_DIR", "relative/dir")

    status = json.loads(await read_resource(STATUS_URI))

    assert status["configured"] is False
    assert "LOCAL_OCR_MCP_TEMP_DIR" in status["config_error"]


@pytest.mark.asyncio
async def test_unknown_resource_is_rejected() -> None:
    with pytest.raises(ValueError):
        await read_resource("ocr://nope")
