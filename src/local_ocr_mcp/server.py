"""MCP server wiring for local-ocr-mcp.

Handles tool and resource registration and JSON-RPC communication over stdio.
stdout carries protocol frames only; all logging goes to stderr.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import signal
import sys
from typing import Any

try:
    from mcp.server import Server
    from mcp.types import Resource, TextContent, Tool
except ImportError as exc:  # pragma: no cover
    raise ImportError("MCP library not installed. Install with: pip install mcp") from exc

from . import __version__
from .errors import SafeError, internal_error
from .tools import TOOL_METADATA, dispatch_tool, initialize_runtime_from_env

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stderr)],
)
logger = logging.getLogger(__name__)

STATUS_URI = "ocr://server-status"

server = Server("local-ocr")


@server.list_tools()
async def list_tools() -> list[Tool]:
    """List the OCR tool."""
    tools: list[Tool] = []
    for tool_name, metadata in TOOL_METADATA.items():
        tools.append(
            Tool(
                name=tool_name,
                description=metadata["description"],
                inputSchema=metadata["inputSchema"],
            )
        )

    logger.info("Listed %s tools", len(tools))
    return tools


# Arguments are checked by the dispatcher, which is lenient about
# recognitionLevel; SDK-side schema validation would reject those calls.
@server.call_tool(validate_input=False)
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    """Execute a tool call.

    Failures are raised; the SDK turns them into a CallToolResult with
    isError=true whose text is the error's string form.
    """
    if not isinstance(arguments, dict):
        arguments = {}

    logger.info("Tool called: %s", name)

    try:
        text = await dispatch_tool(name, arguments)
    except SafeError as err:
        logger.warning("Tool %s failed: %s", name, err)
        raise
    except Exception as exc:  # pylint: disable=broad-exception-caught
        logger.exception("Tool %s failed with unexpected exception", name)
        raise internal_error(f"Tool execution failed: {exc}") from exc

    return [TextContent(type="text", text=text)]


@server.list_resources()
async def list_resources() -> list[Resource]:
    """List available resources."""
    return [
        Resource(
            uri=STATUS_URI,
            name="Server Status",
            description="OCR engine availability and input limits",
            mimeType="application/json",
        ),
    ]


@server.read_resource()
async def read_resource(uri: Any) -> str:
    """Read resource content."""
    uri_s = uri if isinstance(uri, str) else str(uri)
    logger.info("Resource requested: %s", uri_s)

    if uri_s != STATUS_URI:
        raise ValueError(f"Unknown resource URI: {uri_s}")

    status: dict[str, Any] = {
        "server": "local-ocr",
        "version": __version__,
        "tools_available": len(TOOL_METADATA),
        "tool_names": sorted(TOOL_METADATA.keys()),
        "configured": False,
    }
    try:
        runtime = initialize_runtime_from_env()
    except SafeError as err:
        status["config_error"] = err.message
        return json.dumps(status, indent=2)

    engine_version = await asyncio.to_thread(runtime.engine.version)
    status["configured"] = True
    status["supervised"] = runtime.config.supervised
    status["engine"] = {
        "name": "tesseract",
        "available": engine_version is not None,
        "version": engine_version,
    }
    status["limits"] = {
        "download_timeout_s": runtime.config.limits.download_timeout_s,
        "max_download_bytes": runtime.config.limits.max_download_bytes,
    }
    status["input_formats"] = ["data:image/*;base64", "local path", "http(s) URL"]
    return json.dumps(status, indent=2)


async def run_server() -> None:
    """Run the server over stdio until stdin closes or SIGTERM arrives."""
    # Fail fast on invalid host configuration.
    try:
        runtime = initialize_runtime_from_env()
    except SafeError as err:
        logger.error("Startup configuration error: %s", err.message)
        raise

    logging.getLogger().setLevel(runtime.config.log_level)
    logger.info("Starting local OCR MCP server %s", __version__)
    if runtime.config.supervised:
        logger.info("Running under process supervisor")

    engine_version = runtime.engine.version()
    if engine_version is None:
        logger.warning("Tesseract not found; OCR calls will fail until it is installed")
    else:
        logger.info("Tesseract %s available", engine_version)

    loop = asyncio.get_running_loop()

    def _terminate() -> None:
        # The stdin reader thread blocks in readline() and cannot be joined.
        logger.info("Termination requested, shutting down")
        runtime.bridge.shutdown()
        logger.info("Server stopped")
        logging.shutdown()
        os._exit(0)

    with contextlib.suppress(NotImplementedError, RuntimeError):
        loop.add_signal_handler(signal.SIGTERM, _terminate)

    from mcp.server.stdio import stdio_server

    try:
        async with stdio_server() as (read_stream, write_stream):
            logger.info("Server ready, waiting for requests on stdin")
            await server.run(read_stream, write_stream, server.create_initialization_options())
    finally:
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.remove_signal_handler(signal.SIGTERM)
        runtime.bridge.shutdown()

    logger.info("Server stopped")


async def test_server() -> None:
    """Lightweight self-test: tool and resource listing."""
    logger.info("Running server self-test...")

    tools = await list_tools()
    print(f"Available tools: {[t.name for t in tools]}", file=sys.stderr)

    resources = await list_resources()
    print(f"Available resources: {[r.name for r in resources]}", file=sys.stderr)

    status = await read_resource(STATUS_URI)
    print(f"Server status: {status}", file=sys.stderr)

    logger.info("Server self-test completed")
