#!/usr/bin/env python3
"""Bare server entry point (no restart supervision).

Run:
  python -m local_ocr_mcp                # serve MCP over stdio until stdin closes
  python -m local_ocr_mcp --test         # list tools/resources and status, then exit
  python -m local_ocr_mcp --version      # print the package version

`local-ocr-mcp` wraps this entry point in the crash-restart supervisor.
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from local_ocr_mcp import __version__
from local_ocr_mcp.server import run_server, test_server


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="local-ocr-mcp-server", description="Local OCR MCP server (stdio).")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--test",
        action="store_true",
        help="Run the self-test (tool, resource and engine status listing) and exit.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Serve until stdin EOF. Exit status 1 on a fatal startup or runtime error."""
    args = parse_args(sys.argv[1:] if argv is None else argv)
    entry = test_server if args.test else run_server
    try:
        asyncio.run(entry())
    except KeyboardInterrupt:
        print("\nServer stopped by user", file=sys.stderr)
    except Exception as exc:  # pylint: disable=broad-exception-caught
        print(f"Server error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
