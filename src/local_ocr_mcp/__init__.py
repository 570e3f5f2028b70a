"""Local OCR MCP Server.

A Model Context Protocol server that extracts text from images with a local
OCR engine. Images may be passed as base64 data URLs, local file paths, or
remote http(s) URLs. Nothing is uploaded anywhere; remote URLs are only
downloaded.

Run with: python -m local_ocr_mcp           (bare server)
          local-ocr-mcp                     (supervised, restarts on crash)
"""

__version__ = "1.0.0"
