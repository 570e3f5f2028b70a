"""Safe error types and factory helpers.

Every failure a tool call can produce is a SafeError carrying a stable code.
The MCP layer renders it as a tool error result, never as a process crash.
"""

from __future__ import annotations

from dataclasses import dataclass


class ErrorCode:
    """Stable error codes surfaced to MCP clients."""

    # Input resolution
    INVALID_FORMAT = "InvalidFormat"
    DECODE_FAILURE = "DecodeFailure"
    NOT_FOUND = "NotFound"
    UNREADABLE = "Unreadable"
    DOWNLOAD_FAILURE = "DownloadFailure"
    DOWNLOAD_TIMEOUT = "DownloadTimeout"
    UNSUPPORTED_SCHEME = "UnsupportedScheme"
    PAYLOAD_TOO_LARGE = "PayloadTooLarge"
    # Engine
    NO_TEXT_FOUND = "NoTextFound"
    PROCESSING_FAILED = "ProcessingFailed"
    # Protocol
    UNKNOWN_TOOL = "UnknownTool"
    MISSING_PARAMETER = "MissingParameter"
    INVALID_PARAMETER = "InvalidParameter"
    # Host
    CONFIG = "Config"
    INTERNAL = "Internal"


@dataclass(eq=False, slots=True)
class SafeError(Exception):
    """An error safe to expose to MCP clients.

    Not frozen: context managers on the raise path assign __traceback__.
    """

    code: str
    message: str
    hint: str | None = None

    def __str__(self) -> str:
        text = f"{self.code}: {self.message}"
        if self.hint:
            text = f"{text} ({self.hint})"
        return text


def invalid_format() -> SafeError:
    return SafeError(
        code=ErrorCode.INVALID_FORMAT,
        message="Invalid base64 format. Expected format: data:image/xxx;base64,...",
    )


def decode_failure(detail: str = "payload is not valid base64") -> SafeError:
    return SafeError(code=ErrorCode.DECODE_FAILURE, message=f"Failed to decode image data: {detail}")


def not_found(path: str) -> SafeError:
    return SafeError(code=ErrorCode.NOT_FOUND, message=f"File not found: {path}")


def unreadable(path: str) -> SafeError:
    return SafeError(code=ErrorCode.UNREADABLE, message=f"File is not readable: {path}")


def download_failure(reason: str) -> SafeError:
    return SafeError(code=ErrorCode.DOWNLOAD_FAILURE, message=f"Failed to download image: {reason}")


def download_timeout(timeout_s: float) -> SafeError:
    """Timeouts are kept distinct so clients can tell the call may be retried."""
    return SafeError(
        code=ErrorCode.DOWNLOAD_TIMEOUT,
        message=f"Image download timed out after {timeout_s:g}s",
        hint="The remote host may be slow; retrying the call may succeed",
    )


def unsupported_scheme(scheme: str) -> SafeError:
    return SafeError(
        code=ErrorCode.UNSUPPORTED_SCHEME,
        message=f"Unsupported URL scheme: {scheme}",
        hint="Only http and https URLs are supported",
    )


def payload_too_large(max_bytes: int) -> SafeError:
    limit_mb = max_bytes / (1024 * 1024)
    return SafeError(
        code=ErrorCode.PAYLOAD_TOO_LARGE,
        message=f"Image exceeds size limit of {limit_mb:g}MB",
    )


def no_text_found() -> SafeError:
    return SafeError(code=ErrorCode.NO_TEXT_FOUND, message="No text was found in the image")


def processing_failed(cause: BaseException) -> SafeError:
    detail = str(cause) or type(cause).__name__
    return SafeError(code=ErrorCode.PROCESSING_FAILED, message=f"OCR processing failed: {detail}")


def unknown_tool(name: str, available: list[str]) -> SafeError:
    return SafeError(
        code=ErrorCode.UNKNOWN_TOOL,
        message=f"Unknown tool: {name}",
        hint=f"Available tools: {', '.join(available)}",
    )


def missing_parameter(name: str) -> SafeError:
    return SafeError(code=ErrorCode.MISSING_PARAMETER, message=f"Missing required parameter: {name}")


def invalid_parameter(name: str, reason: str) -> SafeError:
    return SafeError(code=ErrorCode.INVALID_PARAMETER, message=f"Invalid parameter '{name}': {reason}")


def internal_error(message: str = "Internal error") -> SafeError:
    return SafeError(code=ErrorCode.INTERNAL, message=message)
