"""Content-Length framed JSON-RPC codec for the analyzer's stdio streams."""

from __future__ import annotations

import json
from typing import BinaryIO

from gopls_mcp.errors import EngineError, ErrorKind

CONTENT_LENGTH_HEADER = b"content-length"
HEADER_TERMINATOR = b"\r\n"
MAX_HEADER_LINE_BYTES = 8 * 1024


class FramingError(EngineError):
    """Raised when the analyzer stream can no longer be parsed as frames."""

    def __init__(self, message: str) -> None:
        super().__init__(ErrorKind.PROTOCOL_FRAMING, message)


def encode_message(message: dict[str, object]) -> bytes:
    """Serialize one JSON-RPC message including its framing header."""
    body = json.dumps(message, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    header = f"Content-Length: {len(body)}\r\n\r\n".encode("ascii")
    return header + body


def write_message(stream: BinaryIO, message: dict[str, object]) -> None:
    """Write one framed message and flush. Callers serialize concurrent writers."""
    stream.write(encode_message(message))
    stream.flush()


def read_message(stream: BinaryIO) -> dict[str, object] | None:
    """Read one framed message, or return None on a clean end of stream."""
    content_length = _read_headers(stream)
    if content_length is None:
        return None
    body = _read_exact(stream, content_length)
    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as error:
        raise FramingError(f"Frame body is not valid UTF-8 JSON: {error}") from error
    if not isinstance(payload, dict):
        raise FramingError("Frame body must be a JSON object.")
    return payload


def _read_headers(stream: BinaryIO) -> int | None:
    content_length: int | None = None
    first_line = True
    while True:
        line = stream.readline(MAX_HEADER_LINE_BYTES)
        if not line:
            if first_line:
                return None
            raise FramingError("Stream ended inside frame headers.")
        first_line = False
        if not line.endswith(HEADER_TERMINATOR):
            raise FramingError(f"Header line is not CRLF terminated: {line[:64]!r}")
        stripped = line[: -len(HEADER_TERMINATOR)]
        if not stripped:
            break
        name, separator, value = stripped.partition(b":")
        if not separator:
            raise FramingError(f"Malformed header line: {stripped[:64]!r}")
        if name.strip().lower() != CONTENT_LENGTH_HEADER:
            continue
        try:
            content_length = int(value.strip())
        except ValueError as error:
            raise FramingError(f"Invalid Content-Length: {value.strip()[:32]!r}") from error
        if content_length < 0:
            raise FramingError(f"Invalid Content-Length: {content_length}")
    if content_length is None:
        raise FramingError("Missing Content-Length header.")
    return content_length


def _read_exact(stream: BinaryIO, length: int) -> bytes:
    body = bytearray()
    while len(body) < length:
        chunk = stream.read(length - len(body))
        if not chunk:
            raise FramingError(
                f"Stream ended after {len(body)} of {length} body bytes."
            )
        body.extend(chunk)
    return bytes(body)
