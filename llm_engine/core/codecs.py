"""Stream framing codecs.

Each codec turns the raw body of a streaming response into a sequence of
string chunks that an adapter's ``process_stream_chunk`` understands:

- ``iter_sse_data``: Server-Sent Events; yields each event's ``data`` payload.
- ``iter_ndjson``: newline-delimited JSON; yields each non-blank line.
- ``iter_eventstream``: AWS ``application/vnd.amazon.eventstream`` binary
  frames; yields each event payload, exceptions re-encoded as error events.
"""

from __future__ import annotations

import json
import struct
import zlib
from typing import Any, Dict, Iterable, Iterator, NamedTuple

from llm_engine.service.errors import ProviderApiError


def iter_sse_data(lines: Iterable[str]) -> Iterator[str]:
    data: list[str] = []
    for raw in lines:
        line = raw.rstrip("\r\n")
        if not line:
            if data:
                yield "\n".join(data)
                data = []
            continue
        if line.startswith(":"):
            continue  # comment / keep-alive
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "data":
            data.append(value)
    if data:
        yield "\n".join(data)


def iter_ndjson(lines: Iterable[str]) -> Iterator[str]:
    for raw in lines:
        line = raw.strip()
        if line:
            yield line


# -- AWS event stream -------------------------------------------------------

_PRELUDE_LENGTH = 12
_CRC_LENGTH = 4


class EventStreamMessage(NamedTuple):
    headers: Dict[str, Any]
    payload: bytes


def _decode_headers(raw: bytes) -> Dict[str, Any]:
    headers: Dict[str, Any] = {}
    pos = 0
    while pos < len(raw):
        name_len = raw[pos]
        pos += 1
        name = raw[pos : pos + name_len].decode("utf-8")
        pos += name_len
        value_type = raw[pos]
        pos += 1
        value: Any
        if value_type == 0:
            value = True
        elif value_type == 1:
            value = False
        elif value_type == 2:
            (value,) = struct.unpack_from(">b", raw, pos)
            pos += 1
        elif value_type == 3:
            (value,) = struct.unpack_from(">h", raw, pos)
            pos += 2
        elif value_type == 4:
            (value,) = struct.unpack_from(">i", raw, pos)
            pos += 4
        elif value_type in (5, 8):
            (value,) = struct.unpack_from(">q", raw, pos)
            pos += 8
        elif value_type in (6, 7):
            (length,) = struct.unpack_from(">H", raw, pos)
            pos += 2
            value = raw[pos : pos + length]
            if value_type == 7:
                value = value.decode("utf-8")
            pos += length
        elif value_type == 9:
            value = raw[pos : pos + 16].hex()
            pos += 16
        else:
            raise ProviderApiError(
                f"Unknown event stream header type {value_type}", category="malformed_stream"
            )
        headers[name] = value
    return headers


def iter_eventstream_messages(chunks: Iterable[bytes]) -> Iterator[EventStreamMessage]:
    """Decode binary event stream frames, verifying both CRCs."""
    buffer = bytearray()
    for chunk in chunks:
        buffer.extend(chunk)
        while len(buffer) >= _PRELUDE_LENGTH:
            total_length, headers_length, prelude_crc = struct.unpack_from(">III", buffer, 0)
            if zlib.crc32(bytes(buffer[:8])) & 0xFFFFFFFF != prelude_crc:
                raise ProviderApiError("Event stream prelude CRC mismatch", category="malformed_stream")
            if len(buffer) < total_length:
                break
            frame = bytes(buffer[:total_length])
            del buffer[:total_length]
            (message_crc,) = struct.unpack_from(">I", frame, total_length - _CRC_LENGTH)
            if zlib.crc32(frame[:-_CRC_LENGTH]) & 0xFFFFFFFF != message_crc:
                raise ProviderApiError("Event stream message CRC mismatch", category="malformed_stream")
            headers_end = _PRELUDE_LENGTH + headers_length
            yield EventStreamMessage(
                headers=_decode_headers(frame[_PRELUDE_LENGTH:headers_end]),
                payload=frame[headers_end : total_length - _CRC_LENGTH],
            )
    if buffer:
        raise ProviderApiError("Event stream ended inside a frame", category="incomplete_stream")


def iter_eventstream(chunks: Iterable[bytes]) -> Iterator[str]:
    for message in iter_eventstream_messages(chunks):
        message_type = message.headers.get(":message-type", "event")
        payload = message.payload.decode("utf-8") if message.payload else ""
        if message_type == "event":
            if payload:
                yield payload
            continue
        error_type = message.headers.get(":exception-type") or message.headers.get(":error-code") or "error"
        detail = message.headers.get(":error-message") or payload
        try:
            detail = json.loads(payload).get("message", detail)
        except (ValueError, AttributeError):
            pass
        yield json.dumps({"type": "error", "error": {"type": error_type, "message": detail}})


def encode_eventstream_message(payload: bytes, headers: Dict[str, str]) -> bytes:
    """Encode one frame with string headers (the inverse of the decoder)."""
    raw_headers = b""
    for name, value in headers.items():
        encoded_name = name.encode("utf-8")
        encoded_value = value.encode("utf-8")
        raw_headers += (
            struct.pack(">B", len(encoded_name))
            + encoded_name
            + struct.pack(">BH", 7, len(encoded_value))
            + encoded_value
        )
    total_length = _PRELUDE_LENGTH + len(raw_headers) + len(payload) + _CRC_LENGTH
    prelude = struct.pack(">II", total_length, len(raw_headers))
    prelude += struct.pack(">I", zlib.crc32(prelude) & 0xFFFFFFFF)
    body = prelude + raw_headers + payload
    return body + struct.pack(">I", zlib.crc32(body) & 0xFFFFFFFF)


__all__ = [
    "iter_sse_data",
    "iter_ndjson",
    "EventStreamMessage",
    "iter_eventstream_messages",
    "iter_eventstream",
    "encode_eventstream_message",
]
