"""Bencode framing for the nREPL wire protocol.

Requests are single bencoded dicts. Responses are a stream of bencoded dicts
delivered in arbitrary chunks; the stream ends with a message whose
``status`` list contains ``done``.

Strings are length-prefixed by their UTF-8 byte count (``<N>:<bytes>``) and
are always consumed by length, so text that looks like a marker inside a
payload is never mistaken for one.
"""

from __future__ import annotations

from typing import Any

from epupp_bridge.errors import BencodeError
from epupp_bridge.models import EvalRequest

VALUE = "value"
ERR = "err"
EX = "ex"
STATUS = "status"
DONE = "done"

MAX_DEPTH = 64
MAX_DIGITS = 20

_DIGITS = frozenset(b"0123456789")


class _Incomplete(Exception):
    """More bytes are needed to finish the current value."""


# =============================================================================
# Encoding
# =============================================================================


def encode(obj: Any) -> bytes:
    """Bencode ``obj``. Dict keys keep insertion order."""
    out = bytearray()
    _encode_into(obj, out)
    return bytes(out)


def _encode_into(obj: Any, out: bytearray) -> None:
    if isinstance(obj, bool):
        raise BencodeError("cannot bencode bool")
    if isinstance(obj, int):
        out += b"i%de" % obj
    elif isinstance(obj, str):
        data = obj.encode("utf-8")
        out += b"%d:" % len(data)
        out += data
    elif isinstance(obj, (bytes, bytearray)):
        out += b"%d:" % len(obj)
        out += obj
    elif isinstance(obj, (list, tuple)):
        out += b"l"
        for item in obj:
            _encode_into(item, out)
        out += b"e"
    elif isinstance(obj, dict):
        out += b"d"
        for key, value in obj.items():
            if not isinstance(key, (str, bytes)):
                raise BencodeError(f"dict key must be a string, got {type(key).__name__}")
            _encode_into(key, out)
            _encode_into(value, out)
        out += b"e"
    else:
        raise BencodeError(f"cannot bencode {type(obj).__name__}")


def encode_eval_request(request: EvalRequest | str) -> bytes:
    """Frame an eval request: ``d2:op4:eval4:code<N>:<code>e``."""
    if isinstance(request, str):
        request = EvalRequest(code=request)
    return encode(request.model_dump())


# =============================================================================
# Decoding
# =============================================================================


def _decode_at(buf: bytes | bytearray, i: int, depth: int = 0) -> tuple[Any, int]:
    if i >= len(buf):
        raise _Incomplete
    if depth > MAX_DEPTH:
        raise BencodeError(f"nesting deeper than {MAX_DEPTH} at offset {i}")

    c = buf[i]
    if c == ord("d"):
        i += 1
        result: dict[str, Any] = {}
        while True:
            if i >= len(buf):
                raise _Incomplete
            if buf[i] == ord("e"):
                return result, i + 1
            if buf[i] not in _DIGITS:
                raise BencodeError(f"dict key must be a string at offset {i}")
            key, i = _decode_at(buf, i, depth + 1)
            value, i = _decode_at(buf, i, depth + 1)
            result[key] = value

    if c == ord("l"):
        i += 1
        items: list[Any] = []
        while True:
            if i >= len(buf):
                raise _Incomplete
            if buf[i] == ord("e"):
                return items, i + 1
            item, i = _decode_at(buf, i, depth + 1)
            items.append(item)

    if c == ord("i"):
        end = buf.find(b"e", i + 1)
        raw = buf[i + 1 : end] if end != -1 else buf[i + 1 :]
        body = raw[1:] if raw.startswith(b"-") else raw
        if body and not all(b in _DIGITS for b in body):
            raise BencodeError(f"invalid integer at offset {i}")
        if len(body) > MAX_DIGITS:
            raise BencodeError(f"integer longer than {MAX_DIGITS} digits at offset {i}")
        if end == -1:
            raise _Incomplete
        if not body:
            raise BencodeError(f"empty integer at offset {i}")
        return int(raw), end + 1

    if c in _DIGITS:
        colon = buf.find(b":", i)
        digits = buf[i:colon] if colon != -1 else buf[i:]
        if not all(b in _DIGITS for b in digits):
            raise BencodeError(f"invalid string length at offset {i}")
        if len(digits) > MAX_DIGITS:
            raise BencodeError(f"string length longer than {MAX_DIGITS} digits at offset {i}")
        if colon == -1:
            raise _Incomplete
        start = colon + 1
        end = start + int(digits)
        if end > len(buf):
            raise _Incomplete
        return buf[start:end].decode("utf-8", errors="replace"), end

    raise BencodeError(f"unexpected byte {bytes([c])!r} at offset {i}")


def decode_messages(
    buffer: bytes | bytearray, offset: int = 0
) -> tuple[list[dict[str, Any]], int]:
    """Decode every complete top-level dict from ``buffer[offset:]``.

    Returns the messages and the offset just past the last complete one. A
    trailing partial message is left in place for the next call. The buffer is
    read in place, so feeding a growing ``bytearray`` with the previous offset
    only scans the new tail.

    Raises:
        BencodeError: The bytes are not valid bencode, or a top-level value is
            not a dict.
    """
    messages: list[dict[str, Any]] = []
    while offset < len(buffer):
        try:
            value, next_offset = _decode_at(buffer, offset)
        except _Incomplete:
            break
        if not isinstance(value, dict):
            raise BencodeError(f"expected a dict message at offset {offset}")
        messages.append(value)
        offset = next_offset
    return messages, offset


def message_is_done(message: dict[str, Any]) -> bool:
    status = message.get(STATUS)
    return isinstance(status, list) and DONE in status


def extract_framed_strings(buffer: bytes, marker: str) -> list[str]:
    """All string payloads stored under ``marker``, in wire order.

    Raises:
        BencodeError: The buffer is not valid bencode.
    """
    messages, _ = decode_messages(buffer)
    return [m[marker] for m in messages if isinstance(m.get(marker), str)]


def has_marker(buffer: bytes, marker: str) -> bool:
    """True if any complete message carries ``marker`` as a key.

    Raises:
        BencodeError: The buffer is not valid bencode.
    """
    messages, _ = decode_messages(buffer)
    return any(marker in m for m in messages)


def is_complete(buffer: bytes) -> bool:
    """True once a message with a ``done`` status has arrived.

    Raises:
        BencodeError: The buffer is not valid bencode.
    """
    messages, _ = decode_messages(buffer)
    return any(message_is_done(m) for m in messages)
