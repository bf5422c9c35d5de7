"""Reassembly of a streamed nREPL response."""

from __future__ import annotations

import logging

from epupp_bridge.bencode import (
    ERR,
    EX,
    VALUE,
    decode_messages,
    extract_framed_strings,
    has_marker,
    message_is_done,
)
from epupp_bridge.errors import ResponseOverflowError, ResponseStateError
from epupp_bridge.models import UNKNOWN_ERROR, EvalResult

logger = logging.getLogger(__name__)

DEFAULT_MAX_RESPONSE_BYTES = 8 * 1024 * 1024


class ResponseAssembler:
    """Accumulates chunks for one response until a ``done`` status arrives.

    Chunks are appended in arrival order. Complete messages are decoded as
    they arrive so completion is noticed without rescanning the buffer. Once
    complete the buffer is frozen and ``classify`` works on that snapshot.
    """

    def __init__(self, max_bytes: int = DEFAULT_MAX_RESPONSE_BYTES) -> None:
        self.max_bytes = max_bytes
        self._buffer = bytearray()
        self._decoded_to = 0
        self._complete = False
        self._snapshot: bytes | None = None

    @property
    def complete(self) -> bool:
        return self._complete

    @property
    def size(self) -> int:
        return len(self._buffer)

    @property
    def snapshot(self) -> bytes:
        """Immutable copy of everything received so far."""
        if self._snapshot is not None:
            return self._snapshot
        return bytes(self._buffer)

    def feed(self, chunk: bytes) -> bool:
        """Append a chunk and return whether the response is now complete.

        Raises:
            ResponseStateError: The response already completed.
            ResponseOverflowError: The buffer would exceed ``max_bytes``.
            BencodeError: The stream is not valid bencode.
        """
        if self._complete:
            raise ResponseStateError("response already complete")
        if len(self._buffer) + len(chunk) > self.max_bytes:
            raise ResponseOverflowError(self.max_bytes, len(self._buffer) + len(chunk))

        self._buffer += chunk
        messages, self._decoded_to = decode_messages(self._buffer, self._decoded_to)
        if any(message_is_done(m) for m in messages):
            self._complete = True
            self._snapshot = bytes(self._buffer)
            logger.debug("Response complete after %d bytes", len(self._snapshot))
        return self._complete

    def classify(self) -> EvalResult:
        """Turn the completed response into an ``EvalResult``.

        Any ``ex`` or ``err`` entry makes the result a failure carrying the
        first ``err`` text. Otherwise every ``value`` is returned in order.
        """
        if not self._complete or self._snapshot is None:
            raise ResponseStateError("cannot classify an incomplete response")

        data = self._snapshot
        if has_marker(data, EX) or has_marker(data, ERR):
            errors = extract_framed_strings(data, ERR)
            return EvalResult.failed(errors[0] if errors else UNKNOWN_ERROR, "evaluation")
        return EvalResult.ok(extract_framed_strings(data, VALUE))
