"""Exceptions raised by the nREPL bridge.

Transport and evaluation failures are reported through ``EvalResult`` and
never raised from ``EvalClient.evaluate``. The classes here cover wire
decoding, assembler misuse and poll deadlines.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from epupp_bridge.models import EvalResult


class BridgeError(Exception):
    """Base class for bridge errors."""

    pass


class BencodeError(BridgeError, ValueError):
    """Malformed bencode on the wire, or a value that cannot be encoded."""

    pass


class ResponseOverflowError(BridgeError):
    """Response grew past the configured byte limit before completing."""

    def __init__(self, limit: int, size: int) -> None:
        super().__init__(
            f"Response exceeded {limit} bytes before completion ({size} bytes buffered)"
        )
        self.limit = limit
        self.size = size


class ResponseStateError(BridgeError):
    """Assembler used out of order (feed after done, classify before done)."""

    pass


class WaitTimeoutError(BridgeError, TimeoutError):
    """Polling deadline elapsed before the probe resolved."""

    def __init__(
        self,
        probe: str,
        timeout_ms: int,
        last_result: EvalResult | None = None,
    ) -> None:
        detail = ""
        if last_result is not None:
            if last_result.success:
                detail = f" (last value: {last_result.first_value!r})"
            else:
                detail = f" (last error: {last_result.error})"
        super().__init__(f"Timeout after {timeout_ms}ms waiting for {probe!r}{detail}")
        self.probe = probe
        self.timeout_ms = timeout_ms
        self.last_result = last_result
