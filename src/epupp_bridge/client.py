"""One-shot nREPL eval client.

Each call opens its own TCP connection to the relay, writes one ``eval``
request, feeds the streamed reply into a fresh ``ResponseAssembler`` and
closes the connection once a ``done`` status has been seen. Failures never
raise: they come back as ``EvalResult(success=False, ...)``.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress

from epupp_bridge.assembler import DEFAULT_MAX_RESPONSE_BYTES, ResponseAssembler
from epupp_bridge.bencode import encode_eval_request
from epupp_bridge.errors import BencodeError, ResponseOverflowError
from epupp_bridge.models import Endpoint, EvalRequest, EvalResult
from epupp_bridge.settings import BridgeSettings

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024


def _describe(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


class EvalClient:
    """Evaluates code through an nREPL relay, one connection per call.

    Usage:
        client = EvalClient(Endpoint(port=12345))
        result = await client.evaluate("(+ 1 2 3)")
        assert result.values == ["6"]
    """

    def __init__(
        self,
        endpoint: Endpoint,
        *,
        connect_timeout: float = 5.0,
        read_timeout: float = 30.0,
        max_response_bytes: int = DEFAULT_MAX_RESPONSE_BYTES,
    ) -> None:
        self.endpoint = endpoint
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.max_response_bytes = max_response_bytes

    @classmethod
    def from_settings(
        cls, settings: BridgeSettings, endpoint: Endpoint | None = None
    ) -> EvalClient:
        return cls(
            endpoint or settings.endpoint,
            connect_timeout=settings.connect_timeout,
            read_timeout=settings.read_timeout,
            max_response_bytes=settings.max_response_bytes,
        )

    def _transport_failure(self, message: str) -> EvalResult:
        logger.warning("[%s] %s", self.endpoint, message)
        return EvalResult.failed(message, "transport")

    async def evaluate(self, code: str) -> EvalResult:
        """Evaluate ``code`` and return its classified result."""
        request = EvalRequest(code=code)
        payload = encode_eval_request(request)

        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.endpoint.host, self.endpoint.port),
                timeout=self.connect_timeout,
            )
        except asyncio.TimeoutError:
            return self._transport_failure(
                f"Connect to {self.endpoint} timed out after {self.connect_timeout}s"
            )
        except OSError as e:
            return self._transport_failure(_describe(e))

        assembler = ResponseAssembler(max_bytes=self.max_response_bytes)
        try:
            logger.debug("[%s] Sending eval request (%d bytes)", self.endpoint, len(payload))
            writer.write(payload)
            await writer.drain()

            while not assembler.complete:
                chunk = await asyncio.wait_for(
                    reader.read(READ_CHUNK_SIZE), timeout=self.read_timeout
                )
                if not chunk:
                    return self._transport_failure(
                        f"Connection closed before response completed "
                        f"({assembler.size} bytes received)"
                    )
                assembler.feed(chunk)

            result = assembler.classify()
            logger.debug(
                "[%s] Eval finished: success=%s values=%d",
                self.endpoint,
                result.success,
                len(result.values),
            )
            return result

        except asyncio.TimeoutError:
            return self._transport_failure(
                f"No response data within {self.read_timeout}s"
            )
        except ResponseOverflowError as e:
            return self._transport_failure(str(e))
        except BencodeError as e:
            return self._transport_failure(f"Malformed response: {e}")
        except OSError as e:
            return self._transport_failure(_describe(e))
        finally:
            writer.close()
            with suppress(OSError):
                await writer.wait_closed()


async def evaluate(
    endpoint: Endpoint,
    code: str,
    *,
    connect_timeout: float = 5.0,
    read_timeout: float = 30.0,
    max_response_bytes: int = DEFAULT_MAX_RESPONSE_BYTES,
) -> EvalResult:
    """Evaluate ``code`` once against ``endpoint``."""
    client = EvalClient(
        endpoint,
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
        max_response_bytes=max_response_bytes,
    )
    return await client.evaluate(code)
