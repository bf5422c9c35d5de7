"""Polling for state that resolves later in the browser tab."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import suppress

from epupp_bridge.client import EvalClient
from epupp_bridge.errors import WaitTimeoutError
from epupp_bridge.forms import cell_probe
from epupp_bridge.models import Endpoint, EvalResult, PollConfig
from epupp_bridge.settings import BridgeSettings, get_settings

logger = logging.getLogger(__name__)

ClientFactory = Callable[[Endpoint], EvalClient]


class AsyncStatePoller:
    """Re-evaluates a probe expression until it stops printing a sentinel.

    A fresh ``EvalClient`` is created for every probe and probes never
    overlap. Failed probes count as "not resolved yet" so a tab that is still
    loading does not abort the wait; only the deadline ends it.
    """

    def __init__(
        self,
        endpoint: Endpoint | None = None,
        *,
        client_factory: ClientFactory | None = None,
        settings: BridgeSettings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.endpoint = endpoint or self.settings.endpoint
        self._client_factory = client_factory or self._default_client

    def _default_client(self, endpoint: Endpoint) -> EvalClient:
        return EvalClient.from_settings(self.settings, endpoint)

    async def _poll(
        self,
        probe: str,
        resolved: Callable[[str], bool],
        timeout_ms: int,
        interval_ms: int,
    ) -> str:
        loop = asyncio.get_running_loop()
        start = loop.time()
        timeout = timeout_ms / 1000
        attempts = 0

        while True:
            attempts += 1
            result: EvalResult = await self._client_factory(self.endpoint).evaluate(probe)
            value = result.first_value
            if result.success and value is not None and resolved(value):
                logger.debug("Probe %r resolved after %d attempts", probe, attempts)
                return value

            if loop.time() - start > timeout:
                logger.warning(
                    "Probe %r not resolved after %d attempts in %dms",
                    probe,
                    attempts,
                    timeout_ms,
                )
                raise WaitTimeoutError(probe, timeout_ms, result)

            await asyncio.sleep(interval_ms / 1000)

    async def wait_for(
        self,
        probe_expression: str,
        *,
        timeout_ms: int,
        interval_ms: int | None = None,
        pending_sentinel: str | None = None,
    ) -> str:
        """Return the probe's first value once it is not the pending sentinel.

        Raises:
            WaitTimeoutError: ``timeout_ms`` elapsed first.
        """
        sentinel = (
            self.settings.pending_sentinel if pending_sentinel is None else pending_sentinel
        )
        return await self._poll(
            probe_expression,
            lambda value: value != sentinel,
            timeout_ms,
            self.settings.poll_interval_ms if interval_ms is None else interval_ms,
        )

    async def wait_with(self, config: PollConfig) -> str:
        return await self.wait_for(
            config.probe_expression,
            timeout_ms=config.timeout_ms,
            interval_ms=config.interval_ms,
            pending_sentinel=config.pending_sentinel,
        )

    async def wait_until(
        self,
        probe_expression: str,
        expected: str = "true",
        *,
        timeout_ms: int,
        interval_ms: int | None = None,
    ) -> str:
        """Return once the probe's first value equals ``expected``."""
        return await self._poll(
            probe_expression,
            lambda value: value == expected,
            timeout_ms,
            self.settings.poll_interval_ms if interval_ms is None else interval_ms,
        )

    async def wait_for_cell(
        self,
        cell_name: str,
        *,
        timeout_ms: int,
        interval_ms: int | None = None,
    ) -> str:
        """Wait for an atom set up by ``forms.track_promise`` to settle."""
        return await self.wait_for(
            cell_probe(cell_name), timeout_ms=timeout_ms, interval_ms=interval_ms
        )


async def wait_for_port(
    endpoint: Endpoint, timeout_ms: int, interval_ms: int = 100
) -> bool:
    """Poll until ``endpoint`` accepts TCP connections.

    Returns False if it is still unreachable when ``timeout_ms`` elapses.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_ms / 1000
    while True:
        remaining = deadline - loop.time()
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(endpoint.host, endpoint.port),
                timeout=max(remaining, 0.05),
            )
        except (asyncio.TimeoutError, OSError):
            if loop.time() >= deadline:
                logger.info("%s still unreachable after %dms", endpoint, timeout_ms)
                return False
            await asyncio.sleep(interval_ms / 1000)
            continue

        writer.close()
        with suppress(OSError):
            await writer.wait_closed()
        return True
