"""Unit tests for AsyncStatePoller with scripted clients."""

import asyncio
import time

import pytest

from epupp_bridge import poller as poller_module
from epupp_bridge.errors import WaitTimeoutError
from epupp_bridge.models import Endpoint, EvalResult, PollConfig
from epupp_bridge.poller import AsyncStatePoller
from epupp_bridge.settings import BridgeSettings

ENDPOINT = Endpoint(host="127.0.0.1", port=12345)


class ScriptedClient:
    """Stands in for EvalClient, replaying results in order."""

    def __init__(self, script, calls, latency=0.0):
        self.script = script
        self.calls = calls
        self.latency = latency

    async def evaluate(self, code):
        self.calls.append(code)
        if self.latency:
            await asyncio.sleep(self.latency)
        index = min(len(self.calls), len(self.script)) - 1
        return self.script[index]


def _poller(script, calls, latency=0.0):
    clients = []

    def factory(endpoint):
        assert endpoint == ENDPOINT
        client = ScriptedClient(script, calls, latency)
        clients.append(client)
        return client

    p = AsyncStatePoller(ENDPOINT, client_factory=factory, settings=BridgeSettings())
    return p, clients


@pytest.fixture
def recorded_sleeps(monkeypatch):
    """Replace the poll delay with a recorder that returns immediately."""
    sleeps = []
    real_sleep = asyncio.sleep

    async def fake_sleep(delay):
        sleeps.append(delay)
        await real_sleep(0)

    monkeypatch.setattr(poller_module.asyncio, "sleep", fake_sleep)
    return sleeps


@pytest.mark.asyncio
async def test_resolves_after_two_pending(recorded_sleeps):
    calls = []
    script = [EvalResult.ok([":pending"]), EvalResult.ok([":pending"]), EvalResult.ok(["42"])]
    p, clients = _poller(script, calls)

    value = await p.wait_for("(pr-str @!x)", timeout_ms=5000, interval_ms=20)

    assert value == "42"
    assert calls == ["(pr-str @!x)"] * 3
    assert recorded_sleeps == [0.02, 0.02]
    # A fresh client per probe
    assert len({id(c) for c in clients}) == 3


@pytest.mark.asyncio
async def test_resolves_immediately(recorded_sleeps):
    calls = []
    p, _ = _poller([EvalResult.ok(['{:success true}'])], calls)
    assert await p.wait_for("probe", timeout_ms=1000) == '{:success true}'
    assert recorded_sleeps == []


@pytest.mark.asyncio
async def test_failures_are_retried(recorded_sleeps):
    """Transport and evaluation failures count as not resolved yet."""
    calls = []
    script = [
        EvalResult.failed("Connection refused", "transport"),
        EvalResult.failed("Could not resolve symbol: !x", "evaluation"),
        EvalResult.ok(["done"]),
    ]
    p, _ = _poller(script, calls)
    assert await p.wait_for("probe", timeout_ms=5000) == "done"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_empty_values_are_pending(recorded_sleeps):
    calls = []
    p, _ = _poller([EvalResult.ok([]), EvalResult.ok(["nil"])], calls)
    assert await p.wait_for("probe", timeout_ms=5000) == "nil"


@pytest.mark.asyncio
async def test_sentinel_substring_is_resolved(recorded_sleeps):
    """Only an exact sentinel match means pending."""
    calls = []
    p, _ = _poller([EvalResult.ok(["{:status :pending-review}"])], calls)
    assert await p.wait_for("probe", timeout_ms=1000) == "{:status :pending-review}"


@pytest.mark.asyncio
async def test_custom_sentinel(recorded_sleeps):
    calls = []
    script = [EvalResult.ok(["nil"]), EvalResult.ok([":pending"])]
    p, _ = _poller(script, calls)
    value = await p.wait_for("probe", timeout_ms=1000, pending_sentinel="nil")
    assert value == ":pending"


@pytest.mark.asyncio
async def test_wait_with_config(recorded_sleeps):
    calls = []
    p, _ = _poller([EvalResult.ok([":waiting"]), EvalResult.ok(["7"])], calls)
    config = PollConfig(
        probe_expression="(pr-str @!n)",
        timeout_ms=1000,
        interval_ms=5,
        pending_sentinel=":waiting",
    )
    assert await p.wait_with(config) == "7"
    assert recorded_sleeps == [0.005]


@pytest.mark.asyncio
async def test_wait_until_exact_match(recorded_sleeps):
    calls = []
    script = [EvalResult.ok(["false"]), EvalResult.ok(["trueish"]), EvalResult.ok(["true"])]
    p, _ = _poller(script, calls)
    assert await p.wait_until("(pos? n)", timeout_ms=1000) == "true"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_wait_for_cell(recorded_sleeps):
    calls = []
    p, _ = _poller([EvalResult.ok([":pending"]), EvalResult.ok(['"saved"'])], calls)
    assert await p.wait_for_cell("!save-result", timeout_ms=1000) == '"saved"'
    assert calls[0] == "(pr-str @!save-result)"


@pytest.mark.asyncio
async def test_timeout_names_probe():
    calls = []
    p, _ = _poller([EvalResult.ok([":pending"])], calls)
    with pytest.raises(WaitTimeoutError) as exc_info:
        await p.wait_for("(pr-str @!never)", timeout_ms=60, interval_ms=10)
    err = exc_info.value
    assert "(pr-str @!never)" in str(err)
    assert err.probe == "(pr-str @!never)"
    assert err.timeout_ms == 60
    assert err.last_result == EvalResult.ok([":pending"])
    assert isinstance(err, TimeoutError)


@pytest.mark.asyncio
async def test_timeout_reports_last_error():
    calls = []
    p, _ = _poller([EvalResult.failed("Connection refused", "transport")], calls)
    with pytest.raises(WaitTimeoutError, match="Connection refused"):
        await p.wait_for("probe", timeout_ms=30, interval_ms=5)


@pytest.mark.asyncio
async def test_timeout_bounds():
    """Never earlier than the budget, at most one interval plus one call later."""
    calls = []
    latency = 0.01
    p, _ = _poller([EvalResult.ok([":pending"])], calls, latency=latency)
    start = time.monotonic()
    with pytest.raises(WaitTimeoutError):
        await p.wait_for("probe", timeout_ms=200, interval_ms=20)
    elapsed = time.monotonic() - start
    assert elapsed >= 0.2
    # Generous scheduling slack on top of interval + call latency
    assert elapsed < 0.2 + 0.02 + latency + 0.25
