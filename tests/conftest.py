from __future__ import annotations

import asyncio
import socket
from collections.abc import Callable
from typing import Any

import pytest
import pytest_asyncio

from epupp_bridge.bencode import decode_messages, encode
from epupp_bridge.models import Endpoint

Responder = Callable[[dict[str, Any]], list[bytes]]


def done_reply(*messages: dict[str, Any], chunk_size: int | None = None) -> list[bytes]:
    """Encode ``messages`` followed by a done status, optionally chunked."""
    data = b"".join(encode(m) for m in messages) + encode({"status": ["done"]})
    return split(data, chunk_size)


def split(data: bytes, chunk_size: int | None) -> list[bytes]:
    if not chunk_size:
        return [data]
    return [data[i : i + chunk_size] for i in range(0, len(data), chunk_size)]


class FakeNrepl:
    """Minimal nREPL relay stand-in listening on localhost.

    Reads one bencoded request per connection, records it, then writes the
    chunks returned by ``responder``. With ``hang`` set the connection stays
    open afterwards until teardown.
    """

    def __init__(self) -> None:
        self.requests: list[dict[str, Any]] = []
        self.raw_requests: list[bytes] = []
        self.responder: Responder = lambda _request: done_reply()
        self.chunk_delay = 0.0
        self.hang = False
        self.server: asyncio.AbstractServer | None = None
        self._release = asyncio.Event()

    @property
    def endpoint(self) -> Endpoint:
        assert self.server is not None
        port = self.server.sockets[0].getsockname()[1]
        return Endpoint(host="127.0.0.1", port=port)

    def reply(self, *messages: dict[str, Any], chunk_size: int | None = None) -> None:
        chunks = done_reply(*messages, chunk_size=chunk_size)
        self.responder = lambda _request: chunks

    def reply_raw(self, data: bytes, chunk_size: int | None = None) -> None:
        chunks = split(data, chunk_size)
        self.responder = lambda _request: chunks

    async def start(self) -> None:
        self.server = await asyncio.start_server(self._handle, "127.0.0.1", 0)

    async def stop(self) -> None:
        self._release.set()
        if self.server is not None:
            self.server.close()
            await self.server.wait_closed()

    async def _handle(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        buf = b""
        try:
            while True:
                data = await reader.read(4096)
                if not data:
                    return
                buf += data
                messages, _ = decode_messages(buf)
                if messages:
                    break
            self.requests.append(messages[0])
            self.raw_requests.append(buf)

            for chunk in self.responder(messages[0]):
                writer.write(chunk)
                await writer.drain()
                if self.chunk_delay:
                    await asyncio.sleep(self.chunk_delay)

            if self.hang:
                await self._release.wait()
        except ConnectionError:
            pass
        finally:
            writer.close()


@pytest_asyncio.fixture
async def fake_nrepl():
    server = FakeNrepl()
    await server.start()
    try:
        yield server
    finally:
        await server.stop()


@pytest.fixture
def closed_endpoint() -> Endpoint:
    """An endpoint nothing is listening on."""
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        port = s.getsockname()[1]
    return Endpoint(host="127.0.0.1", port=port)
