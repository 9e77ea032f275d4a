"""A small asyncio UDP socket with awaitable send and receive."""

from __future__ import annotations

import asyncio
from typing import Any, Optional, Tuple

Address = Tuple[Any, ...]


class _Closed:
    def __init__(self, exc: Optional[BaseException]) -> None:
        self.exc = exc


class _Protocol(asyncio.DatagramProtocol):
    def __init__(self) -> None:
        self.queue: asyncio.Queue = asyncio.Queue()

    def datagram_received(self, data: bytes, addr: Address) -> None:
        self.queue.put_nowait((data, addr))

    def error_received(self, exc: Exception) -> None:
        self.queue.put_nowait(exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self.queue.put_nowait(_Closed(exc))


class UdpSocket:
    """A bound UDP socket; create one with :meth:`bind`."""

    def __init__(self, transport: asyncio.DatagramTransport, protocol: _Protocol) -> None:
        self._transport = transport
        self._protocol = protocol

    @classmethod
    async def bind(cls, local_addr: Address, broadcast: bool = False) -> "UdpSocket":
        """Bind a socket to ``local_addr``, optionally allowed to send broadcasts."""
        loop = asyncio.get_running_loop()
        transport, protocol = await loop.create_datagram_endpoint(
            _Protocol, local_addr=local_addr, allow_broadcast=broadcast
        )
        return cls(transport, protocol)

    @property
    def local_address(self) -> Address:
        return self._transport.get_extra_info("sockname")

    async def send(self, remote: Address, data: bytes) -> None:
        """Send one datagram to ``remote``."""
        if self._transport.is_closing():
            raise OSError("socket is closed")
        self._transport.sendto(bytes(data), remote)

    async def receive(self) -> Tuple[bytes, Address]:
        """Wait for one datagram; returns its payload and sender."""
        item = await self._protocol.queue.get()
        if isinstance(item, _Closed):
            self._protocol.queue.put_nowait(item)
            raise OSError("socket is closed") from item.exc
        if isinstance(item, Exception):
            raise item
        return item

    def close(self) -> None:
        self._transport.close()

    async def __aenter__(self) -> "UdpSocket":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.close()