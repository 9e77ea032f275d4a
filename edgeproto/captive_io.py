"""Serving captive-portal DNS replies over UDP."""

from __future__ import annotations

import logging
from typing import Any, Protocol, Tuple, Union

from edgeproto.captive import DnsError, DnsErrorKind, IPv4Like, TtlLike, reply
from edgeproto.udp import UdpSocket

log = logging.getLogger(__name__)

PORT = 53
DEFAULT_SOCKET = ("::", PORT)
BUFFER_SIZE = 1500

Address = Tuple[Any, ...]


class DatagramSocket(Protocol):
    async def send(self, remote: Address, data: bytes) -> None: ...

    async def receive(self) -> Tuple[bytes, Address]: ...


class DnsIoError(Exception):
    """A socket failure or a DNS reply that could not be built."""

    def __init__(self, error: Union[DnsError, OSError]) -> None:
        super().__init__(error)
        self.error = error

    @property
    def is_dns(self) -> bool:
        return isinstance(self.error, DnsError)

    def __str__(self) -> str:
        if self.is_dns:
            return f"DNS error: {self.error}"
        return f"IO error: {self.error}"


async def serve(socket: DatagramSocket, ip: IPv4Like, ttl: TtlLike) -> None:
    """Answer DNS requests on ``socket`` until it fails; malformed requests are skipped."""
    while True:
        log.debug("Waiting for data")
        try:
            request, remote = await socket.receive()
        except OSError as exc:
            raise DnsIoError(exc) from exc

        log.debug("Received %d bytes from %s", len(request), remote)

        try:
            response = reply(request, ip, ttl, BUFFER_SIZE)
        except DnsError as exc:
            if exc.kind is DnsErrorKind.INVALID_MESSAGE:
                log.warning("Got invalid message from %s, skipping", remote)
                continue
            raise DnsIoError(exc) from exc

        try:
            await socket.send(remote, response)
        except OSError as exc:
            raise DnsIoError(exc) from exc

        log.debug("Sent %d bytes to %s", len(response), remote)


async def run(local_addr: Address, ip: IPv4Like, ttl: TtlLike) -> None:
    """Bind a UDP socket to ``local_addr`` and serve DNS replies on it."""
    try:
        socket = await UdpSocket.bind(local_addr)
    except OSError as exc:
        raise DnsIoError(exc) from exc
    async with socket:
        await serve(socket, ip, ttl)