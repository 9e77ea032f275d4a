"""Running a DHCP server over a datagram socket."""

from __future__ import annotations

import logging
from ipaddress import IPv4Address, ip_address
from typing import Any, Protocol, Tuple

from edgeproto.dhcp_options import DhcpError
from edgeproto.dhcp_packet import Packet
from edgeproto.dhcp_server import Server, ServerOptions

log = logging.getLogger(__name__)

DEFAULT_SERVER_PORT = 67
DEFAULT_CLIENT_PORT = 68
BROADCAST = "255.255.255.255"

Address = Tuple[Any, ...]


class DatagramSocket(Protocol):
    async def send(self, remote: Address, data: bytes) -> None: ...

    async def receive(self) -> Tuple[bytes, Address]: ...


class DhcpIoError(Exception):
    """A socket failure or a packet that could not be encoded or decoded."""

    def __init__(self, error: Exception) -> None:
        super().__init__(error)
        self.error = error

    @property
    def is_format(self) -> bool:
        return isinstance(self.error, DhcpError)

    def __str__(self) -> str:
        if self.is_format:
            return f"Format error: {self.error}"
        return f"IO error: {self.error}"


async def _receive(socket: DatagramSocket) -> Tuple[bytes, Address]:
    try:
        return await socket.receive()
    except OSError as exc:
        raise DhcpIoError(exc) from exc


async def _send(socket: DatagramSocket, remote: Address, data: bytes) -> None:
    try:
        await socket.send(remote, data)
    except OSError as exc:
        raise DhcpIoError(exc) from exc


def _encode(packet: Packet) -> bytes:
    try:
        return packet.encode()
    except DhcpError as exc:
        raise DhcpIoError(exc) from exc


def _destination(remote: Address, broadcast: bool) -> Address:
    try:
        host = ip_address(remote[0])
    except ValueError:
        return remote
    if isinstance(host, IPv4Address) and (broadcast or host == IPv4Address(0)):
        return (BROADCAST, remote[1])
    return remote


async def run_server(
    server: Server, server_options: ServerOptions, socket: DatagramSocket
) -> None:
    """Answer DHCP requests arriving on ``socket`` until it fails.

    Undecodable packets are skipped. The socket must be able to send broadcasts.
    Cancelling leaves the server's leases intact.
    """
    log.info(
        "Running DHCP server for addresses %s-%s with configuration %r",
        server.range_start,
        server.range_end,
        server_options,
    )

    while True:
        data, remote = await _receive(socket)

        try:
            request = Packet.decode(data)
        except DhcpError as exc:
            log.warning("Decoding packet returned error: %s", exc)
            continue

        reply = server.handle_request(server_options, request)
        if reply is None:
            continue

        await _send(socket, _destination(remote, request.broadcast), _encode(reply))