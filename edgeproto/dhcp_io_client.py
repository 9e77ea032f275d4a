"""Acquiring, renewing and releasing a DHCP lease over a datagram socket."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from ipaddress import IPv4Address
from typing import Optional, Tuple

from edgeproto.dhcp_client import Client
from edgeproto.dhcp_io import (
    BROADCAST,
    DEFAULT_SERVER_PORT,
    Address,
    DatagramSocket,
    DhcpIoError,
)
from edgeproto.dhcp_options import DhcpError
from edgeproto.dhcp_packet import Packet, Settings

log = logging.getLogger(__name__)

TIMEOUT = 3.0
REQUEST_RETRIES = 3
RENEW_CHECK_INTERVAL = 60.0
DEFAULT_LEASE_SECS = 7200


@dataclass(frozen=True)
class NetworkInfo:
    """Network settings a DHCP server sent along with a lease."""

    gateway: Optional[IPv4Address] = None
    subnet: Optional[IPv4Address] = None
    dns1: Optional[IPv4Address] = None
    dns2: Optional[IPv4Address] = None
    captive_url: Optional[str] = None


async def _send(socket: DatagramSocket, remote: Address, packet: Packet) -> None:
    try:
        data = packet.encode()
    except DhcpError as exc:
        raise DhcpIoError(exc) from exc
    try:
        await socket.send(remote, data)
    except OSError as exc:
        raise DhcpIoError(exc) from exc


async def _receive_reply(socket: DatagramSocket, timeout: float) -> Optional[Packet]:
    """Wait for one packet; None if nothing arrived in time."""
    try:
        data, _remote = await asyncio.wait_for(socket.receive(), timeout)
    except asyncio.TimeoutError:
        return None
    except OSError as exc:
        raise DhcpIoError(exc) from exc
    try:
        return Packet.decode(data)
    except DhcpError as exc:
        raise DhcpIoError(exc) from exc


@dataclass
class DhcpLease:
    """An address leased from a DHCP server.

    ``duration`` is in seconds; ``acquired`` is a ``time.monotonic`` timestamp.
    The socket used must be able to send and receive broadcasts.
    """

    ip: IPv4Address
    server_ip: IPv4Address
    duration: float
    acquired: float

    @classmethod
    async def acquire(
        cls, client: Client, socket: DatagramSocket
    ) -> Tuple["DhcpLease", NetworkInfo]:
        """Discover a server and request an address from it until one is leased."""
        while True:
            offer = await cls._discover(client, socket, TIMEOUT)
            server_ip = offer.server_ip
            assert server_ip is not None
            now = time.monotonic()

            settings = await cls._request(
                client, socket, server_ip, offer.ip, True, TIMEOUT, REQUEST_RETRIES
            )
            if settings is None:
                continue

            lease = cls(
                ip=settings.ip,
                server_ip=settings.server_ip or server_ip,
                duration=float(
                    settings.lease_time_secs
                    if settings.lease_time_secs is not None
                    else DEFAULT_LEASE_SECS
                ),
                acquired=now,
            )
            info = NetworkInfo(
                gateway=settings.gateway,
                subnet=settings.subnet,
                dns1=settings.dns1,
                dns2=settings.dns2,
                captive_url=settings.captive_url,
            )
            return lease, info

    async def keep(self, client: Client, socket: DatagramSocket) -> None:
        """Renew the lease whenever a third of it has passed; returns once renewal fails."""
        while True:
            if time.monotonic() - self.acquired >= self.duration / 3:
                if not await self.renew(client, socket):
                    return
            else:
                await asyncio.sleep(RENEW_CHECK_INTERVAL)

    async def renew(self, client: Client, socket: DatagramSocket) -> bool:
        """Ask the server to extend the lease; returns whether it did."""
        log.info("Renewing DHCP lease...")
        now = time.monotonic()
        settings = await self._request(
            client, socket, self.server_ip, self.ip, False, TIMEOUT, REQUEST_RETRIES
        )
        if settings is None:
            return False
        if settings.lease_time_secs is not None:
            self.duration = float(settings.lease_time_secs)
        self.acquired = now
        return True

    async def release(self, client: Client, socket: DatagramSocket) -> None:
        """Tell the server the address is no longer in use."""
        request = client.release(0, self.ip)
        await _send(socket, (str(self.server_ip), DEFAULT_SERVER_PORT), request)

    @staticmethod
    async def _discover(
        client: Client, socket: DatagramSocket, timeout: float
    ) -> Settings:
        log.info("Discovering DHCP servers...")
        start = time.monotonic()

        while True:
            secs = min(int(time.monotonic() - start), 0xFFFF)
            request, xid = client.discover(secs, None)
            await _send(socket, (BROADCAST, DEFAULT_SERVER_PORT), request)

            reply = await _receive_reply(socket, timeout)
            if reply is not None and client.is_offer(reply, xid):
                settings = Settings.from_packet(reply)
                if settings.server_ip is not None:
                    log.info(
                        "IP %s offered by DHCP server %s",
                        settings.ip,
                        settings.server_ip,
                    )
                    return settings

            log.info("No DHCP offers received, retrying...")

    @staticmethod
    async def _request(
        client: Client,
        socket: DatagramSocket,
        server_ip: IPv4Address,
        ip: IPv4Address,
        broadcast: bool,
        timeout: float,
        retries: int,
    ) -> Optional[Settings]:
        destination = (BROADCAST if broadcast else str(server_ip), DEFAULT_SERVER_PORT)

        for _ in range(retries):
            log.info("Requesting IP %s from DHCP server %s", ip, server_ip)
            request, xid = client.request(0, ip, broadcast)
            await _send(socket, destination, request)

            reply = await _receive_reply(socket, timeout)
            if reply is None:
                continue
            if client.is_ack(reply, xid):
                log.info("IP %s leased successfully", ip)
                return Settings.from_packet(reply)
            if client.is_nak(reply, xid):
                log.info("IP %s not acknowledged", ip)
                return None

        log.warning("IP request was not replied")
        return None