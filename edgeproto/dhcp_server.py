"""A transport-agnostic DHCP server with a simple in-memory lease table."""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field
from ipaddress import IPv4Address
from typing import Callable, Dict, Optional, Sequence, Tuple

from edgeproto.dhcp_options import (
    IPv4Like,
    MessageType,
    MessageTypeOption,
    ParameterRequestList,
    RequestedIpAddress,
    ServerIdentifier,
    find_option,
    reply_options,
)
from edgeproto.dhcp_packet import UNSPECIFIED, Packet

log = logging.getLogger(__name__)

DEFAULT_SUBNET = IPv4Address("255.255.255.0")
DEFAULT_LEASE_DURATION_SECS = 7200
RANGE_START_OCTET = 50
RANGE_END_OCTET = 200


def _to_ip(value: IPv4Like) -> IPv4Address:
    return value if isinstance(value, IPv4Address) else IPv4Address(value)


@dataclass
class Lease:
    """An address handed to a client hardware address until ``expires``."""

    mac: bytes
    expires: float


class ActionKind(enum.Enum):
    """What a client request asks of the server."""

    DISCOVER = "discover"
    REQUEST = "request"
    RELEASE = "release"
    DECLINE = "decline"


@dataclass(frozen=True)
class Action:
    """A request classified by the server, with the address and hardware address it concerns."""

    kind: ActionKind
    ip: Optional[IPv4Address]
    mac: bytes


@dataclass
class ServerOptions:
    """Configuration a server hands out to its clients."""

    ip: IPv4Address
    gateways: Tuple[IPv4Address, ...] = ()
    subnet: Optional[IPv4Address] = DEFAULT_SUBNET
    dns: Tuple[IPv4Address, ...] = ()
    captive_url: Optional[str] = None
    lease_duration_secs: int = DEFAULT_LEASE_DURATION_SECS

    def __post_init__(self) -> None:
        self.ip = _to_ip(self.ip)
        self.gateways = tuple(_to_ip(g) for g in self.gateways)
        self.subnet = None if self.subnet is None else _to_ip(self.subnet)
        self.dns = tuple(_to_ip(d) for d in self.dns)

    def process(self, request: Packet) -> Optional[Action]:
        """Classify a client request, or return None if it is not for this server."""
        if request.reply:
            return None

        mt_option = find_option(request.options, MessageTypeOption)
        if mt_option is None:
            log.warning("Ignoring DHCP request, no message type found: %r", request)
            return None
        message_type = mt_option.message_type

        sid = find_option(request.options, ServerIdentifier)
        server_identifier = None if sid is None else sid.ip

        if server_identifier is not None and server_identifier != self.ip:
            log.warning(
                "Ignoring %s request, not addressed to this server: %r",
                message_type,
                request,
            )
            return None

        log.debug("Received %s request: %r", message_type, request)

        requested = find_option(request.options, RequestedIpAddress)
        requested_ip = None if requested is None else requested.ip

        if message_type == MessageType.DISCOVER:
            return Action(ActionKind.DISCOVER, requested_ip, request.chaddr)

        if message_type == MessageType.REQUEST:
            if requested_ip is None:
                if request.ciaddr == UNSPECIFIED:
                    return None
                requested_ip = request.ciaddr
            return Action(ActionKind.REQUEST, requested_ip, request.chaddr)

        if server_identifier == self.ip:
            if message_type == MessageType.RELEASE:
                return Action(ActionKind.RELEASE, request.yiaddr, request.chaddr)
            if message_type == MessageType.DECLINE:
                return Action(ActionKind.DECLINE, request.yiaddr, request.chaddr)

        return None

    def offer(self, request: Packet, yiaddr: IPv4Like) -> Packet:
        """Build a DHCPOFFER of ``yiaddr`` in reply to ``request``."""
        return self._reply(request, MessageType.OFFER, _to_ip(yiaddr))

    def ack_nak(self, request: Packet, ip: Optional[IPv4Like]) -> Packet:
        """Build a DHCPACK of ``ip``, or a DHCPNAK if ``ip`` is None."""
        if ip is None:
            return self._reply(request, MessageType.NAK, None)
        return self._reply(request, MessageType.ACK, _to_ip(ip))

    def _reply(
        self, request: Packet, message_type: MessageType, ip: Optional[IPv4Address]
    ) -> Packet:
        prl = find_option(request.options, ParameterRequestList)
        options = reply_options(
            None if prl is None else prl.codes,
            message_type,
            self.ip,
            self.lease_duration_secs,
            self.gateways,
            self.subnet,
            self.dns,
            self.captive_url,
        )
        reply = request.new_reply(ip, options)
        log.debug("Sending %s reply: %r", message_type, reply)
        return reply


class Server:
    """Hands out addresses from a range and remembers which client holds which.

    The range defaults to .50 - .200 of the server's /24. ``capacity`` caps the
    number of leases held at once; ``clock`` returns the current time in seconds.
    """

    def __init__(
        self,
        ip: IPv4Like,
        capacity: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        prefix = _to_ip(ip).packed[:3]
        self.range_start = IPv4Address(prefix + bytes([RANGE_START_OCTET]))
        self.range_end = IPv4Address(prefix + bytes([RANGE_END_OCTET]))
        self.leases: Dict[IPv4Address, Lease] = {}
        self.capacity = capacity
        self._clock = clock

    def __repr__(self) -> str:
        return (
            f"Server(range_start={self.range_start}, range_end={self.range_end}, "
            f"leases={self.leases!r})"
        )

    def handle_request(
        self, server_options: ServerOptions, request: Packet
    ) -> Optional[Packet]:
        """Process a client request, updating the leases; returns the reply, if any."""
        action = server_options.process(request)
        if action is None:
            return None

        if action.kind == ActionKind.DISCOVER:
            ip = None
            if action.ip is not None and self._is_available(action.mac, action.ip):
                ip = action.ip
            if ip is None:
                ip = self._current_lease(action.mac)
            if ip is None:
                ip = self._available()
            return None if ip is None else server_options.offer(request, ip)

        if action.kind == ActionKind.REQUEST:
            assert action.ip is not None
            granted = self._is_available(action.mac, action.ip) and self._add_lease(
                action.ip,
                request.chaddr,
                self._clock() + server_options.lease_duration_secs,
            )
            return server_options.ack_nak(request, action.ip if granted else None)

        self._remove_lease(action.mac)
        return None

    def _in_range(self, addr: IPv4Address) -> bool:
        return int(self.range_start) <= int(addr) <= int(self.range_end)

    def _is_available(self, mac: bytes, addr: IPv4Address) -> bool:
        if not self._in_range(addr):
            return False
        lease = self.leases.get(addr)
        return lease is None or lease.mac == mac or self._clock() > lease.expires

    def _available(self) -> Optional[IPv4Address]:
        for pos in range(int(self.range_start), int(self.range_end) + 1):
            addr = IPv4Address(pos)
            if addr not in self.leases:
                return addr

        now = self._clock()
        expired = next(
            (addr for addr, lease in self.leases.items() if now > lease.expires), None
        )
        if expired is not None:
            del self.leases[expired]
        return expired

    def _current_lease(self, mac: bytes) -> Optional[IPv4Address]:
        return next(
            (addr for addr, lease in self.leases.items() if lease.mac == mac), None
        )

    def _add_lease(self, addr: IPv4Address, mac: bytes, expires: float) -> bool:
        self._remove_lease(mac)
        if (
            addr not in self.leases
            and self.capacity is not None
            and len(self.leases) >= self.capacity
        ):
            return False
        self.leases[addr] = Lease(mac, expires)
        return True

    def _remove_lease(self, mac: bytes) -> bool:
        addr = self._current_lease(mac)
        if addr is None:
            return False
        del self.leases[addr]
        return True