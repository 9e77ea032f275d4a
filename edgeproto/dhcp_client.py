"""A transport-agnostic DHCP client that builds requests and checks replies."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence, Tuple

from edgeproto.dhcp_options import (
    DhcpOption,
    IPv4Like,
    MessageType,
    MessageTypeOption,
    decline_options,
    discover_options,
    find_option,
    release_options,
    request_options,
)
from edgeproto.dhcp_packet import Packet


@dataclass
class Client:
    """Builds BOOTP requests for one hardware address and recognises replies to it.

    ``rng`` is any object with a ``getrandbits`` method, such as ``random.Random``.
    """

    mac: bytes
    rng: random.Random = field(default_factory=random.SystemRandom)

    def __post_init__(self) -> None:
        self.mac = bytes(self.mac)
        if len(self.mac) != 6:
            raise ValueError("a MAC address is 6 bytes long")

    def discover(
        self, secs: int = 0, ip: Optional[IPv4Like] = None
    ) -> Tuple[Packet, int]:
        """Build a broadcast DHCPDISCOVER; returns the packet and its xid."""
        return self.bootp_request(secs, None, True, discover_options(ip))

    def request(
        self, secs: int, ip: IPv4Like, broadcast: bool
    ) -> Tuple[Packet, int]:
        """Build a DHCPREQUEST for ``ip``; returns the packet and its xid."""
        return self.bootp_request(secs, None, broadcast, request_options(ip))

    def release(self, secs: int, ip: IPv4Like) -> Packet:
        """Build a DHCPRELEASE for the address we hold."""
        return self.bootp_request(secs, ip, False, release_options())[0]

    def decline(self, secs: int, ip: IPv4Like) -> Packet:
        """Build a DHCPDECLINE for the offered address."""
        return self.bootp_request(secs, ip, False, decline_options())[0]

    def is_offer(self, reply: Packet, xid: int) -> bool:
        return self.is_bootp_reply_for_us(reply, xid, (MessageType.OFFER,))

    def is_ack(self, reply: Packet, xid: int) -> bool:
        return self.is_bootp_reply_for_us(reply, xid, (MessageType.ACK,))

    def is_nak(self, reply: Packet, xid: int) -> bool:
        return self.is_bootp_reply_for_us(reply, xid, (MessageType.NAK,))

    def bootp_request(
        self,
        secs: int,
        ip: Optional[IPv4Like],
        broadcast: bool,
        options: Iterable[DhcpOption],
    ) -> Tuple[Packet, int]:
        """Build a request with a fresh random transaction id."""
        xid = self.rng.getrandbits(32)
        return Packet.new_request(self.mac, xid, secs, ip, broadcast, options), xid

    def is_bootp_reply_for_us(
        self,
        reply: Packet,
        xid: int,
        expected_message_types: Optional[Sequence[MessageType]] = None,
    ) -> bool:
        """Whether ``reply`` answers our transaction, optionally with one of the given types."""
        if not (reply.reply and reply.is_for_us(self.mac, xid)):
            return False
        if expected_message_types is None:
            return True
        option = find_option(reply.options, MessageTypeOption)
        if option is None:
            return False
        return option.message_type in expected_message_types