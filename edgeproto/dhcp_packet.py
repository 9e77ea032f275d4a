"""BOOTP/DHCP packet layout and the client settings carried in a reply."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from ipaddress import IPv4Address
from typing import Iterable, Optional, Tuple, Union

from edgeproto.dhcp_options import (
    END,
    PAD,
    CaptiveUrl,
    DhcpError,
    DhcpOption,
    DomainNameServer,
    ErrorKind,
    IpAddressLeaseTime,
    IPv4Like,
    MessageType,
    MessageTypeOption,
    Router,
    ServerIdentifier,
    SubnetMask,
    decode_options,
    encode_options,
)

COOKIE = bytes([99, 130, 83, 99])
BOOT_REQUEST = 1
BOOT_REPLY = 2
SERVER_NAME_AND_FILE_NAME = 64 + 128
MIN_PACKET_SIZE = 272

UNSPECIFIED = IPv4Address(0)

_HEADER = struct.Struct("!BBBBIHH4s4s4s4s16s")
_FIXED_SIZE = _HEADER.size + SERVER_NAME_AND_FILE_NAME + len(COOKIE)

MacLike = Union[bytes, bytearray, Iterable[int]]


def _to_ip(value: IPv4Like) -> IPv4Address:
    return value if isinstance(value, IPv4Address) else IPv4Address(value)


def _mac(value: MacLike) -> bytes:
    mac = bytes(value)
    if len(mac) != 6:
        raise ValueError("a MAC address is 6 bytes long")
    return mac


@dataclass(frozen=True)
class Packet:
    """A BOOTP request or reply with its DHCP options."""

    reply: bool
    hops: int
    xid: int
    secs: int
    broadcast: bool
    ciaddr: IPv4Address
    yiaddr: IPv4Address
    siaddr: IPv4Address
    giaddr: IPv4Address
    chaddr: bytes
    options: Tuple[DhcpOption, ...] = field(default=())

    def __post_init__(self) -> None:
        if not 0 <= self.hops <= 0xFF:
            raise ValueError("hops must fit in a byte")
        if not 0 <= self.xid <= 0xFFFFFFFF:
            raise ValueError("xid must fit in 32 bits")
        if not 0 <= self.secs <= 0xFFFF:
            raise ValueError("secs must fit in 16 bits")
        chaddr = bytes(self.chaddr)
        if len(chaddr) != 16:
            raise ValueError("chaddr is 16 bytes long")
        object.__setattr__(self, "chaddr", chaddr)
        for name in ("ciaddr", "yiaddr", "siaddr", "giaddr"):
            object.__setattr__(self, name, _to_ip(getattr(self, name)))
        object.__setattr__(self, "options", tuple(self.options))

    @classmethod
    def new_request(
        cls,
        mac: MacLike,
        xid: int,
        secs: int = 0,
        our_ip: Optional[IPv4Like] = None,
        broadcast: bool = False,
        options: Iterable[DhcpOption] = (),
    ) -> "Packet":
        """Build a client request from the given hardware address."""
        address = UNSPECIFIED if our_ip is None else _to_ip(our_ip)
        return cls(
            reply=False,
            hops=0,
            xid=xid,
            secs=secs,
            broadcast=broadcast,
            ciaddr=address,
            yiaddr=address,
            siaddr=UNSPECIFIED,
            giaddr=UNSPECIFIED,
            chaddr=_mac(mac) + bytes(10),
            options=tuple(options),
        )

    def new_reply(
        self, ip: Optional[IPv4Like], options: Iterable[DhcpOption] = ()
    ) -> "Packet":
        """Build a server reply to this request, offering ``ip`` if given."""
        ciaddr = UNSPECIFIED
        if ip is not None and any(
            isinstance(o, MessageTypeOption) and o.message_type == MessageType.REQUEST
            for o in self.options
        ):
            ciaddr = self.ciaddr

        return Packet(
            reply=True,
            hops=0,
            xid=self.xid,
            secs=0,
            broadcast=self.broadcast,
            ciaddr=ciaddr,
            yiaddr=UNSPECIFIED if ip is None else _to_ip(ip),
            siaddr=UNSPECIFIED,
            giaddr=self.giaddr,
            chaddr=self.chaddr,
            options=tuple(options),
        )

    def is_for_us(self, mac: MacLike, xid: int) -> bool:
        """Whether this is a reply to our hardware address and transaction."""
        return (
            self.chaddr[:6] == _mac(mac)
            and self.chaddr[6:] == bytes(10)
            and self.xid == xid
            and self.reply
        )

    @classmethod
    def decode(cls, data: bytes) -> "Packet":
        """Parse a packet from its wire form."""
        data = bytes(data)
        if len(data) < 3:
            raise DhcpError(ErrorKind.DATA_UNDERFLOW)
        if data[2] != 6:
            raise DhcpError(ErrorKind.INVALID_HLEN)
        if len(data) < _FIXED_SIZE:
            raise DhcpError(ErrorKind.DATA_UNDERFLOW)

        (
            op,
            _htype,
            _hlen,
            hops,
            xid,
            secs,
            flags,
            ciaddr,
            yiaddr,
            siaddr,
            giaddr,
            chaddr,
        ) = _HEADER.unpack_from(data)

        cookie_start = _HEADER.size + SERVER_NAME_AND_FILE_NAME
        if data[cookie_start : cookie_start + len(COOKIE)] != COOKIE:
            raise DhcpError(ErrorKind.MISSING_COOKIE)

        return cls(
            reply=op == BOOT_REPLY,
            hops=hops,
            xid=xid,
            secs=secs,
            broadcast=bool(flags & 128),
            ciaddr=IPv4Address(ciaddr),
            yiaddr=IPv4Address(yiaddr),
            siaddr=IPv4Address(siaddr),
            giaddr=IPv4Address(giaddr),
            chaddr=chaddr,
            options=decode_options(data[_FIXED_SIZE:]),
        )

    def encode(self) -> bytes:
        """Return the wire form, padded to the minimum BOOTP size."""
        header = _HEADER.pack(
            BOOT_REPLY if self.reply else BOOT_REQUEST,
            1,
            6,
            self.hops,
            self.xid,
            self.secs,
            128 if self.broadcast else 0,
            self.ciaddr.packed,
            self.yiaddr.packed,
            self.siaddr.packed,
            self.giaddr.packed,
            self.chaddr,
        )
        body = (
            header
            + bytes(SERVER_NAME_AND_FILE_NAME)
            + COOKIE
            + encode_options(self.options)
            + bytes([END])
        )
        if len(body) < MIN_PACKET_SIZE:
            body += bytes([PAD]) * (MIN_PACKET_SIZE - len(body))
        return body


@dataclass(frozen=True)
class Settings:
    """Network configuration a DHCP server handed out in a reply."""

    ip: IPv4Address
    server_ip: Optional[IPv4Address] = None
    lease_time_secs: Optional[int] = None
    gateway: Optional[IPv4Address] = None
    subnet: Optional[IPv4Address] = None
    dns1: Optional[IPv4Address] = None
    dns2: Optional[IPv4Address] = None
    captive_url: Optional[str] = None

    @classmethod
    def from_packet(cls, packet: Packet) -> "Settings":
        """Collect the settings from a reply packet's fields and options."""
        options = packet.options

        def first(kind, pick):
            return next(
                (
                    value
                    for value in (pick(o) for o in options if isinstance(o, kind))
                    if value is not None
                ),
                None,
            )

        def nth(n):
            return lambda o: o.addresses[n] if len(o.addresses) > n else None

        return cls(
            ip=packet.yiaddr,
            server_ip=first(ServerIdentifier, lambda o: o.ip),
            lease_time_secs=first(IpAddressLeaseTime, lambda o: o.seconds),
            gateway=first(Router, nth(0)),
            subnet=first(SubnetMask, lambda o: o.ip),
            dns1=first(DomainNameServer, nth(0)),
            dns2=first(DomainNameServer, nth(1)),
            captive_url=first(CaptiveUrl, lambda o: o.text),
        )