"""DHCP option model together with its wire encoding and decoding."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass, field
from ipaddress import IPv4Address
from typing import ClassVar, Iterable, Optional, Sequence, Tuple, Type, TypeVar, Union

IPv4Like = Union[IPv4Address, str, int, bytes]

END = 255
PAD = 0

SUBNET_MASK = 1
ROUTER = 3
DOMAIN_NAME_SERVER = 6
HOST_NAME = 12
REQUESTED_IP_ADDRESS = 50
IP_ADDRESS_LEASE_TIME = 51
DHCP_MESSAGE_TYPE = 53
SERVER_IDENTIFIER = 54
PARAMETER_REQUEST_LIST = 55
MESSAGE = 56
MAXIMUM_DHCP_MESSAGE_SIZE = 57
CLIENT_IDENTIFIER = 61
CAPTIVE_URL = 114

CODE_ROUTER = ROUTER
CODE_DNS = DOMAIN_NAME_SERVER
CODE_SUBNET = SUBNET_MASK
CODE_CAPTIVE_URL = CAPTIVE_URL

REQUEST_PARAMS = bytes([CODE_ROUTER, CODE_SUBNET, CODE_DNS])

DEFAULT_MAX_OPTIONS = 8


class ErrorKind(enum.Enum):
    """Reasons a DHCP packet cannot be encoded or decoded."""

    DATA_UNDERFLOW = "Data underflow"
    BUFFER_OVERFLOW = "Buffer overflow"
    INVALID_PACKET = "Invalid packet"
    INVALID_UTF8 = "Invalid Utf8 string"
    INVALID_MESSAGE_TYPE = "Invalid message type"
    MISSING_COOKIE = "Missing cookie"
    INVALID_HLEN = "Invalid hlen"


class DhcpError(Exception):
    """Raised when DHCP data is malformed or does not fit."""

    def __init__(self, kind: ErrorKind) -> None:
        super().__init__(kind.value)
        self.kind = kind

    def __str__(self) -> str:
        return self.kind.value


class MessageType(enum.IntEnum):
    """DHCP message types (RFC 2132, section 9.6)."""

    DISCOVER = 1
    OFFER = 2
    REQUEST = 3
    DECLINE = 4
    ACK = 5
    NAK = 6
    RELEASE = 7
    INFORM = 8

    def __str__(self) -> str:
        return f"DHCP{self.name}"


def _ip(value: IPv4Like) -> IPv4Address:
    return value if isinstance(value, IPv4Address) else IPv4Address(value)


def _exact(payload: bytes, size: int) -> bytes:
    if len(payload) < size:
        raise DhcpError(ErrorKind.DATA_UNDERFLOW)
    if len(payload) > size:
        raise DhcpError(ErrorKind.INVALID_PACKET)
    return payload


def _text(payload: bytes) -> str:
    try:
        return payload.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DhcpError(ErrorKind.INVALID_UTF8) from exc


def _addresses(payload: bytes) -> Tuple[IPv4Address, ...]:
    if len(payload) % 4:
        raise DhcpError(ErrorKind.INVALID_PACKET)
    return tuple(IPv4Address(payload[i : i + 4]) for i in range(0, len(payload), 4))


class DhcpOption:
    """Base of all DHCP options; subclasses define ``CODE`` and their payload."""

    CODE: ClassVar[int]

    @property
    def code(self) -> int:
        return self.CODE

    def data(self) -> bytes:
        """Return the option payload without code and length."""
        raise NotImplementedError

    def encode(self) -> bytes:
        """Return the option as code, length and payload bytes."""
        payload = self.data()
        if len(payload) > 255:
            raise DhcpError(ErrorKind.BUFFER_OVERFLOW)
        return bytes([self.code, len(payload)]) + payload

    @classmethod
    def _parse(cls, payload: bytes) -> "DhcpOption":
        raise NotImplementedError


@dataclass(frozen=True)
class MessageTypeOption(DhcpOption):
    CODE: ClassVar[int] = DHCP_MESSAGE_TYPE
    message_type: MessageType

    def __post_init__(self) -> None:
        object.__setattr__(self, "message_type", MessageType(self.message_type))

    def data(self) -> bytes:
        return bytes([self.message_type])

    @classmethod
    def _parse(cls, payload: bytes) -> "MessageTypeOption":
        value = _exact(payload, 1)[0]
        try:
            return cls(MessageType(value))
        except ValueError as exc:
            raise DhcpError(ErrorKind.INVALID_MESSAGE_TYPE) from exc


@dataclass(frozen=True)
class _AddressOption(DhcpOption):
    ip: IPv4Address

    def __post_init__(self) -> None:
        object.__setattr__(self, "ip", _ip(self.ip))

    def data(self) -> bytes:
        return self.ip.packed

    @classmethod
    def _parse(cls, payload: bytes) -> "_AddressOption":
        return cls(IPv4Address(_exact(payload, 4)))


@dataclass(frozen=True)
class ServerIdentifier(_AddressOption):
    CODE: ClassVar[int] = SERVER_IDENTIFIER


@dataclass(frozen=True)
class RequestedIpAddress(_AddressOption):
    CODE: ClassVar[int] = REQUESTED_IP_ADDRESS


@dataclass(frozen=True)
class SubnetMask(_AddressOption):
    CODE: ClassVar[int] = SUBNET_MASK


@dataclass(frozen=True)
class ParameterRequestList(DhcpOption):
    CODE: ClassVar[int] = PARAMETER_REQUEST_LIST
    codes: bytes

    def __post_init__(self) -> None:
        object.__setattr__(self, "codes", bytes(self.codes))

    def data(self) -> bytes:
        return self.codes

    @classmethod
    def _parse(cls, payload: bytes) -> "ParameterRequestList":
        return cls(payload)


@dataclass(frozen=True)
class _TextOption(DhcpOption):
    text: str

    def data(self) -> bytes:
        return self.text.encode("utf-8")

    @classmethod
    def _parse(cls, payload: bytes) -> "_TextOption":
        return cls(_text(payload))


@dataclass(frozen=True)
class HostName(_TextOption):
    CODE: ClassVar[int] = HOST_NAME


@dataclass(frozen=True)
class Message(_TextOption):
    CODE: ClassVar[int] = MESSAGE


@dataclass(frozen=True)
class CaptiveUrl(_TextOption):
    CODE: ClassVar[int] = CAPTIVE_URL


@dataclass(frozen=True)
class _AddressListOption(DhcpOption):
    addresses: Tuple[IPv4Address, ...] = field(default=())

    def __post_init__(self) -> None:
        object.__setattr__(self, "addresses", tuple(_ip(a) for a in self.addresses))

    def data(self) -> bytes:
        return b"".join(a.packed for a in self.addresses)

    @classmethod
    def _parse(cls, payload: bytes) -> "_AddressListOption":
        return cls(_addresses(payload))


@dataclass(frozen=True)
class Router(_AddressListOption):
    CODE: ClassVar[int] = ROUTER


@dataclass(frozen=True)
class DomainNameServer(_AddressListOption):
    CODE: ClassVar[int] = DOMAIN_NAME_SERVER


@dataclass(frozen=True)
class IpAddressLeaseTime(DhcpOption):
    CODE: ClassVar[int] = IP_ADDRESS_LEASE_TIME
    seconds: int

    def __post_init__(self) -> None:
        if not 0 <= self.seconds <= 0xFFFFFFFF:
            raise ValueError("lease time must fit in 32 bits")

    def data(self) -> bytes:
        return struct.pack("!I", self.seconds)

    @classmethod
    def _parse(cls, payload: bytes) -> "IpAddressLeaseTime":
        return cls(struct.unpack("!I", _exact(payload, 4))[0])


@dataclass(frozen=True)
class MaximumMessageSize(DhcpOption):
    CODE: ClassVar[int] = MAXIMUM_DHCP_MESSAGE_SIZE
    size: int

    def __post_init__(self) -> None:
        if not 0 <= self.size <= 0xFFFF:
            raise ValueError("maximum message size must fit in 16 bits")

    def data(self) -> bytes:
        return struct.pack("!H", self.size)

    @classmethod
    def _parse(cls, payload: bytes) -> "MaximumMessageSize":
        return cls(struct.unpack("!H", _exact(payload, 2))[0])


@dataclass(frozen=True)
class ClientIdentifier(DhcpOption):
    CODE: ClassVar[int] = CLIENT_IDENTIFIER
    identifier: bytes

    def __post_init__(self) -> None:
        object.__setattr__(self, "identifier", bytes(self.identifier))

    def data(self) -> bytes:
        return self.identifier

    @classmethod
    def _parse(cls, payload: bytes) -> "ClientIdentifier":
        if len(payload) < 2:
            raise DhcpError(ErrorKind.DATA_UNDERFLOW)
        return cls(payload)


@dataclass(frozen=True)
class Unrecognized(DhcpOption):
    """An option whose code has no dedicated type."""

    option_code: int
    payload: bytes

    def __post_init__(self) -> None:
        if not 0 <= self.option_code <= 255:
            raise ValueError("option code must fit in a byte")
        object.__setattr__(self, "payload", bytes(self.payload))

    @property
    def code(self) -> int:
        return self.option_code

    def data(self) -> bytes:
        return self.payload


_OPTION_TYPES = {
    cls.CODE: cls
    for cls in (
        MessageTypeOption,
        ServerIdentifier,
        ParameterRequestList,
        RequestedIpAddress,
        HostName,
        Router,
        DomainNameServer,
        IpAddressLeaseTime,
        SubnetMask,
        Message,
        MaximumMessageSize,
        ClientIdentifier,
        CaptiveUrl,
    )
}


def _decode_one(code: int, payload: bytes) -> DhcpOption:
    option_type = _OPTION_TYPES.get(code)
    if option_type is None:
        return Unrecognized(code, payload)
    return option_type._parse(payload)


def decode_options(data: bytes) -> Tuple[DhcpOption, ...]:
    """Decode options up to the END marker; anything after it is ignored."""
    data = bytes(data)
    options = []
    pos = 0
    while True:
        if pos >= len(data):
            raise DhcpError(ErrorKind.DATA_UNDERFLOW)
        code = data[pos]
        pos += 1
        if code == END:
            return tuple(options)
        if pos >= len(data):
            raise DhcpError(ErrorKind.DATA_UNDERFLOW)
        length = data[pos]
        pos += 1
        payload = data[pos : pos + length]
        if len(payload) < length:
            raise DhcpError(ErrorKind.DATA_UNDERFLOW)
        pos += length
        options.append(_decode_one(code, payload))


def encode_options(options: Iterable[DhcpOption]) -> bytes:
    """Encode options back to back, without the END marker."""
    return b"".join(option.encode() for option in options)


_O = TypeVar("_O", bound=DhcpOption)


def find_option(options: Iterable[DhcpOption], kind: Type[_O]) -> Optional[_O]:
    """Return the first option of the given type, or None."""
    return next((o for o in options if isinstance(o, kind)), None)


def discover_options(requested_ip: Optional[IPv4Like] = None) -> Tuple[DhcpOption, ...]:
    """Options for a DHCPDISCOVER."""
    options: Tuple[DhcpOption, ...] = (MessageTypeOption(MessageType.DISCOVER),)
    if requested_ip is not None:
        options += (RequestedIpAddress(_ip(requested_ip)),)
    return options


def request_options(ip: IPv4Like) -> Tuple[DhcpOption, ...]:
    """Options for a DHCPREQUEST of the given address."""
    return (
        MessageTypeOption(MessageType.REQUEST),
        RequestedIpAddress(_ip(ip)),
        ParameterRequestList(REQUEST_PARAMS),
    )


def release_options() -> Tuple[DhcpOption, ...]:
    """Options for a DHCPRELEASE."""
    return (MessageTypeOption(MessageType.RELEASE),)


def decline_options() -> Tuple[DhcpOption, ...]:
    """Options for a DHCPDECLINE."""
    return (MessageTypeOption(MessageType.DECLINE),)


def reply_options(
    requested: Optional[bytes],
    mt: MessageType,
    server_ip: IPv4Like,
    lease_duration_secs: int,
    gateways: Sequence[IPv4Like] = (),
    subnet: Optional[IPv4Like] = None,
    dns: Sequence[IPv4Like] = (),
    captive_url: Optional[str] = None,
    max_options: int = DEFAULT_MAX_OPTIONS,
) -> Tuple[DhcpOption, ...]:
    """Build server reply options, answering the client's parameter request list."""
    options = [
        MessageTypeOption(mt),
        ServerIdentifier(_ip(server_ip)),
        IpAddressLeaseTime(lease_duration_secs),
    ]

    if mt != MessageType.NAK and requested is not None:
        for code in bytes(requested):
            if not any(option.code == code for option in options):
                option: Optional[DhcpOption] = None
                if code == CODE_ROUTER and gateways:
                    option = Router(tuple(gateways))
                elif code == CODE_DNS and dns:
                    option = DomainNameServer(tuple(dns))
                elif code == CODE_SUBNET and subnet is not None:
                    option = SubnetMask(_ip(subnet))
                elif code == CODE_CAPTIVE_URL and captive_url is not None:
                    option = CaptiveUrl(captive_url)
                if option is not None:
                    options.append(option)
            if len(options) == max_options:
                break

    return tuple(options)