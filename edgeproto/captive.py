"""A captive-portal DNS responder that answers every A query with one address."""

from __future__ import annotations

import enum
import logging
import struct
from datetime import timedelta
from ipaddress import IPv4Address
from typing import List, NamedTuple, Optional, Tuple, Union

log = logging.getLogger(__name__)

_HEADER = struct.Struct("!HBBHHHH")
HEADER_SIZE = _HEADER.size

OPCODE_QUERY = 0
RCODE_NOERROR = 0
RCODE_NOTIMP = 4
TYPE_A = 1
CLASS_IN = 1

MAX_NAME_LENGTH = 255
MAX_TTL = 0xFFFFFFFF

IPv4Like = Union[IPv4Address, str, int, bytes]
TtlLike = Union[timedelta, int, float]


class DnsErrorKind(enum.Enum):
    """Reasons a DNS reply cannot be produced."""

    SHORT_BUF = "ShortBuf"
    INVALID_MESSAGE = "InvalidMessage"


class DnsError(Exception):
    """Raised when a request is malformed or its reply does not fit."""

    def __init__(self, kind: DnsErrorKind) -> None:
        super().__init__(kind.value)
        self.kind = kind

    def __str__(self) -> str:
        return self.kind.value


class _Question(NamedTuple):
    name: bytes
    qtype: int
    qclass: int

    @property
    def wire(self) -> bytes:
        return self.name + struct.pack("!HH", self.qtype, self.qclass)


def _invalid() -> DnsError:
    return DnsError(DnsErrorKind.INVALID_MESSAGE)


def _read_name(message: bytes, pos: int) -> Tuple[bytes, int]:
    """Read a possibly compressed name; return it uncompressed and the position after it."""
    out = bytearray()
    end: Optional[int] = None
    limit = pos
    cur = pos
    while True:
        if cur >= len(message):
            raise _invalid()
        length = message[cur]
        kind = length & 0xC0
        if kind == 0xC0:
            if cur + 1 >= len(message):
                raise _invalid()
            target = ((length & 0x3F) << 8) | message[cur + 1]
            if end is None:
                end = cur + 2
            # Pointers must strictly move backwards, which rules out loops.
            if target >= limit:
                raise _invalid()
            limit = target
            cur = target
        elif kind == 0:
            label = message[cur : cur + 1 + length]
            if len(label) < 1 + length:
                raise _invalid()
            out += label
            if len(out) > MAX_NAME_LENGTH:
                raise _invalid()
            cur += 1 + length
            if length == 0:
                return bytes(out), cur if end is None else end
        else:
            raise _invalid()


def _read_questions(message: bytes, count: int) -> Tuple[List[_Question], bool]:
    """Parse up to ``count`` questions; the flag tells whether parsing stopped on an error."""
    questions: List[_Question] = []
    pos = HEADER_SIZE
    for _ in range(count):
        try:
            name, pos = _read_name(message, pos)
        except DnsError:
            return questions, True
        if pos + 4 > len(message):
            return questions, True
        qtype, qclass = struct.unpack_from("!HH", message, pos)
        pos += 4
        questions.append(_Question(name, qtype, qclass))
    return questions, False


def _ttl_seconds(ttl: TtlLike) -> int:
    seconds = ttl.total_seconds() if isinstance(ttl, timedelta) else ttl
    if seconds < 0:
        raise ValueError("ttl must not be negative")
    return min(int(seconds), MAX_TTL)


class _Output:
    def __init__(self, max_size: Optional[int]) -> None:
        self.data = bytearray()
        self.max_size = max_size

    def append(self, chunk: bytes) -> None:
        if self.max_size is not None and len(self.data) + len(chunk) > self.max_size:
            raise DnsError(DnsErrorKind.SHORT_BUF)
        self.data += chunk


def reply(
    request: bytes,
    ip: IPv4Like,
    ttl: TtlLike,
    max_size: Optional[int] = None,
) -> bytes:
    """Build the reply to a DNS request, answering each A/IN question with ``ip``.

    Requests that are not standard queries get an empty NOTIMP reply. ``max_size``
    bounds the reply length; a reply that does not fit raises ShortBuf.
    """
    request = bytes(request)
    address = ip if isinstance(ip, IPv4Address) else IPv4Address(ip)

    if len(request) < HEADER_SIZE:
        raise _invalid()

    ident, flags_hi, _flags_lo, qdcount, _an, _ns, _ar = _HEADER.unpack_from(request)
    opcode = (flags_hi >> 3) & 0x0F
    rd = flags_hi & 0x01
    log.debug("Processing message with id %d, opcode %d, %d question(s)", ident, opcode, qdcount)

    out = _Output(max_size)
    out.append(bytes(HEADER_SIZE))

    if opcode != OPCODE_QUERY:
        log.debug("Message is not of type Query, replying with NotImp")
        out.data[:HEADER_SIZE] = _HEADER.pack(
            ident, (opcode << 3) | rd, RCODE_NOTIMP, 0, 0, 0, 0
        )
        return bytes(out.data)

    log.debug("Message is of type Query, processing all questions")
    questions, malformed = _read_questions(request, qdcount)

    for question in questions:
        out.append(question.wire)

    ttl_secs = _ttl_seconds(ttl)
    answers = 0
    for question in questions:
        if question.qtype == TYPE_A and question.qclass == CLASS_IN:
            log.debug("Answering %r with %s", question, address)
            out.append(
                question.name
                + struct.pack("!HHIH", TYPE_A, CLASS_IN, ttl_secs, 4)
                + address.packed
            )
            answers += 1
        else:
            log.debug("Question %r is not of type A, not answering", question)

    if malformed:
        raise _invalid()

    out.data[:HEADER_SIZE] = _HEADER.pack(
        ident, 0x80 | (opcode << 3) | rd, RCODE_NOERROR, len(questions), answers, 0, 0
    )
    return bytes(out.data)