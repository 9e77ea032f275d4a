import asyncio
import random
import time
from ipaddress import IPv4Address

import pytest

import edgeproto.dhcp_io_client as io_client
from edgeproto.dhcp_client import Client
from edgeproto.dhcp_io import DhcpIoError
from edgeproto.dhcp_io_client import DhcpLease, NetworkInfo
from edgeproto.dhcp_options import (
    ErrorKind,
    MessageType,
    MessageTypeOption,
    find_option,
)
from edgeproto.dhcp_packet import Packet
from edgeproto.dhcp_server import Server, ServerOptions

SERVER_IP = IPv4Address("192.168.4.1")
MAC = bytes([0x02, 0x00, 0x00, 0x00, 0x00, 0x01])


class FakeSocket:
    """Hands every sent packet to a responder and queues whatever it answers."""

    def __init__(self, responder):
        self.responder = responder
        self.sent = []
        self.queue = asyncio.Queue()

    async def send(self, remote, data):
        self.sent.append((remote, data))
        answer = self.responder(Packet.decode(data))
        if answer is None:
            return
        if isinstance(answer, Packet):
            answer = answer.encode()
        self.queue.put_nowait((answer, (str(SERVER_IP), 67)))

    async def receive(self):
        return await self.queue.get()


class BrokenSocket:
    async def send(self, remote, data):
        raise OSError("network down")

    async def receive(self):
        raise OSError("network down")


def make_client():
    return Client(MAC, random.Random(7))


def server_responder(lease_secs=7200):
    server = Server(SERVER_IP)
    options = ServerOptions(SERVER_IP, gateways=(SERVER_IP,), lease_duration_secs=lease_secs)
    return server, options, lambda packet: server.handle_request(options, packet)


def message_type(data):
    return find_option(Packet.decode(data).options, MessageTypeOption).message_type


@pytest.fixture
def short_timeout(monkeypatch):
    monkeypatch.setattr(io_client, "TIMEOUT", 0.02)


@pytest.mark.asyncio
async def test_acquire_from_server():
    server, options, responder = server_responder()
    socket = FakeSocket(responder)

    lease, info = await DhcpLease.acquire(make_client(), socket)

    assert lease.server_ip == SERVER_IP
    assert server.range_start <= lease.ip <= server.range_end
    assert lease.duration == 7200
    assert info.gateway == SERVER_IP
    assert info.subnet == options.subnet
    assert server.leases[lease.ip].mac == MAC + bytes(10)
    assert socket.sent[0][0] == ("255.255.255.255", 67)
    assert [message_type(d) for _, d in socket.sent] == [
        MessageType.DISCOVER,
        MessageType.REQUEST,
    ]


@pytest.mark.asyncio
async def test_acquire_retries_discover_when_unanswered(short_timeout):
    _, _, responder = server_responder()
    discovers = []

    def flaky(packet):
        mt = find_option(packet.options, MessageTypeOption).message_type
        if mt == MessageType.DISCOVER:
            discovers.append(packet)
            if len(discovers) == 1:
                return None
        return responder(packet)

    socket = FakeSocket(flaky)
    lease, _ = await DhcpLease.acquire(make_client(), socket)

    assert len(discovers) == 2
    assert lease.server_ip == SERVER_IP


@pytest.mark.asyncio
async def test_renew_updates_duration_and_unicasts():
    _, _, responder = server_responder(lease_secs=600)
    socket = FakeSocket(responder)
    client = make_client()
    lease, _ = await DhcpLease.acquire(client, socket)
    lease.acquired = 0.0
    lease.duration = 1.0

    before = time.monotonic()
    assert await lease.renew(client, socket) is True

    assert lease.duration == 600
    assert lease.acquired >= before
    remote, data = socket.sent[-1]
    assert remote == (str(SERVER_IP), 67)
    assert message_type(data) == MessageType.REQUEST


@pytest.mark.asyncio
async def test_renew_nak_leaves_lease_unchanged():
    options = ServerOptions(SERVER_IP)
    socket = FakeSocket(lambda packet: options.ack_nak(packet, None))
    lease = DhcpLease(IPv4Address("192.168.4.60"), SERVER_IP, 300.0, 5.0)

    assert await lease.renew(make_client(), socket) is False
    assert lease.duration == 300.0
    assert lease.acquired == 5.0
    assert len(socket.sent) == 1


@pytest.mark.asyncio
async def test_renew_gives_up_after_retries(short_timeout):
    socket = FakeSocket(lambda packet: None)
    lease = DhcpLease(IPv4Address("192.168.4.60"), SERVER_IP, 300.0, 5.0)

    assert await lease.renew(make_client(), socket) is False
    assert len(socket.sent) == io_client.REQUEST_RETRIES


@pytest.mark.asyncio
async def test_reply_for_other_transaction_is_ignored(short_timeout):
    options = ServerOptions(SERVER_IP)

    def wrong_xid(packet):
        reply = options.ack_nak(packet, packet.ciaddr)
        return Packet.decode(reply.encode()[:4] + bytes(4) + reply.encode()[8:])

    socket = FakeSocket(wrong_xid)
    lease = DhcpLease(IPv4Address("192.168.4.60"), SERVER_IP, 300.0, 5.0)

    assert await lease.renew(make_client(), socket) is False
    assert len(socket.sent) == io_client.REQUEST_RETRIES


@pytest.mark.asyncio
async def test_release_sends_release_to_server():
    socket = FakeSocket(lambda packet: None)
    ip = IPv4Address("192.168.4.60")
    lease = DhcpLease(ip, SERVER_IP, 300.0, 0.0)

    await lease.release(make_client(), socket)

    remote, data = socket.sent[0]
    packet = Packet.decode(data)
    assert remote == (str(SERVER_IP), 67)
    assert message_type(data) == MessageType.RELEASE
    assert packet.ciaddr == ip
    assert packet.reply is False


@pytest.mark.asyncio
async def test_socket_failure_raises_io_error():
    lease = DhcpLease(IPv4Address("192.168.4.60"), SERVER_IP, 300.0, 0.0)

    with pytest.raises(DhcpIoError) as info:
        await lease.release(make_client(), BrokenSocket())

    assert info.value.is_format is False
    assert str(info.value).startswith("IO error:")


@pytest.mark.asyncio
async def test_malformed_reply_raises_format_error():
    socket = FakeSocket(lambda packet: b"\x02\x01\x05")

    with pytest.raises(DhcpIoError) as info:
        await DhcpLease.acquire(make_client(), socket)

    assert info.value.is_format is True
    assert info.value.error.kind == ErrorKind.INVALID_HLEN


def test_network_info_defaults_empty():
    info = NetworkInfo()
    assert (info.gateway, info.subnet, info.dns1, info.dns2, info.captive_url) == (
        None,
        None,
        None,
        None,
        None,
    )