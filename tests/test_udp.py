import asyncio

import pytest

from edgeproto.udp import UdpSocket

LOCAL = ("127.0.0.1", 0)


@pytest.mark.asyncio
async def test_send_and_receive():
    async with await UdpSocket.bind(LOCAL) as a, await UdpSocket.bind(LOCAL) as b:
        await a.send(b.local_address, b"hello")
        data, remote = await asyncio.wait_for(b.receive(), 2)
        assert data == b"hello"
        assert remote[:2] == a.local_address[:2]


@pytest.mark.asyncio
async def test_reply_round_trip():
    async with await UdpSocket.bind(LOCAL) as a, await UdpSocket.bind(LOCAL, True) as b:
        await a.send(b.local_address, b"ping")
        _, remote = await asyncio.wait_for(b.receive(), 2)
        await b.send(remote, b"pong")
        data, _ = await asyncio.wait_for(a.receive(), 2)
        assert data == b"pong"


@pytest.mark.asyncio
async def test_bound_address():
    async with await UdpSocket.bind(LOCAL) as sock:
        host, port = sock.local_address[:2]
        assert host == "127.0.0.1"
        assert port > 0


@pytest.mark.asyncio
async def test_receive_after_close_raises():
    sock = await UdpSocket.bind(LOCAL)
    sock.close()
    with pytest.raises(OSError):
        await asyncio.wait_for(sock.receive(), 2)
    with pytest.raises(OSError):
        await asyncio.wait_for(sock.receive(), 2)


@pytest.mark.asyncio
async def test_pending_receive_fails_on_close():
    sock = await UdpSocket.bind(LOCAL)
    task = asyncio.create_task(sock.receive())
    await asyncio.sleep(0)
    sock.close()
    with pytest.raises(OSError) as info:
        await asyncio.wait_for(task, 2)
    assert task.done()
    assert task.exception() is info.value


@pytest.mark.asyncio
async def test_send_after_close_raises():
    sock = await UdpSocket.bind(LOCAL)
    sock.close()
    with pytest.raises(OSError):
        await sock.send(("127.0.0.1", 9), b"x")