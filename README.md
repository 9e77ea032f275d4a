# edgeproto

Small, dependency-free building blocks for bringing up a local network:

* a DHCP (BOOTP) packet codec with typed options,
* a DHCP client that builds requests and recognises replies,
* a DHCP server that hands out leases from a fixed address range,
* asyncio helpers that run the client and server over UDP,
* a captive-portal DNS responder that answers every `A` query with one address.

The protocol layers do not touch the network. They work on `bytes` in and
`bytes` out, so they can be driven by any transport; the `*_io` modules add
asyncio on top, and `edgeproto.udp` provides a UDP socket for them.

## Modules

| Module | What it holds |
| --- | --- |
| `edgeproto.dhcp_options` | `MessageType`, the `DhcpOption` family (`MessageTypeOption`, `ServerIdentifier`, `ParameterRequestList`, `RequestedIpAddress`, `HostName`, `Router`, `DomainNameServer`, `IpAddressLeaseTime`, `SubnetMask`, `Message`, `MaximumMessageSize`, `ClientIdentifier`, `CaptiveUrl`, `Unrecognized`), `decode_options`, `encode_options`, `find_option` and the builders `discover_options`, `request_options`, `release_options`, `decline_options`, `reply_options`. Errors are raised as `DhcpError` carrying an `ErrorKind`. |
| `edgeproto.dhcp_packet` | `Packet` (`decode`, `encode`, `new_request`, `new_reply`, `is_for_us`) and `Settings.from_packet`, which pulls the lease settings out of a server reply. |
| `edgeproto.dhcp_client` | `Client`, which creates DISCOVER, REQUEST, RELEASE and DECLINE packets with a random transaction id and checks replies with `is_offer`, `is_ack` and `is_nak`. |
| `edgeproto.dhcp_server` | `ServerOptions` (what the server announces) and `Server` (the lease table); `Server.handle_request` turns a request packet into a reply packet, or `None`. |
| `edgeproto.udp` | `UdpSocket`, a minimal asyncio UDP socket with `bind`, `send`, `receive`, `close` and `local_address`; it is also an async context manager. |
| `edgeproto.dhcp_io` | `run_server`, which serves DHCP on a datagram socket until the socket fails, and the ports `DEFAULT_SERVER_PORT` (67) and `DEFAULT_CLIENT_PORT` (68). Socket and encoding failures surface as `DhcpIoError`. |
| `edgeproto.dhcp_io_client` | `DhcpLease` with `acquire`, `keep`, `renew` and `release`, plus the `NetworkInfo` returned alongside a new lease. |
| `edgeproto.captive` | `reply`, which builds the DNS answer for a request, raising `DnsError` on malformed or oversized messages. |
| `edgeproto.captive_io` | `serve` and `run`, which answer DNS queries over UDP; failures surface as `DnsIoError`. `DEFAULT_SOCKET` is `("::", 53)`. |

## Working with packets

```python
from edgeproto.dhcp_packet import Packet

packet = Packet.decode(datagram)      # raises DhcpError on malformed input
wire = packet.encode()                # bytes, padded to the 272-byte BOOTP minimum
```

Options on a packet are plain Python objects; look one up by its class:

```python
from edgeproto.dhcp_options import ServerIdentifier, find_option

server_id = find_option(packet.options, ServerIdentifier)
```

## Captive-portal DNS

`captive.reply` takes the raw bytes of a DNS query and returns the response
bytes. Every question of type `A` in class `IN` is answered with the given
address; other questions are left unanswered, and messages that are not
standard queries get a "not implemented" response. The optional last
argument bounds the size of the reply.

```python
from datetime import timedelta
from ipaddress import IPv4Address

from edgeproto.captive import reply

response = reply(query, IPv4Address("192.168.4.1"), timedelta(minutes=1), 512)
```

`captive_io.serve` runs the same logic on a socket that is already bound, and
`captive_io.run` binds a `UdpSocket` to the address it is given before
serving:

```python
import asyncio
from edgeproto.captive_io import DEFAULT_SOCKET, run

asyncio.run(run(DEFAULT_SOCKET, "192.168.4.1", 60))
```

Malformed queries are logged and skipped; socket errors, and replies longer
than 1500 bytes, end the loop with `DnsIoError`.

## DHCP server

A `Server` hands out addresses `.50` to `.200` of the server's own /24,
remembers which hardware address holds which lease, and reuses expired
leases once the range is exhausted. An optional `capacity` caps the number of
leases held at once, and `clock` supplies the time in seconds
(`time.monotonic` by default).

```python
import asyncio
from edgeproto.dhcp_io import DEFAULT_SERVER_PORT, run_server
from edgeproto.dhcp_server import Server, ServerOptions
from edgeproto.udp import UdpSocket

async def main():
    options = ServerOptions("192.168.4.1", gateways=("192.168.4.1",))
    server = Server("192.168.4.1")
    async with await UdpSocket.bind(("0.0.0.0", DEFAULT_SERVER_PORT), broadcast=True) as sock:
        await run_server(server, options, sock)

asyncio.run(main())
```

`run_server` replies to the broadcast address whenever the client asked for
a broadcast reply or has no address yet, so the socket must be allowed to
send broadcasts. Undecodable packets are logged and skipped. Cancelling it
leaves the server's leases intact.

## DHCP client

`DhcpLease.acquire(client, socket)` broadcasts DISCOVER until an offer
arrives, requests the offered address (three tries, three seconds each) and
returns the lease together with the `NetworkInfo` the server sent (gateway,
subnet mask, up to two DNS servers and a captive-portal URL). A lease without
a lease-time option is taken to last 7200 seconds. `keep` renews the lease
once a third of its duration has passed, checking every 60 seconds, and
returns when a renewal fails; `renew` makes one renewal attempt; `release`
sends DHCPRELEASE to the server.

## What this package does not do

* It has no command-line program; everything is used from Python.
* `DhcpLease` only negotiates the lease. It does not configure an address,
  route or resolver on the host's network interfaces.
* The `Server` keeps its leases in memory only; they are not stored anywhere
  and are lost when the process ends.

## Running the tests

Install the package with its `test` extra and run `pytest` from the project
root.