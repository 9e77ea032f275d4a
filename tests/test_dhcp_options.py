from ipaddress import IPv4Address

import pytest

from edgeproto.dhcp_options import (
    CaptiveUrl,
    ClientIdentifier,
    DhcpError,
    DomainNameServer,
    ErrorKind,
    HostName,
    IpAddressLeaseTime,
    MaximumMessageSize,
    Message,
    MessageType,
    MessageTypeOption,
    ParameterRequestList,
    RequestedIpAddress,
    Router,
    ServerIdentifier,
    SubnetMask,
    Unrecognized,
    decline_options,
    decode_options,
    discover_options,
    encode_options,
    find_option,
    release_options,
    reply_options,
    request_options,
)

SERVER = IPv4Address("192.168.71.1")


def test_message_type_wire_bytes():
    assert MessageTypeOption(MessageType.DISCOVER).encode() == bytes([53, 1, 1])


def test_message_type_display():
    offer = decode_options(bytes([53, 1, 2, 255]))[0]
    inform = decode_options(bytes([53, 1, 8, 255]))[0]
    assert str(offer.message_type) == "DHCPOFFER"
    assert str(inform.message_type) == "DHCPINFORM"


def test_error_display():
    assert str(DhcpError(ErrorKind.MISSING_COOKIE)) == "Missing cookie"


@pytest.mark.parametrize(
    "option",
    [
        MessageTypeOption(MessageType.ACK),
        ServerIdentifier(SERVER),
        ParameterRequestList(b"\x01\x03\x06"),
        RequestedIpAddress("10.0.0.7"),
        HostName("device"),
        Router(("10.0.0.1", "10.0.0.2")),
        DomainNameServer(("8.8.8.8",)),
        IpAddressLeaseTime(7200),
        SubnetMask("255.255.255.0"),
        Message("hello"),
        MaximumMessageSize(1500),
        ClientIdentifier(b"\x01\xaa\xbb"),
        CaptiveUrl("http://portal.example.com/"),
        Unrecognized(200, b"xyz"),
    ],
)
def test_single_option_round_trip(option):
    decoded = decode_options(option.encode() + bytes([255]))
    assert decoded == (option,)


def test_multiple_options_round_trip_stops_at_end():
    options = request_options("10.0.0.9")
    data = encode_options(options) + bytes([255, 1, 2, 3])
    assert decode_options(data) == options


def test_missing_end_is_underflow():
    with pytest.raises(DhcpError) as info:
        decode_options(MessageTypeOption(MessageType.REQUEST).encode())
    assert info.value.kind is ErrorKind.DATA_UNDERFLOW


def test_truncated_payload_is_underflow():
    with pytest.raises(DhcpError) as info:
        decode_options(bytes([54, 4, 1, 2]))
    assert info.value.kind is ErrorKind.DATA_UNDERFLOW


def test_invalid_message_type():
    with pytest.raises(DhcpError) as info:
        decode_options(bytes([53, 1, 99, 255]))
    assert info.value.kind is ErrorKind.INVALID_MESSAGE_TYPE


def test_invalid_utf8_host_name():
    with pytest.raises(DhcpError) as info:
        decode_options(bytes([12, 2, 0xFF, 0xFE, 255]))
    assert info.value.kind is ErrorKind.INVALID_UTF8


def test_short_client_identifier():
    with pytest.raises(DhcpError) as info:
        decode_options(bytes([61, 1, 1, 255]))
    assert info.value.kind is ErrorKind.DATA_UNDERFLOW


def test_router_data_is_concatenated_addresses():
    router = Router(("10.0.0.1", "10.0.0.2"))
    assert router.data() == IPv4Address("10.0.0.1").packed + IPv4Address("10.0.0.2").packed
    assert router.addresses[1] == IPv4Address("10.0.0.2")


def test_find_option():
    options = request_options("10.0.0.9")
    found = find_option(options, RequestedIpAddress)
    assert found.ip == IPv4Address("10.0.0.9")
    assert find_option(options, ServerIdentifier) is None


def test_discover_options():
    assert discover_options() == (MessageTypeOption(MessageType.DISCOVER),)
    with_ip = discover_options("10.0.0.4")
    assert with_ip[1] == RequestedIpAddress(IPv4Address("10.0.0.4"))


def test_request_options_ask_for_router_subnet_dns():
    options = request_options("10.0.0.9")
    prl = find_option(options, ParameterRequestList)
    assert list(prl.codes) == [Router.CODE, SubnetMask.CODE, DomainNameServer.CODE]


def test_release_and_decline():
    assert release_options()[0].message_type is MessageType.RELEASE
    assert decline_options()[0].message_type is MessageType.DECLINE


def test_reply_options_answers_requested_params_in_order():
    requested = bytes([DomainNameServer.CODE, Router.CODE, SubnetMask.CODE, 42])
    options = reply_options(
        requested,
        MessageType.ACK,
        SERVER,
        3600,
        gateways=[SERVER],
        subnet="255.255.255.0",
        dns=["8.8.8.8"],
    )
    assert [o.code for o in options] == [53, 54, 51, 6, 3, 1]
    assert find_option(options, IpAddressLeaseTime).seconds == 3600


def test_reply_options_skips_missing_values():
    requested = bytes([Router.CODE, DomainNameServer.CODE, CaptiveUrl.CODE])
    options = reply_options(requested, MessageType.OFFER, SERVER, 60)
    assert len(options) == 3


def test_reply_options_nak_has_no_extras():
    options = reply_options(
        bytes([Router.CODE]), MessageType.NAK, SERVER, 60, gateways=[SERVER]
    )
    assert find_option(options, Router) is None
    assert options[0].message_type is MessageType.NAK


def test_reply_options_respects_limit():
    requested = bytes([Router.CODE, SubnetMask.CODE, DomainNameServer.CODE])
    options = reply_options(
        requested,
        MessageType.ACK,
        SERVER,
        60,
        gateways=[SERVER],
        subnet="255.255.255.0",
        dns=["8.8.8.8"],
        max_options=4,
    )
    assert len(options) == 4
    assert isinstance(options[3], Router)


def test_reply_options_no_duplicate_codes():
    requested = bytes([ServerIdentifier.CODE, Router.CODE, Router.CODE])
    options = reply_options(requested, MessageType.ACK, SERVER, 60, gateways=[SERVER])
    codes = [o.code for o in options]
    assert len(codes) == len(set(codes))


def test_oversized_option_rejected():
    with pytest.raises(DhcpError) as info:
        Message("x" * 300).encode()
    assert info.value.kind is ErrorKind.BUFFER_OVERFLOW