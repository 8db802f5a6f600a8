#!/usr/bin/env python3
"""
Tests for matching inbound frames to in-flight probes
"""

import asyncio
import ipaddress
from dataclasses import replace

from portscout.net.codec import (
    PROTO_ICMP, PROTO_TCP, PROTO_UDP, Correlation, Endpoint, EthernetHeader, Frame, FrameKind,
    ICMPMessage, IPv4Header, TCPFlags, TCPSegment, UDPDatagram, build_frame, encode,
)
from portscout.net.demux import EPHEMERAL_PORTS, Demultiplexer

LOCAL = ipaddress.IPv4Address("192.0.2.10")
TARGET = ipaddress.IPv4Address("192.0.2.20")
ROUTER = ipaddress.IPv4Address("192.0.2.1")
OTHER = ipaddress.IPv4Address("198.51.100.7")
ETH = EthernetHeader(b"\x02" * 6, b"\x04" * 6)


def tcp_reply(key, flags, ack=0, src=TARGET):
    return encode(Frame(ETH, IPv4Header(src, LOCAL, PROTO_TCP),
                        TCPSegment(key.remote_port, key.local_port, seq=1000, ack=ack, flags=flags)))


def udp_reply(key, src=TARGET):
    return encode(Frame(ETH, IPv4Header(src, LOCAL, PROTO_UDP),
                        UDPDatagram(key.remote_port, key.local_port, b"pong")))


def icmp_error(key, ident, code=3, src=TARGET, quoted_dst=TARGET):
    probe = build_frame(FrameKind.UDP, Endpoint(b"\x00" * 6, LOCAL, key.local_port),
                        Endpoint(b"\x00" * 6, quoted_dst, key.remote_port), Correlation(ident=ident))
    quote = encode(replace(probe, ethernet=None))[:28]
    return encode(Frame(ETH, IPv4Header(src, LOCAL, PROTO_ICMP), ICMPMessage(3, code, 0, quote)))


def test_reply_resolves_registered_probe():
    async def run():
        demux = Demultiplexer(TARGET)
        key, future = demux.register("tcp", 80)
        assert EPHEMERAL_PORTS[0] <= key.local_port <= EPHEMERAL_PORTS[1]
        assert demux.dispatch(tcp_reply(key, TCPFlags.SYN | TCPFlags.ACK, ack=1))
        reply = future.result()
        assert reply.transport.has(TCPFlags.SYN | TCPFlags.ACK)
        assert key not in demux
        assert len(demux) == 0

    asyncio.run(run())


def test_keys_are_unique_per_in_flight_probe():
    async def run():
        demux = Demultiplexer(TARGET)
        keys = [demux.register("udp", 53)[0] for _ in range(500)]
        assert len(set(keys)) == 500
        assert len(demux) == 500

    asyncio.run(run())


def test_frames_from_other_hosts_are_ignored():
    async def run():
        demux = Demultiplexer(TARGET)
        key, future = demux.register("tcp", 80)
        assert not demux.dispatch(tcp_reply(key, TCPFlags.RST | TCPFlags.ACK, src=OTHER))
        assert not future.done()
        assert key in demux

    asyncio.run(run())


def test_undecodable_frames_are_counted():
    async def run():
        demux = Demultiplexer(TARGET)
        demux.register("tcp", 80)
        assert not demux.dispatch(b"\x00" * 10)
        assert demux.decode_errors == 1

    asyncio.run(run())


def test_unmatched_frames_are_counted():
    async def run():
        demux = Demultiplexer(TARGET)
        key, future = demux.register("tcp", 80)
        stray = key._replace(local_port=key.local_port - 1 if key.local_port > EPHEMERAL_PORTS[0] else key.local_port + 1)
        assert not demux.dispatch(tcp_reply(stray, TCPFlags.RST))
        assert not demux.dispatch(udp_reply(key))  # right ports, wrong protocol
        assert demux.unmatched == 2
        assert not future.done()

    asyncio.run(run())


def test_accept_predicate_filters_replies():
    async def run():
        demux = Demultiplexer(TARGET)
        key, future = demux.register("tcp", 443, accept=lambda r: r.transport.ack == 43)
        assert not demux.dispatch(tcp_reply(key, TCPFlags.SYN | TCPFlags.ACK, ack=99))
        assert key in demux
        assert demux.dispatch(tcp_reply(key, TCPFlags.SYN | TCPFlags.ACK, ack=43))
        assert future.result().transport.ack == 43

    asyncio.run(run())


def test_late_frames_after_match_are_discarded():
    async def run():
        demux = Demultiplexer(TARGET)
        key, future = demux.register("tcp", 22)
        assert demux.dispatch(tcp_reply(key, TCPFlags.SYN | TCPFlags.ACK))
        assert not demux.dispatch(tcp_reply(key, TCPFlags.RST))
        assert future.result().transport.has(TCPFlags.SYN)
        assert demux.unmatched == 1

    asyncio.run(run())


def test_icmp_error_is_matched_through_its_quote():
    async def run():
        demux = Demultiplexer(TARGET)
        key, future = demux.register("udp", 161)
        assert demux.dispatch(icmp_error(key, ident=777))
        reply = future.result()
        assert isinstance(reply.transport, ICMPMessage)
        assert reply.quote.identification == 777

    asyncio.run(run())


def test_icmp_error_from_router_on_path_is_matched():
    async def run():
        demux = Demultiplexer(TARGET)
        key, future = demux.register("udp", 161)
        assert demux.dispatch(icmp_error(key, ident=5, code=13, src=ROUTER))
        assert future.result().transport.code == 13

    asyncio.run(run())


def test_icmp_error_about_another_host_is_ignored():
    async def run():
        demux = Demultiplexer(TARGET)
        key, future = demux.register("udp", 161)
        assert not demux.dispatch(icmp_error(key, ident=5, src=ROUTER, quoted_dst=OTHER))
        assert not future.done()

    asyncio.run(run())


def test_discard_and_close_cancel_pending_futures():
    async def run():
        demux = Demultiplexer(TARGET)
        key, future = demux.register("tcp", 80)
        _, other = demux.register("tcp", 81)
        demux.discard(key)
        assert future.cancelled()
        assert not demux.dispatch(tcp_reply(key, TCPFlags.RST))
        demux.close()
        assert other.cancelled()
        assert len(demux) == 0

    asyncio.run(run())
