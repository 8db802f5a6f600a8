#!/usr/bin/env python3
"""
Tests for the TCP connect probe against real loopback listeners
"""

import asyncio
import errno
import ipaddress

import pytest

from portscout.core.cancel import CancellationToken
from portscout.core.models import PortState, ProbeJob, ScanKind, ScanTarget
from portscout.core.scanner import ScanOptions, Scanner
from portscout.scanners import ConnectProbe, create_strategy

LOOPBACK = ScanTarget(ipaddress.ip_address("127.0.0.1"), "127.0.0.1")


async def _noop_handler(reader, writer):
    writer.close()


def test_connect_scan_one_listener_in_range():
    async def run():
        try:
            server = await asyncio.start_server(_noop_handler, "127.0.0.1", 7005)
        except OSError as e:
            pytest.skip(f"port 7005 unavailable: {e}")
        async with server:
            scanner = Scanner(ScanOptions(timeout=1.0, concurrency=10))
            return await scanner.scan("127.0.0.1", "7000-7009")

    report = asyncio.run(run())
    assert report.open_ports == (7005,)
    assert report.summary.closed == 9
    assert report.summary.open_filtered == 0
    assert all(o.reason == "conn-refused" for o in report.outcomes if o.port != 7005)
    assert report.outcome_for(7005).response_time_ms is not None


def test_banner_is_captured():
    async def greet(reader, writer):
        writer.write(b"SSH-2.0-OpenSSH_9.6\r\n")
        await writer.drain()
        await asyncio.sleep(0.5)
        writer.close()

    async def run():
        server = await asyncio.start_server(greet, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        async with server:
            probe = ConnectProbe(LOOPBACK, banners=True, banner_timeout=1.0)
            job = ProbeJob(LOOPBACK, port, ScanKind.CONNECT, 1.0)
            return await probe.probe(job, CancellationToken())

    outcome = asyncio.run(run())
    assert outcome.state is PortState.OPEN
    assert outcome.banner == "SSH-2.0-OpenSSH_9.6"


def _probe_with(monkeypatch, fake_open_connection, timeout=1.0):
    monkeypatch.setattr(asyncio, "open_connection", fake_open_connection)
    probe = create_strategy(ScanKind.CONNECT, LOOPBACK)
    job = ProbeJob(LOOPBACK, 8080, ScanKind.CONNECT, timeout)
    return asyncio.run(probe.probe(job, CancellationToken()))


def test_timeout_is_filtered(monkeypatch):
    async def hang(host, port):
        await asyncio.sleep(10)

    outcome = _probe_with(monkeypatch, hang, timeout=0.05)
    assert outcome.state is PortState.FILTERED
    assert outcome.reason == "no-response"


def test_unreachable_is_filtered(monkeypatch):
    async def unreachable(host, port):
        raise OSError(errno.EHOSTUNREACH, "No route to host")

    outcome = _probe_with(monkeypatch, unreachable)
    assert outcome.state is PortState.FILTERED
    assert outcome.reason == "unreachable"


def test_other_socket_errors_are_closed(monkeypatch):
    async def reset(host, port):
        raise ConnectionResetError(errno.ECONNRESET, "Connection reset by peer")

    outcome = _probe_with(monkeypatch, reset)
    assert outcome.state is PortState.CLOSED
    assert outcome.service == "http-proxy"


class FakeWriter:
    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


def test_connection_completing_after_timeout_is_closed(monkeypatch):
    writer = FakeWriter()

    async def late(host, port):
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            pass
        return object(), writer

    monkeypatch.setattr(asyncio, "open_connection", late)

    async def run():
        probe = create_strategy(ScanKind.CONNECT, LOOPBACK)
        job = ProbeJob(LOOPBACK, 8080, ScanKind.CONNECT, 0.05)
        outcome = await probe.probe(job, CancellationToken())
        for _ in range(3):
            await asyncio.sleep(0)
        return outcome

    outcome = asyncio.run(run())
    assert outcome.state is PortState.FILTERED
    assert writer.closed
