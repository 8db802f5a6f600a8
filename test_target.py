#!/usr/bin/env python3
"""
Tests for target resolution
"""

import asyncio
import ipaddress

import pytest

from portscout.core.errors import ConfigError, ResolutionError
from portscout.core.target import resolve_target


def test_ipv4_literal():
    target = asyncio.run(resolve_target("192.0.2.1", interface="eth0"))
    assert target.address == ipaddress.IPv4Address("192.0.2.1")
    assert target.is_ipv4
    assert target.interface == "eth0"
    assert str(target) == "192.0.2.1"


def test_ipv6_literal():
    target = asyncio.run(resolve_target("::1"))
    assert not target.is_ipv4


def test_localhost_resolves_to_loopback():
    target = asyncio.run(resolve_target("localhost"))
    assert target.address.is_loopback
    assert target.hostname == "localhost"
    assert str(target).startswith("localhost (")


@pytest.mark.parametrize("spec", ["", "   ", "10.0.0.0/24"])
def test_rejected_specs(spec):
    with pytest.raises(ConfigError):
        asyncio.run(resolve_target(spec))


def test_unresolvable_host():
    with pytest.raises(ResolutionError):
        asyncio.run(resolve_target("no-such-host.invalid"))
