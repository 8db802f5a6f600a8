"""
Target resolution
Turns an address or hostname into a ScanTarget before scanning starts
"""

import asyncio
import ipaddress
import logging
import socket
from typing import Optional

import dns.asyncresolver
import dns.exception
import dns.resolver

from portscout.core.errors import ConfigError, ResolutionError
from portscout.core.models import ScanTarget

logger = logging.getLogger(__name__)

DNS_TIMEOUT = 3.0


async def _resolve_dns(hostname: str) -> Optional[str]:
    try:
        resolver = dns.asyncresolver.Resolver()
    except dns.exception.DNSException as e:
        logger.debug(f"No DNS resolver configuration: {e}")
        return None
    resolver.lifetime = DNS_TIMEOUT
    for record_type in ('A', 'AAAA'):
        try:
            answer = await resolver.resolve(hostname, record_type)
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            continue
        except dns.exception.DNSException as e:
            logger.debug(f"DNS {record_type} lookup for {hostname} failed: {e}")
            continue
        for record in answer:
            return record.to_text()
    return None


async def _resolve_system(hostname: str) -> Optional[str]:
    """Hosts-file names (localhost and friends) never reach DNS"""
    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(hostname, None, type=socket.SOCK_STREAM)
    except socket.gaierror as e:
        logger.debug(f"System lookup for {hostname} failed: {e}")
        return None
    return infos[0][4][0] if infos else None


async def resolve_target(spec: str, interface: Optional[str] = None) -> ScanTarget:
    """Resolve an IP address or hostname into a ScanTarget"""
    spec = spec.strip()
    if not spec:
        raise ConfigError("empty target")
    if '/' in spec:
        raise ConfigError(f"network ranges are not supported, scan a single host: {spec}")

    try:
        return ScanTarget(ipaddress.ip_address(spec), spec, interface)
    except ValueError:
        pass

    address = await _resolve_dns(spec) or await _resolve_system(spec)
    if address is None:
        raise ResolutionError(f"failed to resolve hostname '{spec}'")

    logger.info(f"Resolved {spec} to {address}")
    return ScanTarget(ipaddress.ip_address(address), spec, interface)
