"""
Banner capture for open TCP ports
Reads what a service volunteers on connect; HTTP services get a HEAD request
"""

import asyncio
import logging
from typing import Collection, Optional

import aiohttp

logger = logging.getLogger(__name__)

MAX_BANNER_SIZE = 1024
MAX_BANNER_LENGTH = 256

HTTP_PORTS = frozenset({80, 443, 8000, 8008, 8080, 8081, 8082, 8083, 8443, 8888, 9000, 9090})
HTTPS_PORTS = frozenset({443, 8443})


def sanitize_banner(data: bytes) -> str:
    """Replace non-printables, collapse whitespace and cap the length"""
    chars = []
    for b in data[:MAX_BANNER_LENGTH]:
        if b in (0x09, 0x0a, 0x0d):
            chars.append(' ')
        elif 0x20 <= b < 0x7f:
            chars.append(chr(b))
        else:
            chars.append('.')
    return ' '.join(''.join(chars).split())


async def _http_banner(host: str, port: int, timeout: float) -> Optional[str]:
    protocol = 'https' if port in HTTPS_PORTS else 'http'
    if ':' in host:
        host = f"[{host}]"
    url = f"{protocol}://{host}:{port}/"

    client_timeout = aiohttp.ClientTimeout(total=timeout)
    connector = aiohttp.TCPConnector(ssl=False)
    async with aiohttp.ClientSession(timeout=client_timeout, connector=connector) as session:
        async with session.head(url, allow_redirects=False) as resp:
            banner = f"HTTP/{resp.version.major}.{resp.version.minor} {resp.status} {resp.reason or ''}"
            server = resp.headers.get('Server')
            if server:
                banner += f" Server: {server}"
            return sanitize_banner(banner.encode('latin-1', errors='replace'))


async def grab_banner(reader: asyncio.StreamReader, host: str, port: int,
                      timeout: float = 3.0,
                      http_ports: Collection[int] = HTTP_PORTS) -> Optional[str]:
    """Grab a banner from an established connection

    Returns None when the service stays silent and is not an HTTP port.
    """
    try:
        data = await asyncio.wait_for(reader.read(MAX_BANNER_SIZE), timeout=timeout)
    except asyncio.TimeoutError:
        data = b""
    except OSError as e:
        logger.debug(f"Banner read from {host}:{port} failed: {e}")
        data = b""

    if data:
        return sanitize_banner(data) or None

    if port not in http_ports:
        return None

    try:
        return await _http_banner(host, port, timeout)
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.debug(f"HTTP banner probe for {host}:{port} failed: {e}")
        return None
