"""
TCP connect probe
Full handshake through the OS socket API; needs no privileges
"""

import asyncio
import errno
import logging
import time

from portscout.core.cancel import CancellationToken
from portscout.core.models import PortState, ProbeJob, ProbeOutcome, ScanKind, ScanTarget
from portscout.scanners.base import ProbeStrategy
from portscout.utils.banner import grab_banner

logger = logging.getLogger(__name__)

# the path, not the peer, rejected the connection
UNREACHABLE_ERRNOS = frozenset({
    errno.EHOSTUNREACH, errno.ENETUNREACH, errno.EHOSTDOWN, errno.ENETDOWN, errno.ETIMEDOUT,
})


def _close_connection(connection):
    connection[1].close()


class ConnectProbe(ProbeStrategy):
    kind = ScanKind.CONNECT

    def __init__(self, target: ScanTarget, banners: bool = False, banner_timeout: float = 3.0):
        super().__init__(target)
        self.banners = banners
        self.banner_timeout = banner_timeout

    async def probe(self, job: ProbeJob, token: CancellationToken) -> ProbeOutcome:
        started = time.monotonic()
        try:
            reader, writer = await token.guard(
                asyncio.open_connection(self.target.ip, job.port), job.timeout,
                release=_close_connection)
        except asyncio.TimeoutError:
            return self.outcome(job, PortState.FILTERED, "no-response")
        except ConnectionRefusedError:
            return self.outcome(job, PortState.CLOSED, "conn-refused")
        except OSError as e:
            if e.errno in UNREACHABLE_ERRNOS:
                return self.outcome(job, PortState.FILTERED, "unreachable")
            logger.debug(f"Connect to {self.target.ip}:{job.port} failed: {e}")
            return self.outcome(job, PortState.CLOSED, "conn-error")

        rtt = (time.monotonic() - started) * 1000
        banner = None
        try:
            if self.banners:
                banner = await token.guard(
                    grab_banner(reader, self.target.ip, job.port, self.banner_timeout))
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass  # peer reset on close

        return self.outcome(job, PortState.OPEN, "syn-ack", response_time_ms=rtt, banner=banner)
