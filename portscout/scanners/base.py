"""
Probe strategy contract
Every scan kind turns one ProbeJob into exactly one ProbeOutcome.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional, Tuple

from portscout.core.cancel import CancellationToken
from portscout.core.errors import ConfigError
from portscout.core.models import PortState, ProbeJob, ProbeOutcome, ScanKind, ScanTarget
from portscout.net.codec import Endpoint
from portscout.net.demux import CorrelationKey, Demultiplexer, Reply
from portscout.net.rawsock import RawChannel
from portscout.utils.services import get_service_name

logger = logging.getLogger(__name__)


class ProbeStrategy(ABC):
    """Base class for the connect, syn and udp probes"""

    kind: ScanKind

    def __init__(self, target: ScanTarget):
        self.target = target

    async def open(self):
        """Acquire session resources before the first probe is admitted"""

    async def close(self):
        """Release session resources after the last probe finished"""

    @abstractmethod
    async def probe(self, job: ProbeJob, token: CancellationToken) -> ProbeOutcome:
        """Probe one port; raises ProbeCancelled if the scan is cancelled"""

    def outcome(self, job: ProbeJob, state: PortState, reason: str,
                response_time_ms: Optional[float] = None,
                banner: Optional[str] = None) -> ProbeOutcome:
        return ProbeOutcome(
            port=job.port,
            protocol=self.kind.protocol,
            state=state,
            service=get_service_name(job.port),
            banner=banner,
            response_time_ms=response_time_ms,
            reason=reason,
        )

    def failed(self, job: ProbeJob, exc: BaseException) -> ProbeOutcome:
        """Outcome for a probe that raised instead of classifying"""
        state = PortState.OPEN_FILTERED if self.kind is ScanKind.UDP else PortState.FILTERED
        return self.outcome(job, state, "error")


class RawProbeStrategy(ProbeStrategy):
    """Probe that sends hand-built frames over the shared raw channel"""

    def __init__(self, target: ScanTarget, interface: Optional[str] = None,
                 channel: Optional[RawChannel] = None):
        super().__init__(target)
        self.interface = interface or target.interface
        self.channel = channel
        self.demux: Optional[Demultiplexer] = None

    async def open(self):
        if not self.target.is_ipv4:
            raise ConfigError(f"{self.kind.value} scans support IPv4 targets only, got {self.target.ip}")
        if self.channel is None:
            self.channel = RawChannel(self.target.address, self.interface)
        self.demux = Demultiplexer(self.target.address)
        await self.channel.open(self.demux.dispatch)
        self.demux.verify_transport = self.channel.verify_transport

    async def close(self):
        if self.demux is not None:
            logger.debug(f"Demultiplexer closing: {self.demux.decode_errors} undecodable, "
                         f"{self.demux.unmatched} unmatched frames")
            self.demux.close()
        if self.channel is not None:
            await self.channel.close()

    def endpoints(self, key: CorrelationKey) -> Tuple[Endpoint, Endpoint]:
        source = Endpoint(self.channel.source_mac, self.channel.source_ip, key.local_port)
        destination = Endpoint(self.channel.destination_mac, self.target.address, key.remote_port)
        return source, destination

    async def exchange(self, job: ProbeJob, token: CancellationToken,
                       build: Callable[[Endpoint, Endpoint], bytes],
                       accept: Callable[[Reply], bool]
                       ) -> Tuple[Optional[Reply], Optional[float], CorrelationKey]:
        """Send one probe frame and wait for its correlated reply

        Returns (reply, response_time_ms, key); reply is None on timeout.
        """
        key, future = self.demux.register(self.kind.protocol, job.port, accept)
        try:
            source, destination = self.endpoints(key)
            started = time.monotonic()
            await token.guard(self.channel.send(build(source, destination)))
            try:
                reply = await token.guard(future, job.timeout)
            except asyncio.TimeoutError:
                return None, None, key
            return reply, (reply.received_at - started) * 1000, key
        finally:
            self.demux.discard(key)
