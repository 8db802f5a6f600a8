"""
TCP SYN (half-open) probe
One SYN per port; an open port is torn down with a single RST.
"""

import logging
import random

from portscout.core.cancel import CancellationToken
from portscout.core.models import PortState, ProbeJob, ProbeOutcome, ScanKind
from portscout.net.codec import (
    Correlation, FrameKind, ICMPMessage, TCPFlags, TCPSegment, encode_probe,
)
from portscout.net.demux import Reply
from portscout.scanners.base import RawProbeStrategy

logger = logging.getLogger(__name__)


class SynProbe(RawProbeStrategy):
    kind = ScanKind.SYN

    async def probe(self, job: ProbeJob, token: CancellationToken) -> ProbeOutcome:
        correlation = Correlation(seq=random.getrandbits(32), ident=random.getrandbits(16))
        expected_ack = (correlation.seq + 1) & 0xFFFFFFFF

        def accept(reply: Reply) -> bool:
            transport = reply.transport
            if isinstance(transport, TCPSegment):
                answered = transport.has(TCPFlags.SYN | TCPFlags.ACK) or transport.has(TCPFlags.RST)
                return answered and transport.has(TCPFlags.ACK) and transport.ack == expected_ack
            return reply.quote is not None and reply.quote.identification == correlation.ident

        reply, rtt, key = await self.exchange(
            job, token,
            lambda src, dst: encode_probe(FrameKind.SYN, src, dst, correlation),
            accept,
        )

        if reply is None:
            return self.outcome(job, PortState.FILTERED, "no-response")

        transport = reply.transport
        if isinstance(transport, ICMPMessage):
            return self.outcome(job, PortState.FILTERED, "icmp-unreach", response_time_ms=rtt)
        if transport.has(TCPFlags.RST):
            return self.outcome(job, PortState.CLOSED, "reset", response_time_ms=rtt)

        # SYN-ACK: tear the half-open connection down, never complete it
        source, destination = self.endpoints(key)
        rst = encode_probe(FrameKind.RST, source, destination, Correlation(seq=transport.ack))
        try:
            await self.channel.send(rst)
        except OSError as e:
            logger.warning(f"Failed to send RST to {self.target.ip}:{job.port}: {e}")
        return self.outcome(job, PortState.OPEN, "syn-ack", response_time_ms=rtt)
