"""
UDP probe
Sends a service-specific payload and reads the answer or the ICMP error.
"""

import logging
import random

from portscout.core.cancel import CancellationToken
from portscout.core.models import PortState, ProbeJob, ProbeOutcome, ScanKind
from portscout.net.codec import (
    ICMP_PORT_UNREACH, Correlation, FrameKind, ICMPMessage, UDPDatagram, encode_probe,
)
from portscout.net.demux import Reply
from portscout.scanners.base import RawProbeStrategy

logger = logging.getLogger(__name__)

# destination-unreachable codes meaning an administrative or routing block
FILTERING_CODES = frozenset({1, 2, 9, 10, 13})

DEFAULT_PAYLOAD = b"\x00"

UDP_PAYLOADS = {
    53: b"\x00\x00\x10\x00\x00\x00\x00\x00\x00\x00\x00\x00",  # DNS
    69: b"\x00\x01test\x00netascii\x00",  # TFTP read request
    123: b"\xe3\x00\x04\xfa\x00\x01\x00\x00\x00\x01\x00\x00",  # NTP
    137: (b"\x80\xf0\x00\x10\x00\x01\x00\x00\x00\x00\x00\x00"
          b"\x20CKAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA\x00\x00\x21\x00\x01"),  # NetBIOS
    161: b"\x30\x26\x02\x01\x01\x04\x06public\xa0\x19\x02\x04",  # SNMP
    500: b"\x00" * 8,  # IKE
    1434: b"\x02",  # MS-SQL
    1900: (b"M-SEARCH * HTTP/1.1\r\nHOST: 239.255.255.250:1900\r\n"
           b"MAN: \"ssdp:discover\"\r\nMX: 1\r\nST: ssdp:all\r\n\r\n"),  # SSDP
}


def get_udp_payload(port: int) -> bytes:
    """Get port-specific UDP payload for better detection"""
    return UDP_PAYLOADS.get(port, DEFAULT_PAYLOAD)


class UdpProbe(RawProbeStrategy):
    kind = ScanKind.UDP

    async def probe(self, job: ProbeJob, token: CancellationToken) -> ProbeOutcome:
        correlation = Correlation(ident=random.getrandbits(16))
        payload = get_udp_payload(job.port)

        def accept(reply: Reply) -> bool:
            transport = reply.transport
            if isinstance(transport, UDPDatagram):
                return True
            if reply.quote is None or reply.quote.identification != correlation.ident:
                return False
            return transport.code == ICMP_PORT_UNREACH or transport.code in FILTERING_CODES

        reply, rtt, _ = await self.exchange(
            job, token,
            lambda src, dst: encode_probe(FrameKind.UDP, src, dst, correlation, payload),
            accept,
        )

        if reply is None:
            return self.outcome(job, PortState.OPEN_FILTERED, "no-response")
        transport = reply.transport
        if isinstance(transport, ICMPMessage):
            if transport.code == ICMP_PORT_UNREACH:
                return self.outcome(job, PortState.CLOSED, "port-unreach", response_time_ms=rtt)
            return self.outcome(job, PortState.FILTERED, f"icmp-{transport.code}", response_time_ms=rtt)
        return self.outcome(job, PortState.OPEN, "udp-response", response_time_ms=rtt)
