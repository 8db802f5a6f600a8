"""
Response demultiplexer
Matches inbound raw frames to the in-flight probe that caused them.

The lookup table is confined to the event loop thread: the raw reader
hands frames over with loop.call_soon_threadsafe(), so registration,
dispatch and removal never race.
"""

import asyncio
import ipaddress
import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Dict, NamedTuple, Optional, Tuple

from portscout.core.errors import DecodeError
from portscout.net.codec import (
    Frame, ICMPMessage, IPv4Header, PROTO_TCP, PROTO_UDP, TCPSegment, UDPDatagram,
    decode, decode_quote,
)

logger = logging.getLogger(__name__)

EPHEMERAL_PORTS = (49152, 65535)
MAX_RESERVE_ATTEMPTS = 64

_PROTOCOL_NAMES = {PROTO_TCP: "tcp", PROTO_UDP: "udp"}


class CorrelationKey(NamedTuple):
    protocol: str
    remote_port: int
    local_port: int


@dataclass(frozen=True)
class Reply:
    """A matched inbound frame"""
    frame: Frame
    received_at: float
    quote: Optional[IPv4Header] = None

    @property
    def transport(self):
        return self.frame.transport


class _Pending(NamedTuple):
    future: asyncio.Future
    accept: Optional[Callable[[Reply], bool]]


class Demultiplexer:
    """Correlation table from CorrelationKey to a pending reply future"""

    def __init__(self, target: ipaddress.IPv4Address, verify_transport: bool = True):
        self.target = target
        self.verify_transport = verify_transport
        self._pending: Dict[CorrelationKey, _Pending] = {}
        self.decode_errors = 0
        self.unmatched = 0

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, key: CorrelationKey) -> bool:
        return key in self._pending

    def register(self, protocol: str, remote_port: int,
                 accept: Optional[Callable[[Reply], bool]] = None
                 ) -> Tuple[CorrelationKey, asyncio.Future]:
        """Reserve a unique local port for a probe and return its reply future

        `accept` can reject frames that match the key but not the probe's
        sequence or identification values; rejected frames leave the entry
        in place.
        """
        for _ in range(MAX_RESERVE_ATTEMPTS):
            key = CorrelationKey(protocol, remote_port, random.randint(*EPHEMERAL_PORTS))
            if key not in self._pending:
                break
        else:
            raise RuntimeError(f"no free local port for {protocol}/{remote_port}")

        future = asyncio.get_running_loop().create_future()
        self._pending[key] = _Pending(future, accept)
        return key, future

    def discard(self, key: CorrelationKey):
        """Drop a pending entry after match, timeout or cancellation"""
        pending = self._pending.pop(key, None)
        if pending is not None and not pending.future.done():
            pending.future.cancel()

    def close(self):
        for key in list(self._pending):
            self.discard(key)

    def _key_for(self, frame: Frame) -> Tuple[Optional[CorrelationKey], Optional[IPv4Header]]:
        transport = frame.transport
        if isinstance(transport, TCPSegment):
            return CorrelationKey("tcp", transport.src_port, transport.dst_port), None
        if isinstance(transport, UDPDatagram):
            return CorrelationKey("udp", transport.src_port, transport.dst_port), None
        if isinstance(transport, ICMPMessage) and transport.is_unreachable:
            quoted, src_port, dst_port = decode_quote(transport.payload)
            protocol = _PROTOCOL_NAMES.get(quoted.protocol)
            if protocol is None or quoted.dst != self.target:
                return None, None
            return CorrelationKey(protocol, dst_port, src_port), quoted
        return None, None

    def dispatch(self, raw: bytes) -> bool:
        """Hand an inbound frame to its waiting probe; returns True on match"""
        try:
            frame = decode(raw, verify_transport=self.verify_transport)
            # ICMP errors may come from a router on the path; their quote is checked instead
            if frame.ip.src != self.target and not isinstance(frame.transport, ICMPMessage):
                return False
            key, quote = self._key_for(frame)
        except DecodeError as e:
            self.decode_errors += 1
            logger.debug(f"Discarding undecodable frame ({len(raw)} bytes): {e}")
            return False

        pending = self._pending.get(key) if key is not None else None
        if pending is None or pending.future.done():
            self.unmatched += 1
            return False

        reply = Reply(frame, time.monotonic(), quote)
        if pending.accept is not None and not pending.accept(reply):
            self.unmatched += 1
            return False

        del self._pending[key]
        pending.future.set_result(reply)
        return True
