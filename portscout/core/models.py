"""
Scan data model
Immutable values shared by the scheduler, probes and report builder
"""

import ipaddress
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class ScanKind(Enum):
    """Supported scan types"""
    CONNECT = "connect"
    SYN = "syn"
    UDP = "udp"

    @property
    def protocol(self) -> str:
        return "udp" if self is ScanKind.UDP else "tcp"

    @property
    def requires_privileges(self) -> bool:
        return self is not ScanKind.CONNECT

    @property
    def label(self) -> str:
        return {
            ScanKind.CONNECT: "TCP Connect",
            ScanKind.SYN: "SYN Stealth",
            ScanKind.UDP: "UDP",
        }[self]


class PortState(Enum):
    """Reachability state of a single port"""
    OPEN = "open"
    CLOSED = "closed"
    FILTERED = "filtered"
    OPEN_FILTERED = "open|filtered"  # udp only: silence is ambiguous

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ScanTarget:
    """A resolved scan target"""
    address: IPAddress
    hostname: str
    interface: Optional[str] = None

    @property
    def ip(self) -> str:
        return str(self.address)

    @property
    def is_ipv4(self) -> bool:
        return self.address.version == 4

    def __str__(self) -> str:
        if self.hostname and self.hostname != self.ip:
            return f"{self.hostname} ({self.ip})"
        return self.ip


@dataclass(frozen=True)
class ProbeJob:
    """One port to probe; consumed by exactly one probe task"""
    target: ScanTarget
    port: int
    kind: ScanKind
    timeout: float


@dataclass(frozen=True)
class ProbeOutcome:
    """Result for a single port probe"""
    port: int
    protocol: str
    state: PortState
    service: Optional[str] = None
    banner: Optional[str] = None
    response_time_ms: Optional[float] = None
    reason: str = ""
