"""
Probe strategies, one per scan kind
"""

from typing import Optional

from portscout.core.models import ScanKind, ScanTarget
from portscout.scanners.base import ProbeStrategy, RawProbeStrategy
from portscout.scanners.connect import ConnectProbe
from portscout.scanners.syn import SynProbe
from portscout.scanners.udp import UdpProbe


def create_strategy(kind: ScanKind, target: ScanTarget, banners: bool = False,
                    banner_timeout: float = 3.0, interface: Optional[str] = None,
                    channel=None) -> ProbeStrategy:
    """Get the probe strategy for a scan kind"""
    strategies = {
        ScanKind.CONNECT: lambda: ConnectProbe(target, banners=banners, banner_timeout=banner_timeout),
        ScanKind.SYN: lambda: SynProbe(target, interface=interface, channel=channel),
        ScanKind.UDP: lambda: UdpProbe(target, interface=interface, channel=channel),
    }
    return strategies[kind]()


__all__ = [
    "ProbeStrategy", "RawProbeStrategy", "ConnectProbe", "SynProbe", "UdpProbe",
    "create_strategy",
]
