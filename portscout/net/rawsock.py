"""
Raw link-layer channel
One per scan session: a scapy L2 socket for sending and a single
AsyncSniffer reader that hands inbound frames to the event loop.
"""

import asyncio
import errno
import ipaddress
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional, Tuple

import netifaces

# Configure scapy before importing to suppress warnings
import scapy.config
scapy.config.conf.verb = 0  # Suppress scapy verbosity

from scapy.all import AsyncSniffer, conf, getmacbyip
from scapy.arch.common import compile_filter
from scapy.error import Scapy_Exception

from portscout.core.errors import InterfaceError, PrivilegeError
from portscout.net.codec import BROADCAST_MAC, ZERO_MAC, mac_to_bytes, mac_to_str

# Suppress specific scapy warnings
logging.getLogger("scapy.runtime").setLevel(logging.ERROR)

logger = logging.getLogger(__name__)

SNIFFER_START_TIMEOUT = 2.0


class RawChannel:
    """Shared raw send/receive path for syn and udp probes"""

    def __init__(self, target: ipaddress.IPv4Address, interface: Optional[str] = None):
        self.target = target
        self.interface = interface
        self.source_ip: Optional[ipaddress.IPv4Address] = None
        self.source_mac = ZERO_MAC
        self.destination_mac = BROADCAST_MAC
        self.is_loopback = False
        self.executor = ThreadPoolExecutor(max_workers=4)
        self._socket = None
        self._sniffer: Optional[AsyncSniffer] = None

    @property
    def verify_transport(self) -> bool:
        # loopback frames carry partial checksums left for offload
        return not self.is_loopback

    def _loopback_interface(self) -> Optional[str]:
        for iface in netifaces.interfaces():
            for addr in netifaces.ifaddresses(iface).get(netifaces.AF_INET, []):
                if ipaddress.IPv4Address(addr['addr']).is_loopback:
                    return iface
        return None

    def _default_gateway(self) -> Optional[Tuple[str, str]]:
        return netifaces.gateways().get('default', {}).get(netifaces.AF_INET)

    def _get_interface_info(self) -> Tuple[str, str, str, str]:
        """Get interface name, IPv4 address, netmask and MAC"""
        if self.interface:
            iface = self.interface
            if iface not in netifaces.interfaces():
                raise InterfaceError(f"interface not found: {iface}")
        elif self.target.is_loopback:
            iface = self._loopback_interface()
            if iface is None:
                raise InterfaceError("no loopback interface found")
        else:
            default = self._default_gateway()
            if not default:
                raise InterfaceError("no interface given and no default route to pick one from")
            iface = default[1]

        addrs = netifaces.ifaddresses(iface)
        inet = addrs.get(netifaces.AF_INET)
        if not inet:
            raise InterfaceError(f"interface {iface} has no IPv4 address")
        link = addrs.get(netifaces.AF_LINK) or [{}]
        mac = link[0].get('addr') or '00:00:00:00:00:00'
        return iface, inet[0]['addr'], inet[0].get('netmask', '255.255.255.255'), mac

    def _resolve_next_hop(self, address: str, netmask: str) -> bytes:
        """MAC of the target when on-link, else of the default gateway"""
        if self.is_loopback:
            return ZERO_MAC
        network = ipaddress.IPv4Network(f"{address}/{netmask}", strict=False)
        if self.target in network:
            hop = str(self.target)
        else:
            gateway = self._default_gateway()
            hop = gateway[0] if gateway else None

        mac = getmacbyip(hop) if hop else None
        if not mac:
            logger.warning(f"Could not resolve next-hop MAC for {self.target}, using broadcast")
            return BROADCAST_MAC
        logger.debug(f"Next hop for {self.target} is {hop} ({mac})")
        return mac_to_bytes(mac)

    def _bpf_filter(self, iface: str) -> Optional[str]:
        bpf = f"src host {self.target} or icmp"
        try:
            compile_filter(bpf, iface=iface)
        except (Scapy_Exception, OSError, ImportError) as e:
            # ImportError: scapy found no libpcap to compile with
            logger.warning(f"BPF filtering unavailable ({e}), filtering in userspace")
            return None
        return bpf

    async def open(self, on_frame: Callable[[bytes], None]):
        """Open the socket and start the reader; on_frame runs on the event loop"""
        iface, address, netmask, mac = self._get_interface_info()
        self.interface = iface
        self.source_ip = ipaddress.IPv4Address(address)
        self.source_mac = mac_to_bytes(mac)
        self.is_loopback = self.source_ip.is_loopback

        try:
            self._socket = conf.L2socket(iface=iface)
        except PermissionError as e:
            raise PrivilegeError(f"raw socket on {iface} denied: {e}") from e
        except OSError as e:
            if e.errno in (errno.EPERM, errno.EACCES):
                raise PrivilegeError(f"raw socket on {iface} denied: {e}") from e
            raise InterfaceError(f"cannot open raw socket on {iface}: {e}") from e

        try:
            await self._start_reader(iface, address, netmask, on_frame)
        except BaseException:
            self._stop()
            raise

        logger.info(f"Raw channel open on {iface} ({address}), next hop {mac_to_str(self.destination_mac)}")

    async def _start_reader(self, iface: str, address: str, netmask: str,
                            on_frame: Callable[[bytes], None]):
        loop = asyncio.get_running_loop()
        self.destination_mac = await loop.run_in_executor(
            self.executor, self._resolve_next_hop, address, netmask)

        def handle_packet(packet):
            try:
                loop.call_soon_threadsafe(on_frame, bytes(packet))
            except RuntimeError:
                # loop already closed; the sniffer is being torn down
                pass

        started = threading.Event()
        self._sniffer = AsyncSniffer(
            iface=iface,
            filter=self._bpf_filter(iface),
            prn=handle_packet,
            store=False,
            started_callback=started.set,
        )
        self._sniffer.start()
        if not await loop.run_in_executor(self.executor, started.wait, SNIFFER_START_TIMEOUT):
            raise InterfaceError(f"packet capture on {iface} did not start "
                                 f"within {SNIFFER_START_TIMEOUT:g}s")

    async def send(self, frame: bytes):
        if self._socket is None:
            raise RuntimeError("raw channel is not open")
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(self.executor, self._socket.send, frame)

    def _stop(self):
        if self._sniffer is not None:
            try:
                self._sniffer.stop()
            except Scapy_Exception as ex:
                logger.warning(f"Error stopping sniffer: {ex}")
            self._sniffer = None
        if self._socket is not None:
            self._socket.close()
            self._socket = None

    async def close(self):
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(self.executor, self._stop)
        self.executor.shutdown(wait=False)
