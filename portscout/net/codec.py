"""
Packet codec
Builds and parses Ethernet / IPv4 / TCP / UDP / ICMP headers.

Headers are fixed-layout frozen dataclasses. Length and checksum fields
are never stored on them: encode() derives them from the other fields and
decode() verifies them before any field is exposed, so that
decode(encode(frame)) == frame for every valid frame.
"""

import ipaddress
import struct
from dataclasses import dataclass
from enum import Enum, IntFlag
from typing import Optional, Tuple, Union

from portscout.core.errors import DecodeError

ETH_HEADER_LEN = 14
IPV4_MIN_HEADER_LEN = 20
TCP_MIN_HEADER_LEN = 20
UDP_HEADER_LEN = 8
ICMP_HEADER_LEN = 8

ETHERTYPE_IPV4 = 0x0800

PROTO_ICMP = 1
PROTO_TCP = 6
PROTO_UDP = 17

IP_FLAG_DF = 0b010
IP_FLAG_MF = 0b001

ICMP_DEST_UNREACH = 3
ICMP_PORT_UNREACH = 3

ZERO_MAC = b"\x00" * 6
BROADCAST_MAC = b"\xff" * 6

# MSS 1460, as sent by ordinary stacks
SYN_OPTIONS = b"\x02\x04\x05\xb4"

_ETH = struct.Struct("!6s6sH")
_IPV4 = struct.Struct("!BBHHHBBH4s4s")
_TCP = struct.Struct("!HHIIBBHHH")
_UDP = struct.Struct("!HHHH")
_ICMP = struct.Struct("!BBHI")
_PSEUDO = struct.Struct("!4s4sBBH")


class TCPFlags(IntFlag):
    FIN = 0x01
    SYN = 0x02
    RST = 0x04
    PSH = 0x08
    ACK = 0x10
    URG = 0x20
    ECE = 0x40
    CWR = 0x80


@dataclass(frozen=True)
class EthernetHeader:
    dst: bytes
    src: bytes
    ethertype: int = ETHERTYPE_IPV4


@dataclass(frozen=True)
class IPv4Header:
    src: ipaddress.IPv4Address
    dst: ipaddress.IPv4Address
    protocol: int
    identification: int = 0
    ttl: int = 64
    tos: int = 0
    flags: int = IP_FLAG_DF
    fragment_offset: int = 0
    options: bytes = b""


@dataclass(frozen=True)
class TCPSegment:
    src_port: int
    dst_port: int
    seq: int = 0
    ack: int = 0
    flags: int = 0
    window: int = 65535
    urgent: int = 0
    options: bytes = b""
    payload: bytes = b""

    def has(self, flags: int) -> bool:
        return (self.flags & flags) == flags


@dataclass(frozen=True)
class UDPDatagram:
    src_port: int
    dst_port: int
    payload: bytes = b""


@dataclass(frozen=True)
class ICMPMessage:
    type: int
    code: int
    rest: int = 0
    payload: bytes = b""

    @property
    def is_unreachable(self) -> bool:
        return self.type == ICMP_DEST_UNREACH


Transport = Union[TCPSegment, UDPDatagram, ICMPMessage]

_TRANSPORT_PROTOCOLS = {
    TCPSegment: PROTO_TCP,
    UDPDatagram: PROTO_UDP,
    ICMPMessage: PROTO_ICMP,
}


@dataclass(frozen=True)
class Frame:
    """A parsed or to-be-encoded frame; ethernet is None for bare IPv4"""
    ethernet: Optional[EthernetHeader]
    ip: IPv4Header
    transport: Transport


# ---------------------------------------------------------------- helpers

def internet_checksum(data: bytes) -> int:
    """RFC 1071 ones' complement checksum"""
    data = bytes(data)
    if len(data) % 2:
        data += b"\x00"
    total = sum(struct.unpack(f"!{len(data) // 2}H", data))
    while total >> 16:
        total = (total & 0xFFFF) + (total >> 16)
    return ~total & 0xFFFF


def _pseudo_header(src: ipaddress.IPv4Address, dst: ipaddress.IPv4Address,
                   protocol: int, length: int) -> bytes:
    return _PSEUDO.pack(src.packed, dst.packed, 0, protocol, length)


def _with_checksum(data: bytes, offset: int, checksum: int) -> bytes:
    return data[:offset] + struct.pack("!H", checksum) + data[offset + 2:]


def mac_to_bytes(mac: str) -> bytes:
    """Convert 'aa:bb:cc:dd:ee:ff' to 6 raw bytes"""
    parts = mac.replace('-', ':').split(':')
    if len(parts) != 6:
        raise ValueError(f"invalid MAC address: {mac}")
    return bytes(int(p, 16) for p in parts)


def mac_to_str(mac: bytes) -> str:
    return ':'.join(f"{b:02x}" for b in mac)


# ----------------------------------------------------------------- encode

def _encode_tcp(seg: TCPSegment, ip: IPv4Header) -> bytes:
    if len(seg.options) % 4:
        raise ValueError("TCP options must be padded to a multiple of 4 bytes")
    data_offset = (TCP_MIN_HEADER_LEN + len(seg.options)) // 4
    if data_offset > 15:
        raise ValueError("TCP options too long")
    header = _TCP.pack(seg.src_port, seg.dst_port, seg.seq, seg.ack,
                       data_offset << 4, seg.flags, seg.window, 0, seg.urgent)
    segment = header + seg.options + seg.payload
    pseudo = _pseudo_header(ip.src, ip.dst, PROTO_TCP, len(segment))
    return _with_checksum(segment, 16, internet_checksum(pseudo + segment))


def _encode_udp(dgram: UDPDatagram, ip: IPv4Header) -> bytes:
    length = UDP_HEADER_LEN + len(dgram.payload)
    datagram = _UDP.pack(dgram.src_port, dgram.dst_port, length, 0) + dgram.payload
    pseudo = _pseudo_header(ip.src, ip.dst, PROTO_UDP, length)
    # a computed zero is transmitted as all ones (RFC 768)
    checksum = internet_checksum(pseudo + datagram) or 0xFFFF
    return _with_checksum(datagram, 6, checksum)


def _encode_icmp(msg: ICMPMessage) -> bytes:
    message = _ICMP.pack(msg.type, msg.code, 0, msg.rest) + msg.payload
    return _with_checksum(message, 2, internet_checksum(message))


def _encode_ipv4(ip: IPv4Header, payload: bytes) -> bytes:
    if len(ip.options) % 4:
        raise ValueError("IPv4 options must be padded to a multiple of 4 bytes")
    ihl = (IPV4_MIN_HEADER_LEN + len(ip.options)) // 4
    if ihl > 15:
        raise ValueError("IPv4 options too long")
    total_length = ihl * 4 + len(payload)
    if total_length > 0xFFFF:
        raise ValueError("IPv4 datagram too long")
    header = _IPV4.pack((4 << 4) | ihl, ip.tos, total_length, ip.identification,
                        (ip.flags << 13) | ip.fragment_offset, ip.ttl, ip.protocol, 0,
                        ip.src.packed, ip.dst.packed) + ip.options
    return _with_checksum(header, 10, internet_checksum(header)) + payload


def encode(frame: Frame) -> bytes:
    """Encode a frame into wire bytes with all lengths and checksums filled in"""
    transport = frame.transport
    expected = _TRANSPORT_PROTOCOLS.get(type(transport))
    if expected is None:
        raise ValueError(f"unsupported transport {type(transport).__name__}")
    if frame.ip.protocol != expected:
        raise ValueError(f"IPv4 protocol {frame.ip.protocol} does not match "
                         f"{type(transport).__name__}")

    if isinstance(transport, TCPSegment):
        body = _encode_tcp(transport, frame.ip)
    elif isinstance(transport, UDPDatagram):
        body = _encode_udp(transport, frame.ip)
    else:
        body = _encode_icmp(transport)

    packet = _encode_ipv4(frame.ip, body)
    if frame.ethernet is None:
        return packet
    eth = frame.ethernet
    return _ETH.pack(eth.dst, eth.src, eth.ethertype) + packet


# ----------------------------------------------------------------- probes

class FrameKind(Enum):
    """Frames the raw probes send"""
    SYN = "syn"
    RST = "rst"
    UDP = "udp"


@dataclass(frozen=True)
class Endpoint:
    mac: bytes
    ip: ipaddress.IPv4Address
    port: int


@dataclass(frozen=True)
class Correlation:
    """Per-probe random values echoed back by the peer"""
    seq: int = 0
    ident: int = 0


def build_frame(kind: FrameKind, source: Endpoint, destination: Endpoint,
                correlation: Correlation, payload: bytes = b"") -> Frame:
    """Build the frame for a probe of the given kind"""
    if kind is FrameKind.SYN:
        transport = TCPSegment(source.port, destination.port, seq=correlation.seq,
                               flags=TCPFlags.SYN, window=65535, options=SYN_OPTIONS)
    elif kind is FrameKind.RST:
        transport = TCPSegment(source.port, destination.port, seq=correlation.seq,
                               flags=TCPFlags.RST, window=0)
    else:
        transport = UDPDatagram(source.port, destination.port, payload)

    ip = IPv4Header(src=source.ip, dst=destination.ip,
                    protocol=_TRANSPORT_PROTOCOLS[type(transport)],
                    identification=correlation.ident)
    return Frame(EthernetHeader(dst=destination.mac, src=source.mac), ip, transport)


def encode_probe(kind: FrameKind, source: Endpoint, destination: Endpoint,
                 correlation: Correlation, payload: bytes = b"") -> bytes:
    return encode(build_frame(kind, source, destination, correlation, payload))


# ----------------------------------------------------------------- decode

def _parse_ipv4_header(data: memoryview) -> Tuple[IPv4Header, int, int]:
    """Parse an IPv4 header without checksum validation"""
    if len(data) < IPV4_MIN_HEADER_LEN:
        raise DecodeError(f"IPv4 header truncated: {len(data)} bytes")
    (ver_ihl, tos, total_length, ident, flags_frag, ttl, protocol, _checksum,
     src, dst) = _IPV4.unpack_from(data, 0)
    if ver_ihl >> 4 != 4:
        raise DecodeError(f"not an IPv4 packet (version {ver_ihl >> 4})")
    header_len = (ver_ihl & 0x0F) * 4
    if header_len < IPV4_MIN_HEADER_LEN:
        raise DecodeError(f"invalid IPv4 header length {header_len}")
    if len(data) < header_len:
        raise DecodeError("IPv4 options truncated")
    header = IPv4Header(
        src=ipaddress.IPv4Address(bytes(src)),
        dst=ipaddress.IPv4Address(bytes(dst)),
        protocol=protocol,
        identification=ident,
        ttl=ttl,
        tos=tos,
        flags=flags_frag >> 13,
        fragment_offset=flags_frag & 0x1FFF,
        options=bytes(data[IPV4_MIN_HEADER_LEN:header_len]),
    )
    return header, header_len, total_length


def _verify(data: bytes, what: str):
    if internet_checksum(data) != 0:
        raise DecodeError(f"{what} checksum mismatch")


def _decode_tcp(data: memoryview, ip: IPv4Header, verify: bool) -> TCPSegment:
    if len(data) < TCP_MIN_HEADER_LEN:
        raise DecodeError(f"TCP header truncated: {len(data)} bytes")
    sport, dport, seq, ack, offset_byte, flags, window, _checksum, urgent = \
        _TCP.unpack_from(data, 0)
    header_len = (offset_byte >> 4) * 4
    if header_len < TCP_MIN_HEADER_LEN or header_len > len(data):
        raise DecodeError(f"invalid TCP data offset {header_len}")
    if verify:
        _verify(_pseudo_header(ip.src, ip.dst, PROTO_TCP, len(data)) + bytes(data), "TCP")
    return TCPSegment(sport, dport, seq=seq, ack=ack, flags=flags, window=window,
                      urgent=urgent, options=bytes(data[TCP_MIN_HEADER_LEN:header_len]),
                      payload=bytes(data[header_len:]))


def _decode_udp(data: memoryview, ip: IPv4Header, verify: bool) -> UDPDatagram:
    if len(data) < UDP_HEADER_LEN:
        raise DecodeError(f"UDP header truncated: {len(data)} bytes")
    sport, dport, length, checksum = _UDP.unpack_from(data, 0)
    if length < UDP_HEADER_LEN or length > len(data):
        raise DecodeError(f"invalid UDP length {length}")
    data = data[:length]
    # zero means the sender did not compute one
    if verify and checksum != 0:
        _verify(_pseudo_header(ip.src, ip.dst, PROTO_UDP, length) + bytes(data), "UDP")
    return UDPDatagram(sport, dport, bytes(data[UDP_HEADER_LEN:]))


def _decode_icmp(data: memoryview, verify: bool) -> ICMPMessage:
    if len(data) < ICMP_HEADER_LEN:
        raise DecodeError(f"ICMP header truncated: {len(data)} bytes")
    if verify:
        _verify(bytes(data), "ICMP")
    icmp_type, code, _checksum, rest = _ICMP.unpack_from(data, 0)
    return ICMPMessage(icmp_type, code, rest, bytes(data[ICMP_HEADER_LEN:]))


def decode_ipv4(data: bytes, verify_transport: bool = True) -> Frame:
    """Decode a bare IPv4 packet"""
    view = memoryview(data)
    ip, header_len, total_length = _parse_ipv4_header(view)
    if total_length < header_len or total_length > len(view):
        raise DecodeError(f"invalid IPv4 total length {total_length} "
                          f"for {len(view)} captured bytes")
    _verify(bytes(view[:header_len]), "IPv4 header")
    if ip.fragment_offset or ip.flags & IP_FLAG_MF:
        raise DecodeError("fragmented IPv4 packets are not reassembled")

    # drops Ethernet padding past the IPv4 total length
    payload = view[header_len:total_length]
    if ip.protocol == PROTO_TCP:
        transport = _decode_tcp(payload, ip, verify_transport)
    elif ip.protocol == PROTO_UDP:
        transport = _decode_udp(payload, ip, verify_transport)
    elif ip.protocol == PROTO_ICMP:
        transport = _decode_icmp(payload, verify_transport)
    else:
        raise DecodeError(f"unsupported IP protocol {ip.protocol}")
    return Frame(None, ip, transport)


def decode(data: bytes, verify_transport: bool = True) -> Frame:
    """Decode an Ethernet frame carrying IPv4

    Raises DecodeError for truncated, malformed or checksum-corrupted input.
    """
    if len(data) < ETH_HEADER_LEN:
        raise DecodeError(f"Ethernet header truncated: {len(data)} bytes")
    dst, src, ethertype = _ETH.unpack_from(data, 0)
    if ethertype != ETHERTYPE_IPV4:
        raise DecodeError(f"unsupported ethertype 0x{ethertype:04x}")
    inner = decode_ipv4(memoryview(data)[ETH_HEADER_LEN:], verify_transport)
    return Frame(EthernetHeader(bytes(dst), bytes(src), ethertype), inner.ip, inner.transport)


def decode_quote(payload: bytes) -> Tuple[IPv4Header, int, int]:
    """Parse the original datagram quoted in an ICMP error message

    Only the IPv4 header and the first 8 transport bytes are guaranteed to
    be present, which is enough for the source and destination ports.
    """
    view = memoryview(payload)
    ip, header_len, _total_length = _parse_ipv4_header(view)
    if len(view) < header_len + 8:
        raise DecodeError("ICMP quote too short for transport ports")
    src_port, dst_port = struct.unpack_from("!HH", view, header_len)
    return ip, src_port, dst_port
