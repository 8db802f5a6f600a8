"""
Port specification parsing
Expands "22,80,443,8000-8002" style specifications into a PortSet
"""

from typing import Iterable, List, Tuple, Union

from portscout.core.errors import ConfigError

MIN_PORT = 1
MAX_PORT = 65535

PortSet = Tuple[int, ...]

# Top ports based on nmap's frequency data
TOP_PORTS = [
    80, 23, 443, 21, 22, 25, 3389, 110, 445, 139,
    143, 53, 135, 3306, 8080, 1723, 111, 995, 993, 5900,
    1025, 587, 8888, 199, 1720, 465, 548, 113, 81, 6001,
    10000, 514, 5060, 179, 1026, 2000, 8443, 8000, 32768, 554,
    26, 1433, 49152, 2001, 515, 8008, 49154, 1027, 5666, 646,
    5000, 5631, 631, 49153, 8081, 2049, 88, 79, 5800, 106,
    2121, 1110, 49155, 6000, 513, 990, 5357, 427, 49156, 543,
    544, 5101, 144, 7, 389, 8009, 3128, 444, 9999, 5009,
    7070, 5190, 3000, 5432, 1900, 3986, 13, 1029, 9, 5051,
    6646, 49157, 1028, 873, 1755, 2717, 4899, 9100, 119, 37,
]


def _parse_port(token: str, part: str) -> int:
    token = token.strip()
    if not token.isdigit():
        raise ConfigError(f"invalid port number '{token}' in '{part}'")
    port = int(token)
    if not MIN_PORT <= port <= MAX_PORT:
        raise ConfigError(f"port {port} is out of valid range ({MIN_PORT}-{MAX_PORT})")
    return port


def parse_ports(ports: Union[str, Iterable[int]]) -> PortSet:
    """Parse a port specification into a sorted, deduplicated PortSet"""
    if not isinstance(ports, str):
        return normalize_ports(ports)

    spec = ports.strip()
    if not spec:
        raise ConfigError("empty port specification")

    port_list: List[int] = []
    for part in spec.split(','):
        part = part.strip()
        if not part:
            raise ConfigError(f"empty entry in port specification '{spec}'")
        if '-' in part:
            bounds = part.split('-')
            if len(bounds) != 2:
                raise ConfigError(f"invalid port range '{part}'")
            start = _parse_port(bounds[0], part)
            end = _parse_port(bounds[1], part)
            if start > end:
                raise ConfigError(f"invalid port range '{part}': start {start} > end {end}")
            port_list.extend(range(start, end + 1))
        else:
            port_list.append(_parse_port(part, part))

    return tuple(sorted(set(port_list)))


def normalize_ports(ports: Iterable[int]) -> PortSet:
    """Validate an explicit collection of port numbers"""
    port_set = set()
    for port in ports:
        if not isinstance(port, int) or not MIN_PORT <= port <= MAX_PORT:
            raise ConfigError(f"port {port!r} is out of valid range ({MIN_PORT}-{MAX_PORT})")
        port_set.add(port)
    if not port_set:
        raise ConfigError("empty port specification")
    return tuple(sorted(port_set))


def get_top_ports(n: int) -> str:
    """Get top N most common ports as a port specification"""
    if n < 1:
        raise ConfigError(f"top ports count must be positive, got {n}")
    return ','.join(str(p) for p in TOP_PORTS[:n])
