"""
Portscout error types
Fatal configuration errors abort a scan before any probe is admitted;
per-probe failures never leave the probe that raised them.
"""


class PortscoutError(Exception):
    """Base class for all portscout errors"""


class ConfigError(PortscoutError):
    """Malformed port specification, settings file or option combination"""


class ResolutionError(PortscoutError):
    """Target hostname could not be resolved"""


class PrivilegeError(PortscoutError):
    """Raw socket creation was denied by the operating system"""

    hint = "raw socket scans (syn, udp) require root privileges; re-run with sudo"


class InterfaceError(PortscoutError):
    """Requested network interface is missing or unusable"""


class DecodeError(PortscoutError):
    """Inbound frame is truncated, malformed or fails checksum validation"""
