"""Portscout - async single-host port scanner"""

__version__ = "1.0.0"
