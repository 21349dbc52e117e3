"""
PrivateDNS Proxy
An allowlist-filtering DNS proxy that forwards permitted queries upstream
and answers everything else with a loopback address
"""

from .version import __author__, __version__

__all__ = ["__author__", "__version__"]
