__version__ = "1.0.0"
__author__ = "PrivateDNS Team"
