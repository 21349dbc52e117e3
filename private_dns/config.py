import configparser
import os
import sys
from typing import Any, List, Optional

from private_dns.constants import (
    DEFAULT_ALLOWED_DOMAINS_FILE,
    DEFAULT_UPSTREAM_SERVERS,
    DNS_DEFAULT_PORT,
    DNS_QUERY_TIMEOUT,
    MAX_IN_FLIGHT_QUERIES,
)


class DNSProxyConfig:
    """Configuration manager for the PrivateDNS proxy"""

    DEFAULT_CONFIG_PATH = "/etc/private-dns/private-dns.cfg"
    DEFAULT_CONFIG = {
        "dns-proxy": {
            "listen-port": str(DNS_DEFAULT_PORT),
            "listen-address": "0.0.0.0",
            "max-in-flight": str(MAX_IN_FLIGHT_QUERIES),
        },
        "forwarder-dns": {
            "server-addresses": ",".join(DEFAULT_UPSTREAM_SERVERS),
            "timeout": str(DNS_QUERY_TIMEOUT),
        },
        "allowlist": {
            "domains-file": DEFAULT_ALLOWED_DOMAINS_FILE,
        },
        "log-file": {
            "log-file": "none",
            "debug-level": "INFO",
            "syslog": "false",
        },
    }

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or self.DEFAULT_CONFIG_PATH
        self.config = configparser.ConfigParser()
        self._load_defaults()
        self._load_config()

    def _load_defaults(self):
        """Load default configuration"""
        for section, options in self.DEFAULT_CONFIG.items():
            self.config.add_section(section)
            for key, value in options.items():
                self.config.set(section, key, value)

    def _load_config(self):
        """Load configuration from file"""
        if os.path.exists(self.config_path):
            try:
                self.config.read(self.config_path)
            except configparser.Error as e:
                print(f"Error reading config file {self.config_path}: {e}", file=sys.stderr)
                sys.exit(1)
        else:
            print(f"Warning: Config file {self.config_path} not found, using defaults")

    def get(self, section: str, option: str, fallback: Any = None) -> str:
        """Get configuration value"""
        try:
            return self.config.get(section, option)
        except (configparser.NoSectionError, configparser.NoOptionError):
            return fallback

    def getint(self, section: str, option: str, fallback: int = 0) -> int:
        """Get integer configuration value"""
        try:
            return self.config.getint(section, option)
        except (configparser.NoSectionError, configparser.NoOptionError, ValueError):
            return fallback

    def getfloat(self, section: str, option: str, fallback: float = 0.0) -> float:
        """Get float configuration value"""
        try:
            return self.config.getfloat(section, option)
        except (configparser.NoSectionError, configparser.NoOptionError, ValueError):
            return fallback

    def getboolean(self, section: str, option: str, fallback: bool = False) -> bool:
        """Get boolean configuration value"""
        try:
            return self.config.getboolean(section, option)
        except (configparser.NoSectionError, configparser.NoOptionError, ValueError):
            return fallback

    def get_upstream_servers(self) -> List[str]:
        """Get the ordered list of upstream DNS servers

        Servers are given as a comma-separated list of IP:PORT entries:
        "8.8.8.8:53,1.1.1.1:53,192.168.1.1:5353"

        Entries are returned as written; parsing and validation happen when
        the forwarder is constructed so a bad entry fails startup.

        Returns:
            List of "address:port" strings
        """
        server_addresses = self.get("forwarder-dns", "server-addresses", "")
        return [spec.strip() for spec in server_addresses.split(",") if spec.strip()]

    def get_domains_file(self) -> str:
        """Get the allowlist file path, relative paths resolved against the config file"""
        domains_file = self.get("allowlist", "domains-file", DEFAULT_ALLOWED_DOMAINS_FILE)
        if os.path.isabs(domains_file) or not os.path.exists(self.config_path):
            return domains_file
        return os.path.join(os.path.dirname(os.path.abspath(self.config_path)), domains_file)
