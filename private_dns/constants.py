# private_dns/constants.py
# Version: 1.0.0
# DNS proxy constants - all hardcoded values in one place for easy configuration

"""
PrivateDNS Constants

All hardcoded values are defined here at the top of the module for easy
visibility and modification.
"""

# =============================================================================
# DNS PROTOCOL CONSTANTS
# =============================================================================
DNS_STANDARD_PORT = 53
DNS_DEFAULT_PORT = 5353  # Non-privileged default listen port
DNS_RECEIVE_BUFFER_SIZE = 4096  # Upstream replies may exceed 512 bytes with EDNS

DNS_HEADER_SIZE = 12  # Fixed header: id, flags and four section counts
DNS_POINTER_MASK = 0xC0  # Top two bits of a length byte mark a compression pointer

# Record types and classes
DNS_TYPE_A = 1
DNS_CLASS_IN = 1

# Flag word for a standard "no error" response with recursion desired/available
DNS_FLAGS_STANDARD_RESPONSE = 0x8180

# =============================================================================
# BLOCKED RESPONSE
# =============================================================================
BLOCKED_RESPONSE_ADDRESS = "127.0.0.1"
BLOCKED_RESPONSE_TTL = 300  # 5 minutes

# =============================================================================
# TIMEOUT SETTINGS
# =============================================================================
DNS_QUERY_TIMEOUT = 5.0  # Seconds to wait for an upstream reply

# =============================================================================
# UPSTREAM SERVERS
# =============================================================================
DEFAULT_UPSTREAM_SERVERS = (
    "8.8.8.8:53",
    "8.8.4.4:53",
    "1.1.1.1:53",
    "1.0.0.1:53",
)

# =============================================================================
# ALLOWLIST
# =============================================================================
DEFAULT_ALLOWED_DOMAINS_FILE = "allowed-domains.json"
DEFAULT_ALLOWED_DOMAINS = (
    "google.com",
    "*.google.com",
    "microsoft.com",
    "*.microsoft.com",
    "github.com",
    "*.github.com",
)
WILDCARD_PREFIX = "*."
ALLOWLIST_JSON_INDENT = 2

# =============================================================================
# CONCURRENCY
# =============================================================================
MAX_IN_FLIGHT_QUERIES = 1000  # 0 disables the limit

# =============================================================================
# QUERY VALIDATION
# =============================================================================
MAX_DNS_NAME_LENGTH = 255  # Maximum wire length of a DNS name
MAX_DNS_LABEL_LENGTH = 63  # Maximum length of a single label

# Port range validation
MIN_PORT_NUMBER = 1  # Minimum valid port number
MAX_PORT_NUMBER = 65535  # Maximum valid port number
