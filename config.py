"""
Configuration settings for the oproxy relay client
"""

from dataclasses import dataclass
from typing import List
from enum import Enum


class Verbosity(Enum):
    """Output verbosity levels"""
    QUIET = 0
    NORMAL = 1
    VERBOSE = 2
    DEBUG = 3


@dataclass
class ClientConfig:
    """Main client configuration"""
    # Relay endpoint every tunneled request is physically sent to
    relay_endpoint: str = ""

    # Socket timeout for the hop to the relay (seconds)
    timeout: float = 10.0

    # Verify SSL certificates of the relay
    verify_ssl: bool = True

    # Refuse relay replies that carry no side-channel headers
    strict: bool = False

    # Output verbosity
    verbosity: Verbosity = Verbosity.NORMAL

    # User-Agent string sent to the relay
    user_agent: str = "oproxy-client/1.0"


# Envelope headers (client -> relay)
ENDPOINT_HEADER = "endpoint"
OPTIONS_HEADER = "oproxy-options"
HEADERS_HEADER = "headers"

# Side-channel headers (relay -> client)
INCOMING_HEADERS_HEADER = "incomingHeaders"
RECEIVED_STATUS_HEADER = "receivedStatus"

# Order of the keys serialized into the oproxy-options header
ENVELOPE_OPTION_KEYS: List[str] = [
    "method",
    "mode",
    "credentials",
    "redirect",
    "referrer",
    "referrerPolicy",
    "integrity",
    "keepalive",
]

# Redirect policies understood by the relay
REDIRECT_POLICIES = ["follow", "manual", "error"]


# Default request method when none is given
DEFAULT_METHOD = "GET"

# Default ports
DEFAULT_HTTP_PORT = 80
DEFAULT_HTTPS_PORT = 443

# Flags always passed to curl: include headers, silent, show errors, follow
CURL_FLAGS = ["-isSL"]
