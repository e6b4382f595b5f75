"""
oproxy: tunnel HTTP requests through a relay and parse raw HTTP responses
"""

from .cancel import CancellationToken, RequestAborted, TransportError
from .connection import RawHTTPClient, RawSocketTransport, Transport, TransportRequest
from .curl import CurlError, curl
from .parser import HTTPResponseParser, HTTPSyntaxError, parse_response
from .response import HTTPResponse, headers_to_dict, make_headers
from .timeout import OperationTimeout, with_timeout
from .tunnel import (
    ConfigurationError,
    MissingSideChannelError,
    RequestOptions,
    TunnelClient,
    TunnelResponse,
    build_envelope,
)

__all__ = [
    "CancellationToken",
    "RequestAborted",
    "TransportError",
    "RawHTTPClient",
    "RawSocketTransport",
    "Transport",
    "TransportRequest",
    "CurlError",
    "curl",
    "HTTPResponseParser",
    "HTTPSyntaxError",
    "parse_response",
    "HTTPResponse",
    "headers_to_dict",
    "make_headers",
    "OperationTimeout",
    "with_timeout",
    "ConfigurationError",
    "MissingSideChannelError",
    "RequestOptions",
    "TunnelClient",
    "TunnelResponse",
    "build_envelope",
]
