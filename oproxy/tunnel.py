"""
Tunneling Client

Sends an arbitrary HTTP request through a single relay endpoint and
rebuilds the target's response from the relay's reply.

Wire contract:
    request -> relay:  endpoint, oproxy-options (JSON), headers (JSON)
    relay -> client:   incomingHeaders (JSON, optional),
                       receivedStatus (decimal, optional)
"""

import json
import re
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

from multidict import CIMultiDictProxy

from config import (
    DEFAULT_METHOD,
    ENDPOINT_HEADER,
    ENVELOPE_OPTION_KEYS,
    HEADERS_HEADER,
    INCOMING_HEADERS_HEADER,
    OPTIONS_HEADER,
    RECEIVED_STATUS_HEADER,
    ClientConfig,
)

from .cancel import CancellationToken
from .connection import Body, RawSocketTransport, Transport, TransportRequest
from .log import get_logger
from .response import HeaderSource, HTTPResponse, headers_to_dict, make_headers

logger = get_logger(__name__)


class ConfigurationError(ValueError):
    """Invalid client configuration"""
    pass


class MissingSideChannelError(ValueError):
    """Relay reply carried neither incomingHeaders nor receivedStatus"""
    pass


@dataclass
class RequestOptions:
    """
    Logical request for the tunneled target.

    Every field defaults to None ("not specified"). Only method gets a
    default, "GET", applied when the envelope is built.
    """
    method: Optional[str] = None
    body: Body = None
    mode: Optional[str] = None
    keepalive: Optional[bool] = None
    signal: Optional[CancellationToken] = None
    credentials: Optional[str] = None
    redirect: Optional[str] = None
    referrer: Optional[str] = None
    referrer_policy: Optional[str] = None
    integrity: Optional[str] = None
    headers: HeaderSource = None


@dataclass(frozen=True)
class TunnelResponse(HTTPResponse):
    """
    Response of a tunneled request.

    status and headers hold the target's values, already resolved from the
    side channel. proxy_status and proxy_headers keep the relay's own
    physical reply.
    """
    __hash__ = None

    proxy_status: int = 0
    proxy_headers: CIMultiDictProxy = field(default_factory=make_headers)
    status_overridden: bool = False
    headers_overridden: bool = False

    @property
    def tunneled(self) -> bool:
        """Whether the relay supplied any side-channel override"""
        return self.status_overridden or self.headers_overridden


def build_envelope(endpoint: Any, options: RequestOptions) -> Dict[str, str]:
    """
    Encode a logical request as relay envelope headers.

    Args:
        endpoint: Target URL (str or any object whose str() is the URL)
        options: Logical request options

    Returns:
        Dictionary of envelope headers
    """
    relay_options = {}
    for key in ENVELOPE_OPTION_KEYS:
        value = getattr(options, _option_attribute(key))
        if key == "method" and value is None:
            value = DEFAULT_METHOD
        # Unset options are omitted so the relay can tell them from empty values
        if value is not None:
            relay_options[key] = value

    return {
        ENDPOINT_HEADER: endpoint if isinstance(endpoint, str) else str(endpoint),
        OPTIONS_HEADER: json.dumps(relay_options),
        HEADERS_HEADER: "{}" if options.headers is None else json.dumps(headers_to_dict(options.headers)),
    }


def _option_attribute(key: str) -> str:
    """referrerPolicy -> referrer_policy"""
    return re.sub(r"([A-Z])", lambda m: "_" + m.group(1).lower(), key)


def decode_incoming_headers(value: str) -> Optional[CIMultiDictProxy]:
    """
    Decode the incomingHeaders side channel (JSON object or list of pairs).

    Returns None when the relay sent a JSON null, meaning no override.
    """
    decoded = json.loads(value)
    if decoded is None:
        return None
    return make_headers(decoded)


def decode_received_status(value: str) -> int:
    """Decode the receivedStatus side channel"""
    status = int(value.strip())
    if status <= 0:
        raise ValueError(f"Invalid {RECEIVED_STATUS_HEADER} value: {value!r}")
    return status


class TunnelClient:
    """
    HTTP client that tunnels every request through one relay endpoint.

    The returned response reads like a direct response from the target:
    status and headers reflect the relay's side-channel overrides, while
    the relay's own headers stay available as proxy_headers.

    Example:
        client = TunnelClient("https://relay.example.com/")
        response = client.fetch("https://api.example.com/items", method="POST", body="{}")
        print(response.status, response.headers.get("content-type"))
        print(response.proxy_headers.get("x-ratelimit-remaining"))
    """

    def __init__(
        self,
        relay_endpoint: Any,
        transport: Optional[Transport] = None,
        strict: bool = False,
    ):
        """
        Initialize the tunneling client.

        Args:
            relay_endpoint: URL of the relay
            transport: Transport used for the hop to the relay
                       (default: RawSocketTransport)
            strict: Raise MissingSideChannelError when a reply carries no
                    side-channel headers instead of falling back to the
                    relay's own status and headers

        Raises:
            ConfigurationError: If relay_endpoint is blank
        """
        self.relay_endpoint = relay_endpoint if isinstance(relay_endpoint, str) else str(relay_endpoint)
        if len(self.relay_endpoint) == 0:
            raise ConfigurationError("Proxy endpoint must not be a blank string")

        self.transport: Transport = transport or RawSocketTransport()
        self.strict = strict

    @classmethod
    def from_config(cls, config: ClientConfig, transport: Optional[Transport] = None) -> "TunnelClient":
        return cls(
            config.relay_endpoint,
            transport=transport or RawSocketTransport.from_config(config),
            strict=config.strict,
        )

    def fetch(
        self,
        endpoint: Any,
        options: Optional[RequestOptions] = None,
        **kwargs,
    ) -> TunnelResponse:
        """
        Send a request to endpoint through the relay.

        Args:
            endpoint: Target URL
            options: Request options
            **kwargs: RequestOptions fields, overriding those in options

        Returns:
            TunnelResponse with the target's status and headers

        Raises:
            TransportError: Propagated unchanged from the transport
            json.JSONDecodeError: Malformed incomingHeaders
            ValueError: Non-numeric receivedStatus
            MissingSideChannelError: In strict mode, reply had no overrides
        """
        options = replace(options or RequestOptions(), **kwargs)
        envelope = build_envelope(endpoint, options)
        logger.debug(f"Tunneling {envelope[OPTIONS_HEADER]} to {envelope[ENDPOINT_HEADER]} via {self.relay_endpoint}")

        request = TransportRequest(
            method=DEFAULT_METHOD if options.method is None else options.method,
            headers=envelope,
            body=options.body,
            mode=options.mode,
            keepalive=options.keepalive,
            signal=options.signal,
            credentials=options.credentials,
            # The relay handles redirects against the target
            redirect="manual",
        )

        reply = self.transport(self.relay_endpoint, request)
        return self._resolve(reply)

    tunnel = fetch

    def _resolve(self, reply: HTTPResponse) -> TunnelResponse:
        """Apply side-channel overrides to the relay's physical reply"""
        proxy_headers = reply.headers
        raw_headers = proxy_headers.get(INCOMING_HEADERS_HEADER)
        raw_status = proxy_headers.get(RECEIVED_STATUS_HEADER)

        if raw_headers is None and raw_status is None and self.strict:
            raise MissingSideChannelError(
                f"Relay reply ({reply.status}) carried no {INCOMING_HEADERS_HEADER} "
                f"or {RECEIVED_STATUS_HEADER} header"
            )

        headers = proxy_headers
        incoming = None
        if raw_headers is not None:
            incoming = decode_incoming_headers(raw_headers)
        if incoming is not None:
            headers = incoming
            logger.debug(f"Replacing relay headers with {len(headers)} tunneled headers")

        status = reply.status
        if raw_status is not None:
            status = decode_received_status(raw_status)
            logger.debug(f"Replacing relay status {reply.status} with {status}")

        return TunnelResponse(
            status=status,
            status_text=reply.status_text,
            headers=headers,
            body=reply.body,
            proxy_status=reply.status,
            proxy_headers=proxy_headers,
            status_overridden=raw_status is not None,
            headers_overridden=incoming is not None,
        )
