"""
Raw Socket HTTP Transport

This module provides the transport primitive the tunneling client sends its
envelope through: a low-level HTTP/1.1 client on raw sockets, and a
fetch-style transport built on top of it.

Key Features:
- Full control over the request bytes sent to the relay
- TLS/SSL support
- Cooperative cancellation through a CancellationToken
- Chunked response decoding
- Never follows redirects
"""

import socket
import ssl
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, Tuple, Union
from urllib.parse import urlparse

from config import DEFAULT_HTTP_PORT, DEFAULT_HTTPS_PORT, DEFAULT_METHOD, ClientConfig

from .cancel import CancellationToken, TransportError
from .log import get_logger
from .parser import HTTPResponseParser
from .response import HTTPResponse, make_headers

logger = get_logger(__name__)


Body = Union[str, bytes, None]


@dataclass
class ConnectionStats:
    """Statistics about a connection"""
    first_byte_time: float = 0.0
    total_time: float = 0.0
    bytes_sent: int = 0
    bytes_received: int = 0


@dataclass
class TransportRequest:
    """
    Request handed to a transport.

    Mirrors fetch's RequestInit: every field except method and headers may
    be None, meaning "not specified".
    """
    method: str = DEFAULT_METHOD
    headers: Dict[str, str] = field(default_factory=dict)
    body: Body = None
    mode: Optional[str] = None
    keepalive: Optional[bool] = None
    signal: Optional[CancellationToken] = None
    credentials: Optional[str] = None
    redirect: Optional[str] = None


class Transport(Protocol):
    """Send a request to a destination and return the response"""

    def __call__(self, url: str, request: TransportRequest) -> HTTPResponse: ...


class RawHTTPClient:
    """
    Raw socket-based HTTP client.

    Example:
        client = RawHTTPClient("example.com", 443, use_ssl=True)
        client.connect()
        response, stats = client.send_request(method="POST", path="/", body="test")
        client.close()
    """

    def __init__(
        self,
        host: str,
        port: Optional[int] = None,
        use_ssl: bool = False,
        timeout: float = 10.0,
        verify_ssl: bool = True,
        signal: Optional[CancellationToken] = None,
    ):
        """
        Initialize the HTTP client.

        Args:
            host: Target hostname or IP
            port: Target port (default: 80 for HTTP, 443 for HTTPS)
            use_ssl: Whether to use TLS/SSL
            timeout: Socket timeout in seconds
            verify_ssl: Whether to verify SSL certificates
            signal: Token that aborts connect/send/receive when cancelled
        """
        self.host = host
        self.port = port or (DEFAULT_HTTPS_PORT if use_ssl else DEFAULT_HTTP_PORT)
        self.use_ssl = use_ssl
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self.signal = signal

        self.socket: Optional[socket.socket] = None
        self.ssl_socket: Optional[ssl.SSLSocket] = None
        self.connected = False
        self._unregister = None

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RawHTTPClient":
        """
        Create a client from a URL string.

        Args:
            url: Full URL (e.g., https://example.com:8443)
            **kwargs: Additional arguments passed to __init__

        Returns:
            Configured RawHTTPClient instance

        Raises:
            TransportError: If the URL has no http(s) scheme or no host
        """
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise TransportError(f"Unsupported URL: {url!r}")

        use_ssl = parsed.scheme == "https"
        port = parsed.port or (DEFAULT_HTTPS_PORT if use_ssl else DEFAULT_HTTP_PORT)

        return cls(
            host=parsed.hostname,
            port=port,
            use_ssl=use_ssl,
            **kwargs
        )

    def connect(self) -> float:
        """
        Establish connection to the target.

        Returns:
            Connection time in seconds

        Raises:
            TransportError: If connection fails
            RequestAborted: If the signal is cancelled
        """
        self._check_signal()
        start_time = time.time()

        try:
            self.socket = socket.create_connection((self.host, self.port), timeout=self.timeout)

            if self.use_ssl:
                context = ssl.create_default_context()
                if not self.verify_ssl:
                    context.check_hostname = False
                    context.verify_mode = ssl.CERT_NONE

                self.ssl_socket = context.wrap_socket(
                    self.socket,
                    server_hostname=self.host
                )

        except socket.timeout:
            raise TransportError(f"Connection timed out to {self.host}:{self.port}")
        except ssl.SSLError as e:
            raise TransportError(f"SSL error: {e}")
        except OSError as e:
            raise TransportError(f"Socket error: {e}")

        self.connected = True
        if self.signal is not None:
            self._unregister = self.signal.add_callback(self._abort)

        logger.debug(f"Connected to {self.host}:{self.port} (ssl={self.use_ssl})")
        return time.time() - start_time

    def _get_socket(self) -> socket.socket:
        """Get the active socket (SSL or plain)"""
        if self.use_ssl and self.ssl_socket:
            return self.ssl_socket
        return self.socket

    def _check_signal(self):
        if self.signal is not None:
            self.signal.raise_if_cancelled()

    def _abort(self):
        """Wake up a blocked send/recv from the cancelling thread"""
        sock = self.socket
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # Already closed by the peer or by close()
            pass

    def send_raw(self, data: bytes) -> Tuple[bytes, ConnectionStats]:
        """
        Send raw bytes and receive the full response.

        Reads until the peer closes, the declared Content-Length is
        satisfied, or the terminating chunk of a chunked body arrives.

        Args:
            data: Raw bytes to send

        Returns:
            Tuple of (response_bytes, connection_stats)

        Raises:
            TransportError: If not connected, or send/receive fails
            RequestAborted: If the signal is cancelled
        """
        if not self.connected:
            raise TransportError("Not connected. Call connect() first.")

        stats = ConnectionStats()
        sock = self._get_socket()

        start_time = time.time()
        response = b""

        try:
            self._check_signal()
            sock.sendall(data)
            stats.bytes_sent = len(data)

            while True:
                chunk = sock.recv(4096)
                self._check_signal()
                if not chunk:
                    break

                if not stats.first_byte_time:
                    stats.first_byte_time = time.time() - start_time

                response += chunk
                if _is_complete(response):
                    break

        except socket.timeout:
            raise TransportError(f"Read timed out from {self.host}:{self.port}")
        except OSError as e:
            self._check_signal()
            raise TransportError(f"Socket error: {e}")

        stats.total_time = time.time() - start_time
        stats.bytes_received = len(response)
        logger.debug(
            f"Received {stats.bytes_received} bytes from {self.host}:{self.port} "
            f"in {stats.total_time:.3f}s"
        )

        return response, stats

    def send_request(
        self,
        method: str = DEFAULT_METHOD,
        path: str = "/",
        headers: Optional[Dict[str, str]] = None,
        body: Body = None,
    ) -> Tuple[bytes, ConnectionStats]:
        """
        Send an HTTP/1.1 request.

        Args:
            method: HTTP method (GET, POST, etc.)
            path: Request path including query string
            headers: Dictionary of headers
            body: Request body

        Returns:
            Tuple of (response_bytes, connection_stats)
        """
        headers = dict(headers or {})
        lowered = {name.lower() for name in headers}

        if "host" not in lowered:
            headers["Host"] = self._host_header()

        payload = body.encode("utf-8") if isinstance(body, str) else (body or b"")
        if payload and "content-length" not in lowered:
            headers["Content-Length"] = str(len(payload))

        request = f"{method} {path} HTTP/1.1\r\n"
        for name, value in headers.items():
            request += f"{name}: {value}\r\n"
        request += "\r\n"

        return self.send_raw(request.encode("iso-8859-1", errors="replace") + payload)

    def _host_header(self) -> str:
        default_port = DEFAULT_HTTPS_PORT if self.use_ssl else DEFAULT_HTTP_PORT
        if self.port == default_port:
            return self.host
        return f"{self.host}:{self.port}"

    def close(self):
        """Close the connection"""
        if self._unregister is not None:
            self._unregister()
            self._unregister = None
        for sock in (self.ssl_socket, self.socket):
            if sock is None:
                continue
            try:
                sock.close()
            except OSError:
                pass
        self.ssl_socket = None
        self.socket = None
        self.connected = False

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def _is_complete(response: bytes) -> bool:
    """Check whether a buffered response holds a complete message"""
    header_end = response.find(b"\r\n\r\n")
    if header_end == -1:
        return False

    headers = response[:header_end].decode("iso-8859-1").lower()
    body = response[header_end + 4:]

    for line in headers.split("\r\n")[1:]:
        name, _, value = line.partition(":")
        name = name.strip()
        if name == "content-length":
            try:
                return len(body) >= int(value.strip())
            except ValueError:
                return False
        if name == "transfer-encoding" and "chunked" in value:
            return body.endswith(b"0\r\n\r\n")

    return False


def decode_chunked(body: bytes) -> bytes:
    """
    Decode a chunked transfer encoding body.

    Chunk extensions and trailers are dropped. A malformed size line or a
    body that ends before the zero-size chunk raises TransportError.
    """
    result = bytearray()
    pos = 0

    while True:
        eol = body.find(b"\n", pos)
        if eol == -1:
            raise TransportError(f"Chunked body truncated after {len(result)} bytes")

        size_line = body[pos:eol].rstrip(b"\r")
        pos = eol + 1

        size_field = size_line.partition(b";")[0].strip()
        try:
            size = int(size_field, 16)
        except ValueError:
            raise TransportError(f"Invalid chunk size {size_field!r}") from None
        if size < 0:
            raise TransportError(f"Invalid chunk size {size_field!r}")

        if size == 0:
            return bytes(result)

        end = pos + size
        if end > len(body):
            raise TransportError(f"Chunk of {size} bytes truncated at {len(body) - pos}")
        result += body[pos:end]

        # CRLF (or bare LF) closing the chunk data
        if body.startswith(b"\r\n", end):
            pos = end + 2
        elif body.startswith(b"\n", end):
            pos = end + 1
        else:
            raise TransportError(f"Missing line break after {size}-byte chunk")


class RawSocketTransport:
    """
    Fetch-style transport over RawHTTPClient.

    Redirects are never followed, so every call behaves as redirect
    "manual". mode, credentials and keepalive have no meaning on a raw
    socket and are ignored; each call opens and closes its own connection.

    Example:
        transport = RawSocketTransport(timeout=5.0)
        response = transport("http://relay.local/", TransportRequest(method="GET"))
    """

    def __init__(
        self,
        timeout: float = 10.0,
        verify_ssl: bool = True,
        user_agent: str = ClientConfig.user_agent,
    ):
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self.user_agent = user_agent
        self.parser = HTTPResponseParser()

    @classmethod
    def from_config(cls, config: ClientConfig) -> "RawSocketTransport":
        return cls(
            timeout=config.timeout,
            verify_ssl=config.verify_ssl,
            user_agent=config.user_agent,
        )

    def __call__(self, url: str, request: TransportRequest) -> HTTPResponse:
        parsed = urlparse(url)
        path = parsed.path or "/"
        if parsed.query:
            path = f"{path}?{parsed.query}"

        headers: Dict[str, Any] = dict(request.headers)
        lowered = {name.lower() for name in headers}
        if "user-agent" not in lowered:
            headers["User-Agent"] = self.user_agent
        if "connection" not in lowered:
            headers["Connection"] = "close"

        client = RawHTTPClient.from_url(
            url,
            timeout=self.timeout,
            verify_ssl=self.verify_ssl,
            signal=request.signal,
        )
        with client:
            raw, _ = client.send_request(
                method=request.method,
                path=path,
                headers=headers,
                body=request.body,
            )

        if not raw:
            raise TransportError(f"Empty reply from {url}")

        head, separator, body = raw.partition(b"\r\n\r\n")
        if not separator:
            # Bare LF framing, let the parser find the boundary
            return self.parser.parse(raw)

        # Parse the header block alone so the body bytes stay untouched
        response = self.parser.parse(head)
        headers = response.headers

        if "chunked" in response.get_header("Transfer-Encoding").lower():
            body = decode_chunked(body)
            headers = make_headers(
                (name, value) for name, value in headers.items()
                if name.lower() != "transfer-encoding"
            )

        return HTTPResponse(
            status=response.status,
            status_text=response.status_text,
            headers=headers,
            body=body,
        )
