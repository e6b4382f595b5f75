"""
HTTP Response Parser

Parses raw HTTP/1.x response text into structured data.

The body is passed through verbatim: no Content-Length or chunked decoding
is done here.
"""

import re
from typing import List, Tuple, Union

from multidict import CIMultiDict, CIMultiDictProxy

from .log import get_logger
from .response import HTTPResponse

logger = get_logger(__name__)


class HTTPSyntaxError(ValueError):
    """Raised when raw response text is not a valid HTTP response"""
    pass


RawResponse = Union[str, bytes, bytearray]


class HTTPResponseParser:
    """
    Parser for raw HTTP responses.

    Accepts str or bytes with either bare LF or CRLF line endings. The first
    blank line divides the header block from the body; later blank lines
    belong to the body and are rejoined with a normalized double newline.

    Example:
        parser = HTTPResponseParser()
        response = parser.parse("HTTP/1.1 200 OK\\r\\nX-A: 1\\r\\n\\r\\nbody")
        print(f"Status: {response.status}")
        print(f"Body: {response.body}")
    """

    # Regex patterns
    BOUNDARY_PATTERN = re.compile(r"\r?\n\r?\n")
    LINE_PATTERN = re.compile(r"\r?\n")

    BOUNDARY_PATTERN_BYTES = re.compile(rb"\r?\n\r?\n")

    # Header blocks are ISO-8859-1 on the wire
    HEADER_ENCODING = "iso-8859-1"

    def parse(self, raw_response: RawResponse) -> HTTPResponse:
        """
        Parse a raw HTTP response.

        Args:
            raw_response: Full response text (status line, headers,
                          blank line, body)

        Returns:
            Parsed HTTPResponse object

        Raises:
            HTTPSyntaxError: If there is no status line or it carries
                             no valid status code
        """
        header_section, body = self._split(raw_response)

        lines = self.LINE_PATTERN.split(header_section)
        status_line = lines[0]
        if not status_line:
            raise HTTPSyntaxError("HTTP Response Syntax Error: No status line!")

        status, status_text = self._parse_status_line(status_line)
        headers = self._parse_headers(lines[1:])

        return HTTPResponse(
            status=status,
            status_text=status_text,
            headers=headers,
            body=body,
        )

    def _split(self, raw_response: RawResponse) -> Tuple[str, Union[str, bytes]]:
        """Split into (header section, body) at the first blank line"""
        if isinstance(raw_response, (bytes, bytearray)):
            header_part, *body_parts = self.BOUNDARY_PATTERN_BYTES.split(bytes(raw_response))
            return header_part.decode(self.HEADER_ENCODING), b"\n\n".join(body_parts)

        header_part, *body_parts = self.BOUNDARY_PATTERN.split(raw_response)
        return header_part, "\n\n".join(body_parts)

    def _parse_status_line(self, line: str) -> Tuple[int, str]:
        """Parse the HTTP status line into (status code, status text)"""
        # Protocol version is the first token and is discarded
        parts = line.split(" ")
        if len(parts) < 2:
            raise HTTPSyntaxError(f"HTTP Response Syntax Error: No status code in {line!r}")

        try:
            status = int(parts[1])
        except ValueError:
            raise HTTPSyntaxError(
                f"HTTP Response Syntax Error: Invalid status code {parts[1]!r}"
            ) from None

        if status <= 0:
            raise HTTPSyntaxError(f"HTTP Response Syntax Error: Invalid status code {status}")

        return status, " ".join(parts[2:])

    def _parse_headers(self, lines: List[str]) -> CIMultiDictProxy:
        """Parse header lines, appending repeated names"""
        headers: CIMultiDict = CIMultiDict()

        for line in lines:
            idx = line.find(":")
            if idx == -1:
                logger.debug(f"Skipping header line without colon: {line!r}")
                continue

            name = line[:idx].strip()
            if not name:
                logger.debug(f"Skipping header line without name: {line!r}")
                continue

            headers.add(name, line[idx + 1:].strip())

        return CIMultiDictProxy(headers)


def parse_response(raw_response: RawResponse) -> HTTPResponse:
    """
    Parse a raw HTTP response with a fresh parser.

    Args:
        raw_response: Full response text or bytes

    Returns:
        Parsed HTTPResponse object
    """
    return HTTPResponseParser().parse(raw_response)
