"""
Structured HTTP Response

The value type shared by the raw response parser, the transports and the
tunneling client. Headers are an ordered, case-insensitive multimap.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from multidict import CIMultiDict, CIMultiDictProxy, MultiMapping


HeaderSource = Union[
    None,
    MultiMapping,
    Mapping[str, Any],
    Iterable[Tuple[str, str]],
]


def make_headers(source: HeaderSource = None) -> CIMultiDictProxy:
    """
    Build a read-only header collection.

    Args:
        source: None, a multidict, a mapping (list values add several
                entries under one name) or an iterable of (name, value) pairs

    Returns:
        Frozen case-insensitive multimap
    """
    headers: CIMultiDict = CIMultiDict()

    if source is None:
        pass
    elif isinstance(source, MultiMapping):
        headers.extend(source.items())
    elif isinstance(source, Mapping):
        for name, value in source.items():
            if isinstance(value, (list, tuple)):
                for item in value:
                    headers.add(str(name), str(item))
            else:
                headers.add(str(name), str(value))
    else:
        for pair in source:
            name, value = pair
            headers.add(str(name), str(value))

    return CIMultiDictProxy(headers)


def headers_to_dict(headers: HeaderSource) -> Dict[str, str]:
    """Flatten headers to a plain dict, joining repeated names with ', '"""
    result: Dict[str, str] = {}
    lowered: Dict[str, str] = {}

    for name, value in make_headers(headers).items():
        key = lowered.setdefault(name.lower(), name)
        if key in result:
            result[key] = f"{result[key]}, {value}"
        else:
            result[key] = value

    return result


@dataclass(frozen=True)
class HTTPResponse:
    """
    Structured HTTP response.

    Equality compares fields. Responses are not hashable, since the header
    multimap is not.
    """
    __hash__ = None
    status: int
    status_text: str = ""
    headers: CIMultiDictProxy = field(default_factory=make_headers)
    body: Union[str, bytes] = ""

    def __post_init__(self):
        if not isinstance(self.headers, CIMultiDictProxy):
            object.__setattr__(self, "headers", make_headers(self.headers))

    def get_header(self, name: str, default: str = "") -> str:
        """Get first header value (case-insensitive)"""
        return self.headers.get(name, default)

    def get_all_headers(self, name: str) -> List[str]:
        """Get all values for a header (handles duplicates)"""
        return self.headers.getall(name, [])

    @property
    def is_success(self) -> bool:
        """Check if response indicates success (2xx)"""
        return 200 <= self.status < 300

    @property
    def ok(self) -> bool:
        return self.is_success

    @property
    def is_redirect(self) -> bool:
        """Check if response is a redirect (3xx)"""
        return 300 <= self.status < 400

    @property
    def is_error(self) -> bool:
        """Check if response indicates error (4xx or 5xx)"""
        return self.status >= 400

    def text(self, encoding: Optional[str] = None) -> str:
        """Body as text. Bytes are decoded with the given or utf-8 encoding."""
        if isinstance(self.body, bytes):
            return self.body.decode(encoding or "utf-8", errors="replace")
        return self.body

    def json(self) -> Any:
        return json.loads(self.text())
