"""Correlation tokens for capability requests.

Every dispatched command carries a request id that the browser helper echoes
back with its result. The id lets the router match a result to the request
that produced it and recognise a redelivered result, independently of how many
UI roots the transport fans the event out to.

Token format:
    {channel-kind}-{request-hex}

Where:
    - channel-kind: the capability channel that issued the request
      ("clipboard", "geolocation"); optional for ad-hoc callers
    - request-hex: 32 hex digits (128-bit random)
"""

import secrets
from dataclasses import dataclass
from typing import Any, Mapping, Optional

REQUEST_ID_FIELD = "requestId"


@dataclass(frozen=True)
class RequestToken:
    """A parsed correlation token."""

    request_hex: str  # 32 hex chars
    kind: Optional[str] = None

    @property
    def value(self) -> str:
        if self.kind:
            return f"{self.kind}-{self.request_hex}"
        return self.request_hex

    @classmethod
    def create(cls, kind: Optional[str] = None) -> "RequestToken":
        return cls(request_hex=secrets.token_hex(16), kind=kind)

    @classmethod
    def parse(cls, value: str) -> Optional["RequestToken"]:
        """Parse a token string, returning None for anything malformed."""
        if not value or not isinstance(value, str):
            return None

        kind: Optional[str] = None
        request_hex = value
        if "-" in value:
            kind, request_hex = value.rsplit("-", 1)
            if not kind:
                return None

        if len(request_hex) != 32 or not _is_hex(request_hex):
            return None
        if request_hex == "0" * 32:
            return None

        return cls(request_hex=request_hex.lower(), kind=kind)


def _is_hex(s: str) -> bool:
    try:
        int(s, 16)
        return True
    except ValueError:
        return False


def new_request_id(kind: Optional[str] = None) -> str:
    """Create a fresh correlation token string.

    Example:
        >>> new_request_id("clipboard")
        'clipboard-4bf92f3577b34da6a3ce929d0e0e4736'
    """
    return RequestToken.create(kind).value


def extract_request_id(
    data: Any, *, fallback: Optional[str] = None
) -> Optional[str]:
    """Return the echoed request id from an inbound payload, if any.

    Tokens that do not parse are ignored so that a misbehaving helper cannot
    poison the delivery guard with arbitrary strings.
    """
    candidate = fallback
    if isinstance(data, Mapping) and data.get(REQUEST_ID_FIELD) is not None:
        candidate = data.get(REQUEST_ID_FIELD)
    if not isinstance(candidate, str):
        return None
    token = RequestToken.parse(candidate.strip())
    return token.value if token else None
