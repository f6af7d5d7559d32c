"""Domain models for capability actions and their results."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import ClassVar, Optional, Union

SERVER_ERROR = 0
CLIENT_ERROR = 1

SUPPORTED_IMAGE_TYPES = frozenset(
    {"image/png", "image/jpeg", "image/jpg", "image/gif", "image/webp"}
)


class CapabilityAction(str, Enum):
    READ_TEXT = "READ_TEXT"
    WRITE_TEXT = "WRITE_TEXT"
    READ_IMAGE = "READ_IMAGE"
    GET_POSITION = "GET_POSITION"

    @classmethod
    def parse(cls, value: object) -> Optional["CapabilityAction"]:
        """Map a wire spelling to an action, or ``None`` when unknown.

        Older helper scripts report ``READ``/``WRITE`` for the text actions.
        """

        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        text = value.strip().upper()
        text = _LEGACY_ACTIONS.get(text, text)
        try:
            return cls(text)
        except ValueError:
            return None


_LEGACY_ACTIONS = {"READ": "READ_TEXT", "WRITE": "WRITE_TEXT"}


class PositionErrorCode(IntEnum):
    """Error codes of the W3C GeolocationPositionError interface."""

    PERMISSION_DENIED = 1
    POSITION_UNAVAILABLE = 2
    TIMEOUT = 3

    @property
    def description(self) -> str:
        return _POSITION_ERROR_DESCRIPTIONS[self]


_POSITION_ERROR_DESCRIPTIONS = {
    PositionErrorCode.PERMISSION_DENIED: (
        "The acquisition of the geolocation information failed because the page "
        "didn't have the necessary permissions, for example because it is blocked "
        "by a Permissions Policy."
    ),
    PositionErrorCode.POSITION_UNAVAILABLE: (
        "The acquisition of the geolocation failed because at least one internal "
        "source of position returned an internal error."
    ),
    PositionErrorCode.TIMEOUT: (
        "The time allowed to acquire the geolocation was reached before the "
        "information was obtained."
    ),
}


@dataclass(frozen=True, slots=True)
class ErrorInfo:
    code: int
    message: str


class _Result:
    """Shared success/error accessors.

    ``error`` is the single source of truth: a result succeeded exactly when it
    carries no error.
    """

    __slots__ = ()

    kind: ClassVar[str]
    error: Optional[ErrorInfo]

    @property
    def is_success(self) -> bool:
        return self.error is None

    @property
    def is_error(self) -> bool:
        return self.error is not None


@dataclass(slots=True)
class TextResult(_Result):
    kind: ClassVar[str] = "text"

    action: CapabilityAction
    text: str = ""
    error: Optional[ErrorInfo] = None
    request_id: Optional[str] = None


@dataclass(slots=True)
class ImageResult(_Result):
    kind: ClassVar[str] = "image"

    action: CapabilityAction = CapabilityAction.READ_IMAGE
    mime_type: str = ""
    width: int = 0
    height: int = 0
    size_bytes: int = 0
    image_bytes: bytes = b""
    error: Optional[ErrorInfo] = None
    request_id: Optional[str] = None

    @property
    def has_image_data(self) -> bool:
        return self.is_success and len(self.image_bytes) > 0

    @property
    def is_supported_format(self) -> bool:
        return self.mime_type.lower() in SUPPORTED_IMAGE_TYPES


@dataclass(slots=True)
class PositionResult(_Result):
    kind: ClassVar[str] = "position"
    action: ClassVar[CapabilityAction] = CapabilityAction.GET_POSITION

    timestamp: int
    latitude: float
    longitude: float
    altitude: Optional[float] = None
    accuracy: float = 0.0
    altitude_accuracy: Optional[float] = None
    heading: Optional[float] = None
    speed: Optional[float] = None
    request_id: Optional[str] = None

    @property
    def error(self) -> Optional[ErrorInfo]:
        return None


@dataclass(slots=True)
class PositionErrorResult(_Result):
    kind: ClassVar[str] = "position_error"
    action: ClassVar[CapabilityAction] = CapabilityAction.GET_POSITION

    code: PositionErrorCode
    message: str = ""
    request_id: Optional[str] = None

    @property
    def error(self) -> Optional[ErrorInfo]:
        return ErrorInfo(int(self.code), self.message)

    @property
    def description(self) -> str:
        return self.code.description


@dataclass(slots=True)
class ErrorResult(_Result):
    """Result synthesized when the inbound payload could not be decoded."""

    kind: ClassVar[str] = "error"

    error: ErrorInfo
    action: Optional[CapabilityAction] = None
    request_id: Optional[str] = None


ResultPayload = Union[
    TextResult, ImageResult, PositionResult, PositionErrorResult, ErrorResult
]


def server_error(
    message: str,
    *,
    action: Optional[CapabilityAction] = None,
    request_id: Optional[str] = None,
) -> ErrorResult:
    return ErrorResult(
        error=ErrorInfo(SERVER_ERROR, message), action=action, request_id=request_id
    )
