"""Decoding of browser-originated capability payloads.

The same event envelope carries several unrelated result shapes, so each
decoder selects the target variant from the discriminant (``action`` for the
clipboard, presence of ``position``/``error`` for geolocation) before mapping
any other field. Decoding never raises: malformed input becomes an error
result the caller can inspect through ``is_success``/``error``.
"""

from __future__ import annotations

import base64
import binascii
import logging
import math
from typing import Any, Callable, Dict, Mapping, Optional

from ..correlation import extract_request_id
from .models import (
    CLIENT_ERROR,
    SERVER_ERROR,
    CapabilityAction,
    ErrorInfo,
    ErrorResult,
    ImageResult,
    PositionErrorCode,
    PositionErrorResult,
    PositionResult,
    ResultPayload,
    TextResult,
    server_error,
)

LOGGER = logging.getLogger(__name__)

NO_DATA_MESSAGE = "No data received"
INVALID_IMAGE_MESSAGE = "Invalid image data format"
CLIPBOARD_PARSE_MESSAGE = "Failed to parse clipboard result"
GEOLOCATION_PARSE_MESSAGE = "Failed to parse geolocation result"

Decoder = Callable[[Any], ResultPayload]


def decode_clipboard_payload(data: Any) -> ResultPayload:
    """Decode an ``onClipboardAction`` payload into a result variant."""

    if data is None or (isinstance(data, Mapping) and not data):
        return server_error(NO_DATA_MESSAGE)
    if not isinstance(data, Mapping):
        LOGGER.warning("Clipboard payload is not an object: %r", type(data).__name__)
        return server_error(CLIPBOARD_PARSE_MESSAGE)

    request_id = extract_request_id(data)
    action = CapabilityAction.parse(data.get("action"))
    if action is None or action is CapabilityAction.GET_POSITION:
        LOGGER.warning(
            "Clipboard payload has unusable action %r", data.get("action")
        )
        return server_error(
            f"{CLIPBOARD_PARSE_MESSAGE}: missing action", request_id=request_id
        )

    error = _parse_error(data.get("error"))

    if action is CapabilityAction.READ_IMAGE:
        return _decode_image(data, error, request_id)

    return TextResult(
        action=action,
        text=_as_str(data.get("text")),
        error=error,
        request_id=request_id,
    )


def _decode_image(
    data: Mapping[str, Any], error: Optional[ErrorInfo], request_id: Optional[str]
) -> ImageResult:
    result = ImageResult(
        mime_type=_as_str(data.get("mimeType")),
        width=_as_int(data.get("width")),
        height=_as_int(data.get("height")),
        size_bytes=_as_int(data.get("size")),
        error=error,
        request_id=request_id,
    )

    encoded = data.get("imageData")
    if encoded is None:
        return result

    try:
        result.image_bytes = base64.b64decode(str(encoded), validate=True)
    except (binascii.Error, ValueError):
        LOGGER.warning(
            "Discarding undecodable image data (mime=%s, length=%d)",
            result.mime_type or "unknown",
            len(str(encoded)),
        )
        result.image_bytes = b""
        result.error = ErrorInfo(SERVER_ERROR, INVALID_IMAGE_MESSAGE)

    return result


def decode_geolocation_payload(data: Any) -> ResultPayload:
    """Decode an ``onGetLocation`` payload into a position or position error."""

    if data is None or (isinstance(data, Mapping) and not data):
        return server_error(NO_DATA_MESSAGE, action=CapabilityAction.GET_POSITION)
    if not isinstance(data, Mapping):
        LOGGER.warning(
            "Geolocation payload is not an object: %r", type(data).__name__
        )
        return server_error(
            GEOLOCATION_PARSE_MESSAGE, action=CapabilityAction.GET_POSITION
        )

    request_id = extract_request_id(data)

    position = data.get("position")
    if isinstance(position, Mapping):
        return _decode_position(position, request_id)
    if isinstance(data.get("coords"), Mapping):
        # Some helpers post the serialised GeolocationPosition itself.
        return _decode_position(data, request_id)

    error = data.get("error")
    if isinstance(error, Mapping):
        return PositionErrorResult(
            code=_position_error_code(error.get("code")),
            message=_as_str(error.get("message")),
            request_id=request_id,
        )
    if isinstance(error, str) and error:
        return PositionErrorResult(
            code=PositionErrorCode.POSITION_UNAVAILABLE,
            message=error,
            request_id=request_id,
        )

    if error is None and _as_optional_float(data.get("code")) is not None:
        # Serialised GeolocationPositionError posted as the payload itself.
        return PositionErrorResult(
            code=_position_error_code(data.get("code")),
            message=_as_str(data.get("message")),
            request_id=request_id,
        )

    LOGGER.warning("Geolocation payload has neither position nor error")
    return server_error(
        GEOLOCATION_PARSE_MESSAGE,
        action=CapabilityAction.GET_POSITION,
        request_id=request_id,
    )


def _decode_position(
    position: Mapping[str, Any], request_id: Optional[str]
) -> PositionResult:
    coords = position.get("coords")
    if not isinstance(coords, Mapping):
        coords = {}

    return PositionResult(
        timestamp=_as_int(position.get("timestamp")),
        latitude=_as_float(coords.get("latitude")),
        longitude=_as_float(coords.get("longitude")),
        altitude=_as_optional_float(coords.get("altitude")),
        accuracy=_as_float(coords.get("accuracy")),
        altitude_accuracy=_as_optional_float(coords.get("altitudeAccuracy")),
        heading=_as_optional_float(coords.get("heading")),
        speed=_as_optional_float(coords.get("speed")),
        request_id=request_id,
    )


DECODERS: Dict[str, Decoder] = {
    "clipboard": decode_clipboard_payload,
    "geolocation": decode_geolocation_payload,
}


def decode_payload(kind: str, data: Any) -> ResultPayload:
    decoder = DECODERS.get(kind)
    if decoder is None:
        return server_error(f"No decoder for channel kind {kind!r}")
    return decoder(data)


def encode_result(result: ResultPayload) -> Dict[str, Any]:
    """Render a result in the browser wire shape.

    For text, image and position results (successful or not),
    ``decode_*_payload(encode_result(x))`` yields a result equal to ``x``.
    """

    document: Dict[str, Any] = {}
    if isinstance(result, TextResult):
        document["action"] = result.action.value
        document["text"] = result.text
    elif isinstance(result, ImageResult):
        document.update(
            {
                "action": result.action.value,
                "mimeType": result.mime_type,
                "width": result.width,
                "height": result.height,
                "size": result.size_bytes,
            }
        )
        if result.image_bytes:
            document["imageData"] = base64.b64encode(result.image_bytes).decode("ascii")
    elif isinstance(result, PositionResult):
        document["position"] = {
            "timestamp": result.timestamp,
            "coords": {
                "latitude": result.latitude,
                "longitude": result.longitude,
                "altitude": result.altitude,
                "accuracy": result.accuracy,
                "altitudeAccuracy": result.altitude_accuracy,
                "heading": result.heading,
                "speed": result.speed,
            },
        }
    elif isinstance(result, ErrorResult):
        if result.action is not None:
            document["action"] = result.action.value

    error = result.error
    if error is not None:
        document["error"] = {"code": error.code, "message": error.message}
    if result.request_id:
        document["requestId"] = result.request_id
    return document


# ----------------------------------------------------------------------
# Field coercion
# ----------------------------------------------------------------------
def _parse_error(value: Any) -> Optional[ErrorInfo]:
    if value is None:
        return None
    if isinstance(value, Mapping):
        return ErrorInfo(
            code=_as_int(value.get("code"), default=CLIENT_ERROR),
            message=_as_str(value.get("message")),
        )
    message = str(value)
    return ErrorInfo(CLIENT_ERROR, message) if message else None


def _position_error_code(value: Any) -> PositionErrorCode:
    try:
        return PositionErrorCode(_as_int(value))
    except ValueError:
        return PositionErrorCode.POSITION_UNAVAILABLE


def _as_str(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _as_int(value: Any, *, default: int = 0) -> int:
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    return int(number)


def _as_float(value: Any, *, default: float = 0.0) -> float:
    parsed = _as_optional_float(value)
    return default if parsed is None else parsed


def _as_optional_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None
