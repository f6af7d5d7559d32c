"""Core primitives for browserkit."""

from .codec import (
    decode_clipboard_payload,
    decode_geolocation_payload,
    decode_payload,
    encode_result,
)
from .idempotency import DeliveredRequest, RequestDeliveryGuard
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
)
from .protocols import BrowserEvent, Desktop, EventListener, ResultCallback

__all__ = [
    "BrowserEvent",
    "CLIENT_ERROR",
    "CapabilityAction",
    "DeliveredRequest",
    "Desktop",
    "ErrorInfo",
    "ErrorResult",
    "EventListener",
    "ImageResult",
    "PositionErrorCode",
    "PositionErrorResult",
    "PositionResult",
    "RequestDeliveryGuard",
    "ResultCallback",
    "ResultPayload",
    "SERVER_ERROR",
    "TextResult",
    "decode_clipboard_payload",
    "decode_geolocation_payload",
    "decode_payload",
    "encode_result",
]
