"""Pydantic schemas for API request/response models."""
from .device import (
    ApiResponse,
    PairingRequest,
    PairingResponse,
    CardResponse,
    DeviceStatusResponse,
    PushRegisterRequest,
    PushRegisterResponse,
)

__all__ = [
    "ApiResponse",
    "PairingRequest",
    "PairingResponse",
    "CardResponse",
    "DeviceStatusResponse",
    "PushRegisterRequest",
    "PushRegisterResponse",
]
