"""Database models."""
from .device import Device
from .push_device import PushDevice

__all__ = ["Device", "PushDevice"]
