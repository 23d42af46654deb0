"""Services for device sessions, storage, notifications, and scheduling."""
from .device_store import DeviceStore, DeviceRecord, CardEntry, TokenCollisionError
from .device_session import DeviceSession, SessionShadow, open_session
from .session_registry import SessionRegistry
from .push_sender import PushSenderService, PushConfig
from .scheduler import SchedulerService

__all__ = [
    "DeviceStore",
    "DeviceRecord",
    "CardEntry",
    "TokenCollisionError",
    "DeviceSession",
    "SessionShadow",
    "open_session",
    "SessionRegistry",
    "PushSenderService",
    "PushConfig",
    "SchedulerService",
]
