"""API routers."""
from .devices import router as devices_router
from .push import router as push_router
from .device_socket import router as device_socket_router

__all__ = ["devices_router", "push_router", "device_socket_router"]
