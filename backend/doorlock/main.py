"""Main FastAPI application: mobile API plus the device WebSocket."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings
from .database import init_db, close_db
from .exceptions import DeviceApiError, BadRequestError
from .routers import devices_router, push_router, device_socket_router
from .services.push_sender import push_sender_service, PushConfig
from .services.scheduler import scheduler_service
from .services.session_registry import session_registry

# Configure logging
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

HTTP_STATUS_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    logger.info("Starting door lock backend")

    await init_db()
    logger.info("Database initialized")

    push_sender_service.configure(PushConfig.from_settings(settings))

    # Clear presence left over from a previous process
    await scheduler_service.sweep_presence()
    scheduler_service.start()

    yield

    scheduler_service.stop()
    await close_db()
    logger.info("Shutdown complete")


def _envelope(status_code: int, code: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "status": code, "data": None},
    )


async def device_api_error_handler(request: Request, exc: DeviceApiError):
    return _envelope(exc.status_code, exc.code)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.debug(f"Rejected request to {request.url.path}: {exc.errors()}")
    return await device_api_error_handler(request, BadRequestError())


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return _envelope(exc.status_code, HTTP_STATUS_CODES.get(exc.status_code, "ERROR"))


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return _envelope(500, "INTERNAL_ERROR")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Door Lock Backend",
        description="Pairing, live sync, and remote control for smart door locks",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(DeviceApiError, device_api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(devices_router)
    app.include_router(push_router)
    app.include_router(device_socket_router)

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "connections": session_registry.connection_count,
        }

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.web_port)
