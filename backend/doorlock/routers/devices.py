"""Mobile-facing device API: pairing, status, card enrollment, and door commands."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header

from ..config import settings
from ..exceptions import UnauthorizedError, NotFoundError
from ..models.device import DOOR_LOCKED, DOOR_UNLOCKED
from ..schemas.device import (
    ApiResponse,
    CardResponse,
    DeviceStatusResponse,
    PairingRequest,
    PairingResponse,
)
from ..services.device_store import device_store, DeviceRecord, TokenCollisionError
from ..utils.credentials import generate_token, parse_bearer, credentials_match

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/device", tags=["devices"])

# Attempts at finding an unused token before giving up
MAX_TOKEN_ATTEMPTS = 5


def ok(data=None) -> ApiResponse:
    """Successful response envelope."""
    return ApiResponse(success=True, status="OK", data=data)


async def get_authorized_device(
    token: str,
    authorization: Optional[str] = Header(None),
) -> DeviceRecord:
    """Resolve the device for ``token`` and check the caller's bearer credential.

    The credential is the SHA-256 of the device ID the mobile app registered.
    A missing header is rejected before the record is looked up.
    """
    credential = parse_bearer(authorization)
    if not credential:
        raise UnauthorizedError("Missing bearer credential")

    record = await device_store.get(token)
    if record is None:
        raise NotFoundError("Unknown device token")

    if not credentials_match(record.device_id, credential):
        logger.warning(f"Rejected credential for device {token[:4]}...")
        raise UnauthorizedError("Invalid bearer credential")

    return record


@router.post("/request-pairing", response_model=ApiResponse)
async def request_pairing(request: PairingRequest):
    """Issue a session token for a lock that wants to pair.

    The lock connects over the WebSocket with this token; pairing completes
    on its first reconciliation tick.
    """
    for attempt in range(MAX_TOKEN_ATTEMPTS):
        token = generate_token(settings.token_length)
        try:
            await device_store.create(token, request.device_id)
        except TokenCollisionError:
            logger.warning(f"Token collision on pairing request (attempt {attempt + 1}/{MAX_TOKEN_ATTEMPTS})")
            continue
        logger.info(f"Pairing requested, issued token {token[:4]}...")
        return ok(PairingResponse(token=token).model_dump())

    raise RuntimeError("Could not allocate an unused session token")


@router.get("/{token}", response_model=ApiResponse)
async def get_device(record: DeviceRecord = Depends(get_authorized_device)):
    """Current state of a paired lock."""
    status = DeviceStatusResponse(
        token=record.token,
        cards=[CardResponse(card=c.card, name=c.name) for c in record.cards],
        status=record.status,
        door_status=record.door_status,
        online=record.online,
        add_card=record.add_card,
        pairing_requested_at=record.pairing_requested_at,
        pairing_completed_at=record.pairing_completed_at,
    )
    return ok(status.model_dump(mode="json"))


@router.get("/{token}/add-card", response_model=ApiResponse)
async def request_add_card(record: DeviceRecord = Depends(get_authorized_device)):
    """Put the lock into card enrollment mode on its next tick."""
    if not await device_store.update(record.token, add_card=True):
        raise NotFoundError("Unknown device token")
    return ok()


@router.get("/{token}/card/{card}/set-name/{name}", response_model=ApiResponse)
async def set_card_name(
    card: str,
    name: str,
    record: DeviceRecord = Depends(get_authorized_device),
):
    """Give an enrolled card a display name."""
    if not await device_store.rename_card(record.token, card, name):
        raise NotFoundError("Unknown card")
    return ok()


@router.post("/{token}/lock", response_model=ApiResponse)
async def lock_door(record: DeviceRecord = Depends(get_authorized_device)):
    """Lock the door. The lock picks this up on its next tick."""
    if not await device_store.update(record.token, door_status=DOOR_LOCKED):
        raise NotFoundError("Unknown device token")
    return ok()


@router.post("/{token}/unlock", response_model=ApiResponse)
async def unlock_door(record: DeviceRecord = Depends(get_authorized_device)):
    """Unlock the door. The lock picks this up on its next tick."""
    if not await device_store.update(record.token, door_status=DOOR_UNLOCKED):
        raise NotFoundError("Unknown device token")
    return ok()
