"""Push subscription endpoints: mobile devices subscribe to a lock's notifications."""
import logging
from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..exceptions import NotFoundError
from ..models.push_device import PushDevice
from ..schemas.device import ApiResponse, PushRegisterRequest, PushRegisterResponse
from ..services.device_store import DeviceRecord
from ..utils.db_utils import retry_on_lock
from .devices import get_authorized_device, ok

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/device", tags=["push"])


@router.post("/{token}/push-devices", response_model=ApiResponse)
async def register_push_device(
    request: PushRegisterRequest,
    record: DeviceRecord = Depends(get_authorized_device),
    db: AsyncSession = Depends(get_db),
):
    """Subscribe a mobile device to door notifications for this lock.

    If the device token is already registered it is moved to this lock and
    re-enabled. The app should call this on every launch to keep the token current.
    """
    result = await db.execute(
        select(PushDevice).where(PushDevice.device_token == request.device_token)
    )
    existing = result.scalar_one_or_none()

    if existing:
        existing.topic = record.token
        existing.platform = request.platform
        existing.enabled = 1
        existing.last_used_at = datetime.utcnow()

        await retry_on_lock(db.commit)
        await db.refresh(existing)

        logger.info(f"Push device updated: {request.device_token[:16]}...")
        return ok(PushRegisterResponse(device_id=existing.id, created=False).model_dump())

    device = PushDevice(
        device_token=request.device_token,
        topic=record.token,
        platform=request.platform,
        enabled=1,
    )
    db.add(device)

    await retry_on_lock(db.commit)
    await db.refresh(device)

    logger.info(f"New push device registered: {request.device_token[:16]}...")
    return ok(PushRegisterResponse(device_id=device.id, created=True).model_dump())


@router.delete("/{token}/push-devices/{device_token}", response_model=ApiResponse)
async def unregister_push_device(
    device_token: str,
    record: DeviceRecord = Depends(get_authorized_device),
    db: AsyncSession = Depends(get_db),
):
    """Stop door notifications for a mobile device.

    This doesn't delete the record but marks it as disabled.
    """
    result = await db.execute(
        select(PushDevice).where(
            PushDevice.device_token == device_token,
            PushDevice.topic == record.token,
        )
    )
    device = result.scalar_one_or_none()

    if not device:
        raise NotFoundError("Push device not found")

    device.enabled = 0
    await retry_on_lock(db.commit)

    logger.info(f"Push device unregistered: {device_token[:16]}...")
    return ok()
