"""Device schemas for the mobile API."""
from datetime import datetime
from typing import Any, Optional, List
from pydantic import BaseModel, Field


class ApiResponse(BaseModel):
    """Envelope shared by every /api/v1 response."""
    success: bool
    status: str  # OK, BAD_REQUEST, UNAUTHORIZED, NOT_FOUND, INTERNAL_ERROR
    data: Optional[Any] = None


class PairingRequest(BaseModel):
    """Schema for a pairing request from a new lock."""
    device_id: str = Field(..., min_length=1)


class PairingResponse(BaseModel):
    """Token issued for a pairing request."""
    token: str


class CardResponse(BaseModel):
    """An enrolled card."""
    card: str
    name: Optional[str] = None


class DeviceStatusResponse(BaseModel):
    """Record projection returned to an authenticated mobile client."""
    token: str
    cards: List[CardResponse]
    status: str  # pairing, paired
    door_status: str  # locked, unlocked
    online: bool
    add_card: bool
    pairing_requested_at: Optional[datetime] = None
    pairing_completed_at: Optional[datetime] = None


class PushRegisterRequest(BaseModel):
    """Request to subscribe a mobile device to a lock's notifications."""
    device_token: str = Field(..., min_length=1)
    platform: str = "ios"


class PushRegisterResponse(BaseModel):
    """Response after registering a push device."""
    device_id: int
    created: bool
