"""Device model - one record per paired door lock."""
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Boolean, JSON

from ..database import Base

STATUS_PAIRING = "pairing"
STATUS_PAIRED = "paired"

DOOR_LOCKED = "locked"
DOOR_UNLOCKED = "unlocked"


class Device(Base):
    """A door lock, keyed by the session token issued at pairing request."""

    __tablename__ = "devices"

    token = Column(String, primary_key=True)
    device_id = Column(String, nullable=False)
    cards = Column(JSON, nullable=False, default=list)  # [{"card": str, "name": str | None}]
    pairing_requested_at = Column(DateTime, default=datetime.utcnow)
    pairing_completed_at = Column(DateTime, nullable=True)
    status = Column(String, nullable=False, default=STATUS_PAIRING)  # pairing, paired
    door_status = Column(String, nullable=False, default=DOOR_LOCKED)  # locked, unlocked
    online = Column(Boolean, nullable=False, default=False)
    add_card = Column(Boolean, nullable=False, default=False)
