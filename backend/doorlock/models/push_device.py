"""PushDevice model - mobile APNs tokens subscribed to a lock's topic."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime

from ..database import Base


class PushDevice(Base):
    """Registered mobile device for door notifications."""

    __tablename__ = "push_devices"

    id = Column(Integer, primary_key=True, autoincrement=True)
    device_token = Column(String, unique=True, nullable=False, index=True)
    topic = Column(String, nullable=False, index=True)  # session token of the lock
    platform = Column(String, default="ios")  # ios, android (future)
    enabled = Column(Integer, default=1)  # 0 or 1
    registered_at = Column(DateTime, default=datetime.utcnow)
    last_used_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
