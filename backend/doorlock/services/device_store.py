"""Device record store backed by async SQLAlchemy.

The store is the single source of truth shared by device sessions and the
mobile API. Every method opens its own short-lived database session, so
callers always act on the current row rather than a cached snapshot.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, List, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from ..database import async_session, WRITE_LOCK_OPTIONS
from ..models.device import Device, STATUS_PAIRING, STATUS_PAIRED, DOOR_LOCKED
from ..utils.db_utils import retry_on_lock

logger = logging.getLogger(__name__)

# Fields that may be written through update()
UPDATABLE_FIELDS = {"door_status", "online", "add_card"}


class TokenCollisionError(Exception):
    """A record already exists for the requested session token."""


@dataclass(frozen=True)
class CardEntry:
    card: str
    name: Optional[str] = None


@dataclass(frozen=True)
class DeviceRecord:
    """Immutable snapshot of a device row."""
    token: str
    device_id: str
    status: str
    door_status: str
    online: bool
    add_card: bool
    cards: Tuple[CardEntry, ...] = ()
    pairing_requested_at: Optional[datetime] = None
    pairing_completed_at: Optional[datetime] = None

    @property
    def card_ids(self) -> List[str]:
        return [entry.card for entry in self.cards]

    @classmethod
    def from_model(cls, device: Device) -> "DeviceRecord":
        return cls(
            token=device.token,
            device_id=device.device_id,
            status=device.status,
            door_status=device.door_status,
            online=bool(device.online),
            add_card=bool(device.add_card),
            cards=tuple(
                CardEntry(card=item["card"], name=item.get("name"))
                for item in (device.cards or [])
            ),
            pairing_requested_at=device.pairing_requested_at,
            pairing_completed_at=device.pairing_completed_at,
        )


class DeviceStore:
    """Keyed access to device records: get, create, partial update, and atomic card edits."""

    def __init__(self, session_factory=async_session):
        self._session_factory = session_factory

    async def get(self, token: str) -> Optional[DeviceRecord]:
        """Fetch the record for a token, or None if it does not exist."""
        async with self._session_factory() as session:
            result = await session.execute(select(Device).where(Device.token == token))
            device = result.scalar_one_or_none()
            return DeviceRecord.from_model(device) if device else None

    async def create(self, token: str, device_id: str) -> DeviceRecord:
        """Create a fresh record in the pairing state.

        Raises:
            TokenCollisionError: If the token is already taken
        """
        device = Device(
            token=token,
            device_id=device_id,
            cards=[],
            pairing_requested_at=datetime.utcnow(),
            pairing_completed_at=None,
            status=STATUS_PAIRING,
            door_status=DOOR_LOCKED,
            online=False,
            add_card=False,
        )
        async with self._session_factory() as session:
            session.add(device)
            try:
                await retry_on_lock(session.commit)
            except IntegrityError as e:
                await session.rollback()
                raise TokenCollisionError(token) from e
            return DeviceRecord.from_model(device)

    async def update(self, token: str, **fields) -> bool:
        """Write a subset of fields. Returns False if the record does not exist."""
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable: {', '.join(sorted(unknown))}")

        async with self._session_factory() as session:
            result = await session.execute(
                update(Device).where(Device.token == token).values(**fields)
            )
            await retry_on_lock(session.commit)
            return result.rowcount > 0

    async def complete_pairing(self, token: str, completed_at: Optional[datetime] = None) -> bool:
        """Move a record from pairing to paired.

        Conditional on the stored status still being ``pairing``, so a stale
        read can never rewrite ``pairing_completed_at``. Returns True only
        for the call that performed the transition.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                update(Device)
                .where(Device.token == token, Device.status == STATUS_PAIRING)
                .values(
                    status=STATUS_PAIRED,
                    pairing_completed_at=completed_at or datetime.utcnow(),
                )
            )
            await retry_on_lock(session.commit)
            return result.rowcount > 0

    async def append_card(self, token: str, card: str, name: Optional[str] = None) -> bool:
        """Append a card (skipping duplicates) and leave enrollment mode, in one locked transaction.

        Returns False if the record does not exist.
        """
        async with self._session_factory() as session:
            await session.connection(execution_options=WRITE_LOCK_OPTIONS)
            result = await session.execute(
                select(Device).where(Device.token == token).with_for_update()
            )
            device = result.scalar_one_or_none()
            if not device:
                return False

            cards = list(device.cards or [])
            if any(item["card"] == card for item in cards):
                logger.info(f"Card {card} already enrolled on {token[:4]}..., skipping append")
            else:
                cards.append({"card": card, "name": name})
            device.cards = cards
            device.add_card = False
            await retry_on_lock(session.commit)
            return True

    async def rename_card(self, token: str, card: str, name: str) -> bool:
        """Set the display name of an enrolled card. Returns False if record or card is missing."""
        async with self._session_factory() as session:
            await session.connection(execution_options=WRITE_LOCK_OPTIONS)
            result = await session.execute(
                select(Device).where(Device.token == token).with_for_update()
            )
            device = result.scalar_one_or_none()
            if not device:
                return False

            cards = [dict(item) for item in (device.cards or [])]
            matched = False
            for item in cards:
                if item["card"] == card:
                    item["name"] = name
                    matched = True
            if not matched:
                return False

            device.cards = cards
            await retry_on_lock(session.commit)
            return True

    async def list_online_tokens(self) -> List[str]:
        """Tokens of all records currently flagged online."""
        async with self._session_factory() as session:
            result = await session.execute(select(Device.token).where(Device.online.is_(True)))
            return list(result.scalars().all())


# Global instance
device_store = DeviceStore()
