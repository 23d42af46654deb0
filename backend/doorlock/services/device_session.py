"""Device session engine.

A lock opens a WebSocket and sends its session token as the first text
frame. Once the token resolves to a stored record, a DeviceSession takes over
the connection:

- a reconciliation task polls the record on a fixed interval, diffs it
  against the session's shadow of what the device was last told, and sends
  the commands needed to close the gap;
- inbound frames (card enrolled, door locked/unlocked, scan timeout, door
  state query) are applied to the store.

The store is the only state shared with other sessions and the mobile API.
"""
import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from ..config import settings
from ..models.device import STATUS_PAIRING, DOOR_LOCKED, DOOR_UNLOCKED
from .device_store import device_store, DeviceRecord
from .push_sender import push_sender_service
from .session_registry import session_registry

logger = logging.getLogger(__name__)

# Server -> device commands
CMD_CARDS = "CARDS"
CMD_LOCK = "LOCK"
CMD_UNLOCK = "UNLOCK"
CMD_ADD_CARD = "ADD_CARD"

# Device -> server events
EVT_CARD_ADDED = "CARD_ADDED"
EVT_LOCKED = "LOCKED"
EVT_UNLOCKED = "UNLOCKED"
EVT_GET_DOOR_LOCK = "GET_DOOR_LOCK"
EVT_SCAN_CARD_TIMEOUT = "SCAN_CARD_TIMEOUT"


class SessionClosed(Exception):
    """The device channel can no longer be written to."""


@dataclass
class SessionShadow:
    """What this connection's device was last told.

    ``None`` means unknown, which forces a resend on the next tick.
    """
    cards: Optional[str] = None
    locked: Optional[bool] = None
    add_card_announced: bool = False
    pairing_completion_sent: bool = False
    # Bumped whenever a device event starts writing to the store
    generation: int = 0


class DeviceSession:
    """One authenticated lock connection: reconciliation loop plus event handler."""

    def __init__(
        self,
        token: str,
        channel,
        store=device_store,
        notifier=push_sender_service,
        registry=session_registry,
        interval: Optional[float] = None,
    ):
        self.token = token
        self.channel = channel
        self.store = store
        self.notifier = notifier
        self.registry = registry
        self.interval = settings.reconcile_interval_seconds if interval is None else interval
        self.shadow = SessionShadow()
        self._writes_in_flight = 0
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def label(self) -> str:
        return f"{self.token[:4]}..."

    # --- Lifecycle ---

    async def start(self):
        """Mark the device online and begin reconciling."""
        await self.store.update(self.token, online=True)
        self.registry.register(self)
        self._task = asyncio.create_task(self._run())
        logger.info(f"Device session started for {self.label}")

    async def close(self):
        """Stop reconciling and mark the device offline. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True

        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        self.registry.unregister(self)
        try:
            await self.store.update(self.token, online=False)
        except Exception as e:
            logger.error(f"Failed to mark {self.label} offline: {e}")
        logger.info(f"Device session closed for {self.label}")

    async def _run(self):
        """Tick until cancelled or the channel goes away."""
        while True:
            try:
                await self.tick()
            except SessionClosed:
                logger.debug(f"Channel for {self.label} closed, stopping reconciliation")
                return
            except Exception as e:
                logger.error(f"Reconciliation tick failed for {self.label}: {e}")
            await asyncio.sleep(self.interval)

    # --- Reconciliation ---

    async def tick(self) -> List[str]:
        """Run one reconciliation pass and return the commands sent."""
        generation = self.shadow.generation
        record = await self.store.get(self.token)
        if record is None:
            return []

        if record.status == STATUS_PAIRING:
            await self._complete_pairing()

        if self._writes_in_flight or self.shadow.generation != generation:
            # A device event changed the record while we were reading it;
            # resync from a fresh snapshot next tick.
            logger.debug(f"Skipping stale snapshot for {self.label}")
            return []

        commands = self._diff(record)
        for command in commands:
            await self._send(command)
        return commands

    def _diff(self, record: DeviceRecord) -> List[str]:
        """Commands needed to bring the device in line with ``record``; updates the shadow."""
        commands = []

        cards = " ".join(record.card_ids)
        if cards != self.shadow.cards:
            self.shadow.cards = cards
            commands.append(f"{CMD_CARDS} {cards}")

        locked = record.door_status == DOOR_LOCKED
        if locked != self.shadow.locked:
            self.shadow.locked = locked
            commands.append(CMD_LOCK if locked else CMD_UNLOCK)

        if record.add_card:
            if not self.shadow.add_card_announced:
                self.shadow.add_card_announced = True
                commands.append(CMD_ADD_CARD)
        else:
            self.shadow.add_card_announced = False

        return commands

    async def _complete_pairing(self):
        """Pairing gate: issue the pairing -> paired write once per session."""
        if self.shadow.pairing_completion_sent:
            return
        completed = await self.store.complete_pairing(self.token, datetime.utcnow())
        self.shadow.pairing_completion_sent = True
        if completed:
            logger.info(f"Pairing completed for {self.label}")

    async def _send(self, message: str):
        try:
            await self.channel.send_text(message)
        except Exception as e:
            raise SessionClosed(str(e)) from e
        logger.debug(f"-> {self.label}: {message}")

    # --- Device events ---

    async def handle_frame(self, frame: str):
        """Apply one device-originated frame. Store failures drop the frame."""
        logger.debug(f"<- {self.label}: {frame}")
        command, _, argument = frame.partition(" ")
        argument = argument.strip()

        try:
            if command == EVT_CARD_ADDED:
                await self._card_added(argument)
            elif command == EVT_LOCKED:
                await self._set_door(DOOR_LOCKED)
            elif command == EVT_UNLOCKED:
                await self._set_door(DOOR_UNLOCKED)
                if argument:
                    self.notifier.notify_door_opened(self.token, argument)
            elif command == EVT_GET_DOOR_LOCK:
                await self._reply_door_lock()
            elif command == EVT_SCAN_CARD_TIMEOUT:
                await self._scan_timeout()
            else:
                logger.debug(f"Ignoring unknown frame from {self.label}: {frame}")
        except SessionClosed:
            logger.debug(f"Channel for {self.label} closed while replying")
        except Exception as e:
            logger.error(f"Failed to apply {command} from {self.label}: {e}")

    async def _write(self, operation):
        """Run a device-originated store write, fencing off concurrent ticks."""
        self._writes_in_flight += 1
        self.shadow.generation += 1
        try:
            return await operation()
        finally:
            self._writes_in_flight -= 1

    async def _card_added(self, card: str):
        if not card:
            logger.warning(f"{EVT_CARD_ADDED} from {self.label} without a card identifier")
            return
        applied = await self._write(lambda: self.store.append_card(self.token, card))
        if applied:
            # The device has already left enrollment mode
            self.shadow.add_card_announced = False
            logger.info(f"Card {card} enrolled on {self.label}")

    async def _set_door(self, door_status: str):
        applied = await self._write(lambda: self.store.update(self.token, door_status=door_status))
        if applied:
            # The device reported this state, so there is nothing to send back
            self.shadow.locked = door_status == DOOR_LOCKED
            logger.info(f"Door {door_status} on {self.label}")

    async def _scan_timeout(self):
        applied = await self._write(lambda: self.store.update(self.token, add_card=False))
        if applied:
            self.shadow.add_card_announced = False

    async def _reply_door_lock(self):
        record = await self.store.get(self.token)
        if record is None:
            return
        await self._send(json.dumps({"type": EVT_GET_DOOR_LOCK, "data": record.door_status}))


async def open_session(
    token: str,
    channel,
    store=device_store,
    notifier=push_sender_service,
    registry=session_registry,
    interval: Optional[float] = None,
) -> Optional[DeviceSession]:
    """Bind a connection to the record for ``token``.

    Returns None when no record exists; the caller keeps the connection
    open without dispatching further frames.
    """
    record = await store.get(token)
    if record is None:
        logger.warning(f"Device connection presented unknown token {token[:4]}...")
        return None

    session = DeviceSession(token, channel, store, notifier, registry, interval)
    await session.start()
    return session
