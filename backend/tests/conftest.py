"""Shared fixtures: temporary database settings and in-memory fakes for the session engine."""
import os
import tempfile

# Settings and the database engine are built at import time
os.environ["DATA_PATH"] = tempfile.mkdtemp()
os.environ["RECONCILE_INTERVAL_SECONDS"] = "0.05"
os.environ["PRESENCE_SWEEP_SECONDS"] = "0"
os.environ["PUSH_ENABLED"] = "false"
os.environ.pop("DATABASE_URL", None)

import dataclasses
from datetime import datetime
from typing import Dict, List, Optional

import pytest

from doorlock.models.device import STATUS_PAIRING, STATUS_PAIRED, DOOR_LOCKED
from doorlock.services.device_store import CardEntry, DeviceRecord, TokenCollisionError
from doorlock.services.session_registry import SessionRegistry

TOKEN = "AbCdEf1234"


class FakeStore:
    """Dict-backed stand-in for DeviceStore that records every write."""

    def __init__(self):
        self.records: Dict[str, DeviceRecord] = {}
        self.updates: List[tuple] = []
        self.pairing_writes: List[str] = []

    def put(self, token=TOKEN, device_id="lock-1", cards=(), **fields) -> DeviceRecord:
        defaults = dict(
            status=STATUS_PAIRED,
            door_status=DOOR_LOCKED,
            online=False,
            add_card=False,
            pairing_requested_at=datetime(2024, 1, 1),
        )
        defaults.update(fields)
        record = DeviceRecord(
            token=token,
            device_id=device_id,
            cards=tuple(CardEntry(card=c) if isinstance(c, str) else c for c in cards),
            **defaults,
        )
        self.records[token] = record
        return record

    async def get(self, token: str) -> Optional[DeviceRecord]:
        return self.records.get(token)

    async def create(self, token: str, device_id: str) -> DeviceRecord:
        if token in self.records:
            raise TokenCollisionError(token)
        return self.put(token, device_id, status=STATUS_PAIRING)

    async def update(self, token: str, **fields) -> bool:
        self.updates.append((token, fields))
        record = self.records.get(token)
        if record is None:
            return False
        self.records[token] = dataclasses.replace(record, **fields)
        return True

    async def complete_pairing(self, token: str, completed_at=None) -> bool:
        self.pairing_writes.append(token)
        record = self.records.get(token)
        if record is None or record.status != STATUS_PAIRING:
            return False
        self.records[token] = dataclasses.replace(
            record, status=STATUS_PAIRED, pairing_completed_at=completed_at or datetime.utcnow()
        )
        return True

    async def append_card(self, token: str, card: str, name=None) -> bool:
        record = self.records.get(token)
        if record is None:
            return False
        cards = record.cards
        if card not in record.card_ids:
            cards = cards + (CardEntry(card=card, name=name),)
        self.records[token] = dataclasses.replace(record, cards=cards, add_card=False)
        return True

    async def rename_card(self, token: str, card: str, name: str) -> bool:
        record = self.records.get(token)
        if record is None or card not in record.card_ids:
            return False
        cards = tuple(
            CardEntry(card=c.card, name=name if c.card == card else c.name) for c in record.cards
        )
        self.records[token] = dataclasses.replace(record, cards=cards)
        return True

    async def list_online_tokens(self) -> List[str]:
        return [t for t, r in self.records.items() if r.online]

    def offline_writes(self, token=TOKEN) -> int:
        return sum(1 for t, f in self.updates if t == token and f.get("online") is False)


class FakeChannel:
    """Collects text frames sent to the device."""

    def __init__(self, fail: bool = False):
        self.sent: List[str] = []
        self.fail = fail

    async def send_text(self, message: str):
        if self.fail:
            raise RuntimeError("Cannot call send once a close message has been sent")
        self.sent.append(message)


class FakeNotifier:
    def __init__(self):
        self.door_opened: List[tuple] = []

    def notify_door_opened(self, topic: str, who: str) -> None:
        self.door_opened.append((topic, who))


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def registry():
    return SessionRegistry()
