import asyncio
import os
import tempfile

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from doorlock.database import build_engine, create_schema
from doorlock.services.device_store import DeviceStore

from conftest import TOKEN


async def open_store(path):
    engine = build_engine(f"sqlite+aiosqlite:///{path}")
    await create_schema(engine)
    return engine, DeviceStore(async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False))


@pytest.mark.asyncio
async def test_concurrent_card_writes_are_not_lost():
    engine, store = await open_store(os.path.join(tempfile.mkdtemp(), "cards.db"))
    try:
        await store.create(TOKEN, "lock-1")
        assert await store.append_card(TOKEN, "A1")

        results = await asyncio.gather(
            *[store.append_card(TOKEN, f"C{i}") for i in range(10)],
            store.rename_card(TOKEN, "A1", "Home"),
        )

        assert all(results)
        record = await store.get(TOKEN)
        assert sorted(record.card_ids) == sorted(["A1"] + [f"C{i}" for i in range(10)])
        assert record.cards[0].name == "Home"
        assert record.add_card is False
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_card_writes_on_missing_record_release_the_lock():
    engine, store = await open_store(os.path.join(tempfile.mkdtemp(), "cards.db"))
    try:
        assert await store.append_card("missing", "A1") is False
        assert await store.rename_card("missing", "A1", "Home") is False

        await store.create(TOKEN, "lock-1")
        assert await store.append_card(TOKEN, "A1")
        assert await store.rename_card(TOKEN, "B2", "Home") is False
        assert await store.rename_card(TOKEN, "A1", "Home")

        record = await store.get(TOKEN)
        assert [(c.card, c.name) for c in record.cards] == [("A1", "Home")]
    finally:
        await engine.dispose()
