import asyncio

import pytest

from core.exceptions import ConcurrentUpdateError
from core.models import VERSION_FIELD
from core.storage import InMemoryStorage


async def test_values_round_trip_as_copies(storage):
    session = {"email": "a@b.com", "role": "admin", "name": "A"}
    await storage.set_value("user", session)

    loaded = await storage.get_value("user")
    loaded["role"] = "patient"

    assert (await storage.get_value("user"))["role"] == "admin"
    assert await storage.remove_value("user") is True
    assert await storage.get_value("user", "missing") == "missing"


async def test_corrupt_value_reads_as_default(storage):
    storage._values["user"] = "{not json"
    assert await storage.get_value("user") is None

    storage._collections["appointments"] = {"apt_1": "{broken", "apt_2": '{"id": "apt_2"}'}
    assert await storage.list_records("appointments") == [{"id": "apt_2"}]


async def test_insert_refuses_duplicate_ids(storage):
    assert await storage.insert_record("messages", {"id": "msg_1", "subject": "Hi"}) is True
    assert await storage.insert_record("messages", {"id": "msg_1", "subject": "Again"}) is False

    record = await storage.get_record("messages", "msg_1")
    assert record["subject"] == "Hi"
    assert record[VERSION_FIELD] == 1


async def test_replace_checks_version(storage):
    await storage.insert_record("messages", {"id": "msg_1", "isRead": False})

    assert await storage.replace_record("messages", "msg_1", {"id": "msg_1", "isRead": True}, 1) is True
    assert await storage.replace_record("messages", "msg_1", {"id": "msg_1", "isRead": False}, 1) is False

    record = await storage.get_record("messages", "msg_1")
    assert record["isRead"] is True
    assert record[VERSION_FIELD] == 2


async def test_modify_record_missing_or_aborted(storage):
    assert await storage.modify_record("messages", "nope", lambda r: r) is None

    await storage.insert_record("messages", {"id": "msg_1", "isRead": False})
    assert await storage.modify_record("messages", "msg_1", lambda r: None) is None
    assert (await storage.get_record("messages", "msg_1"))[VERSION_FIELD] == 1


async def test_interleaved_increments_are_not_lost():
    storage = InMemoryStorage(cas_retries=20)
    await storage.insert_record("counters", {"id": "c", "value": 0})

    def increment(record):
        record["value"] += 1
        return record

    await asyncio.gather(*(storage.modify_record("counters", "c", increment) for _ in range(5)))

    record = await storage.get_record("counters", "c")
    assert record["value"] == 5
    assert record[VERSION_FIELD] == 6


async def test_modify_record_gives_up_after_retries():
    storage = InMemoryStorage(cas_retries=2)
    await storage.insert_record("counters", {"id": "c", "value": 0})

    async def always_conflict(*args, **kwargs):
        return False

    storage.replace_record = always_conflict

    with pytest.raises(ConcurrentUpdateError):
        await storage.modify_record("counters", "c", lambda r: r)


async def test_clear_collection_and_all(storage):
    await storage.insert_record("users", {"id": "u1"})
    await storage.insert_record("users", {"id": "u2"})
    await storage.set_value("user", {"email": "x"})

    assert await storage.clear_collection("users") == 2
    assert await storage.list_records("users") == []

    await storage.clear_all()
    assert await storage.get_value("user") is None
