"""
Storage adapters for the hospital portal.

Two kinds of data are kept:

* key/value entries (the session `user`) stored as JSON documents under a
  single key, and
* record collections (appointments, schedules, credentials keyed by email,
  ...) stored one record per id, each carrying a `_version` token.

Every write to a record goes through a compare-and-swap on that token so two
interleaved read-modify-write sequences cannot silently overwrite each other.
"""

import asyncio
import copy
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from core.exceptions import ConcurrentUpdateError
from core.models import VERSION_FIELD

logger = logging.getLogger(__name__)

Mutator = Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]


class StorageAdapter(ABC):
    cas_retries: int = 5

    # Key/value operations
    @abstractmethod
    async def get_value(self, key: str, default: Any = None) -> Any:
        ...

    @abstractmethod
    async def set_value(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    async def remove_value(self, key: str) -> bool:
        ...

    # Record operations
    @abstractmethod
    async def list_records(self, collection: str) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def get_record(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def insert_record(self, collection: str, record: Dict[str, Any]) -> bool:
        """Insert a new record with version 1. False if the id is taken."""

    @abstractmethod
    async def replace_record(
        self,
        collection: str,
        record_id: str,
        record: Dict[str, Any],
        expected_version: int,
    ) -> bool:
        """Write `record` only if the stored version still equals `expected_version`."""

    @abstractmethod
    async def delete_record(self, collection: str, record_id: str) -> bool:
        ...

    @abstractmethod
    async def clear_collection(self, collection: str) -> int:
        ...

    @abstractmethod
    async def clear_all(self) -> None:
        ...

    async def connect(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def replace_collection(self, collection: str, records: List[Dict[str, Any]]) -> None:
        """Overwrite a whole collection with `records`"""
        await self.clear_collection(collection)
        for record in records:
            await self.insert_record(collection, record)

    async def modify_record(
        self,
        collection: str,
        record_id: str,
        mutator: Mutator,
        retries: Optional[int] = None,
    ) -> Optional[Dict[str, Any]]:
        """Optimistic read-modify-write of a single record.

        The mutator receives a copy of the stored record and returns the new
        record, or None to abort without writing. On a version conflict the
        record is re-read and the mutator runs again against fresh state.

        Returns the stored record, or None if the record does not exist or the
        mutator aborted. Raises ConcurrentUpdateError once retries run out; an
        exception raised by the mutator propagates and nothing is written.
        """
        attempts = (retries if retries is not None else self.cas_retries) + 1

        for attempt in range(attempts):
            current = await self.get_record(collection, record_id)
            if current is None:
                return None

            version = current.get(VERSION_FIELD, 0)
            updated = mutator(copy.deepcopy(current))
            if updated is None:
                return None

            if await self.replace_record(collection, record_id, updated, version):
                updated[VERSION_FIELD] = version + 1
                return updated

            logger.debug(
                f"[Storage] Version conflict on {collection}/{record_id} (attempt {attempt + 1})"
            )

        logger.warning(f"[Storage] Gave up updating {collection}/{record_id} after {attempts} attempts")
        raise ConcurrentUpdateError(f"{collection}/{record_id} kept changing during update")


class InMemoryStorage(StorageAdapter):
    """Process-local storage that keeps every value JSON-encoded.

    Values are serialized on write and parsed on read, mirroring the browser
    local storage the portal was written against: callers never share
    references with the store, and a corrupt entry reads back as "no data".
    """

    def __init__(self, cas_retries: int = 5, latency: float = 0.0):
        self.cas_retries = cas_retries
        self.latency = latency
        self._values: Dict[str, str] = {}
        self._collections: Dict[str, Dict[str, str]] = {}

    async def _io(self) -> None:
        # Reads and writes suspend like a network round trip would
        await asyncio.sleep(self.latency)

    @staticmethod
    def _load(raw: str, where: str) -> Any:
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.error(f"[Storage] Error parsing stored {where}: {e}")
            return None

    async def get_value(self, key: str, default: Any = None) -> Any:
        raw = self._values.get(key)
        if raw is None:
            return default
        value = self._load(raw, key)
        return default if value is None else value

    async def set_value(self, key: str, value: Any) -> None:
        self._values[key] = json.dumps(value)

    async def remove_value(self, key: str) -> bool:
        return self._values.pop(key, None) is not None

    async def list_records(self, collection: str) -> List[Dict[str, Any]]:
        records = []
        for record_id, raw in self._collections.get(collection, {}).items():
            record = self._load(raw, f"{collection}/{record_id}")
            if isinstance(record, dict):
                records.append(record)
        return records

    async def get_record(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        await self._io()
        raw = self._collections.get(collection, {}).get(record_id)
        if raw is None:
            return None
        record = self._load(raw, f"{collection}/{record_id}")
        return record if isinstance(record, dict) else None

    async def insert_record(self, collection: str, record: Dict[str, Any]) -> bool:
        records = self._collections.setdefault(collection, {})
        record_id = record["id"]
        if record_id in records:
            return False
        records[record_id] = json.dumps({**record, VERSION_FIELD: 1})
        return True

    async def replace_record(
        self,
        collection: str,
        record_id: str,
        record: Dict[str, Any],
        expected_version: int,
    ) -> bool:
        await self._io()
        records = self._collections.get(collection, {})
        raw = records.get(record_id)
        if raw is None:
            return False

        stored = self._load(raw, f"{collection}/{record_id}") or {}
        if stored.get(VERSION_FIELD, 0) != expected_version:
            return False

        records[record_id] = json.dumps({**record, VERSION_FIELD: expected_version + 1})
        return True

    async def delete_record(self, collection: str, record_id: str) -> bool:
        return self._collections.get(collection, {}).pop(record_id, None) is not None

    async def clear_collection(self, collection: str) -> int:
        removed = len(self._collections.get(collection, {}))
        self._collections[collection] = {}
        return removed

    async def clear_all(self) -> None:
        self._values.clear()
        self._collections.clear()
