import logging
from typing import Dict, List, Optional, Any
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import DuplicateKeyError

from core.models import VERSION_FIELD
from core.storage import StorageAdapter

logger = logging.getLogger(__name__)

KV_COLLECTION = "kv"


class MongoStorage(StorageAdapter):
    """MongoDB-backed storage: one document per record, `_id` = record id"""

    def __init__(self, mongodb_uri: str, db_name: str, cas_retries: int = 5):
        self.mongodb_uri = mongodb_uri
        self.db_name = db_name
        self.cas_retries = cas_retries
        self.client = None
        self.db = None
        self.connected = False

    async def connect(self):
        """Connect to MongoDB"""
        if self.connected:
            return

        try:
            self.client = AsyncIOMotorClient(self.mongodb_uri)
            self.db = self.client[self.db_name]

            # Test connection
            await self.client.admin.command("ping")
            self.connected = True

            await self._create_indexes()

            logger.info(f"[Database] Connected to {self.db_name}")

        except Exception as e:
            logger.error(f"[Database] Connection failed: {e}")
            raise

    async def _create_indexes(self):
        """Create indexes for the lookups the stores run most"""
        try:
            await self.db.users.create_index("email")
            await self.db.doctor_profiles.create_index("email")
            await self.db.patient_profiles.create_index("email")

            await self.db.appointments.create_index("patientEmail")
            await self.db.appointments.create_index("doctorId")
            await self.db.appointments.create_index("status")

            await self.db.doctor_schedules.create_index([("doctorId", 1), ("date", 1)])

            await self.db.medical_records.create_index("patientId")
            await self.db.messages.create_index([("senderId", 1), ("receiverId", 1)])
            await self.db.clinical_notes.create_index([("doctorId", 1), ("patientId", 1)])

        except Exception as e:
            logger.error(f"[Database] Index creation error: {e}")

    async def ensure_connected(self):
        """Ensure database connection is active"""
        if not self.connected:
            await self.connect()

    @staticmethod
    def _strip(document: Optional[Dict]) -> Optional[Dict[str, Any]]:
        if document is None:
            return None
        document.pop("_id", None)
        return document

    # Key/value operations
    async def get_value(self, key: str, default: Any = None) -> Any:
        await self.ensure_connected()

        try:
            document = await self.db[KV_COLLECTION].find_one({"_id": key})
            if document is None:
                return default
            return document.get("value", default)

        except Exception as e:
            logger.error(f"[Database] Get value '{key}' error: {e}")
            return default

    async def set_value(self, key: str, value: Any) -> None:
        await self.ensure_connected()

        try:
            await self.db[KV_COLLECTION].replace_one(
                {"_id": key}, {"_id": key, "value": value}, upsert=True
            )

        except Exception as e:
            logger.error(f"[Database] Set value '{key}' error: {e}")
            raise

    async def remove_value(self, key: str) -> bool:
        await self.ensure_connected()

        try:
            result = await self.db[KV_COLLECTION].delete_one({"_id": key})
            return result.deleted_count > 0

        except Exception as e:
            logger.error(f"[Database] Remove value '{key}' error: {e}")
            return False

    # Record operations
    async def list_records(self, collection: str) -> List[Dict[str, Any]]:
        await self.ensure_connected()

        try:
            cursor = self.db[collection].find({})
            documents = await cursor.to_list(length=None)
            return [self._strip(doc) for doc in documents]

        except Exception as e:
            logger.error(f"[Database] List {collection} error: {e}")
            return []

    async def get_record(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        await self.ensure_connected()

        try:
            document = await self.db[collection].find_one({"_id": record_id})
            return self._strip(document)

        except Exception as e:
            logger.error(f"[Database] Get {collection}/{record_id} error: {e}")
            return None

    async def insert_record(self, collection: str, record: Dict[str, Any]) -> bool:
        await self.ensure_connected()

        try:
            document = {**record, "_id": record["id"], VERSION_FIELD: 1}
            await self.db[collection].insert_one(document)
            return True

        except DuplicateKeyError:
            return False
        except Exception as e:
            logger.error(f"[Database] Insert {collection} error: {e}")
            raise

    async def replace_record(
        self,
        collection: str,
        record_id: str,
        record: Dict[str, Any],
        expected_version: int,
    ) -> bool:
        await self.ensure_connected()

        try:
            document = {**record, "_id": record_id, VERSION_FIELD: expected_version + 1}
            result = await self.db[collection].replace_one(
                {"_id": record_id, VERSION_FIELD: expected_version}, document
            )
            return result.matched_count > 0

        except Exception as e:
            logger.error(f"[Database] Replace {collection}/{record_id} error: {e}")
            return False

    async def delete_record(self, collection: str, record_id: str) -> bool:
        await self.ensure_connected()

        try:
            result = await self.db[collection].delete_one({"_id": record_id})
            return result.deleted_count > 0

        except Exception as e:
            logger.error(f"[Database] Delete {collection}/{record_id} error: {e}")
            return False

    async def clear_collection(self, collection: str) -> int:
        await self.ensure_connected()

        try:
            result = await self.db[collection].delete_many({})
            return result.deleted_count

        except Exception as e:
            logger.error(f"[Database] Clear {collection} error: {e}")
            return 0

    async def clear_all(self) -> None:
        await self.ensure_connected()

        for name in await self.db.list_collection_names():
            await self.db[name].delete_many({})
        logger.info(f"[Database] Cleared all collections in {self.db_name}")

    async def close(self):
        """Close database connection"""
        if self.client:
            self.client.close()
            self.connected = False
            logger.info("[Database] Connection closed")
