import logging
from dataclasses import dataclass
from typing import Optional

from core.appointments import AppointmentStore
from core.auth import CredentialVerifier, HashedCredentialStore, SessionManager
from core.booking import BookingService
from core.config import Settings
from core.data_manager import DataManager
from core.events import EventBus
from core.schedule import ScheduleStore
from core.storage import InMemoryStorage, StorageAdapter

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything the API needs, built once at startup"""

    settings: Settings
    storage: StorageAdapter
    bus: EventBus
    schedules: ScheduleStore
    appointments: AppointmentStore
    data: DataManager
    credentials: CredentialVerifier
    sessions: SessionManager
    booking: BookingService

    async def start(self) -> None:
        await self.storage.connect()
        logger.info(f"[Services] Started with {self.settings.storage_backend} storage")

    async def close(self) -> None:
        self.bus.clear()
        await self.storage.close()
        logger.info("[Services] Shut down")


def create_storage(settings: Settings) -> StorageAdapter:
    if settings.storage_backend == "mongo":
        from core.database import MongoStorage

        return MongoStorage(settings.mongodb_uri, settings.mongodb_db_name, settings.cas_retries)
    return InMemoryStorage(cas_retries=settings.cas_retries)


def create_services(
    settings: Optional[Settings] = None,
    storage: Optional[StorageAdapter] = None,
    credentials: Optional[CredentialVerifier] = None,
) -> Services:
    settings = settings or Settings.from_env()
    storage = storage or create_storage(settings)
    bus = EventBus()

    schedules = ScheduleStore(storage, bus, days_ahead=settings.schedule_days)
    appointments = AppointmentStore(storage, bus)
    data = DataManager(storage, bus, schedules, appointments)
    credentials = credentials or HashedCredentialStore(storage)

    return Services(
        settings=settings,
        storage=storage,
        bus=bus,
        schedules=schedules,
        appointments=appointments,
        data=data,
        credentials=credentials,
        sessions=SessionManager(storage, credentials, data, settings.login_delay_seconds),
        booking=BookingService(schedules, appointments, data),
    )
