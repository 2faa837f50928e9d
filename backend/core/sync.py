"""
View bindings: keep a piece of data fresh by re-fetching it whenever one of
the entities it depends on changes.
"""

import inspect
import logging
from typing import Any, Callable, Generic, List, Optional, TypeVar

from core.data_manager import DataManager
from core.events import EntityChanged, EventBus, event_name

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DataSync(Generic[T]):
    """Binds a fetch function to entity-change events.

    `mount()` subscribes one refresh callback to every dependency and loads
    the data once; `unmount()` removes exactly those subscriptions. A fetch
    that raises leaves the previous data in place and records the message in
    `error`.
    """

    def __init__(
        self,
        bus: EventBus,
        data_key: str,
        fetch: Callable[[], Any],
        dependencies: Optional[List[str]] = None,
        initial: Optional[T] = None,
        on_refresh: Optional[Callable[["DataSync[T]"], Any]] = None,
    ):
        self.bus = bus
        self.data_key = data_key
        self.fetch = fetch
        self.dependencies = list(dependencies or [])
        self.data: Optional[T] = initial
        self.loading = False
        self.error: Optional[str] = None
        self.mounted = False
        self.on_refresh = on_refresh

    async def _on_change(self, event: EntityChanged) -> None:
        logger.debug(f"[DataSync] {self.data_key} refreshing after {event.name}")
        await self.refresh()

    async def refresh(self) -> Optional[T]:
        self.loading = True
        self.error = None
        try:
            result = self.fetch()
            if inspect.isawaitable(result):
                result = await result
            self.data = result
        except Exception as e:
            logger.error(f"[DataSync] Failed to load {self.data_key}: {e}")
            self.error = str(e) or "An error occurred"
        finally:
            self.loading = False

        if self.on_refresh is not None:
            result = self.on_refresh(self)
            if inspect.isawaitable(result):
                await result
        return self.data

    async def mount(self) -> "DataSync[T]":
        if not self.mounted:
            for dep in self.dependencies:
                self.bus.subscribe(event_name(dep), self._on_change)
            self.mounted = True
        await self.refresh()
        return self

    def unmount(self) -> None:
        if not self.mounted:
            return
        for dep in self.dependencies:
            self.bus.unsubscribe(event_name(dep), self._on_change)
        self.mounted = False

    async def __aenter__(self) -> "DataSync[T]":
        return await self.mount()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.unmount()

    @property
    def state(self) -> str:
        if self.loading:
            return "loading"
        if self.error:
            return "error"
        return "data"

    def snapshot(self) -> dict:
        return {
            "key": self.data_key,
            "state": self.state,
            "data": to_jsonable(self.data),
            "error": self.error,
        }


def appointments_sync(data: DataManager, on_refresh=None) -> DataSync:
    return DataSync(
        data.bus,
        "appointments",
        data.appointments.get_all_appointments,
        ["appointment"],
        on_refresh=on_refresh,
    )


def users_sync(data: DataManager, on_refresh=None) -> DataSync:
    return DataSync(data.bus, "users", data.get_users, ["user"], on_refresh=on_refresh)


def medical_records_sync(data: DataManager, patient_id: Optional[str] = None, on_refresh=None) -> DataSync:
    return DataSync(
        data.bus,
        "medical_records",
        lambda: data.get_medical_records(patient_id),
        ["medical_record"],
        on_refresh=on_refresh,
    )


def messages_sync(data: DataManager, user_id: Optional[str] = None, on_refresh=None) -> DataSync:
    return DataSync(
        data.bus, "messages", lambda: data.get_messages(user_id), ["message"], on_refresh=on_refresh
    )


def clinical_notes_sync(
    data: DataManager,
    doctor_id: Optional[str] = None,
    patient_id: Optional[str] = None,
    on_refresh=None,
) -> DataSync:
    return DataSync(
        data.bus,
        "clinical_notes",
        lambda: data.get_clinical_notes(doctor_id, patient_id),
        ["clinical_note"],
        on_refresh=on_refresh,
    )


def statistics_sync(data: DataManager, on_refresh=None) -> DataSync:
    return DataSync(
        data.bus,
        "statistics",
        data.get_statistics,
        ["appointment", "user", "medical_record", "message", "clinical_note"],
        on_refresh=on_refresh,
    )


def create_sync(data: DataManager, data_key: str, on_refresh=None, **filters) -> Optional[DataSync]:
    """Build the binding for `data_key`, passing through the filters it accepts"""
    if data_key == "appointments":
        return appointments_sync(data, on_refresh=on_refresh)
    if data_key == "users":
        return users_sync(data, on_refresh=on_refresh)
    if data_key == "medical_records":
        return medical_records_sync(data, filters.get("patient_id"), on_refresh=on_refresh)
    if data_key == "messages":
        return messages_sync(data, filters.get("user_id"), on_refresh=on_refresh)
    if data_key == "clinical_notes":
        return clinical_notes_sync(
            data, filters.get("doctor_id"), filters.get("patient_id"), on_refresh=on_refresh
        )
    if data_key == "statistics":
        return statistics_sync(data, on_refresh=on_refresh)
    return None


def to_jsonable(value: Any) -> Any:
    """Turn fetched models (or lists of them) into plain JSON data"""
    if isinstance(value, list):
        return [to_jsonable(v) for v in value]
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value
