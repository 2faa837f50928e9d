"""
Entity-change notifications.

Each mutation publishes one of a closed set of event types, so a subscriber
can dispatch on the event class instead of inspecting an untyped payload.
Delivery is inline: `publish` returns once every listener has run, in the
order they subscribed.
"""

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, List, Type

from core.utils import now_iso

logger = logging.getLogger(__name__)

Listener = Callable[["EntityChanged"], Any]

CHANGE_TYPES = ("create", "update", "delete", "sync")


@dataclass(frozen=True)
class EntityChanged:
    entity: ClassVar[str] = ""

    type: str
    data: Any = None
    timestamp: str = field(default_factory=now_iso)

    def __post_init__(self):
        if self.type not in CHANGE_TYPES:
            raise ValueError(f"Unknown change type: {self.type}")

    @property
    def name(self) -> str:
        return f"{self.entity}_changed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.name,
            "type": self.type,
            "data": self.data,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class UserChanged(EntityChanged):
    entity: ClassVar[str] = "user"


@dataclass(frozen=True)
class DoctorProfileChanged(EntityChanged):
    entity: ClassVar[str] = "doctor_profile"


@dataclass(frozen=True)
class PatientProfileChanged(EntityChanged):
    entity: ClassVar[str] = "patient_profile"


@dataclass(frozen=True)
class AppointmentChanged(EntityChanged):
    entity: ClassVar[str] = "appointment"


@dataclass(frozen=True)
class ScheduleChanged(EntityChanged):
    entity: ClassVar[str] = "schedule"


@dataclass(frozen=True)
class MedicalRecordChanged(EntityChanged):
    entity: ClassVar[str] = "medical_record"


@dataclass(frozen=True)
class MessageChanged(EntityChanged):
    entity: ClassVar[str] = "message"


@dataclass(frozen=True)
class ClinicalNoteChanged(EntityChanged):
    entity: ClassVar[str] = "clinical_note"


EVENT_TYPES: Dict[str, Type[EntityChanged]] = {
    cls.entity: cls
    for cls in (
        UserChanged,
        DoctorProfileChanged,
        PatientProfileChanged,
        AppointmentChanged,
        ScheduleChanged,
        MedicalRecordChanged,
        MessageChanged,
        ClinicalNoteChanged,
    )
}

ALL_EVENT_NAMES: List[str] = [f"{entity}_changed" for entity in EVENT_TYPES]


def event_name(entity: str) -> str:
    return f"{entity}_changed"


class EventBus:
    """Subscriber table mapping event names to ordered listener lists"""

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = {}

    def subscribe(self, name: str, callback: Listener) -> None:
        self._listeners.setdefault(name, []).append(callback)

    def unsubscribe(self, name: str, callback: Listener) -> bool:
        """Remove the first registration of `callback` for `name`"""
        callbacks = self._listeners.get(name)
        if not callbacks:
            return False
        try:
            callbacks.remove(callback)
        except ValueError:
            return False
        return True

    def listener_count(self, name: str) -> int:
        return len(self._listeners.get(name, []))

    async def publish(self, event: EntityChanged) -> None:
        # Copy so a listener may unsubscribe itself mid-delivery
        for callback in list(self._listeners.get(event.name, [])):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"[EventBus] Listener for {event.name} failed: {e}")

    def clear(self) -> None:
        self._listeners.clear()
