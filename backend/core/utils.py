import re
import random
import string
import time
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Optional, List, Iterator
import dateparser

logger = logging.getLogger(__name__)

EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
NIK_REGEX = re.compile(r"^\d{16}$")

# Slot labels for generated schedules, 9 AM to 4 PM with a lunch break
DEFAULT_SLOT_TIMES = ["09:00", "10:00", "11:00", "14:00", "15:00", "16:00"]

_ID_ALPHABET = string.ascii_lowercase + string.digits
_last_ms = 0


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision"""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _next_timestamp_ms() -> int:
    # Monotonic so ids minted within the same millisecond stay unique
    global _last_ms
    current = int(time.time() * 1000)
    _last_ms = current if current > _last_ms else _last_ms + 1
    return _last_ms


def generate_id(prefix: str, with_suffix: bool = True) -> str:
    """Generate a timestamp-derived id such as `apt_1718000000000` or
    `msg_1718000000000_k3j9x0a2b`."""
    timestamp = _next_timestamp_ms()
    if not with_suffix:
        return f"{prefix}_{timestamp}"
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{prefix}_{timestamp}_{suffix}"


def normalize_date(date_str: Optional[str]) -> Optional[str]:
    """Parse a natural language or ISO date into YYYY-MM-DD"""
    if not date_str:
        return None

    try:
        datetime.strptime(date_str, "%Y-%m-%d")
        return date_str
    except ValueError:
        pass

    parsed = dateparser.parse(
        date_str,
        settings={"PREFER_DATES_FROM": "future", "RETURN_AS_TIMEZONE_AWARE": False},
    )
    if not parsed:
        return None
    return parsed.date().isoformat()


def normalize_time(time_str: Optional[str]) -> Optional[str]:
    """Parse '2 PM', '02:00 PM' or '14:00' into HH:MM"""
    if not time_str:
        return None

    try:
        return datetime.strptime(time_str.strip(), "%H:%M").strftime("%H:%M")
    except ValueError:
        pass

    parsed = dateparser.parse(
        time_str,
        settings={"PREFER_DATES_FROM": "future", "RETURN_AS_TIMEZONE_AWARE": False},
    )
    if not parsed:
        return None
    return parsed.strftime("%H:%M")


def parse_date(date_str: str) -> date:
    return datetime.strptime(date_str, "%Y-%m-%d").date()


def upcoming_weekdays(start: date, first_offset: int, last_offset: int) -> Iterator[str]:
    """Yield YYYY-MM-DD strings for weekdays between start+first and start+last"""
    for offset in range(first_offset, last_offset + 1):
        day = start + timedelta(days=offset)
        # Saturday and Sunday have no clinic hours
        if day.weekday() >= 5:
            continue
        yield day.isoformat()


def week_dates(start: date) -> List[str]:
    return [(start + timedelta(days=i)).isoformat() for i in range(7)]


def clean_phone_number(phone: str) -> str:
    """Strip everything but digits from a phone number"""
    return re.sub(r"\D", "", phone or "")


def is_valid_email(email: Optional[str]) -> bool:
    return bool(email) and EMAIL_REGEX.match(email) is not None


def is_valid_phone(phone: Optional[str]) -> bool:
    cleaned = clean_phone_number(phone or "")
    return 8 <= len(cleaned) <= 15


def is_valid_nik(nik: Optional[str]) -> bool:
    return bool(nik) and NIK_REGEX.match(nik) is not None


def format_appointment_details(appointment: dict) -> str:
    """Format appointment details for display"""
    try:
        dt = datetime.strptime(
            f"{appointment.get('date', '')} {appointment.get('time', '')}", "%Y-%m-%d %H:%M"
        )
        formatted_date = dt.strftime("%A, %B %d, %Y at %I:%M %p")
    except ValueError:
        formatted_date = "Date/time not available"

    doctor = appointment.get("doctorName", "Doctor")
    status = appointment.get("status", "pending").title()
    return f"{formatted_date} with {doctor} ({status})"
