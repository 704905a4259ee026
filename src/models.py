# models.py
#
# Domain vocabulary for the scheduling engine.
#
# Every status, frequency and weekday is a closed enumeration. Storage rows stay
# plain dicts; these enums are what values are checked against before they are
# written, so a typo'd frequency is rejected instead of silently producing no
# service days.

from datetime import date
from enum import Enum
from typing import Optional, Type, TypeVar

from src.errors import ValidationError


class Frequency(str, Enum):
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"
    ONETIME = "ONETIME"


class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    PAST_DUE = "PAST_DUE"
    PENDING_CANCEL = "PENDING_CANCEL"
    CANCELED = "CANCELED"


class JobStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    EN_ROUTE = "EN_ROUTE"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"
    CANCELED = "CANCELED"


class RouteStatus(str, Enum):
    PLANNED = "PLANNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class SuggestionStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    DISMISSED = "DISMISSED"


class ClientStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class Weekday(str, Enum):
    """Declared in date.weekday() order (Monday=0 ... Sunday=6)."""
    MONDAY = "MONDAY"
    TUESDAY = "TUESDAY"
    WEDNESDAY = "WEDNESDAY"
    THURSDAY = "THURSDAY"
    FRIDAY = "FRIDAY"
    SATURDAY = "SATURDAY"
    SUNDAY = "SUNDAY"

    @property
    def number(self) -> int:
        return list(Weekday).index(self)


# Jobs a voider may cancel
VOIDABLE_JOB_STATUSES = (JobStatus.SCHEDULED, JobStatus.EN_ROUTE)

# Forward-only progress; CANCELED is reached only through the voider
JOB_TRANSITIONS = {
    JobStatus.SCHEDULED: {JobStatus.EN_ROUTE, JobStatus.SKIPPED},
    JobStatus.EN_ROUTE: {JobStatus.IN_PROGRESS, JobStatus.SKIPPED},
    JobStatus.IN_PROGRESS: {JobStatus.COMPLETED},
    JobStatus.COMPLETED: set(),
    JobStatus.SKIPPED: set(),
    JobStatus.CANCELED: set(),
}

E = TypeVar("E", bound=Enum)


def parse_enum(enum_cls: Type[E], value, field: str) -> E:
    """Return the enum member for value or raise ValidationError naming the field."""
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls(value.strip().upper())
        except ValueError:
            pass
    allowed = ", ".join(m.value for m in enum_cls)
    raise ValidationError(f"Invalid {field} {value!r} (expected one of: {allowed})")


def parse_weekday(value) -> Optional[Weekday]:
    """None / empty string means 'no preferred day'."""
    if value is None or value == "":
        return None
    return parse_enum(Weekday, value, "preferred_day")


def weekday_of(d: date) -> Weekday:
    return list(Weekday)[d.weekday()]
