"""
Delivery capacity rules.

Pure functions: no queries, no writes. Callers pass the slots they already
loaded (under lock) and act on the report.
"""
import datetime
from collections import defaultdict
from dataclasses import dataclass, field

from django.conf import settings
from django.utils import timezone

from apps.utils.exceptions import BookingCapacityExceeded

WARNING_RATIO = 0.8


@dataclass(frozen=True)
class CandidateSlot:
    date: datetime.date
    max_capacity: int


@dataclass
class CapacityReport:
    errors: list = field(default_factory=list)
    warnings: list = field(default_factory=list)

    @property
    def is_valid(self):
        return not self.errors


def max_daily_deliveries():
    return getattr(settings, "MAX_DAILY_DELIVERIES", 10)


def max_daily_capacity():
    return getattr(settings, "MAX_DAILY_CAPACITY", 100)


def calendar_day(value) -> datetime.date:
    if isinstance(value, datetime.datetime):
        if timezone.is_aware(value):
            return timezone.localdate(value)
        return value.date()
    return value


def validate_new_slots(candidates, existing_slots, unit="kg") -> CapacityReport:
    """
    Group existing + candidate slots by calendar day and check the per-day
    slot count and summed max capacity against the configured ceilings.
    Crossing 80% of the capacity ceiling only produces a warning.
    """
    report = CapacityReport()
    count_limit = max_daily_deliveries()
    capacity_limit = max_daily_capacity()

    slot_count = defaultdict(int)
    total_capacity = defaultdict(int)

    for slot in existing_slots:
        day = calendar_day(slot.date)
        slot_count[day] += 1
        total_capacity[day] += slot.max_capacity

    candidate_days = []
    for candidate in candidates:
        day = calendar_day(candidate.date)
        slot_count[day] += 1
        total_capacity[day] += candidate.max_capacity
        if day not in candidate_days:
            candidate_days.append(day)

    for day in sorted(candidate_days):
        if slot_count[day] > count_limit:
            report.errors.append(
                f"Maximum of {count_limit} deliveries per day would be exceeded on {day.isoformat()} "
                f"({slot_count[day]} slots)."
            )
        if total_capacity[day] > capacity_limit:
            report.errors.append(
                f"Maximum daily capacity of {capacity_limit} {unit} would be exceeded on {day.isoformat()} "
                f"({total_capacity[day]} {unit})."
            )
        elif total_capacity[day] > capacity_limit * WARNING_RATIO:
            report.warnings.append(
                f"High load on {day.isoformat()}: {total_capacity[day]} of {capacity_limit} {unit}."
            )

    return report


def check_booking_capacity(slot, qty: int):
    if slot.reserved + qty > slot.max_capacity:
        raise BookingCapacityExceeded(
            f"Slot capacity exceeded: available {slot.available_capacity}, requested {qty}."
        )
