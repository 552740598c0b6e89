"""
Contract frequency terms → scheduled visit dates.

Pure date arithmetic, no database access. Month-based steps are always
computed as an offset from the contract start date, so a contract that
starts on the 31st lands on the last day of shorter months without
drifting to the 28th for the rest of the year.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta

from dateutil.relativedelta import relativedelta

from maintenance.errors import InvalidContractTerms

# frequency → (unit, count)
FIXED_STEPS: dict[str, tuple[str, int]] = {
    "weekly": ("weeks", 1),
    "monthly": ("months", 1),
    "quarterly": ("months", 3),
    "semi_annual": ("months", 6),
    "annual": ("months", 12),
}
CUSTOM_UNITS = ("days", "weeks", "months", "years")


@dataclass(frozen=True)
class FrequencyStep:
    unit: str
    count: int

    def offset(self, n: int) -> relativedelta | timedelta:
        """Offset of the n-th occurrence from the start date."""
        if self.unit == "days":
            return timedelta(days=self.count * n)
        if self.unit == "weeks":
            return timedelta(weeks=self.count * n)
        if self.unit == "months":
            return relativedelta(months=self.count * n)
        return relativedelta(years=self.count * n)


def resolve_step(frequency: str, frequency_value: int | None = None, frequency_unit: str | None = None) -> FrequencyStep:
    if frequency in FIXED_STEPS:
        unit, count = FIXED_STEPS[frequency]
        return FrequencyStep(unit=unit, count=count)
    if frequency != "custom":
        raise InvalidContractTerms(f"Unknown frequency '{frequency}'")
    if not frequency_value or frequency_value <= 0:
        raise InvalidContractTerms("Custom frequency requires a positive frequency_value")
    if frequency_unit not in CUSTOM_UNITS:
        raise InvalidContractTerms(
            f"Custom frequency requires frequency_unit in {', '.join(CUSTOM_UNITS)}"
        )
    return FrequencyStep(unit=frequency_unit, count=int(frequency_value))


def validate_terms(
    frequency: str,
    frequency_value: int | None,
    frequency_unit: str | None,
    start_date: date,
    end_date: date | None,
) -> FrequencyStep:
    """Validate a contract's frequency terms and date range."""
    if end_date is not None and end_date < start_date:
        raise InvalidContractTerms("end_date must be on or after start_date")
    return resolve_step(frequency, frequency_value, frequency_unit)


def candidate_dates(
    step: FrequencyStep,
    start_date: date,
    end_date: date | None,
    horizon_end: date,
    max_count: int,
) -> list[date]:
    """
    Every scheduled date for the contract, in order.

    ``end_date`` is exclusive: it is the day the contract lapses. A contract
    whose start and end fall on the same day still covers its single start
    date. Open-ended contracts stop at ``horizon_end`` (inclusive).
    """
    if end_date is not None and end_date == start_date:
        return [start_date]

    dates: list[date] = []
    n = 0
    while len(dates) < max_count:
        current = start_date + step.offset(n)
        if end_date is not None:
            if current >= end_date:
                break
        elif current > horizon_end:
            break
        dates.append(current)
        n += 1
    return dates
