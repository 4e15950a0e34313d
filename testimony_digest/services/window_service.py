"""
Digest window calculations.

Maps a notification frequency and a reference instant onto the window of
"new" activity and the instant the next digest is due. Everything here is
pure; the caller normalizes the reference instant with ``start_of_day``.
"""

from __future__ import annotations

from datetime import datetime, time
from typing import Optional, Union

from dateutil.relativedelta import TU, relativedelta

from testimony_digest.core.exceptions import UnknownFrequencyError
from testimony_digest.core.models import Frequency, ensure_utc

FrequencyLike = Union[Frequency, str, None]

_WINDOW_LENGTHS = {
    Frequency.DAILY: relativedelta(days=1),
    Frequency.WEEKLY: relativedelta(days=7),
    Frequency.MONTHLY: relativedelta(months=1),
}

# Weekly digests go out on Tuesdays, monthly ones on the 1st
_NEXT_DIGEST_STEPS = {
    Frequency.DAILY: relativedelta(days=1),
    Frequency.WEEKLY: relativedelta(days=1, weekday=TU(+1)),
    Frequency.MONTHLY: relativedelta(months=1, day=1),
}


def start_of_day(instant: datetime) -> datetime:
    """Truncate an instant to midnight UTC of the same day."""
    instant = ensure_utc(instant)
    return datetime.combine(instant.date(), time.min, tzinfo=instant.tzinfo)


def parse_frequency(value: FrequencyLike) -> Optional[Frequency]:
    """
    Parse a stored frequency value.

    Returns None when no digest is wanted (missing value or ``"None"``).

    Raises:
        UnknownFrequencyError: For any value outside the Frequency enum
    """
    if value is None or value == "":
        return None
    try:
        frequency = Frequency(value)
    except ValueError:
        raise UnknownFrequencyError(value)
    if frequency is Frequency.NONE:
        return None
    return frequency


def _require_frequency(frequency: FrequencyLike) -> Frequency:
    parsed = parse_frequency(frequency)
    if parsed is None:
        raise UnknownFrequencyError(frequency)
    return parsed


def compute_window_start(frequency: FrequencyLike, reference_instant: datetime) -> datetime:
    """
    Start of the half-open window ``[start, reference_instant)``.

    Raises:
        UnknownFrequencyError: If the frequency has no window
    """
    frequency = _require_frequency(frequency)
    return ensure_utc(reference_instant) - _WINDOW_LENGTHS[frequency]


def compute_next_digest_at(frequency: FrequencyLike, reference_instant: datetime) -> datetime:
    """
    Instant the next digest becomes due after ``reference_instant``.

    Raises:
        UnknownFrequencyError: If the frequency has no schedule
    """
    frequency = _require_frequency(frequency)
    return ensure_utc(reference_instant) + _NEXT_DIGEST_STEPS[frequency]
