"""Validate digest window and schedule calculations."""

from datetime import datetime, timezone

import pytest

from testimony_digest.core.exceptions import ConfigurationError, UnknownFrequencyError
from testimony_digest.core.models import Frequency
from testimony_digest.services.window_service import (
    compute_next_digest_at,
    compute_window_start,
    parse_frequency,
    start_of_day,
)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestStartOfDay:
    """Normalization of the reference instant."""

    def test_truncates_to_midnight_utc(self):
        assert start_of_day(utc(2024, 3, 5, 15, 30, 12)) == utc(2024, 3, 5)

    def test_naive_values_are_treated_as_utc(self):
        assert start_of_day(datetime(2024, 3, 5, 23, 59)) == utc(2024, 3, 5)


class TestParseFrequency:
    """Parsing stored frequency values."""

    @pytest.mark.parametrize("value", [None, "", "None", Frequency.NONE])
    def test_no_digest_wanted(self, value):
        assert parse_frequency(value) is None

    def test_known_values(self):
        assert parse_frequency("Daily") is Frequency.DAILY
        assert parse_frequency(Frequency.MONTHLY) is Frequency.MONTHLY

    @pytest.mark.parametrize("value", ["Hourly", "weekly ", 7])
    def test_unknown_values_raise(self, value):
        with pytest.raises(UnknownFrequencyError) as exc_info:
            parse_frequency(value)

        assert isinstance(exc_info.value, ConfigurationError)
        assert exc_info.value.frequency == value


class TestWindowStart:
    """Window lengths per frequency."""

    def test_daily(self):
        assert compute_window_start(Frequency.DAILY, utc(2024, 3, 5)) == utc(2024, 3, 4)

    def test_weekly(self):
        assert compute_window_start("Weekly", utc(2024, 3, 5)) == utc(2024, 2, 27)

    def test_monthly(self):
        assert compute_window_start(Frequency.MONTHLY, utc(2024, 3, 1)) == utc(2024, 2, 1)

    def test_monthly_clamps_to_month_end(self):
        assert compute_window_start(Frequency.MONTHLY, utc(2024, 3, 31)) == utc(2024, 2, 29)

    @pytest.mark.parametrize("value", ["Fortnightly", None, "None"])
    def test_unknown_frequency_raises(self, value):
        with pytest.raises(UnknownFrequencyError):
            compute_window_start(value, utc(2024, 3, 5))


class TestNextDigestAt:
    """Next due instant per frequency."""

    def test_daily(self):
        assert compute_next_digest_at(Frequency.DAILY, utc(2024, 3, 5)) == utc(2024, 3, 6)

    def test_weekly_from_tuesday_is_following_tuesday(self):
        assert compute_next_digest_at(Frequency.WEEKLY, utc(2024, 3, 5)) == utc(2024, 3, 12)

    def test_weekly_from_monday_is_next_day(self):
        assert compute_next_digest_at(Frequency.WEEKLY, utc(2024, 3, 4)) == utc(2024, 3, 5)

    def test_weekly_from_first_of_month(self):
        # 2024-03-01 is a Friday
        assert compute_next_digest_at(Frequency.WEEKLY, utc(2024, 3, 1)) == utc(2024, 3, 5)

    def test_monthly_is_first_of_next_month(self):
        assert compute_next_digest_at(Frequency.MONTHLY, utc(2024, 1, 31)) == utc(2024, 2, 1)
        assert compute_next_digest_at(Frequency.MONTHLY, utc(2024, 12, 1)) == utc(2025, 1, 1)

    def test_unknown_frequency_raises(self):
        with pytest.raises(UnknownFrequencyError):
            compute_next_digest_at("Yearly", utc(2024, 3, 5))

    def test_deterministic(self):
        reference = utc(2024, 3, 5)
        for frequency in (Frequency.DAILY, Frequency.WEEKLY, Frequency.MONTHLY):
            assert compute_next_digest_at(frequency, reference) == compute_next_digest_at(
                frequency, reference
            )
            assert compute_window_start(frequency, reference) == compute_window_start(
                frequency, reference
            )
