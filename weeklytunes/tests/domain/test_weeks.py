from datetime import date, datetime, timedelta, timezone

import pytest

from weeklytunes.domain.weeks import format_week_label, week_label, week_start


class TestWeekStart:
    """Tests for Sunday-anchored week start computation."""

    def test_sunday_is_its_own_week_start(self):
        assert week_start(datetime(2024, 1, 7, 0, 0)) == date(2024, 1, 7)

    def test_saturday_belongs_to_previous_sunday(self):
        assert week_start(datetime(2024, 1, 13, 23, 59)) == date(2024, 1, 7)

    def test_crosses_month_boundary(self):
        # Thursday 1 Feb 2024 -> Sunday 28 Jan 2024
        assert week_start(date(2024, 2, 1)) == date(2024, 1, 28)

    def test_crosses_year_boundary(self):
        # Tuesday 2 Jan 2024 -> Sunday 31 Dec 2023
        assert week_start(datetime(2024, 1, 2, 9, 0)) == date(2023, 12, 31)

    def test_aware_datetime_uses_its_own_calendar_day(self):
        tz = timezone(timedelta(hours=-8))
        # Sunday evening in UTC-8 is Monday in UTC
        now = datetime(2024, 1, 7, 20, 0, tzinfo=tz)
        assert week_start(now) == date(2024, 1, 7)


class TestWeekLabel:
    """Tests for the canonical week label."""

    def test_format(self):
        assert format_week_label(date(2024, 1, 7)) == "Week of Jan 7, 2024"

    def test_label_for_tuesday(self):
        assert week_label(datetime(2024, 1, 9, 12, 0)) == "Week of Jan 7, 2024"

    def test_day_is_not_zero_padded(self):
        assert week_label(date(2024, 3, 5)) == "Week of Mar 3, 2024"

    def test_previous_year_label(self):
        assert week_label(date(2024, 1, 2)) == "Week of Dec 31, 2023"

    @pytest.mark.parametrize("offset_days", range(7))
    def test_stable_within_week(self, offset_days):
        sunday = datetime(2024, 1, 7, 0, 0)
        assert week_label(sunday + timedelta(days=offset_days, hours=23)) == "Week of Jan 7, 2024"

    def test_tuesday_and_following_saturday_match(self):
        assert week_label(date(2024, 5, 14)) == week_label(date(2024, 5, 18))

    def test_crossing_sunday_changes_label(self):
        saturday = datetime(2024, 1, 13, 23, 59, 59)
        sunday = saturday + timedelta(seconds=1)
        assert week_label(saturday) != week_label(sunday)
        assert week_label(sunday) == "Week of Jan 14, 2024"

    def test_every_day_of_a_year_maps_to_a_sunday(self):
        day = date(2023, 1, 1)
        while day.year == 2023:
            start = week_start(day)
            assert (start.weekday() + 1) % 7 == 0
            assert 0 <= (day - start).days < 7
            day += timedelta(days=1)
