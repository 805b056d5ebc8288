from datetime import date, datetime, timedelta

import pytest

from errors import ValidationError
from weeks import (
    first_monday, month_of_week, monday_for, normalize_week_id, parse_week_id, shift_week,
    week_days, week_id_for, week_range, weeks_in_month, weeks_in_year,
)


@pytest.mark.parametrize("d, expected", [
    (date(2024, 1, 1), "2024-W1"),       # Jan 1 is a Monday
    (date(2024, 1, 7), "2024-W1"),
    (date(2024, 3, 6), "2024-W10"),
    (date(2024, 12, 30), "2024-W53"),
    (date(2025, 1, 1), "2024-W53"),      # ISO would say 2025-W1
    (date(2025, 1, 5), "2024-W53"),
    (date(2025, 1, 6), "2025-W1"),
    (date(2023, 1, 1), "2022-W52"),      # a Sunday: its Monday is in 2022
])
def test_week_id_for(d, expected):
    assert week_id_for(d) == expected


def test_week_id_for_accepts_datetime():
    assert week_id_for(datetime(2024, 3, 6, 17, 30)) == "2024-W10"


def test_first_monday():
    assert first_monday(2024) == date(2024, 1, 1)
    assert first_monday(2025) == date(2025, 1, 6)
    assert first_monday(2023) == date(2023, 1, 2)


def test_weeks_in_year():
    assert weeks_in_year(2024) == 53
    assert weeks_in_year(2025) == 52


def test_monday_for():
    assert monday_for("2024-W10") == date(2024, 3, 4)
    assert monday_for("2025-W1") == date(2025, 1, 6)
    assert monday_for("2024-W05") == date(2024, 1, 29)


@pytest.mark.parametrize("bad", ["", "2024-10", "2024-W0", "2025-W53", "24-W1", "2024-W1x", None])
def test_parse_rejects_malformed(bad):
    with pytest.raises(ValidationError):
        parse_week_id(bad)


def test_parse_week_id():
    assert parse_week_id("2024-W53") == (2024, 53)


def test_normalize_week_id_drops_padding():
    assert normalize_week_id("2024-W05") == "2024-W5"
    assert normalize_week_id("2024-W5") == "2024-W5"
    with pytest.raises(ValidationError):
        normalize_week_id("2024-W00")


def test_round_trip_from_dates():
    d = date(2019, 12, 1)
    while d < date(2031, 2, 1):
        monday = d - timedelta(days=d.weekday())
        assert monday_for(week_id_for(d)) == monday
        d += timedelta(days=1)


def test_round_trip_from_week_ids():
    for year in range(2018, 2032):
        for n in range(1, weeks_in_year(year) + 1):
            w = f"{year}-W{n}"
            m = monday_for(w)
            assert m.weekday() == 0
            assert week_id_for(m) == w


def test_no_day_is_counted_twice_across_a_year_boundary():
    days = [d for w in ("2024-W52", "2024-W53", "2025-W1") for d in week_days(w)]
    assert len(days) == len(set(days)) == 21
    assert days[0] == date(2024, 12, 23)
    assert days[-1] == date(2025, 1, 12)


def test_week_range():
    assert week_range("2024-W10") == (date(2024, 3, 4), date(2024, 3, 10))


def test_month_of_week_uses_monday():
    # Monday Feb 26 2024, the week runs into March
    assert month_of_week("2024-W9") == (2024, 2)
    assert month_of_week("2024-W14") == (2024, 4)


def test_weeks_in_month():
    assert weeks_in_month(2024, 1) == ["2024-W1", "2024-W2", "2024-W3", "2024-W4", "2024-W5"]
    assert weeks_in_month(2025, 1) == ["2025-W1", "2025-W2", "2025-W3", "2025-W4"]


def test_shift_week_crosses_years():
    assert shift_week("2024-W53", 1) == "2025-W1"
    assert shift_week("2025-W1", -1) == "2024-W53"
    assert shift_week("2024-W10", 0) == "2024-W10"
