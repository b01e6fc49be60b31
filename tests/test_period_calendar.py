import datetime as dt

from capplan.pipeline.period_calendar import (
    detect_granularity,
    display_periods,
    group_weeks_by_month,
    is_week_column,
    month_for_week,
    month_number,
    week_number,
    weeks_for_month,
    weeks_for_period,
)


def test_detect_granularity():
    assert detect_granularity(["1", "2", "3"]) == "week"
    assert detect_granularity(["Jan", "Feb"]) == "month"
    assert detect_granularity([]) == "week"


def test_week_number_parsing():
    assert week_number(7) == 7
    assert week_number("7") == 7
    assert week_number("W12") == 12
    assert week_number("Mar") is None
    assert week_number("7.5") is None
    assert week_number(None) is None
    assert is_week_column("52")
    assert not is_week_column("53")


def test_four_four_five_table():
    assert weeks_for_month(1) == [1, 2, 3, 4]
    assert weeks_for_month(3) == [9, 10, 11, 12, 13]
    assert weeks_for_month(12) == [48, 49, 50, 51, 52]
    assert sum(len(weeks_for_month(m)) for m in range(1, 13)) == 52
    assert month_for_week(13) == 3
    assert month_for_week(14) == 4
    assert month_number("March") == 3
    assert weeks_for_period("Feb") == [5, 6, 7, 8]
    assert weeks_for_period("9") == [9]


def test_group_weeks_without_wrap():
    groups = group_weeks_by_month(["1", "2", "5", "6"], today=dt.date(2024, 3, 1))
    assert [g["label"] for g in groups] == ["Jan", "Feb"]
    assert groups[0]["weeks"] == ["1", "2"]


def test_group_weeks_wrap_in_first_half_puts_december_first():
    groups = group_weeks_by_month(["50", "51", "52", "1", "2"], today=dt.date(2024, 2, 10))
    assert [g["label"] for g in groups] == ["Dec", "Jan"]
    assert groups[0]["display_order"] == 0
    assert groups[1]["display_order"] == 1


def test_group_weeks_wrap_in_second_half_pushes_january_after():
    groups = group_weeks_by_month(["50", "51", "52", "1", "2"], today=dt.date(2024, 9, 10))
    assert [g["label"] for g in groups] == ["Dec", "Jan"]
    assert groups[0]["display_order"] == 12
    assert groups[1]["display_order"] == 13


def test_display_periods():
    weekly = display_periods(["1", "2"], "week")
    assert weekly == [{"label": "W1", "periods": ["1"]}, {"label": "W2", "periods": ["2"]}]
    monthly = display_periods(["1", "2", "5"], "week", view="month", today=dt.date(2024, 1, 1))
    assert monthly == [{"label": "Jan", "periods": ["1", "2"]}, {"label": "Feb", "periods": ["5"]}]
    assert display_periods(["Jan"], "month") == [{"label": "Jan", "periods": ["Jan"]}]
