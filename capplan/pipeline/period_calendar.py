from __future__ import annotations

import datetime as dt
from typing import Any, Iterable, Optional

MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]
MONTH_NAMES = [
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
]
WEEKS_PER_YEAR = 52

# 4-4-5 pattern over a 52 week year
WEEKS_BY_MONTH = {
    1: [1, 2, 3, 4],
    2: [5, 6, 7, 8],
    3: [9, 10, 11, 12, 13],
    4: [14, 15, 16, 17],
    5: [18, 19, 20, 21],
    6: [22, 23, 24, 25, 26],
    7: [27, 28, 29, 30],
    8: [31, 32, 33, 34],
    9: [35, 36, 37, 38, 39],
    10: [40, 41, 42, 43],
    11: [44, 45, 46, 47],
    12: [48, 49, 50, 51, 52],
}
_MONTH_BY_WEEK = {week: month for month, weeks in WEEKS_BY_MONTH.items() for week in weeks}


def detect_granularity(header_columns: Iterable[Any]) -> str:
    cols = [str(c).strip() for c in header_columns or []]
    return "month" if any(c in MONTHS for c in cols) else "week"


def week_number(period: Any) -> Optional[int]:
    """Return the integer week for a period key, or None for month names and junk."""
    if isinstance(period, bool):
        return None
    if isinstance(period, int):
        return period
    try:
        text = str(period).strip()
        if text.upper().startswith("W"):
            text = text[1:]
        value = float(text)
    except (TypeError, ValueError):
        return None
    if value != value or int(value) != value:
        return None
    return int(value)


def is_week_column(column: Any) -> bool:
    week = week_number(column)
    return week is not None and 1 <= week <= WEEKS_PER_YEAR


def month_number(period: Any) -> Optional[int]:
    text = str(period or "").strip()[:3].title()
    if text in MONTHS:
        return MONTHS.index(text) + 1
    return None


def weeks_for_month(month: int) -> list[int]:
    return list(WEEKS_BY_MONTH.get(int(month), []))


def weeks_for_period(period: Any) -> list[int]:
    """Weeks covered by a period key: the week itself, or a month's weeks."""
    week = week_number(period)
    if week is not None:
        return [week]
    month = month_number(period)
    return weeks_for_month(month) if month else []


def month_for_week(week: Any) -> Optional[int]:
    num = week_number(week)
    if num is None:
        return None
    return _MONTH_BY_WEEK.get(num)


def short_month(month: int) -> str:
    return MONTHS[(int(month) - 1) % 12]


def spans_year_boundary(weeks: Iterable[Any]) -> bool:
    nums = [w for w in (week_number(x) for x in weeks) if w is not None]
    return any(w >= 49 for w in nums) and any(w <= 13 for w in nums)


def group_weeks_by_month(weeks: Iterable[Any], today: Optional[dt.date] = None) -> list[dict]:
    """
    Group week keys into month buckets ordered for display.

    When the weeks straddle a year boundary (weeks >= 49 alongside weeks <= 13)
    the calendar year of each side is guessed from ``today``: in December or
    January-June the high weeks are last December and sort first, in
    July-November the low weeks belong to next year and sort after December.
    The result depends on the wall clock unless ``today`` is pinned.
    """
    weeks = [w for w in weeks or []]
    current_month = (today or dt.date.today()).month
    wrap = spans_year_boundary(weeks)
    groups: dict[tuple[int, int], dict] = {}
    for week in weeks:
        num = week_number(week)
        month = month_for_week(num)
        if month is None:
            continue
        if not wrap:
            order = month
        elif current_month == 12 or current_month <= 6:
            order = 0 if num >= 49 else month
        else:
            order = month if num >= 49 else 12 + month
        key = (order, month)
        if key not in groups:
            groups[key] = {
                "month": MONTH_NAMES[month - 1],
                "label": short_month(month),
                "month_num": month,
                "display_order": order,
                "weeks": [],
            }
        groups[key]["weeks"].append(str(week))
    return [groups[k] for k in sorted(groups)]


def display_periods(periods: Iterable[Any], granularity: str, view: str = "week", today: Optional[dt.date] = None) -> list[dict]:
    periods = [str(p) for p in periods or []]
    if granularity == "month":
        return [{"label": p, "periods": [p]} for p in periods]
    if view == "month":
        return [{"label": g["label"], "periods": g["weeks"]} for g in group_weeks_by_month(periods, today=today)]
    return [{"label": f"W{p}", "periods": [p]} for p in periods]
