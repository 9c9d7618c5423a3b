"""
Relative date/time resolution for appointment requests.

Resolves phrases such as "tomorrow at 10am", "next Tuesday at 3pm" or
"sometime next week" against a reference instant (the request time).
Anything that does not pin down a single instant comes back as a window
with ``needs_confirmation`` set; nothing here guesses a time of day.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta

WEEKDAYS: dict[str, int] = {
    "monday": 0,
    "tuesday": 1, "tues": 1,
    "wednesday": 2,
    "thursday": 3, "thurs": 3,
    "friday": 4,
    "saturday": 5,
    "sunday": 6,
}

MONTHS: dict[str, int] = {
    "january": 1, "jan": 1,
    "february": 2, "feb": 2,
    "march": 3, "mar": 3,
    "april": 4, "apr": 4,
    "may": 5,
    "june": 6, "jun": 6,
    "july": 7, "jul": 7,
    "august": 8, "aug": 8,
    "september": 9, "sep": 9, "sept": 9,
    "october": 10, "oct": 10,
    "november": 11, "nov": 11,
    "december": 12, "dec": 12,
}

NUMBER_WORDS: dict[str, int] = {
    "a": 1, "an": 1, "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10,
}

# Part-of-day windows, [start, end).
DAY_PARTS: dict[str, tuple[time, time]] = {
    "morning": (time(9, 0), time(12, 0)),
    "afternoon": (time(12, 0), time(17, 0)),
    "evening": (time(17, 0), time(20, 0)),
}

# Clinic day used when only a date is known.
CLINIC_OPEN = time(9, 0)
CLINIC_CLOSE = time(18, 0)

VAGUE_MARKERS = ("sometime", "some time", "whenever", "anytime", "any time", "either")

_WEEKDAY_RE = "|".join(sorted(WEEKDAYS, key=len, reverse=True))
_MONTH_RE = "|".join(sorted(MONTHS, key=len, reverse=True))
_COUNT_RE = r"\d+|" + "|".join(NUMBER_WORDS)

ISO_DATE = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")
MONTH_DAY = re.compile(
    rf"\b({_MONTH_RE})\.?\s+(\d{{1,2}})(?:st|nd|rd|th)?(?:,?\s+(\d{{4}}))?\b"
)
DAY_MONTH = re.compile(
    rf"\b(\d{{1,2}})(?:st|nd|rd|th)?\s+(?:of\s+)?({_MONTH_RE})\b(?:,?\s+(\d{{4}}))?"
)
DAY_AFTER_TOMORROW = re.compile(r"\bday after tomorrow\b")
TOMORROW = re.compile(r"\btomorrow\b")
TODAY = re.compile(r"\b(?:today|tonight)\b")
IN_COUNT = re.compile(rf"\bin\s+({_COUNT_RE})\s+(days?|weeks?)\b")
NEXT_WEEK_DAY = re.compile(
    rf"\bnext\s+week(?:'s)?\s+(?:on\s+)?({_WEEKDAY_RE})\b|\b({_WEEKDAY_RE})\s+(?:of\s+)?next\s+week\b"
)
NEXT_DAY = re.compile(rf"\bnext\s+({_WEEKDAY_RE})\b")
THIS_DAY = re.compile(rf"\b(?:this|coming|on)?\s*({_WEEKDAY_RE})\b")
NEXT_WEEK = re.compile(r"\bnext\s+week\b")
THIS_WEEK = re.compile(r"\b(?:this|later this)\s+week\b")
WEEKEND = re.compile(r"\b(?:this\s+|next\s+)?weekend\b")
NEXT_MONTH = re.compile(r"\bnext\s+month\b")

CLOCK_TIME = re.compile(r"\b(\d{1,2}):(\d{2})\s*(a\.?m\.?|p\.?m\.?)?(?![\w])")
HOUR_MERIDIEM = re.compile(r"\b(\d{1,2})\s*(a\.?m\.?|p\.?m\.?)(?![\w])")
OCLOCK = re.compile(r"\b(\d{1,2})\s*o'?\s?clock\b")
NOON = re.compile(r"\bnoon\b|\bmidday\b")
MIDNIGHT = re.compile(r"\bmidnight\b")
DAY_PART = re.compile(r"\b(morning|afternoon|evening)\b")


@dataclass
class Resolution:
    """Outcome of resolving a date/time phrase."""

    start: datetime | None = None
    window_start: datetime | None = None
    window_end: datetime | None = None
    needs_confirmation: bool = False
    notes: list[str] = field(default_factory=list)

    @property
    def is_concrete(self) -> bool:
        return self.start is not None


@dataclass
class _DatePart:
    day: date | None = None
    span: tuple[date, date] | None = None  # inclusive range when no single day


# ── Date component ────────────────────────────────────────────────────


def _next_occurrence(reference: date, weekday: int, include_today: bool) -> date:
    days_ahead = (weekday - reference.weekday()) % 7
    if days_ahead == 0 and not include_today:
        days_ahead = 7
    return reference + timedelta(days=days_ahead)


def _week_start(day: date) -> date:
    return day - timedelta(days=day.weekday())


def _month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year, 12, 31)
    return date(year, month + 1, 1) - timedelta(days=1)


def _calendar_date(year: int | None, month: int, day_of_month: int, reference: date) -> date | None:
    try:
        candidate = date(year or reference.year, month, day_of_month)
    except ValueError:
        return None
    # "March 3" said in November means next year's March.
    if year is None and candidate < reference:
        try:
            candidate = date(reference.year + 1, month, day_of_month)
        except ValueError:
            return None
    return candidate


def _count(token: str) -> int:
    return int(token) if token.isdigit() else NUMBER_WORDS[token]


def parse_date(text: str, reference: date) -> _DatePart:
    """Find a date or a date span in ``text`` relative to ``reference``."""
    m = ISO_DATE.search(text)
    if m:
        try:
            return _DatePart(day=date(int(m.group(1)), int(m.group(2)), int(m.group(3))))
        except ValueError:
            pass

    m = MONTH_DAY.search(text)
    if m:
        year = int(m.group(3)) if m.group(3) else None
        day = _calendar_date(year, MONTHS[m.group(1)], int(m.group(2)), reference)
        if day:
            return _DatePart(day=day)

    m = DAY_MONTH.search(text)
    if m:
        year = int(m.group(3)) if m.group(3) else None
        day = _calendar_date(year, MONTHS[m.group(2)], int(m.group(1)), reference)
        if day:
            return _DatePart(day=day)

    if DAY_AFTER_TOMORROW.search(text):
        return _DatePart(day=reference + timedelta(days=2))
    if TOMORROW.search(text):
        return _DatePart(day=reference + timedelta(days=1))
    if TODAY.search(text):
        return _DatePart(day=reference)

    m = IN_COUNT.search(text)
    if m:
        amount = _count(m.group(1))
        unit_days = 7 if m.group(2).startswith("week") else 1
        return _DatePart(day=reference + timedelta(days=amount * unit_days))

    m = NEXT_WEEK_DAY.search(text)
    if m:
        weekday = WEEKDAYS[m.group(1) or m.group(2)]
        return _DatePart(day=_week_start(reference) + timedelta(days=7 + weekday))

    m = NEXT_DAY.search(text)
    if m:
        return _DatePart(day=_next_occurrence(reference, WEEKDAYS[m.group(1)], include_today=False))

    if NEXT_WEEK.search(text):
        start = _week_start(reference) + timedelta(days=7)
        return _DatePart(span=(start, start + timedelta(days=6)))

    if THIS_WEEK.search(text):
        return _DatePart(span=(reference, _week_start(reference) + timedelta(days=6)))

    if WEEKEND.search(text):
        saturday = _next_occurrence(reference, 5, include_today=True)
        if "next" in text and saturday - reference < timedelta(days=7):
            saturday += timedelta(days=7)
        return _DatePart(span=(saturday, saturday + timedelta(days=1)))

    if NEXT_MONTH.search(text):
        year = reference.year + (1 if reference.month == 12 else 0)
        month = 1 if reference.month == 12 else reference.month + 1
        return _DatePart(span=(date(year, month, 1), _month_end(year, month)))

    m = THIS_DAY.search(text)
    if m:
        return _DatePart(day=_next_occurrence(reference, WEEKDAYS[m.group(1)], include_today=True))

    return _DatePart()


# ── Time component ────────────────────────────────────────────────────


def _apply_meridiem(hour: int, meridiem: str | None) -> int | None:
    if meridiem is None:
        return hour if 0 <= hour <= 23 else None
    if not 1 <= hour <= 12:
        return None
    is_pm = meridiem.startswith("p")
    if hour == 12:
        return 12 if is_pm else 0
    return hour + 12 if is_pm else hour


def parse_time(text: str) -> time | tuple[time, time] | None:
    """Return a clock time, a part-of-day window, or None."""
    m = CLOCK_TIME.search(text)
    if m:
        hour = _apply_meridiem(int(m.group(1)), m.group(3))
        minute = int(m.group(2))
        if hour is not None and minute < 60:
            return time(hour, minute)

    m = HOUR_MERIDIEM.search(text)
    if m:
        hour = _apply_meridiem(int(m.group(1)), m.group(2))
        if hour is not None:
            return time(hour, 0)

    m = OCLOCK.search(text)
    if m:
        hour = int(m.group(1))
        if 1 <= hour <= 12:
            # Clinic hours: "3 o'clock" is 15:00, "9 o'clock" is 09:00.
            return time(hour + 12 if hour <= 6 else hour, 0)

    if NOON.search(text):
        return time(12, 0)
    if MIDNIGHT.search(text):
        return time(0, 0)

    m = DAY_PART.search(text)
    if m:
        return DAY_PARTS[m.group(1)]

    return None


# ── Combination ───────────────────────────────────────────────────────


def resolve_phrase(text: str, reference: datetime) -> Resolution:
    """Resolve a free-text phrase (or whole transcript) against ``reference``."""
    lowered = " ".join((text or "").lower().split())
    tz = reference.tzinfo
    result = Resolution()

    date_part = parse_date(lowered, reference.date())
    time_part = parse_time(lowered)

    def at(day: date, clock: time) -> datetime:
        return datetime.combine(day, clock, tzinfo=tz)

    if date_part.day is not None:
        day = date_part.day
        if isinstance(time_part, time):
            result.start = at(day, time_part)
        elif isinstance(time_part, tuple):
            result.window_start, result.window_end = at(day, time_part[0]), at(day, time_part[1])
            result.notes.append("time of day is approximate")
        else:
            result.window_start, result.window_end = at(day, CLINIC_OPEN), at(day, CLINIC_CLOSE)
            result.notes.append("no time given")
    elif date_part.span is not None:
        first, last = date_part.span
        opens, closes = CLINIC_OPEN, CLINIC_CLOSE
        if isinstance(time_part, tuple):
            opens, closes = time_part
        result.window_start, result.window_end = at(first, opens), at(last, closes)
        result.notes.append("date range, no specific day")
    else:
        result.notes.append("no date given")

    if any(marker in lowered for marker in VAGUE_MARKERS):
        result.notes.append("vague expression")
        result.needs_confirmation = True

    if result.start is not None and result.start < reference:
        result.notes.append("resolved time is in the past")
        result.needs_confirmation = True

    if result.start is None:
        result.needs_confirmation = True

    return result


def resolve_when(
    date_text: str | None,
    time_text: str | None,
    reference: datetime,
    fallback_text: str | None = None,
) -> Resolution:
    """
    Resolve the model's verbatim date/time phrases.

    When the model returned no phrases, the whole ``fallback_text`` (the
    transcript) is scanned instead.
    """
    phrase = " ".join(p for p in (date_text, time_text) if p and p.strip())
    if not phrase and fallback_text:
        phrase = fallback_text
    return resolve_phrase(phrase, reference)
