"""Helpers for the loose event-date strings organizers type in."""

from __future__ import annotations

import re
from datetime import date

_SEPARATORS = re.compile(r"[-/]")


def parse_event_date(text: str, today: date | None = None) -> date | None:
    """Parse ``MM/DD`` or ``YYYY/MM/DD`` (``-`` also accepted).

    A month/day without a year resolves to this year, or next year when that
    day has already passed. Returns None for anything that is not a real date.
    """
    today = today or date.today()
    parts = _SEPARATORS.split(text.strip())
    try:
        numbers = [int(part) for part in parts]
    except ValueError:
        return None

    if len(numbers) == 2:
        month, day = numbers
        year = today.year
        try:
            candidate = date(year, month, day)
        except ValueError:
            return None
        if candidate < today:
            year += 1
    elif len(numbers) == 3:
        year, month, day = numbers
    else:
        return None

    try:
        return date(year, month, day)
    except ValueError:
        return None
