from __future__ import annotations

from datetime import date

# Living people younger than this are redacted even without the explicit flag.
_PRIVACY_MINOR_AGE_YEARS = 18


def _add_years(d: date, years: int) -> date:
    try:
        return d.replace(year=d.year + years)
    except ValueError:
        # Handle Feb 29 -> Feb 28 in non-leap years.
        return d.replace(month=2, day=28, year=d.year + years)


def _is_younger_than(birth: date, years: int, *, today: date | None = None) -> bool:
    t = today or date.today()
    return t < _add_years(birth, years)


def _is_effectively_living(*, death_date: date | None) -> bool:
    return death_date is None


def _is_effectively_private(
    *,
    is_private: bool | None,
    birth_date: date | None,
    death_date: date | None,
    today: date | None = None,
) -> bool:
    """Privacy policy:

    - Explicitly private => private
    - Deceased => public
    - Living and under 18 => private
    - Living with unknown birth date => public (members are entered by family)
    """

    if bool(is_private):
        return True
    if not _is_effectively_living(death_date=death_date):
        return False
    if birth_date is None:
        return False
    return _is_younger_than(birth_date, _PRIVACY_MINOR_AGE_YEARS, today=today)
