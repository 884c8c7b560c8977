import math

import QuantLib as ql
import pandas as pd

DAYS_PER_YEAR = 365.0


def us_calendar():
    """Return a generic United States calendar.

    Different QuantLib builds expose different market enums, so the broadest
    available one is picked.
    """
    for market in ("Settlement", "GovernmentBond"):
        if hasattr(ql.UnitedStates, market):
            return ql.UnitedStates(getattr(ql.UnitedStates, market))
    return ql.UnitedStates()


def thirty360_usa():
    """Return the 30/360 (USA) day count used for bond accruals."""
    if hasattr(ql.Thirty360, "USA"):
        return ql.Thirty360(ql.Thirty360.USA)
    return ql.Thirty360(ql.Thirty360.BondBasis)


class DateUtils:
    """Small helpers to keep date/period/tree-time handling in one place.

    Lattice time is measured in years of 365 days from the as-of date and may
    fall inside a day; QuantLib dates are whole days. ``split_time`` and
    ``interpolate`` bridge the two.
    """

    @staticmethod
    def to_ql_date(d):
        """Convert common Python date representations into QuantLib.Date."""
        if d is None:
            return None
        if isinstance(d, ql.Date):
            return d
        if isinstance(d, str):
            d = pd.to_datetime(d).date()
        return ql.Date(d.day, d.month, d.year)

    @staticmethod
    def ensure_period(freq_or_period):
        """Convert Frequency/Period/string to QuantLib.Period."""
        if isinstance(freq_or_period, ql.Period):
            return freq_or_period
        if isinstance(freq_or_period, str):
            return ql.Period(freq_or_period.strip().upper())
        return ql.Period(freq_or_period)

    @staticmethod
    def payments_per_year(freq_or_period):
        """Return coupon payments per year from Period/Frequency."""
        p = DateUtils.ensure_period(freq_or_period)
        n = p.length()
        units = p.units()
        if n <= 0:
            raise ValueError(f"Coupon frequency must be a positive period, got {p}")
        if units == ql.Years:
            return 1.0 / n
        if units == ql.Months:
            return 12.0 / n
        if units == ql.Weeks:
            return 52.0 / n
        if units == ql.Days:
            return DAYS_PER_YEAR / n
        raise ValueError(f"Unsupported coupon frequency {p}")

    @staticmethod
    def time_between(start, end):
        """Years of 365 days between two QuantLib dates."""
        return (end.serialNumber() - start.serialNumber()) / DAYS_PER_YEAR

    @staticmethod
    def end_of_day_time(as_of, d):
        """Tree time of the last second of date ``d``."""
        return DateUtils.time_between(as_of, d) + (86399.0 / 86400.0) / DAYS_PER_YEAR

    @staticmethod
    def split_time(as_of, t):
        """Return (whole-day date, fraction of day) for tree time ``t``."""
        days = t * DAYS_PER_YEAR
        whole = int(math.floor(days + 1e-9))
        frac = max(days - whole, 0.0)
        return as_of + whole, frac

    @staticmethod
    def interpolate(fn, as_of, t, log=False):
        """Evaluate a date function at tree time ``t``, interpolating within the day."""
        d, frac = DateUtils.split_time(as_of, t)
        lo = fn(d)
        if frac <= 0.0:
            return lo
        hi = fn(d + 1)
        if log and lo > 0.0 and hi > 0.0:
            return math.exp((1.0 - frac) * math.log(lo) + frac * math.log(hi))
        return (1.0 - frac) * lo + frac * hi

    @staticmethod
    def day_count_fraction(day_count, start, as_of, t):
        """Day-count fraction from ``start`` to tree time ``t``."""
        d, frac = DateUtils.split_time(as_of, t)
        if d < start:
            return 0.0
        acc = day_count.yearFraction(start, d) if d > start else 0.0
        if frac > 0.0:
            acc += frac * day_count.yearFraction(d, d + 1)
        return acc
