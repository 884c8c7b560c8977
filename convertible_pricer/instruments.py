from dataclasses import dataclass, field, replace
from datetime import date

import QuantLib as ql

from .utils import DateUtils, thirty360_usa, us_calendar

LATTICE_PAR = 1000.0


@dataclass(frozen=True)
class ExercisePeriod:
    """A call or put window with its strike, quoted in percent of par."""

    start: ql.Date
    end: ql.Date
    price: float

    @classmethod
    def coerce(cls, item):
        if isinstance(item, ExercisePeriod):
            return item
        start, end, price = item
        return cls(DateUtils.to_ql_date(start), DateUtils.to_ql_date(end), float(price))


@dataclass
class ConvertibleBondSpec:
    """Specification of a fixed-rate convertible bond.

    Notes
    -----
    - ``conversion_ratio`` is the number of shares received per ``face`` of
      principal.
    - ``call_schedule`` / ``put_schedule`` are lists of ``ExercisePeriod`` or
      ``(start, end, price)`` tuples with ``price`` in percent of par
      (100.0 = par, clean).
    - ``soft_call_trigger`` scales the initial stock price into the centre of
      the soft-call trigger table; None disables the soft call and calls
      become hard calls.
    - ``amortization_schedule`` is a list of ``(date, amount)`` principal
      repayments as fractions of the original face.
    - ``redemption`` is in percent of par.

    The lattice works in units of a 1000 par bond: see ``normalized``.
    """

    face: float
    coupon_rate: float
    coupon_frequency: object  # QuantLib Frequency, Period, or string like "6M"
    issue_date: date
    maturity_date: date
    conversion_ratio: float

    convert_start: date = None
    convert_end: date = None

    call_schedule: list = field(default_factory=list)
    put_schedule: list = field(default_factory=list)
    soft_call_trigger: float = None
    soft_call_end: date = None
    amortization_schedule: list = field(default_factory=list)

    # Conventions
    bond_day_count: object = field(default_factory=thirty360_usa)
    calendar: object = field(default_factory=us_calendar)
    business_convention: object = ql.Unadjusted
    payment_convention: object = ql.Following
    date_generation: object = ql.DateGeneration.Backward
    end_of_month: bool = False

    redemption: float = 100.0

    def __post_init__(self):
        if self.face <= 0.0:
            raise ValueError(f"Face must be positive, got {self.face}")
        if self.conversion_ratio <= 0.0:
            raise ValueError(f"Conversion ratio must be positive, got {self.conversion_ratio}")

        self.issue_date = DateUtils.to_ql_date(self.issue_date)
        self.maturity_date = DateUtils.to_ql_date(self.maturity_date)
        if self.maturity_date <= self.issue_date:
            raise ValueError("Maturity must fall after the issue date")

        self.convert_start = DateUtils.to_ql_date(self.convert_start)
        self.convert_end = DateUtils.to_ql_date(self.convert_end)
        self.soft_call_end = DateUtils.to_ql_date(self.soft_call_end)
        self.call_schedule = sorted(
            (ExercisePeriod.coerce(p) for p in (self.call_schedule or [])), key=lambda p: p.start
        )
        self.put_schedule = sorted(
            (ExercisePeriod.coerce(p) for p in (self.put_schedule or [])), key=lambda p: p.start
        )
        self.amortization_schedule = [
            (DateUtils.to_ql_date(d), float(a)) for d, a in (self.amortization_schedule or [])
        ]

    # ---------------------------------------------------------------------
    # Derived terms
    # ---------------------------------------------------------------------
    @property
    def conversion_price(self):
        return self.face / self.conversion_ratio

    @property
    def payments_per_year(self):
        return DateUtils.payments_per_year(self.coupon_frequency)

    @property
    def is_convertible(self):
        return self.convert_start is not None and self.convert_end is not None

    def normalized(self, par=LATTICE_PAR):
        """Return a copy rescaled to ``par`` with the same conversion price."""
        if self.face == par:
            return replace(self)
        return replace(self, face=float(par), conversion_ratio=par / self.conversion_price)

    def remaining_principal(self, d):
        """Fraction of the original face still outstanding on date ``d``."""
        paid = sum(a for pay_date, a in self.amortization_schedule if pay_date < d)
        return max(1.0 - paid, 0.0)

    # ---------------------------------------------------------------------
    # QuantLib objects
    # ---------------------------------------------------------------------
    def ql_schedule(self):
        period = DateUtils.ensure_period(self.coupon_frequency)
        return ql.Schedule(
            self.issue_date,
            self.maturity_date,
            period,
            self.calendar,
            self.business_convention,
            self.business_convention,
            self.date_generation,
            bool(self.end_of_month),
        )

    def coupon_periods(self, settle):
        """Coupon periods ``(start, end)`` whose payment falls after ``settle``."""
        dates = list(self.ql_schedule())
        return [(s, e) for s, e in zip(dates[:-1], dates[1:]) if e > settle]

    def ql_straight_bond(self):
        return ql.FixedRateBond(
            0,
            float(self.face),
            self.ql_schedule(),
            [float(self.coupon_rate)],
            self.bond_day_count,
            self.payment_convention,
            float(self.redemption),
            self.issue_date,
        )

    def accrued_amount(self, settle):
        """Accrued interest in percent of par on ``settle``."""
        bond = self.ql_straight_bond()
        return float(bond.accruedAmount(DateUtils.to_ql_date(settle)))
