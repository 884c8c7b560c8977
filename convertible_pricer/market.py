"""Discount and survival curves consumed by the lattice engine.

Both curves are immutable: shifting a spread returns a new curve object that
shares the underlying QuantLib term structure, so calibration never touches a
curve the caller still holds.
"""

import math

import QuantLib as ql

from .utils import DateUtils


class DiscountCurve:
    """Risk-free discount curve plus a static continuous zero spread.

    Parameters
    ----------
    base : QuantLib.YieldTermStructure
        Spread-free curve.
    as_of : QuantLib.Date
        Curve reference date; lattice time zero.
    spread : float
        Continuously compounded zero spread added on top of ``base``.
    quotes : iterable[float]
        Par rates the curve was built from, used to bound negative spreads.
    """

    def __init__(self, base, as_of, spread=0.0, quotes=None):
        self.base = base
        self.as_of = as_of
        self.spread = float(spread)
        self.quotes = tuple(quotes or ())

        if abs(self.spread) > 0.0:
            ts = ql.ZeroSpreadedTermStructure(
                ql.YieldTermStructureHandle(base),
                ql.QuoteHandle(ql.SimpleQuote(self.spread)),
            )
            ts.enableExtrapolation()
            self.ts = ts
        else:
            self.ts = base
        self.handle = ql.YieldTermStructureHandle(self.ts)

    @classmethod
    def flat(cls, as_of, rate, day_count=None):
        """Flat continuously compounded curve at ``rate``."""
        ts = ql.FlatForward(as_of, float(rate), day_count or ql.Actual365Fixed(), ql.Continuous)
        ts.enableExtrapolation()
        return cls(ts, as_of, quotes=[float(rate)])

    @classmethod
    def from_discount_factors(cls, as_of, dates, dfs, day_count=None, quotes=None):
        """Log-linear curve through discount factors (first date must be ``as_of``)."""
        ts = ql.DiscountCurve(
            [DateUtils.to_ql_date(d) for d in dates], [float(x) for x in dfs],
            day_count or ql.Actual365Fixed(),
        )
        ts.enableExtrapolation()
        return cls(ts, as_of, quotes=quotes)

    def with_spread(self, spread):
        return DiscountCurve(self.base, self.as_of, spread, self.quotes)

    def shifted(self, delta):
        return self.with_spread(self.spread + delta)

    def spread_floor(self, default):
        """Lowest spread keeping the curve's quoted rates positive."""
        if not self.quotes:
            return default
        return -min(self.quotes) + 1.0e-4

    def discount(self, d):
        return float(self.ts.discount(d))

    def discount_at(self, t):
        """Discount factor at tree time ``t`` (years from ``as_of``)."""
        if t <= 0.0:
            return 1.0
        return DateUtils.interpolate(self.discount, self.as_of, t, log=True)

    def forward_rate(self, t1, t2):
        """Continuously compounded forward rate between two tree times."""
        return math.log(self.discount_at(t1) / self.discount_at(t2)) / (t2 - t1)


class SurvivalCurve:
    """Issuer survival curve fitted to CDS par spreads.

    A curve is either flat (one spread, credit-triangle hazard) or bootstrapped
    from a CDS term structure with ``ql.PiecewiseFlatHazardRate``. In both cases
    the quotes are kept so ``bumped``/``scaled`` can re-fit the curve.
    """

    def __init__(self, as_of, recovery, spreads, tenors=None, discount_curve=None):
        self.as_of = as_of
        self.recovery = float(recovery)
        self.spreads = tuple(float(s) for s in spreads)
        self.tenors = tuple(tenors) if tenors else None
        self.discount_curve = discount_curve
        if not self.spreads:
            raise ValueError("A survival curve needs at least one CDS spread")
        if not 0.0 <= self.recovery < 1.0:
            raise ValueError(f"Recovery must lie in [0, 1), got {self.recovery}")

        if self.tenors is None:
            hazard = self.spreads[0] / (1.0 - self.recovery)
            self.ts = ql.FlatHazardRate(
                as_of, ql.QuoteHandle(ql.SimpleQuote(hazard)), ql.Actual365Fixed()
            )
            self._helpers = []
        else:
            if discount_curve is None:
                raise ValueError("Bootstrapping a survival curve requires a discount curve")
            ql.Settings.instance().evaluationDate = as_of
            self._helpers = [
                ql.SpreadCdsHelper(
                    ql.QuoteHandle(ql.SimpleQuote(s)),
                    DateUtils.ensure_period(tenor),
                    0,
                    ql.WeekendsOnly(),
                    ql.Quarterly,
                    ql.Following,
                    ql.DateGeneration.TwentiethIMM,
                    ql.Actual360(),
                    self.recovery,
                    discount_curve.handle,
                )
                for s, tenor in zip(self.spreads, self.tenors)
            ]
            self.ts = ql.PiecewiseFlatHazardRate(as_of, self._helpers, ql.Actual365Fixed())
        self.ts.enableExtrapolation()
        self.handle = ql.DefaultProbabilityTermStructureHandle(self.ts)

    @classmethod
    def flat(cls, as_of, spread, recovery):
        return cls(as_of, recovery, [spread])

    @classmethod
    def from_cds_quotes(cls, as_of, tenors, spreads, recovery, discount_curve):
        return cls(as_of, recovery, spreads, tenors, discount_curve)

    @classmethod
    def from_maturity_quote(cls, as_of, maturity, spread, recovery, discount_curve):
        """Curve bootstrapped from a single CDS quote running to ``maturity``."""
        tenor = ql.Period(int(maturity - as_of), ql.Days)
        return cls(as_of, recovery, [spread], [tenor], discount_curve)

    def bumped(self, shift):
        """Re-fit with every quote shifted by ``shift`` (decimal)."""
        return SurvivalCurve(
            self.as_of, self.recovery, [s + shift for s in self.spreads],
            self.tenors, self.discount_curve,
        )

    def scaled(self, relative):
        """Re-fit with every quote scaled by ``1 + relative``."""
        return SurvivalCurve(
            self.as_of, self.recovery, [s * (1.0 + relative) for s in self.spreads],
            self.tenors, self.discount_curve,
        )

    def survival(self, d):
        return float(self.ts.survivalProbability(d))

    def survival_at(self, t):
        if t <= 0.0:
            return 1.0
        return DateUtils.interpolate(self.survival, self.as_of, t)

    def par_spread(self, maturity, discount_curve):
        """Par CDS spread to ``maturity`` implied by this curve."""
        ql.Settings.instance().evaluationDate = self.as_of
        schedule = ql.Schedule(
            self.as_of, maturity, ql.Period(ql.Quarterly), ql.WeekendsOnly(),
            ql.Following, ql.Unadjusted, ql.DateGeneration.TwentiethIMM, False,
        )
        cds = ql.CreditDefaultSwap(
            ql.Protection.Seller, 1.0, 0.01, schedule, ql.Following, ql.Actual360()
        )
        cds.setPricingEngine(ql.MidPointCdsEngine(self.handle, self.recovery, discount_curve.handle))
        return float(cds.fairSpread())
