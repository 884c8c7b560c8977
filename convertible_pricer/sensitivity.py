"""Bump-and-reprice sensitivities and sweeps for the convertible model.

Every bumped price is wrapped in a ``BumpResult``: a failed reprice is kept as
an error instead of a NaN, and a sensitivity built from it raises
``SensitivityError``. Bumped prices are cached on the model (``bump_cache``),
which ``model.invalidate()`` clears.

The sweeps return ``pandas.DataFrame`` objects whose first column is the x-axis.
"""

import logging
from dataclasses import dataclass

import pandas as pd

from .calibration import SpreadCalibrator
from .engines.intersecting_trees import QUOTE_SCALE
from .errors import CalibrationError, ConvertiblePricingError, SensitivityError
from .instruments import LATTICE_PAR

logger = logging.getLogger(__name__)

GAMMA_FLOOR = 1.0e-10


@dataclass(frozen=True)
class BumpResult:
    """Price of one bumped scenario, or the error that prevented it."""

    value: float = None
    error: Exception = None

    @property
    def ok(self):
        return self.error is None

    @classmethod
    def capture(cls, label, fn):
        try:
            return cls(value=float(fn()))
        except (ConvertiblePricingError, ValueError, ArithmeticError) as exc:
            logger.warning("Bumped reprice %s failed: %s", label, exc)
            return cls(error=exc)


def _require(name, **results):
    failed = {k: r for k, r in results.items() if not r.ok}
    if failed:
        first = next(iter(failed.values()))
        raise SensitivityError(
            f"{name} is undefined: bump(s) {', '.join(failed)} failed", results
        ) from first.error
    return [r.value for r in results.values()]


class ConvertibleGreeks:
    """Greeks of an ``IntersectingTreesModel`` by bump and reprice."""

    def __init__(self, model):
        self.model = model
        self.cfg = model.cfg

    def _bumped(self, key, fn):
        cache = self.model.bump_cache
        if key not in cache:
            cache[key] = BumpResult.capture(key, fn)
        return cache[key]

    # ------------------------------------------------------------------
    # Equity
    # ------------------------------------------------------------------
    @property
    def stock_bump(self):
        return self.cfg.stock_bump(self.model.sigma_s)

    def _price_with_tree(self, tree):
        m = self.model
        lattice = tree.build(m.rate_lattice)
        return m.price_on(m.rate_lattice, lattice, with_floor=False)[0]

    def _stock_bumps(self):
        m = self.model
        ds = self.stock_bump
        up = self._bumped(
            "stock_up", lambda: self._price_with_tree(m.stock_tree.with_spot(m.s0 * (1.0 + ds)))
        )
        down = self._bumped(
            "stock_down", lambda: self._price_with_tree(m.stock_tree.with_spot(m.s0 * (1.0 - ds)))
        )
        return up, down

    def hedge_ratio(self):
        """Change in bond value (per 1000 par) per unit of stock price."""
        up, down = _require("HedgeRatio", **dict(zip(("up", "down"), self._stock_bumps())))
        return (up - down) / (self.model.s0 * 2.0 * self.stock_bump)

    def delta(self):
        return self.hedge_ratio() / self.model.bond.conversion_ratio

    def gamma(self):
        m = self.model
        up, down = _require("Gamma", **dict(zip(("up", "down"), self._stock_bumps())))
        ds = self.stock_bump * m.s0
        g = (up - 2.0 * m.pv() + down) / (ds * ds) / m.bond.conversion_ratio
        return 0.0 if abs(g) < GAMMA_FLOOR else g

    def _vol_bumps(self):
        m = self.model
        bump_up = self.cfg.stock_vol_bump
        bump_down = min(self.cfg.stock_vol_bump, m.sigma_s)
        up = self._bumped(
            "vol_up", lambda: self._price_with_tree(m.stock_tree.with_volatility(m.sigma_s + bump_up))
        )
        down = self._bumped(
            "vol_down", lambda: self._price_with_tree(m.stock_tree.with_volatility(m.sigma_s - bump_down))
        )
        return up, down, bump_up + bump_down

    def vega_equity(self):
        """Price change in percent of par per unit of stock volatility."""
        up, down, width = self._vol_bumps()
        up, down = _require("VegaEquity", up=up, down=down)
        return (up - down) / (QUOTE_SCALE * width)

    # ------------------------------------------------------------------
    # Rates
    # ------------------------------------------------------------------
    def vega_rate(self):
        """Price change in percent of par per unit of rate volatility.

        Only the rate lattice is rebuilt; the equity lattice is reused.
        """
        m = self.model
        bump = self.cfg.rate_vol_bump

        def reprice():
            lattice = m.rate_lattice.clone()
            lattice.set_rate_tree(m.rate_lattice.bump_sigma(bump).rate_tree())
            return m.price_on(lattice, m.stock_lattice, with_floor=False)[0]

        (bumped,) = _require("VegaRate", up=self._bumped("rate_vol_up", reprice))
        return (bumped - m.pv()) / QUOTE_SCALE / bump

    def interest_sensitivity(self):
        """Price change in percent of par for a parallel discount-curve move."""
        m = self.model
        bump = self.cfg.interest_sensitivity_bump
        curve = m.discount_curve

        def reprice(shift):
            return m.with_curves(discount_curve=curve.shifted(shift), keep_stock_lattice=True).pv()

        up = self._bumped("rate_up", lambda: reprice(bump))
        down = self._bumped("rate_down", lambda: reprice(-bump))
        up, down = _require("InterestSensitivity", up=up, down=down)
        return (up - down) / QUOTE_SCALE / QUOTE_SCALE

    def _duration_bumps(self, market_price, fix_stock):
        key = ("duration", float(market_price), bool(fix_stock))
        cache = self.model.bump_cache
        if key in cache:
            return cache[key]
        try:
            oas = SpreadCalibrator(self.model).implied_discount_spread(
                market_price, include_survival=False, fix_stock=fix_stock
            )
        except CalibrationError as exc:
            raise CalibrationError(
                "Unable to bracket an OAS; Try fix_stock=True", exc.last_trial
            ) from exc

        base = self.model.with_curves(drop_survival=True)
        curve = base.discount_curve
        dy = self.cfg.duration_bump

        def reprice(spread):
            return base.with_curves(
                discount_curve=curve.shifted(spread), keep_stock_lattice=fix_stock
            ).pv()

        results = {
            "base": BumpResult.capture("oas", lambda: reprice(oas)),
            "up": BumpResult.capture("oas_up", lambda: reprice(oas + dy)),
            "down": BumpResult.capture("oas_down", lambda: reprice(oas - dy)),
        }
        cache[key] = results
        return results

    def effective_duration(self, market_price, fix_stock=False):
        """Duration from +-``duration_bump`` moves of the calibrated OAS."""
        p0, up, down = _require("EffectiveDuration", **self._duration_bumps(market_price, fix_stock))
        return (down - up) / (2.0 * p0 * self.cfg.duration_bump)

    def effective_convexity(self, market_price, fix_stock=False):
        p0, up, down = _require("EffectiveConvexity", **self._duration_bumps(market_price, fix_stock))
        dy = self.cfg.duration_bump
        return 0.5 * (down + up - 2.0 * p0) / (2.0 * p0 * dy * dy)

    # ------------------------------------------------------------------
    # Credit
    # ------------------------------------------------------------------
    def credit_sensitivity(self):
        """Price change in percent of par per percent of relative CDS widening.

        Zero when the model carries no credit risk.
        """
        m = self.model
        if m.survival_curve is None:
            return 0.0
        bump = self.cfg.credit_sensitivity_bump
        up = self._bumped(
            "credit_up", lambda: m.with_curves(survival_curve=m.survival_curve.scaled(bump)).pv()
        )
        (up,) = _require("CreditSensitivity", up=up)
        return (up - m.pv()) / QUOTE_SCALE / (bump * 100.0)


# ----------------------------------------------------------------------
# Sweeps
# ----------------------------------------------------------------------
def price_vs_stock(model, spots):
    """Full price (percent of par), bond floor and parity against the stock price."""
    rows = []
    for s in spots:
        lattice = model.stock_tree.with_spot(float(s)).build(model.rate_lattice)
        pv, floor = model.price_on(model.rate_lattice, lattice)
        rows.append({
            "stock_price": float(s),
            "price": pv / QUOTE_SCALE,
            "bond_floor": floor / QUOTE_SCALE,
            "parity": float(s) * model.bond.conversion_ratio / QUOTE_SCALE,
        })
    return pd.DataFrame(rows)


def price_vs_stock_volatility(model, vols):
    rows = []
    for v in vols:
        lattice = model.stock_tree.with_volatility(float(v)).build(model.rate_lattice)
        pv, _ = model.price_on(model.rate_lattice, lattice, with_floor=False)
        rows.append({"stock_volatility": float(v), "price": pv / QUOTE_SCALE})
    return pd.DataFrame(rows)


def price_vs_discount_spread(model, spreads_bps, fix_stock=False):
    """Full price as a fraction of par against a parallel discount spread."""
    curve = model.discount_curve
    rows = []
    for bps in spreads_bps:
        shifted = model.with_curves(
            discount_curve=curve.shifted(float(bps) / 10000.0), keep_stock_lattice=fix_stock
        )
        rows.append({"spread_bps": float(bps), "price": shifted.pv() / LATTICE_PAR})
    return pd.DataFrame(rows)
