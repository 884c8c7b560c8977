import copy
import enum
import logging

import numpy as np

from ..config import AppConfig
from ..instruments import LATTICE_PAR
from ..utils import DateUtils
from .equity_tree import CorrelatedStockTree, StockDividends
from .short_rate import ShortRateModel, make_rate_lattice
from .soft_call import SoftCallTable

logger = logging.getLogger(__name__)

NO_CALL = 1.0e8
NO_PUT = 0.0
# Calls and puts are never exercised on the first few steps of the tree.
MIN_EXERCISE_STEP = 5
QUOTE_SCALE = 10.0  # lattice values are per 1000 par, quotes per 100


class LatticeState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    BUILT = "built"
    PRICED = "priced"


class IntersectingTreesModel:
    """Convertible bond priced on a short-rate lattice intersected with an
    equity lattice.

    The model is built from immutable inputs. Lattices are created on demand by
    ``build()`` and dropped by ``invalidate()``; ``pv()`` runs the backward
    induction once and caches the root values. Curve changes never mutate a
    model: ``with_curves`` returns a new model sharing the bond terms.

    Parameters
    ----------
    bond : ConvertibleBondSpec
        Bond terms; a copy normalised to 1000 par is used internally.
    as_of, settle : QuantLib.Date
        Lattice start date and trade settlement date.
    discount_curve : DiscountCurve
    s0, sigma_s : float
        Stock price and volatility.
    kappa, sigma_r : float
        Mean reversion and volatility of the short-rate lattice.
    rho : float
        Stock/rate correlation.
    survival_curve : SurvivalCurve or None
        None means no credit risk.
    dividends : StockDividends or None
    n_steps : int or None
        Defaults to ``cfg.n_steps``.
    recovery_rate : float
        Negative means: take the survival curve's recovery, or the configured
        default.
    redemption_price : float or None
        Percent of par; defaults to the bond's redemption.
    accrual_on_call, accrual_on_conversion : bool
        Whether accrued interest is paid on call / on conversion.
    short_rate_model : ShortRateModel
    backward_dividends : bool
        Discrete dividend handling, see ``CorrelatedStockTree``.
    cfg : AppConfig or None

    Notes
    -----
    Call and put exercise is gated by a coupon-roll heuristic: at step ``k``
    the option may be exercised only when the accrual array drops between
    neighbouring steps (``accrual[k+1] < accrual[k]`` when accrued interest is
    paid on call, ``accrual[k-1] > accrual[k]`` otherwise), or when the bond is
    not callable (puttable) at the final step. The final-step test looks up
    index ``max(k + 1, n)``, which is always ``n``. This is a known
    approximation and is kept as is.
    """

    def __init__(self, bond, as_of, settle, discount_curve, s0, sigma_s, kappa, sigma_r,
                 rho=0.0, survival_curve=None, dividends=None, n_steps=None,
                 recovery_rate=-1.0, redemption_price=None, accrual_on_call=False,
                 accrual_on_conversion=False,
                 short_rate_model=ShortRateModel.BLACK_KARASINSKI,
                 backward_dividends=False, cfg=None):
        if discount_curve is None:
            raise ValueError("A discount curve is required")
        as_of = DateUtils.to_ql_date(as_of)
        settle = DateUtils.to_ql_date(settle) or as_of
        if bond.maturity_date <= as_of:
            raise ValueError("Bond maturity must fall after the as-of date")
        if settle < as_of:
            raise ValueError("Settlement cannot precede the as-of date")
        if sigma_r < 0.0:
            raise ValueError(f"Rate volatility must be non-negative, got {sigma_r}")

        self.cfg = cfg or AppConfig(as_of)
        self.bond = bond.normalized(LATTICE_PAR)
        self.as_of = as_of
        self.settle = settle
        self.discount_curve = discount_curve
        self.survival_curve = survival_curve
        self.n_steps = self.cfg.n_steps if n_steps is None else int(n_steps)
        if self.n_steps < 1:
            raise ValueError(f"Lattice needs at least one step, got {self.n_steps}")
        self.input_recovery = float(recovery_rate)
        self.redemption_price = float(
            self.bond.redemption if redemption_price is None else redemption_price
        )
        self.accrual_on_call = bool(accrual_on_call)
        self.accrual_on_conversion = bool(accrual_on_conversion)
        self.s0 = float(s0)
        self.sigma_s = float(sigma_s)
        self.rho = float(rho)
        self.kappa = float(kappa)
        self.sigma_r = float(sigma_r)
        self.short_rate_model = ShortRateModel(short_rate_model)
        self.dividends = dividends or StockDividends()

        self.horizon = DateUtils.time_between(as_of, self.bond.maturity_date)
        self.tree_times = np.linspace(0.0, self.horizon, self.n_steps + 1)
        self.dt = self.horizon / self.n_steps

        self.stock_tree = CorrelatedStockTree(
            self.s0, self.sigma_s, self.rho, self.dividends, discount_curve, as_of,
            self.tree_times, backward_dividends,
        )
        self.soft_call_table = SoftCallTable.for_bond(
            self.bond.soft_call_trigger, self.s0, self.sigma_s
        )
        soft_end = self.bond.soft_call_end or self.bond.maturity_date
        self.soft_call_end_time = DateUtils.end_of_day_time(as_of, soft_end)

        self._schedule_arrays()
        self.default_probs = self.default_probabilities(survival_curve)
        self.recovery = self.recovery_for(survival_curve)

        self._reset()

    # ------------------------------------------------------------------
    # Per-step scalars
    # ------------------------------------------------------------------
    def _schedule_arrays(self):
        bond = self.bond
        n = self.n_steps
        times = self.tree_times
        as_of = self.as_of

        periods = bond.coupon_periods(self.settle)
        if not periods:
            raise ValueError("Bond has no coupon period after settlement")

        self.accruals = np.zeros(n + 1)
        i = 0
        for k, t in enumerate(times):
            while i < len(periods) and t >= DateUtils.time_between(as_of, periods[i][1]):
                i += 1
            if i < len(periods) and t >= DateUtils.time_between(as_of, periods[i][0]):
                self.accruals[k] = DateUtils.day_count_fraction(
                    bond.bond_day_count, periods[i][0], as_of, t
                )

        # Coupons paid inside (t_k, t_{k+1}] with their offset from t_k. The
        # final coupon is part of the redemption value.
        self.coupons = [[] for _ in range(n)]
        amount = bond.coupon_rate / bond.payments_per_year
        for _, end in periods[:-1]:
            tp = DateUtils.time_between(as_of, end)
            if tp <= 0.0:
                continue
            k = int(np.searchsorted(times, tp, side="left")) - 1
            self.coupons[k].append((amount, tp - times[k]))

        self.call_prices = self._exercise_prices(bond.call_schedule, NO_CALL)
        self.put_prices = self._exercise_prices(bond.put_schedule, NO_PUT)

        last_start, last_end = periods[-1]
        self.final_coupon_fraction = bond.bond_day_count.yearFraction(last_start, last_end)
        remaining = bond.remaining_principal(bond.maturity_date)
        self.final_straight = (
            self.redemption_price / 100.0 + bond.coupon_rate * self.final_coupon_fraction
        ) * remaining * LATTICE_PAR
        self.final_conversion_accrual = 0.0
        if self.accrual_on_conversion:
            self.final_conversion_accrual = (
                self.final_coupon_fraction * bond.coupon_rate * remaining * LATTICE_PAR
            )

        self.convertible = np.zeros(n + 1, dtype=bool)
        if bond.is_convertible:
            start = DateUtils.time_between(as_of, bond.convert_start)
            end = DateUtils.end_of_day_time(as_of, bond.convert_end)
            self.convertible = (times >= start) & (times <= end)

    def _exercise_prices(self, schedule, missing):
        """Strike per step in percent of par; ``missing`` where not exercisable."""
        prices = np.full(self.n_steps + 1, missing)
        half = 0.5 * self.dt
        i = 0
        for k, t in enumerate(self.tree_times):
            while i < len(schedule) and t > DateUtils.end_of_day_time(self.as_of, schedule[i].end) + half:
                i += 1
            if i < len(schedule) and t >= DateUtils.time_between(self.as_of, schedule[i].start) - half:
                prices[k] = schedule[i].price
        return prices

    def default_probabilities(self, survival_curve):
        """Conditional default probability over each step."""
        if survival_curve is None:
            return np.zeros(self.n_steps)
        surv = np.array([survival_curve.survival_at(t) for t in self.tree_times])
        return 1.0 - surv[1:] / surv[:-1]

    def recovery_for(self, survival_curve):
        if self.input_recovery >= 0.0:
            return self.input_recovery
        if survival_curve is not None:
            return survival_curve.recovery
        return self.cfg.default_recovery

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------
    def _reset(self):
        self.state = LatticeState.UNINITIALIZED
        self._rate_lattice = None
        self._stock_lattice = None
        self._pv = None
        self._floor = None
        self.bump_cache = {}

    def invalidate(self):
        """Drop lattices and cached results; the next query rebuilds them."""
        self._reset()

    def build(self):
        if self._rate_lattice is None:
            self._rate_lattice = make_rate_lattice(
                self.short_rate_model, self.discount_curve, self.kappa, self.sigma_r,
                self.n_steps, self.horizon, self.cfg,
            )
        if self._stock_lattice is None:
            self._stock_lattice = self.stock_tree.build(self._rate_lattice)
        if self.state is LatticeState.UNINITIALIZED:
            self.state = LatticeState.BUILT
        return self

    @property
    def rate_lattice(self):
        self.build()
        return self._rate_lattice

    @property
    def stock_lattice(self):
        self.build()
        return self._stock_lattice

    def with_curves(self, discount_curve=None, survival_curve=None, drop_survival=False,
                    keep_stock_lattice=False):
        """New model on other curves; this model is left untouched.

        Lattices are reused when the discount curve is unchanged. With
        ``keep_stock_lattice`` the equity lattice built on this model's rate
        lattice is also reused on a new discount curve.
        """
        other = copy.copy(self)
        rate = None
        stock = self.stock_lattice if keep_stock_lattice else None
        if discount_curve is None:
            rate = self.rate_lattice
            stock = self.stock_lattice
        other._reset()
        other._rate_lattice = rate
        if discount_curve is not None:
            other.discount_curve = discount_curve
        if drop_survival:
            other.survival_curve = None
        elif survival_curve is not None:
            other.survival_curve = survival_curve
        other.default_probs = other.default_probabilities(other.survival_curve)
        other.recovery = other.recovery_for(other.survival_curve)
        other._stock_lattice = stock
        return other

    # ------------------------------------------------------------------
    # Backward induction
    # ------------------------------------------------------------------
    def _coupon_at(self, k, rates):
        cash = np.zeros_like(rates)
        for amount, frac in self.coupons[k]:
            cash += LATTICE_PAR * amount * np.exp(-rates * frac)
        return cash[:, None]

    def _accrual_gate(self, k):
        if self.accrual_on_call:
            return self.accruals[k + 1] < self.accruals[k]
        return self.accruals[k - 1] > self.accruals[k]

    def _call(self, k, values):
        """Called value per node, or None when no call can happen at step k."""
        n = self.n_steps
        if k <= MIN_EXERCISE_STEP:
            return None
        if not (self._accrual_gate(k) or self.call_prices[max(k + 1, n)] >= NO_CALL):
            return None
        strike = (self.call_prices[k] / 100.0 + self.accruals[k] * self.bond.coupon_rate) * LATTICE_PAR
        return np.where(strike <= values, strike, values)

    def _put(self, k, values):
        n = self.n_steps
        if k <= MIN_EXERCISE_STEP:
            return values
        if not (self._accrual_gate(k) or self.put_prices[max(k + 1, n)] <= 1.0e-8):
            return values
        strike = (self.put_prices[k] / 100.0 + self.accruals[k] * self.bond.coupon_rate) * LATTICE_PAR
        return np.where(strike >= values, strike, values)

    def _convert(self, k, values, stock):
        if not self.convertible[k]:
            return values
        conversion = stock * self.bond.conversion_ratio
        accrual = 0.0
        if self.accrual_on_conversion:
            accrual = self.accruals[k] * self.bond.coupon_rate * LATTICE_PAR
        return np.where(conversion > values, conversion + accrual, values)

    def price_on(self, rate_lattice, stock_lattice, default_probs=None, recovery=None,
                 with_floor=True):
        """Backward induction on the given lattices.

        Returns ``(pv, floor)`` per 1000 par; ``floor`` is None unless
        ``with_floor``. Does not touch the model's cached state.
        """
        n = self.n_steps
        default_probs = self.default_probs if default_probs is None else default_probs
        recovery = self.recovery if recovery is None else recovery
        rates = rate_lattice.rate_tree()
        dfs = rate_lattice.discount_factor_tree()
        ratio = self.bond.conversion_ratio

        values = np.full((n + 1, n + 1), self.final_straight)
        if self.convertible[n]:
            conversion = stock_lattice.stock_prices(n) * ratio
            values = np.where(
                conversion > self.final_straight,
                conversion + self.final_conversion_accrual,
                values,
            )
        floor = np.full((n + 1, n + 1), self.final_straight) if with_floor else None

        soft = self.soft_call_table
        for k in range(n - 1, -1, -1):
            df = dfs[k][:, None]
            coupon = self._coupon_at(k, rates[k])
            pd_k = default_probs[k]
            default_value = pd_k * recovery * LATTICE_PAR

            values = 0.25 * (values[:-1, :-1] + values[:-1, 1:] + values[1:, :-1] + values[1:, 1:]) * df
            values = values * (1.0 - pd_k) + default_value + coupon

            called = self._call(k, values)
            if called is not None:
                if soft is not None and self.tree_times[k] <= self.soft_call_end_time:
                    p = soft.probability(stock_lattice.soft_call_adjusted_prices(k))
                    values = p * called + (1.0 - p) * values
                else:
                    values = called
            values = self._convert(k, values, stock_lattice.stock_prices(k))
            values = self._put(k, values)

            if with_floor:
                floor = 0.25 * (floor[:-1, :-1] + floor[:-1, 1:] + floor[1:, :-1] + floor[1:, 1:]) * df
                floor = floor * (1.0 - pd_k) + default_value + coupon
                called_floor = self._call(k, floor)
                if called_floor is not None:
                    floor = called_floor
                floor = self._put(k, floor)

        return float(values[0, 0]), (float(floor[0, 0]) if with_floor else None)

    # ------------------------------------------------------------------
    # Outputs
    # ------------------------------------------------------------------
    def pv(self):
        """Full price per 1000 par."""
        if self.state is not LatticeState.PRICED:
            self.build()
            self._pv, self._floor = self.price_on(self._rate_lattice, self._stock_lattice)
            self.state = LatticeState.PRICED
            logger.debug("Priced convertible: pv=%.6f floor=%.6f", self._pv, self._floor)
        return self._pv

    def bond_floor(self):
        """Value without the conversion option, in percent of par."""
        self.pv()
        return self._floor / QUOTE_SCALE

    @property
    def parity(self):
        return self.s0 * self.bond.conversion_ratio / QUOTE_SCALE

    @property
    def conversion_price(self):
        return self.bond.conversion_price

    def relevant_bond_floor(self):
        """Larger of the bond floor and parity, in percent of par.

        Parity is used rather than the raw stock price scaled by 10, so the
        two sides are always in the same units whatever the conversion ratio.
        """
        return max(self.bond_floor(), self.parity)

    def stock_option_value(self):
        """Value of the equity option embedded in the bond, percent of par."""
        return (self.pv() - self._floor) / QUOTE_SCALE

    def _dividend_yield(self):
        return self.dividends.annualized_yield(self.as_of, self.s0)

    def break_even(self, clean_price):
        """Years of coupon pick-up needed to recover the conversion premium.

        ``clean_price`` is a fraction of par. Returns None when the coupon does
        not out-earn the dividends.
        """
        denom = self.bond.coupon_rate - self._dividend_yield() * clean_price
        if denom <= 0.0:
            return None
        return (clean_price - self.parity / 100.0) / denom

    def cashflow_payback(self, clean_price):
        denom = self.bond.coupon_rate - self._dividend_yield() * self.parity / 100.0
        if denom <= 0.0:
            return None
        return (clean_price - self.parity / 100.0) / denom
