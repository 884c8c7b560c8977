"""Equity lattice correlated with a short-rate lattice.

The stock is carried by two triangular legs built forward on the same branch
weights as the rate lattice:

- ``drift[k][l]`` follows the rate node ``l``: short rate minus dividend yield,
  the Ito correction and the rate-correlated part of the volatility;
- ``diffusion[k][m]`` carries the uncorrelated part ``sigma * sqrt(1 - rho^2)``.

The stock at node ``(l, m)`` of step ``k`` is ``exp(drift[k][l] + diffusion[k][m])``
plus a discrete-dividend offset, so a step yields a full ``(k+1) x (k+1)`` block
from two vectors of length ``k+1``.
"""

import copy
import math
from dataclasses import dataclass, field

import numpy as np

from ..utils import DAYS_PER_YEAR, DateUtils

SOFT_CALL_DIVIDEND_WINDOW = 30.0 / DAYS_PER_YEAR


@dataclass(frozen=True)
class StockDividends:
    """Dividend schedule in yield form or discrete-cash form.

    - no dates and one amount: continuous dividend yield ``amounts[0]``;
    - no dates and no amounts: zero yield;
    - otherwise ``amounts[i]`` cash per share paid on ``dates[i]``.
    """

    dates: tuple = field(default_factory=tuple)
    amounts: tuple = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(self, "dates", tuple(DateUtils.to_ql_date(d) for d in self.dates))
        object.__setattr__(self, "amounts", tuple(float(a) for a in self.amounts))
        if self.dates:
            if len(self.dates) != len(self.amounts):
                raise ValueError("Dividend dates and amounts must have the same length")
            if any(a < d for a, d in zip(self.dates[1:], self.dates[:-1])):
                raise ValueError("Dividend dates must be increasing")
        elif len(self.amounts) > 1:
            raise ValueError("A dividend yield is given as a single amount without dates")

    @classmethod
    def from_yield(cls, dividend_yield):
        return cls((), (float(dividend_yield),))

    @property
    def is_yield(self):
        return not self.dates

    @property
    def dividend_yield(self):
        if not self.is_yield:
            return 0.0
        return self.amounts[0] if self.amounts else 0.0

    def future(self, as_of):
        """Cash dividends strictly after ``as_of`` as (time, amount) pairs."""
        return [
            (DateUtils.time_between(as_of, d), a) for d, a in zip(self.dates, self.amounts) if d > as_of
        ]

    def annualized_yield(self, as_of, s0):
        """Dividend yield over the next year, used by break-even measures."""
        if self.is_yield:
            return self.dividend_yield
        divs = self.future(as_of)
        if not divs:
            return 0.0
        if len(divs) == 1:
            return 4.0 * divs[0][1] / s0
        year = 1.0
        if divs[-1][0] >= year:
            return sum(a for t, a in divs if t < year) / s0
        total = sum(a for _, a in divs)
        spacing = divs[-1][0] - divs[-2][0]
        last_t, last_amount = divs[-1]
        if spacing > 0.0:
            t = last_t + spacing
            while t < year:
                total += last_amount
                t += spacing
        return total / s0


@dataclass(frozen=True)
class StockLattice:
    """Built equity lattice handed to the pricing engine.

    ``offset[k]`` is added to every stock price of step ``k`` (negative for
    accumulated dividends paid, positive for the PV of dividends still due).
    ``soft_call_adjustment[k]`` is subtracted only for the soft-call trigger.
    """

    drift: list
    diffusion: list
    offset: np.ndarray
    soft_call_adjustment: np.ndarray

    @property
    def n_steps(self):
        return len(self.drift) - 1

    def stock_prices(self, k):
        base = np.exp(self.drift[k][:, None] + self.diffusion[k][None, :])
        return base + self.offset[k]

    def soft_call_adjusted_prices(self, k):
        base = np.exp(self.drift[k][:, None] + self.diffusion[k][None, :])
        return base - self.soft_call_adjustment[k]

    def soft_call_adjusted_price(self, k, l, m):
        return math.exp(self.drift[k][l] + self.diffusion[k][m]) - self.soft_call_adjustment[k]


class CorrelatedStockTree:
    """Builds ``StockLattice`` objects for a given rate lattice.

    Dividend arrays depend only on the time grid and the discount curve passed
    at construction, so they are computed once; ``build`` is a pure function of
    the rate lattice.

    Parameters
    ----------
    s0, sigma, rho : float
        Spot, volatility and stock/rate correlation.
    dividends : StockDividends
    discount_curve : DiscountCurve
        Used only to discount cash dividends in backward-looking mode.
    tree_times : numpy.ndarray
        ``n + 1`` lattice times in years from ``as_of``.
    backward_dividends : bool
        If True, start the tree from ``s0`` minus the PV of future dividends
        and add that PV back at each step; otherwise subtract the dividends
        already paid.
    """

    def __init__(self, s0, sigma, rho, dividends, discount_curve, as_of, tree_times,
                 backward_dividends=False):
        if s0 <= 0.0:
            raise ValueError(f"Initial stock price must be positive, got {s0}")
        if sigma < 0.0:
            raise ValueError(f"Stock volatility must be non-negative, got {sigma}")
        if not -1.0 <= rho <= 1.0:
            raise ValueError(f"Correlation must lie in [-1, 1], got {rho}")

        self.s0 = float(s0)
        self.sigma = float(sigma)
        self.rho = float(rho)
        self.dividends = dividends or StockDividends()
        self.as_of = as_of
        self.tree_times = np.asarray(tree_times, dtype=float)
        self.n_steps = len(self.tree_times) - 1
        self.dt = self.tree_times[-1] / self.n_steps
        self.backward_dividends = bool(backward_dividends)

        cash = self.dividends.future(as_of)
        n1 = self.n_steps + 1
        self.accumulated = np.zeros(n1)
        self.pv = np.zeros(n1)
        self.soft_call_adjustment = np.zeros(n1)
        if cash:
            self._dividend_arrays(cash, discount_curve)

    def with_spot(self, s0):
        other = copy.copy(self)
        other.s0 = float(s0)
        return other

    def with_volatility(self, sigma):
        if sigma < 0.0:
            raise ValueError(f"Stock volatility must be non-negative, got {sigma}")
        other = copy.copy(self)
        other.sigma = float(sigma)
        return other

    def _dividend_arrays(self, cash, discount_curve):
        times = self.tree_times
        j = 0
        for i in range(len(times)):
            prev = self.accumulated[i - 1] if i > 0 else 0.0
            # One dividend at most is booked per step.
            if j < len(cash) and times[i] >= cash[j][0]:
                self.accumulated[i] = prev + cash[j][1]
                j += 1
            else:
                self.accumulated[i] = prev

            df_node = discount_curve.discount_at(times[i])
            self.pv[i] = sum(
                a * discount_curve.discount_at(t) / df_node for t, a in cash if t >= times[i]
            )

            paid = [(t, a) for t, a in cash if t <= times[i]]
            if paid:
                t_div, amount = paid[-1]
                elapsed = times[i] - t_div
                if elapsed <= SOFT_CALL_DIVIDEND_WINDOW:
                    self.soft_call_adjustment[i] = amount * (1.0 - elapsed / SOFT_CALL_DIVIDEND_WINDOW)

    def build(self, rate_lattice):
        """Return the ``StockLattice`` consistent with ``rate_lattice``."""
        rates = rate_lattice.rate_tree()
        if len(rates) != self.n_steps:
            raise ValueError(
                f"Rate lattice has {len(rates)} steps, equity lattice expects {self.n_steps}"
            )
        dt = self.dt
        sig = self.sigma
        y = self.dividends.dividend_yield
        corr = sig * self.rho * math.sqrt(dt)
        idio = sig * math.sqrt(max(1.0 - self.rho ** 2, 0.0) * dt)

        if self.dividends.is_yield or not self.backward_dividends:
            start = self.s0
        else:
            start = self.s0 - self.pv[0]
            if start <= 0.0:
                raise ValueError("PV of future dividends exceeds the stock price")

        drift = [np.array([math.log(start)])]
        diffusion = [np.zeros(1)]
        for k in range(1, self.n_steps + 1):
            l = np.arange(k + 1)
            p = (k - l) / float(k)
            r = rates[k - 1]
            r_up = np.append(r, r[-1])
            r_dn = np.insert(r, 0, r[0])
            b_up = np.append(drift[k - 1], 0.0)
            b_dn = np.insert(drift[k - 1], 0, 0.0)
            c_up = np.append(diffusion[k - 1], 0.0)
            c_dn = np.insert(diffusion[k - 1], 0, 0.0)

            drift.append(
                p * (b_up + (r_up - y - 0.5 * sig * sig) * dt - corr)
                + (1.0 - p) * (b_dn + (r_dn - y - 0.5 * sig * sig) * dt + corr)
            )
            diffusion.append(p * (c_up - idio) + (1.0 - p) * (c_dn + idio))

        if self.dividends.is_yield:
            offset = np.zeros(self.n_steps + 1)
        elif self.backward_dividends:
            offset = self.pv.copy()
        else:
            offset = -self.accumulated
        return StockLattice(drift, diffusion, offset, self.soft_call_adjustment.copy())
