import enum
import logging
import math

import numpy as np
from scipy import optimize

from ..errors import LatticeError
from .base import ShortRateLattice

logger = logging.getLogger(__name__)


class ShortRateModel(enum.Enum):
    BLACK_KARASINSKI = "BK"
    HULL_WHITE = "HW"


def star_tree(kappa, sigma, dt, n_steps):
    """Mean-reverting binomial factor centred on zero.

    Each step is built forward with branch weights ``(k - l)/k`` and then
    corrected with a trapezoidal mean-reversion pass.
    """
    star = [np.zeros(1)]
    vol = sigma * math.sqrt(dt)
    for k in range(1, n_steps):
        prev = star[k - 1]
        l = np.arange(k + 1)
        p = (k - l) / float(k)
        q = 1.0 - p
        up = np.append(prev, 0.0)
        dn = np.insert(prev, 0, 0.0)
        first = p * ((1.0 - kappa * dt) * up - vol) + q * ((1.0 - kappa * dt) * dn + vol)

        # The down neighbour of the second pass is already corrected.
        layer = first.copy()
        half = 0.5 * kappa * dt
        for j in range(k + 1):
            up_right = first[j] if j < k else 0.0
            dn_right = layer[j - 1] if j >= 1 else 0.0
            layer[j] = (
                p[j] * ((1.0 - half) * up[j] - half * up_right - vol)
                + q[j] * ((1.0 - half) * dn[j] - half * dn_right + vol)
            )
        star.append(layer)
    return star


def _next_state_prices(q, df):
    w = 0.5 * q * df
    return np.append(w, 0.0) + np.insert(w, 0, 0.0)


class BlackKarasinskiLattice(ShortRateLattice):
    """Lognormal lattice: ``r[k][l] = min(exp(star[k][l]) * beta[k], 1)``.

    ``beta[k]`` is solved with Brent so that the state prices reprice the
    zero-coupon bond maturing at ``t_{k+1}``.
    """

    rate_cap = 1.0

    def _fit(self):
        dt = self.dt
        star = star_tree(self.kappa, self.sigma, dt, self.n_steps)
        lo, hi = (0.0, 10.0) if self.cfg is None else self.cfg.rate_fit_bounds
        tol = 1.0e-9 if self.cfg is None else self.cfg.rate_fit_tol

        rates = []
        q = np.ones(1)
        for k in range(self.n_steps):
            target = self.discount_curve.discount_at((k + 1) * dt)
            shape = np.exp(star[k])
            if k == 0:
                beta = -math.log(target) / dt
            else:
                def objective(x, q=q, shape=shape, target=target):
                    return float(np.sum(q * np.exp(-dt * shape * x))) - target

                try:
                    beta = optimize.brentq(objective, lo, hi, xtol=tol)
                except ValueError as exc:
                    raise LatticeError(
                        "Cannot fit Black-Karasinski rate tree to initial term structure"
                    ) from exc
            layer = np.minimum(shape * beta, self.rate_cap)
            rates.append(layer)
            q = _next_state_prices(q, np.exp(-dt * layer))
        logger.debug("Fitted BK lattice: n=%d kappa=%s sigma=%s", self.n_steps, self.kappa, self.sigma)
        return rates


class HullWhiteLattice(ShortRateLattice):
    """Normal lattice: ``r[k][l] = star[k][l] + alpha[k]``.

    The shift has a closed form, so the lattice always fits and rates may go
    negative.
    """

    def _fit(self):
        dt = self.dt
        star = star_tree(self.kappa, self.sigma, dt, self.n_steps)
        rates = []
        q = np.ones(1)
        for k in range(self.n_steps):
            target = self.discount_curve.discount_at((k + 1) * dt)
            alpha = math.log(float(np.sum(q * np.exp(-dt * star[k]))) / target) / dt
            layer = star[k] + alpha
            rates.append(layer)
            q = _next_state_prices(q, np.exp(-dt * layer))
        logger.debug("Fitted HW lattice: n=%d kappa=%s sigma=%s", self.n_steps, self.kappa, self.sigma)
        return rates


def make_rate_lattice(model, discount_curve, kappa, sigma, n_steps, horizon, cfg=None):
    """Factory keyed by ``ShortRateModel``."""
    model = ShortRateModel(model)
    if model is ShortRateModel.HULL_WHITE:
        return HullWhiteLattice(discount_curve, kappa, sigma, n_steps, horizon, cfg)
    return BlackKarasinskiLattice(discount_curve, kappa, sigma, n_steps, horizon, cfg)
