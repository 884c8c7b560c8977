import abc

import numpy as np

from ..errors import LatticeError


class ShortRateLattice(abc.ABC):
    """Recombining binomial short-rate lattice fitted to a discount curve.

    Step ``k`` (``0 <= k < n``) holds ``k + 1`` short rates applying over
    ``[t_k, t_{k+1}]`` and the matching one-period discount factors. Node 0 is
    the lowest rate, node ``k`` the highest.

    The lattice is built lazily on first access. ``set_rate_tree`` replaces the
    rates wholesale (e.g. with those of a ``bump_sigma`` lattice) and recomputes
    the discount factors.
    """

    def __init__(self, discount_curve, kappa, sigma, n_steps, horizon, cfg=None):
        if discount_curve is None:
            raise ValueError("A discount curve is required to fit the rate lattice")
        if n_steps < 1:
            raise ValueError(f"Lattice needs at least one step, got {n_steps}")
        if horizon <= 0.0:
            raise ValueError(f"Lattice horizon must be positive, got {horizon}")
        if sigma < 0.0:
            raise ValueError(f"Rate volatility must be non-negative, got {sigma}")

        self.discount_curve = discount_curve
        self.kappa = float(kappa)
        self.sigma = float(sigma)
        self.n_steps = int(n_steps)
        self.horizon = float(horizon)
        self.dt = self.horizon / self.n_steps
        self.cfg = cfg

        self._rates = None
        self._dfs = None

    @abc.abstractmethod
    def _fit(self):
        """Return the list of per-step short-rate arrays."""

    def _ensure_built(self):
        if self._rates is None:
            self._install(self._fit())

    def _install(self, rates):
        if len(rates) != self.n_steps:
            raise LatticeError(
                f"Rate tree has {len(rates)} steps, lattice expects {self.n_steps}"
            )
        for k, layer in enumerate(rates):
            if len(layer) != k + 1:
                raise LatticeError(f"Rate tree step {k} has {len(layer)} nodes, expected {k + 1}")
        self._rates = [np.asarray(layer, dtype=float).copy() for layer in rates]
        self._dfs = [np.exp(-self.dt * layer) for layer in self._rates]

    # ------------------------------------------------------------------
    # Contract consumed by the pricing engine
    # ------------------------------------------------------------------
    def rate_tree(self):
        self._ensure_built()
        return self._rates

    def discount_factor_tree(self):
        self._ensure_built()
        return self._dfs

    def clone_rate_tree(self):
        return [layer.copy() for layer in self.rate_tree()]

    def set_rate_tree(self, tree):
        self._install(tree)

    def bump_sigma(self, delta):
        """New, unbuilt lattice of the same kind with volatility ``sigma + delta``."""
        return type(self)(
            self.discount_curve, self.kappa, self.sigma + delta,
            self.n_steps, self.horizon, self.cfg,
        )

    def clone(self):
        other = type(self)(
            self.discount_curve, self.kappa, self.sigma, self.n_steps, self.horizon, self.cfg
        )
        if self._rates is not None:
            other.set_rate_tree(self._rates)
        return other

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------
    def rate_bounds(self):
        """Array of shape (n, 2): lowest and highest rate per step."""
        return np.array([[layer.min(), layer.max()] for layer in self.rate_tree()])

    def forward_rates(self):
        """One-period forward rates implied by the discount curve."""
        curve = self.discount_curve
        return np.array([
            curve.forward_rate(k * self.dt, (k + 1) * self.dt) for k in range(self.n_steps)
        ])
