import warnings

import QuantLib as ql


class AppConfig:
    """Central configuration object.

    All numerical knobs of the lattice, the bump-and-reprice sensitivities and
    the spread solvers live here so that a run is reproducible from a single
    object.

    Parameters
    ----------
    val_date : QuantLib.Date
        Evaluation date for QuantLib.
    n_steps : int
        Number of time steps of the intersecting trees.

    Notes
    -----
    - The stock-price bump used for delta/gamma grows with the stock volatility:
      ``dS = stock_bump_base + stock_bump_vol_slope * (sigma - threshold)``
      above ``stock_bump_vol_threshold``.
    - Price quotes passed to the solvers are full prices as a fraction of par
      (1.0 = par).
    """

    def __init__(self, val_date, n_steps=100):
        self.val_date = val_date
        self.n_steps = int(n_steps)

        # ----------------
        # Equity bumps
        # ----------------
        self.stock_bump_base = 0.04
        self.stock_bump_vol_slope = 0.1
        self.stock_bump_vol_threshold = 0.1
        self.stock_vol_bump = 0.005

        # ----------------
        # Rate bumps
        # ----------------
        self.rate_vol_bump = 0.01
        self.duration_bump = 0.0025
        self.interest_sensitivity_bump = 0.0005

        # ----------------
        # Credit
        # ----------------
        self.credit_sensitivity_bump = 0.05  # relative
        self.default_recovery = 0.4
        self.flat_cds_base_spread = 0.10

        # ----------------
        # Solvers
        # ----------------
        self.spread_tol = 1.0e-5
        self.spread_lower = -0.001
        self.spread_upper = 0.5
        self.cds_shift_bounds = (-0.1 + 1.0e-7, 1.0)
        self.rate_fit_tol = 1.0e-9
        self.rate_fit_bounds = (0.0, 10.0)

        # ----------------
        # Global flags
        # ----------------
        self.suppress_warnings = True

    def stock_bump(self, sigma_s):
        """Relative stock-price bump used for hedge ratio and gamma."""
        extra = 0.0
        if sigma_s > self.stock_bump_vol_threshold:
            extra = self.stock_bump_vol_slope * (sigma_s - self.stock_bump_vol_threshold)
        return self.stock_bump_base + extra

    def apply_global_settings(self):
        """Apply global settings (QuantLib evaluation date + warnings)."""
        ql.Settings.instance().evaluationDate = self.val_date
        if self.suppress_warnings:
            warnings.filterwarnings("ignore")
