import logging

from scipy import optimize

from .errors import CalibrationError, ConvertiblePricingError
from .instruments import LATTICE_PAR
from .market import SurvivalCurve

logger = logging.getLogger(__name__)


class SpreadCalibrator:
    """Curve spreads implied by a convertible's market price.

    Every trial prices a fresh model from ``model.with_curves``; the calibrated
    model and its curves are never modified. Target prices are full prices as
    a fraction of par (1.0 = par).

    Notes
    -----
    - The discount spread is solved on ``[spread_floor, spread_upper]`` where
      the floor keeps the curve's quoted rates positive.
    - The implied CDS level is found by shifting a CDS quote to the bond's
      maturity, starting from ``cfg.flat_cds_base_spread``.
    """

    def __init__(self, model):
        self.model = model
        self.cfg = model.cfg

    def _solve(self, objective, lower, upper, what):
        trials = []

        def tracked(x):
            trials.append(x)
            return objective(x)

        try:
            return optimize.brentq(tracked, lower, upper, xtol=self.cfg.spread_tol)
        except (ValueError, RuntimeError, ConvertiblePricingError) as exc:
            last = trials[-1] if trials else None
            raise CalibrationError(f"{what}. Last tried spread {last}", last) from exc

    # ------------------------------------------------------------------
    # Discount spread
    # ------------------------------------------------------------------
    def implied_discount_spread(self, full_price, include_survival=True, fix_stock=False):
        """Parallel discount-curve spread (OAS) matching ``full_price``.

        Returned as a shift on top of the curve's current spread. With
        ``fix_stock`` the equity lattice is not rebuilt on the shifted rates.
        """
        base = self.model
        if not include_survival and base.survival_curve is not None:
            base = base.with_curves(drop_survival=True)
        curve = base.discount_curve

        def objective(x):
            trial = base.with_curves(discount_curve=curve.shifted(x), keep_stock_lattice=fix_stock)
            price = trial.pv() / LATTICE_PAR
            logger.debug("Trying rate spread %s --> price %s", x, price)
            return price - full_price

        lower = curve.spread_floor(self.cfg.spread_lower)
        spread = self._solve(
            objective, lower, self.cfg.spread_upper,
            f"Unable to find oas matching price {full_price}. Try fix_stock=True",
        )
        logger.debug("Found discount spread %s", spread)
        return spread

    def calibrated_discount_curve(self, full_price, include_survival=True, fix_stock=False):
        spread = self.implied_discount_spread(full_price, include_survival, fix_stock)
        return self.model.discount_curve.shifted(spread)

    # ------------------------------------------------------------------
    # Credit
    # ------------------------------------------------------------------
    def _fit_recovery(self, recovery_rate):
        if recovery_rate is not None and recovery_rate >= 0.0:
            return float(recovery_rate)
        if self.model.input_recovery > 0.0:
            return self.model.input_recovery
        return self.cfg.default_recovery

    def implied_flat_spread_curve(self, full_price, recovery_rate=None):
        """Single-quote CDS curve to maturity under which the model matches ``full_price``.

        Recovery is ``recovery_rate`` if given, else the recovery the model was
        constructed with if positive, else ``cfg.default_recovery``.
        """
        model = self.model
        flat = SurvivalCurve.from_maturity_quote(
            model.as_of, model.bond.maturity_date, self.cfg.flat_cds_base_spread,
            self._fit_recovery(recovery_rate), model.discount_curve,
        )

        def objective(x):
            trial = model.with_curves(survival_curve=flat.bumped(x))
            price = trial.pv() / LATTICE_PAR
            logger.debug("Trying CDS shift %s --> price %s", x, price)
            return price - full_price

        lower, upper = self.cfg.cds_shift_bounds
        shift = self._solve(
            objective, lower, upper, f"Unable to find flat CDS curve matching price {full_price}"
        )
        logger.debug("Found flat CDS shift %s", shift)
        return flat.bumped(shift)

    def implied_cds_spread(self, full_price):
        """Implied flat CDS level minus the par CDS spread of the model's curve."""
        if full_price < 0.0:
            raise ValueError(f"Full price must be non-negative, got {full_price}")
        model = self.model
        maturity = model.bond.maturity_date
        implied = self.implied_flat_spread_curve(full_price)
        level = implied.par_spread(maturity, model.discount_curve)
        if model.survival_curve is None:
            return level
        return level - model.survival_curve.par_spread(maturity, model.discount_curve)

    def cds_spread_shift(self, full_price):
        """Parallel shift of the model's CDS quotes matching ``full_price``."""
        model = self.model
        curve = model.survival_curve
        if curve is None:
            raise ValueError("CDS spread shift requires a survival curve")

        def objective(x):
            trial = model.with_curves(survival_curve=curve.bumped(x))
            return trial.pv() / LATTICE_PAR - full_price

        lower = -min(curve.spreads) + 1.0e-7
        shift = self._solve(
            objective, lower, 0.1, f"Unable to find CDS spread shift matching price {full_price}"
        )
        logger.debug("Found CDS spread shift %s", shift)
        return shift
