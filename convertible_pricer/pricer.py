import logging

from .calibration import SpreadCalibrator
from .engines import IntersectingTreesModel, ShortRateModel
from .instruments import LATTICE_PAR
from .sensitivity import ConvertibleGreeks
from .utils import DateUtils

logger = logging.getLogger(__name__)


class ConvertiblePricer:
    """High-level orchestrator.

    Responsibilities
    ----------------
    - Build the intersecting-trees model from bond, market and model inputs
    - Short-circuit bonds that have already defaulted
    - Provide: full/clean price, parity and premium, Greeks, implied spreads
      and a one-shot ``metrics()`` table

    Parameters
    ----------
    bond_spec : ConvertibleBondSpec
    discount_curve : DiscountCurve
    cfg : AppConfig
    s0, sigma_s : float
        Stock price and volatility.
    rate_params : dict
        ``{'a': mean reversion, 'sigma': rate volatility}`` and optionally
        ``'model'`` (``'BK'`` or ``'HW'``).
    settle : date or None
        Defaults to ``cfg.val_date``.
    default_date, default_settle_date : date or None
        A default on or before settlement makes the bond worth its recovery,
        discounted from ``default_settle_date`` if that is still to come, and
        zero otherwise.
    model_options
        Forwarded to ``IntersectingTreesModel`` (rho, survival_curve,
        dividends, recovery_rate, accrual flags, ...).
    """

    def __init__(self, bond_spec, discount_curve, cfg, s0, sigma_s, rate_params,
                 settle=None, default_date=None, default_settle_date=None, **model_options):
        self.bond_spec = bond_spec
        self.discount_curve = discount_curve
        self.cfg = cfg
        self.as_of = cfg.val_date
        self.settle = DateUtils.to_ql_date(settle) or self.as_of
        self.default_date = DateUtils.to_ql_date(default_date)
        self.default_settle_date = DateUtils.to_ql_date(default_settle_date)
        self.s0 = float(s0)
        self.sigma_s = float(sigma_s)
        self.rate_params = dict(rate_params)
        self.model_options = model_options
        self._model = None

    @property
    def is_defaulted(self):
        return self.default_date is not None and self.default_date <= self.settle

    @property
    def model(self):
        if self.is_defaulted:
            raise ValueError("The bond has defaulted; no lattice model applies")
        if self._model is None:
            self._model = IntersectingTreesModel(
                self.bond_spec,
                self.as_of,
                self.settle,
                self.discount_curve,
                self.s0,
                self.sigma_s,
                float(self.rate_params["a"]),
                float(self.rate_params["sigma"]),
                short_rate_model=ShortRateModel(self.rate_params.get("model", "BK")),
                cfg=self.cfg,
                **self.model_options,
            )
        return self._model

    def _recovery(self):
        recovery = self.model_options.get("recovery_rate", -1.0)
        if recovery is not None and recovery >= 0.0:
            return float(recovery)
        survival = self.model_options.get("survival_curve")
        if survival is not None:
            return survival.recovery
        return self.cfg.default_recovery

    def defaulted_value(self):
        """Full price (fraction of par) of a bond that defaulted before settlement."""
        if self.default_settle_date is None or self.default_settle_date <= self.settle:
            return 0.0
        df = self.discount_curve.discount(self.default_settle_date) / self.discount_curve.discount(self.settle)
        return self._recovery() * df

    # ------------------------------------------------------------------
    # Prices
    # ------------------------------------------------------------------
    def full_price(self):
        """Model full price as a fraction of par."""
        if self.is_defaulted:
            return self.defaulted_value()
        return self.model.pv() / LATTICE_PAR

    def accrued(self):
        """Accrued interest on settlement as a fraction of par."""
        if self.is_defaulted:
            return 0.0
        return self.bond_spec.accrued_amount(self.settle) / 100.0

    def clean_price(self):
        return self.full_price() - self.accrued()

    def parity(self):
        """Conversion value in percent of par."""
        return self.s0 * self.bond_spec.conversion_ratio / self.bond_spec.face * 100.0

    def conversion_premium(self, clean_price=None):
        """Premium of the clean price over parity, relative to parity."""
        clean = self.clean_price() if clean_price is None else clean_price
        parity = self.parity()
        return (clean * 100.0 - parity) / parity

    # ------------------------------------------------------------------
    # Risk
    # ------------------------------------------------------------------
    def greeks(self):
        return ConvertibleGreeks(self.model)

    def calibrator(self):
        return SpreadCalibrator(self.model)

    def metrics(self, market_price=None, fix_stock=False):
        """Dictionary of model outputs.

        ``market_price`` (full price, fraction of par) enables the OAS,
        effective duration and effective convexity entries.
        """
        if self.is_defaulted:
            return {"full_price": self.defaulted_value(), "defaulted": True}

        m = self.model
        g = self.greeks()
        clean = self.clean_price()
        out = {
            "full_price": self.full_price(),
            "clean_price": clean,
            "accrued": self.accrued(),
            "bond_floor": m.bond_floor(),
            "relevant_bond_floor": m.relevant_bond_floor(),
            "stock_option_value": m.stock_option_value(),
            "parity": m.parity,
            "conversion_price": m.conversion_price,
            "premium": self.conversion_premium(clean),
            "break_even": m.break_even(clean),
            "cashflow_payback": m.cashflow_payback(clean),
            "hedge_ratio": g.hedge_ratio(),
            "delta": g.delta(),
            "gamma": g.gamma(),
            "vega_equity": g.vega_equity(),
            "vega_rate": g.vega_rate(),
            "interest_sensitivity": g.interest_sensitivity(),
        }
        if m.survival_curve is not None:
            out["credit_sensitivity"] = g.credit_sensitivity()
        if market_price is not None:
            out["oas"] = self.calibrator().implied_discount_spread(
                market_price, include_survival=False, fix_stock=fix_stock
            )
            out["effective_duration"] = g.effective_duration(market_price, fix_stock)
            out["effective_convexity"] = g.effective_convexity(market_price, fix_stock)
        logger.debug("Computed %d metrics", len(out))
        return out
