import os
import sys
from datetime import date

import pytest
import QuantLib as ql

# Allow running tests without installing the package.
BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if BASE_DIR not in sys.path:
    sys.path.insert(0, BASE_DIR)

from convertible_pricer import (  # noqa: E402
    AppConfig,
    ConvertibleBondSpec,
    DiscountCurve,
    IntersectingTreesModel,
)

VAL_DATE = ql.Date(15, 1, 2025)


@pytest.fixture(scope="session")
def val_date():
    return VAL_DATE


@pytest.fixture()
def cfg(val_date):
    c = AppConfig(val_date, n_steps=100)
    c.apply_global_settings()
    return c


@pytest.fixture(scope="session")
def flat_curve(val_date):
    return DiscountCurve.flat(val_date, 0.03)


@pytest.fixture(scope="session")
def make_bond():
    """Factory for the 5y 2% semiannual convertible (ratio 20, par 1000)."""

    def _make(**overrides):
        terms = dict(
            face=1000.0,
            coupon_rate=0.02,
            coupon_frequency=ql.Semiannual,
            issue_date=date(2025, 1, 15),
            maturity_date=date(2030, 1, 15),
            conversion_ratio=20.0,
            convert_start=date(2025, 1, 15),
            convert_end=date(2030, 1, 15),
        )
        terms.update(overrides)
        return ConvertibleBondSpec(**terms)

    return _make


@pytest.fixture()
def make_model(val_date, flat_curve, make_bond, cfg):
    """Factory for models on the flat 3% curve; keyword overrides apply to the model."""

    def _make(bond=None, **overrides):
        kwargs = dict(
            s0=40.0,
            sigma_s=0.25,
            kappa=0.1,
            sigma_r=0.1,
            rho=0.2,
            cfg=cfg,
        )
        kwargs.update(overrides)
        curve = kwargs.pop("discount_curve", flat_curve)
        return IntersectingTreesModel(bond or make_bond(), val_date, val_date, curve, **kwargs)

    return _make


def straight_bond_value(bond, curve, as_of):
    """Closed-form full value per 1000 par of the bond's coupons and redemption."""
    periods = bond.coupon_periods(as_of)
    coupon = 1000.0 * bond.coupon_rate / bond.payments_per_year
    value = sum(coupon * curve.discount(end) for _, end in periods)
    return value + 1000.0 * bond.redemption / 100.0 * curve.discount(bond.maturity_date)


@pytest.fixture(scope="session")
def straight_value():
    return straight_bond_value
