import math
from datetime import date

import pytest
import QuantLib as ql

from convertible_pricer import ConvertiblePricer, StockDividends, SurvivalCurve

RATE_PARAMS = {"a": 0.1, "sigma": 0.1, "model": "BK"}


def test_smoke_run(make_bond, flat_curve, cfg, val_date):
    """End-to-end: price, Greeks and implied spreads on a callable convertible.

    This is not a unit test of financial correctness; it checks that the code
    runs end-to-end and every metric comes back finite.
    """
    bond = make_bond(
        call_schedule=[(date(2028, 1, 15), date(2030, 1, 15), 100.0)],
        soft_call_trigger=1.3,
        soft_call_end=date(2029, 1, 15),
    )
    pricer = ConvertiblePricer(
        bond, flat_curve, cfg, s0=40.0, sigma_s=0.25, rate_params=RATE_PARAMS,
        rho=0.2, survival_curve=SurvivalCurve.flat(val_date, 0.015, 0.4),
        dividends=StockDividends.from_yield(0.01),
    )
    market = pricer.full_price()
    metrics = pricer.metrics(market_price=market)

    for key in (
        "full_price", "clean_price", "bond_floor", "relevant_bond_floor",
        "stock_option_value", "parity", "premium", "hedge_ratio", "delta",
        "gamma", "vega_equity", "vega_rate", "interest_sensitivity",
        "credit_sensitivity", "oas", "effective_duration", "effective_convexity",
    ):
        assert math.isfinite(metrics[key]), key

    assert metrics["parity"] == pytest.approx(80.0)
    assert metrics["conversion_price"] == pytest.approx(50.0)
    # Credit risk is priced into the market price, so the OAS is positive.
    assert metrics["oas"] > 0.0


def test_hull_white_pricer(make_bond, flat_curve, cfg):
    pricer = ConvertiblePricer(
        make_bond(), flat_curve, cfg, s0=40.0, sigma_s=0.25,
        rate_params={"a": 0.1, "sigma": 0.01, "model": "HW"},
    )
    assert 0.8 < pricer.full_price() < 2.0


def test_accrued_and_clean_price(make_bond, flat_curve, cfg):
    pricer = ConvertiblePricer(
        make_bond(), flat_curve, cfg, s0=40.0, sigma_s=0.25, rate_params=RATE_PARAMS,
        settle=date(2025, 4, 15),
    )
    # 90 days of a 2% coupon on 30/360.
    assert pricer.accrued() == pytest.approx(0.02 * 90.0 / 360.0)
    assert pricer.clean_price() == pytest.approx(pricer.full_price() - pricer.accrued())
    assert pricer.parity() == pytest.approx(80.0)
    assert pricer.conversion_premium() == pytest.approx(
        (pricer.clean_price() * 100.0 - 80.0) / 80.0
    )


def test_defaulted_bond_short_circuits(make_bond, flat_curve, cfg):
    pricer = ConvertiblePricer(
        make_bond(), flat_curve, cfg, s0=40.0, sigma_s=0.25, rate_params=RATE_PARAMS,
        settle=date(2025, 2, 3), default_date=date(2025, 1, 20),
        default_settle_date=date(2025, 7, 15),
    )
    assert pricer.is_defaulted
    df = flat_curve.discount(ql.Date(15, 7, 2025)) / flat_curve.discount(ql.Date(3, 2, 2025))
    assert pricer.full_price() == pytest.approx(0.4 * df)
    assert pricer.accrued() == 0.0
    metrics = pricer.metrics()
    assert metrics["defaulted"]
    assert metrics["full_price"] == pytest.approx(0.4 * df)
    with pytest.raises(ValueError):
        pricer.model

    settled = ConvertiblePricer(
        make_bond(), flat_curve, cfg, s0=40.0, sigma_s=0.25, rate_params=RATE_PARAMS,
        settle=date(2025, 2, 3), default_date=date(2025, 1, 20), recovery_rate=0.25,
    )
    assert settled.full_price() == 0.0

    later = ConvertiblePricer(
        make_bond(), flat_curve, cfg, s0=40.0, sigma_s=0.25, rate_params=RATE_PARAMS,
        settle=date(2025, 2, 3), default_date=date(2025, 1, 20),
        default_settle_date=date(2025, 7, 15), recovery_rate=0.25,
    )
    assert later.full_price() == pytest.approx(0.25 * df)


def test_default_after_settlement_is_priced_normally(make_bond, flat_curve, cfg):
    pricer = ConvertiblePricer(
        make_bond(), flat_curve, cfg, s0=40.0, sigma_s=0.25, rate_params=RATE_PARAMS,
        default_date=date(2026, 1, 15),
    )
    assert not pricer.is_defaulted
    assert pricer.full_price() == pytest.approx(pricer.model.pv() / 1000.0)
