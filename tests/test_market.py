import math

import numpy as np
import pytest
import QuantLib as ql

from convertible_pricer import DiscountCurve, SurvivalCurve

TENORS = ["1Y", "3Y", "5Y"]
SPREADS = [0.01, 0.015, 0.02]


@pytest.fixture()
def cds_curve(val_date, flat_curve, cfg):
    return SurvivalCurve.from_cds_quotes(val_date, TENORS, SPREADS, 0.4, flat_curve)


def test_curve_from_discount_factors_matches_flat_curve(val_date, flat_curve, make_model):
    dates = [val_date] + [val_date + ql.Period(y, ql.Years) for y in range(1, 7)]
    dfs = [flat_curve.discount(d) for d in dates]
    curve = DiscountCurve.from_discount_factors(val_date, dates, dfs, quotes=[0.03])

    for t in (0.0, 0.37, 1.0, 2.5, 4.99):
        assert curve.discount_at(t) == pytest.approx(math.exp(-0.03 * t), rel=1e-9)
    assert curve.spread_floor(-0.001) == pytest.approx(-0.03 + 1e-4)
    assert curve.shifted(0.01).discount_at(2.0) == pytest.approx(math.exp(-0.04 * 2.0), rel=1e-9)

    assert make_model(discount_curve=curve).pv() == pytest.approx(make_model().pv(), rel=1e-7)


def test_bootstrapped_cds_curve(cds_curve, flat_curve, val_date):
    times = np.linspace(0.0, 5.0, 21)
    surv = np.array([cds_curve.survival_at(t) for t in times])
    assert surv[0] == 1.0
    assert np.all(np.diff(surv) < 0.0)

    for tenor, spread in zip(TENORS, SPREADS):
        maturity = val_date + ql.Period(tenor)
        assert cds_curve.par_spread(maturity, flat_curve) == pytest.approx(spread, abs=2e-4)


def test_bootstrapped_curve_prices_below_riskless(cds_curve, make_model):
    riskless = make_model().pv()
    risky = make_model(survival_curve=cds_curve)
    assert risky.recovery == pytest.approx(0.4)
    assert np.all(risky.default_probs > 0.0)
    assert risky.pv() < riskless


def test_bumped_and_scaled_refit(cds_curve):
    wider = cds_curve.bumped(0.005)
    assert wider.tenors == cds_curve.tenors
    assert wider.spreads == pytest.approx((0.015, 0.02, 0.025))
    assert wider.survival_at(4.0) < cds_curve.survival_at(4.0)

    scaled = cds_curve.scaled(0.05)
    assert scaled.spreads == pytest.approx(tuple(s * 1.05 for s in SPREADS))
    assert cds_curve.survival_at(4.0) > scaled.survival_at(4.0) > wider.survival_at(4.0)
    # The original curve keeps its quotes.
    assert cds_curve.spreads == tuple(SPREADS)


def test_single_maturity_quote(val_date, flat_curve, make_bond):
    maturity = make_bond().maturity_date
    curve = SurvivalCurve.from_maturity_quote(val_date, maturity, 0.02, 0.4, flat_curve)
    assert len(curve.tenors) == 1
    assert curve.par_spread(maturity, flat_curve) == pytest.approx(0.02, abs=2e-4)


def test_survival_curve_preconditions(val_date, flat_curve):
    with pytest.raises(ValueError):
        SurvivalCurve(val_date, 0.4, [])
    with pytest.raises(ValueError):
        SurvivalCurve.flat(val_date, 0.01, 1.0)
    with pytest.raises(ValueError):
        SurvivalCurve(val_date, 0.4, SPREADS, TENORS)
