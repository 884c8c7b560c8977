from datetime import date

import numpy as np
import pytest
import QuantLib as ql

from convertible_pricer.engines import BlackKarasinskiLattice, CorrelatedStockTree, StockDividends
from convertible_pricer.engines.equity_tree import SOFT_CALL_DIVIDEND_WINDOW

HORIZON = 5.0
N = 50


def _times(n=N, horizon=HORIZON):
    return np.linspace(0.0, horizon, n + 1)


def _discounted_expectation(rate_lattice, stock_lattice, t):
    """Expected discounted stock price at step ``t`` seen from the root."""
    values = stock_lattice.stock_prices(t)
    dfs = rate_lattice.discount_factor_tree()
    for k in range(t - 1, -1, -1):
        values = 0.25 * (values[:-1, :-1] + values[:-1, 1:] + values[1:, :-1] + values[1:, 1:])
        values = values * dfs[k][:, None]
    return values[0, 0]


def test_stock_prices_block_shape(flat_curve, val_date):
    rates = BlackKarasinskiLattice(flat_curve, 0.1, 0.1, N, HORIZON)
    tree = CorrelatedStockTree(50.0, 0.2, 0.3, StockDividends(), flat_curve, val_date, _times())
    lattice = tree.build(rates)
    assert lattice.n_steps == N
    for k in (0, 1, 7, N):
        assert lattice.stock_prices(k).shape == (k + 1, k + 1)
    assert lattice.stock_prices(0)[0, 0] == pytest.approx(50.0)


def test_discounted_stock_is_a_martingale(flat_curve, val_date):
    rates = BlackKarasinskiLattice(flat_curve, 0.1, 0.1, N, HORIZON)
    tree = CorrelatedStockTree(50.0, 0.2, 0.0, StockDividends(), flat_curve, val_date, _times())
    lattice = tree.build(rates)
    for t in (1, 10, 25, N):
        assert _discounted_expectation(rates, lattice, t) == pytest.approx(50.0, rel=1e-3)


def test_build_is_idempotent(flat_curve, val_date):
    rates = BlackKarasinskiLattice(flat_curve, 0.1, 0.1, N, HORIZON)
    tree = CorrelatedStockTree(50.0, 0.2, -0.4, StockDividends(), flat_curve, val_date, _times())
    a = tree.build(rates)
    b = tree.build(rates)
    assert np.allclose(a.stock_prices(N), b.stock_prices(N))


def test_dividend_yield_lowers_terminal_prices(flat_curve, val_date):
    rates = BlackKarasinskiLattice(flat_curve, 0.1, 0.1, N, HORIZON)
    plain = CorrelatedStockTree(50.0, 0.2, 0.0, StockDividends(), flat_curve, val_date, _times())
    paying = CorrelatedStockTree(
        50.0, 0.2, 0.0, StockDividends.from_yield(0.04), flat_curve, val_date, _times()
    )
    ratio = paying.build(rates).stock_prices(N) / plain.build(rates).stock_prices(N)
    assert np.allclose(ratio, np.exp(-0.04 * HORIZON))


def test_discrete_dividends_forward_mode(flat_curve, val_date):
    divs = StockDividends(dates=(date(2025, 6, 1), date(2026, 6, 1)), amounts=(1.0, 1.5))
    rates = BlackKarasinskiLattice(flat_curve, 0.1, 0.1, N, HORIZON)
    tree = CorrelatedStockTree(50.0, 0.2, 0.0, divs, flat_curve, val_date, _times())
    lattice = tree.build(rates)

    assert np.all(np.diff(tree.accumulated) >= 0.0)
    assert tree.accumulated[0] == 0.0
    assert tree.accumulated[-1] == pytest.approx(2.5)
    assert lattice.offset[-1] == pytest.approx(-2.5)
    assert lattice.stock_prices(0)[0, 0] == pytest.approx(50.0)


def test_discrete_dividends_backward_mode(flat_curve, val_date):
    divs = StockDividends(dates=(date(2025, 6, 1),), amounts=(2.0,))
    rates = BlackKarasinskiLattice(flat_curve, 0.1, 0.1, N, HORIZON)
    tree = CorrelatedStockTree(
        50.0, 0.2, 0.0, divs, flat_curve, val_date, _times(), backward_dividends=True
    )
    lattice = tree.build(rates)

    t_div = (ql.Date(1, 6, 2025) - val_date) / 365.0
    assert tree.pv[0] == pytest.approx(2.0 * flat_curve.discount_at(t_div))
    assert tree.pv[-1] == 0.0
    assert lattice.stock_prices(0)[0, 0] == pytest.approx(50.0)


def test_soft_call_dividend_adjustment_phases_out(flat_curve, val_date):
    divs = StockDividends(dates=(date(2025, 6, 1),), amounts=(2.0,))
    times = _times(200)
    tree = CorrelatedStockTree(50.0, 0.2, 0.0, divs, flat_curve, val_date, times)
    t_div = (ql.Date(1, 6, 2025) - val_date) / 365.0

    inside = (times >= t_div) & (times <= t_div + SOFT_CALL_DIVIDEND_WINDOW)
    assert inside.any()
    assert np.all(tree.soft_call_adjustment[~inside] == 0.0)
    assert np.all(tree.soft_call_adjustment[inside] > 0.0)
    assert np.all(tree.soft_call_adjustment[inside] <= 2.0)

    rates = BlackKarasinskiLattice(flat_curve, 0.1, 0.1, 200, HORIZON)
    lattice = tree.build(rates)
    k = int(np.argmax(inside))
    raw = np.exp(lattice.drift[k][0] + lattice.diffusion[k][0])
    assert lattice.soft_call_adjusted_price(k, 0, 0) == pytest.approx(raw - tree.soft_call_adjustment[k])


def test_annualized_yield(val_date):
    assert StockDividends().annualized_yield(val_date, 40.0) == 0.0
    assert StockDividends.from_yield(0.03).annualized_yield(val_date, 40.0) == 0.03

    single = StockDividends(dates=(date(2025, 3, 1),), amounts=(0.5,))
    assert single.annualized_yield(val_date, 40.0) == pytest.approx(4 * 0.5 / 40.0)

    # Two dividends three months apart, extrapolated over the rest of the year.
    two = StockDividends(dates=(date(2025, 3, 1), date(2025, 6, 1)), amounts=(0.5, 0.5))
    assert two.annualized_yield(val_date, 40.0) == pytest.approx(2.0 / 40.0)

    # Schedule running past one year: only the next year counts.
    long = StockDividends(
        dates=(date(2025, 6, 1), date(2025, 12, 1), date(2026, 6, 1)), amounts=(1.0, 1.0, 1.0)
    )
    assert long.annualized_yield(val_date, 40.0) == pytest.approx(2.0 / 40.0)


def test_invalid_inputs(flat_curve, val_date):
    with pytest.raises(ValueError):
        StockDividends(dates=(date(2025, 6, 1),), amounts=(1.0, 2.0))
    with pytest.raises(ValueError):
        StockDividends(amounts=(0.01, 0.02))
    with pytest.raises(ValueError):
        CorrelatedStockTree(50.0, 0.2, 1.5, StockDividends(), flat_curve, val_date, _times())
    with pytest.raises(ValueError):
        CorrelatedStockTree(0.0, 0.2, 0.0, StockDividends(), flat_curve, val_date, _times())
    with pytest.raises(ValueError):
        CorrelatedStockTree(50.0, -0.2, 0.0, StockDividends(), flat_curve, val_date, _times())

    rates = BlackKarasinskiLattice(flat_curve, 0.1, 0.1, N + 1, HORIZON)
    tree = CorrelatedStockTree(50.0, 0.2, 0.0, StockDividends(), flat_curve, val_date, _times())
    with pytest.raises(ValueError):
        tree.build(rates)
