import logging
from datetime import date

import QuantLib as ql
import pandas as pd

from convertible_pricer.config import AppConfig
from convertible_pricer.engines import StockDividends
from convertible_pricer.errors import ConvertiblePricingError
from convertible_pricer.instruments import ConvertibleBondSpec
from convertible_pricer.market import DiscountCurve, SurvivalCurve
from convertible_pricer.pricer import ConvertiblePricer
from convertible_pricer.sensitivity import (
    price_vs_discount_spread,
    price_vs_stock,
    price_vs_stock_volatility,
)


def main():
    logging.basicConfig(level=logging.INFO)

    # -------------------------------------------------------------------------
    # 0. Inputs (adjust these for your bond)
    # -------------------------------------------------------------------------
    val_date = ql.Date(15, 1, 2025)
    cfg = AppConfig(val_date, n_steps=100)
    cfg.apply_global_settings()

    bond = ConvertibleBondSpec(
        face=1000.0,
        coupon_rate=0.02,
        coupon_frequency=ql.Semiannual,
        issue_date=date(2025, 1, 15),
        maturity_date=date(2030, 1, 15),
        conversion_ratio=20.0,
        convert_start=date(2025, 1, 15),
        convert_end=date(2030, 1, 15),
        call_schedule=[(date(2028, 1, 15), date(2030, 1, 15), 100.0)],
        soft_call_trigger=1.3,
        soft_call_end=date(2029, 1, 15),
    )

    discount = DiscountCurve.flat(val_date, 0.03)
    survival = SurvivalCurve.flat(val_date, 0.015, 0.4)

    # -------------------------------------------------------------------------
    # 1. Price + risk metrics
    # -------------------------------------------------------------------------
    scenarios = [
        ("BK, riskless", {"a": 0.1, "sigma": 0.1, "model": "BK"}, None),
        ("BK, 150bp CDS", {"a": 0.1, "sigma": 0.1, "model": "BK"}, survival),
        ("HW, 150bp CDS", {"a": 0.1, "sigma": 0.01, "model": "HW"}, survival),
    ]

    print("--- 1. Resultados ---")
    rows = []
    pricers = {}
    for label, params, curve in scenarios:
        pricer = ConvertiblePricer(
            bond, discount, cfg, s0=40.0, sigma_s=0.25, rate_params=params,
            rho=0.2, survival_curve=curve, dividends=StockDividends.from_yield(0.01),
        )
        pricers[label] = pricer
        try:
            market = pricer.full_price()
            row = {"method": label}
            row.update(pricer.metrics(market_price=market))
        except ConvertiblePricingError as e:
            print(f"{label:<20} | ERRO: {e}")
            row = {"method": label}
        rows.append(row)

    results_df = pd.DataFrame(rows).set_index("method")
    with pd.option_context("display.max_columns", None, "display.width", 200):
        print(results_df.T)

    # -------------------------------------------------------------------------
    # 2. Sensitivity sweeps
    # -------------------------------------------------------------------------
    model = pricers["BK, 150bp CDS"].model
    print("\n--- 2. Price vs stock ---")
    print(price_vs_stock(model, [20, 30, 40, 50, 60, 80]))
    print("\n--- 3. Price vs stock volatility ---")
    print(price_vs_stock_volatility(model, [0.15, 0.2, 0.25, 0.3, 0.4]))
    print("\n--- 4. Price vs discount spread ---")
    print(price_vs_discount_spread(model, [-50, 0, 50, 100, 200]))


if __name__ == "__main__":
    main()
