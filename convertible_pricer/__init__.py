"""Convertible bond pricer package (QuantLib + numpy).

This package provides:
- Discount and survival curves on QuantLib term structures
- Black-Karasinski / Hull-White binomial short-rate lattices
- An equity lattice correlated with the short rate ("intersecting trees")
- Backward induction through call, soft call, conversion, put and default
- Implied discount spread / CDS curve calibration
- Bump-and-reprice Greeks, effective duration/convexity and sweeps
"""

from .calibration import SpreadCalibrator
from .config import AppConfig
from .engines import IntersectingTreesModel, ShortRateModel, StockDividends
from .errors import CalibrationError, ConvertiblePricingError, LatticeError, SensitivityError
from .instruments import ConvertibleBondSpec, ExercisePeriod
from .market import DiscountCurve, SurvivalCurve
from .pricer import ConvertiblePricer
from .sensitivity import BumpResult, ConvertibleGreeks
