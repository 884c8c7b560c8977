import math

import numpy as np

# Probability that the soft-call condition is met given the stock's position
# relative to the trigger, on a grid of daily-volatility moves around it.
SOFT_CALL_PROBABILITIES = np.array([
    0.0, 0.0001720674336, 0.0005162023008, 0.0025497265160, 0.0062726400793,
    0.0173788107932, 0.0358682386577, 0.0730853416026, 0.1290301196277,
    0.2147810682654, 0.3303381875157, 0.4748026356101, 0.6048134192824,
    0.7104381565005, 0.7995606642216, 0.8635899219662, 0.9143516551703,
    0.9461413435638, 0.9698750413954, 0.9825796149671, 0.9915324337780,
    0.9955180343240, 0.9981751013547, 0.9991200175136, 0.9997172895819,
    0.9998764283955, 0.9999720044434, 0.9999889694154, 0.9999986700714,
    0.9999995306134, 1.0, 1.0,
])

TRADING_DAYS = 260.0
CENTRE_ROW = 11
UPPER_BOUNDARY = 1.0e8


class SoftCallTable:
    """Stock-price boundaries and soft-call probabilities.

    Boundary ``i`` (for ``0 < i < 31``) is ``trigger * s0 * down**(11 - i)``
    with ``down = exp(-sigma / sqrt(260))``; the first boundary is 0 and the
    last is effectively infinite. A stock in ``[b[i], b[i+1])`` maps to
    probability ``p[i]``.
    """

    def __init__(self, trigger, s0, sigma):
        if trigger is None or trigger < 0.0:
            raise ValueError(f"Soft-call trigger must be non-negative, got {trigger}")
        down = math.exp(-sigma * math.sqrt(1.0 / TRADING_DAYS))
        rows = len(SOFT_CALL_PROBABILITIES)
        i = np.arange(rows)
        boundaries = trigger * s0 * down ** (CENTRE_ROW - i.astype(float))
        boundaries[0] = 0.0
        boundaries[-1] = UPPER_BOUNDARY
        self.boundaries = boundaries
        self.probabilities = SOFT_CALL_PROBABILITIES.copy()

    @classmethod
    def for_bond(cls, trigger, s0, sigma):
        """Table for a bond, or None when the bond has no soft call."""
        if trigger is None or trigger < 0.0:
            return None
        return cls(trigger, s0, sigma)

    def probability(self, stock):
        """Soft-call probability for a stock price or an array of them."""
        stock = np.asarray(stock, dtype=float)
        idx = np.searchsorted(self.boundaries, stock, side="right") - 1
        idx = np.clip(idx, 0, len(self.probabilities) - 1)
        result = self.probabilities[idx]
        result = np.where(stock < 0.0, 0.0, result)
        if result.ndim == 0:
            return float(result)
        return result
