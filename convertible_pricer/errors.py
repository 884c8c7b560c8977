"""Exception taxonomy for the convertible pricer.

Precondition violations raise plain ``ValueError``; everything below is raised
by the numerical layers.
"""


class ConvertiblePricingError(Exception):
    """Base class for numerical failures inside the pricer."""


class LatticeError(ConvertiblePricingError):
    """A short-rate lattice could not be built or has inconsistent dimensions."""


class CalibrationError(ConvertiblePricingError):
    """A root-finder could not match the target price.

    ``last_trial`` holds the last spread the solver tried, or None if the
    objective was never evaluated.
    """

    def __init__(self, message, last_trial=None):
        super().__init__(message)
        self.last_trial = last_trial


class SensitivityError(ConvertiblePricingError):
    """One or more bumped reprices failed, so the sensitivity is undefined."""

    def __init__(self, message, results=None):
        super().__init__(message)
        self.results = results or {}
