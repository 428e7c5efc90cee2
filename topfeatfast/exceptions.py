"""Exceptions raised by TopFeatFast."""


class FeatureFindingError(Exception):
    """Base class for all TopFeatFast errors."""


class InvalidInputError(FeatureFindingError, ValueError):
    """Raise when a query cannot be processed as given.

    Examples: a candidate mass <= 0, a run without MS1 scans, or a mass whose
    composition yields no isotope above the relative intensity threshold.
    """


class IsotopeModelError(FeatureFindingError, ArithmeticError):
    """Raise when the isotope model produces an infinite or NaN ratio."""


class MissingSpectrumError(FeatureFindingError, KeyError):
    """Raise when a run is asked for a scan number it does not contain."""
