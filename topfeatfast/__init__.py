"""TopFeatFast - MS1 feature finding for top-down proteomics.

Detects isotope-envelope features of intact proteins in LC-MS runs: a
charge x scan feature matrix is built per candidate mass, correlated cells are
grown into clusters, clusters are scored against the averagine isotope model
and deduplicated across neighbouring masses.

Performance-critical kernels are Numba-compiled; charge rows are populated in
parallel and clusters are scored in a thread pool.
"""

__version__ = "0.1.0"

from topfeatfast import constants
from topfeatfast import isotopes
from topfeatfast import features
from topfeatfast import io

from topfeatfast.config import FeatureFindingParams, InstrumentType
from topfeatfast.exceptions import (
    FeatureFindingError,
    InvalidInputError,
    IsotopeModelError,
    MissingSpectrumError,
)
from topfeatfast.run import InMemoryLcMsRun, Spectrum
from topfeatfast.tolerance import Tolerance
from topfeatfast.features import Ms1FeatureExtractor, SweepSummary

__all__ = [
    "constants",
    "isotopes",
    "features",
    "io",
    "FeatureFindingParams",
    "InstrumentType",
    "FeatureFindingError",
    "InvalidInputError",
    "IsotopeModelError",
    "MissingSpectrumError",
    "InMemoryLcMsRun",
    "Spectrum",
    "Tolerance",
    "Ms1FeatureExtractor",
    "SweepSummary",
]
