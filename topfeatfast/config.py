"""Parameters for MS1 feature finding.

All thresholds below were tuned empirically on top-down LC-MS data and are kept
as configuration constants rather than inlined into the algorithms.
"""

from dataclasses import dataclass
from enum import Enum
import math

from .constants import DEFAULT_MS1_TOLERANCE
from .tolerance import Tolerance


class InstrumentType(Enum):
    """Instrument types with different mass accuracy characteristics."""
    ORBITRAP = "orbitrap"          # ~10 ppm for intact proteins
    HIGH_RES_TOF = "high_res_tof"  # ~5 ppm


@dataclass
class FeatureFindingParams:
    """Parameters for charge/scan feature clustering and scoring.

    Uses ppm-based tolerances for instrument-independent parameters.
    """

    # Charge search range
    min_charge: int = 2
    max_charge: int = 60
    max_charge_length: int = 40  # Max charge rows per query

    # Mass accuracy
    tolerance_ppm: float = DEFAULT_MS1_TOLERANCE
    mass_bin_ppm: float = 3.8  # Relative width of one candidate-mass bin

    # Theoretical envelope truncation
    max_isotopes: int = 30
    isotope_relative_threshold: float = 0.1

    # Region growth
    seed_corr_lower_bound: float = 0.5
    near_seed_corr_lower_bound: float = 0.2
    charge_neighbor_gap: int = 2
    scan_neighbor_gap: int = 1
    cluster_corr_cutoff: float = 0.7

    # Matrix population: isotopes ranked below this use simple max
    max_exact_isotope_rank: int = 4

    # Scoring
    min_xic_window_length: int = 10
    significance_p_value: float = 0.02
    significance_window_relative: float = 1.0 / 512
    probability_threshold: float = 0.5

    # Deduplication / sweep
    mass_collapse: bool = False  # Also merge at +/-1, +/-2 Da
    look_back_da: float = 2.5
    flush_interval_bins: int = 1000

    # Worker bound (0 = all cores)
    n_threads: int = 0

    def __post_init__(self):
        if self.min_charge < 1 or self.max_charge < self.min_charge:
            raise ValueError(
                f"Invalid charge range [{self.min_charge}, {self.max_charge}]"
            )
        if self.max_charge_length < 1:
            raise ValueError("max_charge_length must be >= 1")
        if self.tolerance_ppm <= 0 or self.mass_bin_ppm <= 0:
            raise ValueError("tolerance_ppm and mass_bin_ppm must be positive")
        if self.max_isotopes < 1:
            raise ValueError("max_isotopes must be >= 1")
        if not 0.0 <= self.isotope_relative_threshold < 1.0:
            raise ValueError("isotope_relative_threshold must be in [0, 1)")
        if not 0.0 < self.significance_p_value < 1.0:
            raise ValueError("significance_p_value must be in (0, 1)")
        if self.look_back_da < 0 or self.flush_interval_bins < 1:
            raise ValueError("look_back_da must be >= 0 and flush_interval_bins >= 1")
        if self.n_threads < 0:
            raise ValueError("n_threads must be >= 0")

    @property
    def tolerance(self) -> Tolerance:
        return Tolerance(self.tolerance_ppm)

    @property
    def log_p_threshold(self) -> float:
        """-log2 of the significance p-value (5.64 for p = 0.02)."""
        return -math.log2(self.significance_p_value)

    @classmethod
    def for_instrument(cls, instrument: InstrumentType) -> 'FeatureFindingParams':
        """Create parameters optimized for specific instrument type.

        Args:
            instrument: Instrument type enum

        Returns:
            FeatureFindingParams with instrument-specific defaults
        """
        if instrument == InstrumentType.ORBITRAP:
            return cls(tolerance_ppm=10.0)
        elif instrument == InstrumentType.HIGH_RES_TOF:
            return cls(tolerance_ppm=5.0)
        else:
            raise ValueError(f"Unknown instrument type: {instrument}")
