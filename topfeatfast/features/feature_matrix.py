"""Charge x scan feature matrix for one candidate mass.

For a candidate mass the matrix holds, per (charge row, scan column) cell, the
observed intensity of every theoretical isotope, the Pearson correlation of
that partial envelope with the theoretical one, and the monoisotopic mass
implied by the most abundant isotope peak.

Isotopes are matched in order of decreasing theoretical intensity. The four
most intense isotopes keep the most intense peak per column; the remaining
isotopes keep the peak whose intensity is closest to the value predicted from
the best-matched isotope, which suppresses peaks of co-eluting species.

Candidate masses are quantized into log-scale bins of ``mass_bin_ppm`` width;
a query is always evaluated at the center of its bin.
"""

import logging
import math
from typing import Tuple

import numba as nb
import numpy as np

from ..config import FeatureFindingParams
from ..constants import C13_MASS_DIFFERENCE, PROTON_MASS
from ..exceptions import InvalidInputError
from ..isotopes.envelope import IsotopeList, envelope_pearson_correlation
from .peak_index import PeakIndex, search_mz_window

logger = logging.getLogger(__name__)


# =============================================================================
# Mass binning
# =============================================================================


class MassBinning:
    """Log-scale mass bins of constant relative width.

    Bin ``b`` covers ``[(1 + w)^b, (1 + w)^(b + 1))`` with ``w = ppm * 1e-6``.
    """

    def __init__(self, bin_ppm: float = 3.8):
        if not bin_ppm > 0:
            raise ValueError(f"bin_ppm must be positive, got {bin_ppm}")
        self.bin_ppm = bin_ppm
        self._log_base = math.log1p(bin_ppm * 1e-6)

    def get_bin_number(self, mass: float) -> int:
        if not mass > 0:
            raise InvalidInputError(f"Mass must be positive, got {mass}")
        return int(math.floor(math.log(mass) / self._log_base))

    def get_mass_start(self, bin_num: int) -> float:
        return math.exp(bin_num * self._log_base)

    def get_mass_end(self, bin_num: int) -> float:
        return math.exp((bin_num + 1) * self._log_base)

    def get_mass_average(self, bin_num: int) -> float:
        return 0.5 * (self.get_mass_start(bin_num) + self.get_mass_end(bin_num))


def get_charge_range(mass: float, params: FeatureFindingParams) -> Tuple[int, int]:
    """Plausible charge states (inclusive) of an intact protein of ``mass``.

    Below 5 kDa the range is [min_charge, 10]; above, it scales linearly with
    mass. At most ``max_charge_length`` rows are returned.
    """
    if mass < 5000.0:
        return params.min_charge, min(10, params.max_charge)

    charge_lb = int(max(params.min_charge, math.floor((13.0 / 2.5) * (mass / 10000.0) - 0.6)))
    charge_ub = int(min(params.max_charge, math.ceil(18.0 * (mass / 10000.0) + 8.0)))
    if charge_ub - charge_lb + 1 > params.max_charge_length:
        charge_ub = charge_lb + params.max_charge_length - 1
    return charge_lb, charge_ub


# =============================================================================
# Numba kernel
# =============================================================================


@nb.njit(parallel=True)
def populate_feature_matrix(
    peak_mz: np.ndarray,
    peak_intensity: np.ndarray,
    peak_scan_col: np.ndarray,
    isotope_index: np.ndarray,
    isotope_ratio: np.ndarray,
    sorted_index_by_intensity: np.ndarray,
    bin_start_mass: float,
    bin_end_mass: float,
    min_charge: int,
    n_rows: int,
    n_scans: int,
    tolerance_ppm: float,
    min_mz: float,
    max_mz: float,
    max_exact_isotope_rank: int,
    max_missing_fraction: float,
):
    """Fill the feature matrix, one charge row per parallel task.

    Parameters
    ----------
    peak_mz, peak_intensity : np.ndarray (float64)
        All MS1 peaks sorted by m/z
    peak_scan_col : np.ndarray (int64)
        Scan column of each peak
    isotope_index, isotope_ratio, sorted_index_by_intensity : np.ndarray
        Theoretical envelope (see ``IsotopeList``)
    bin_start_mass, bin_end_mass : float
        Mass range of the candidate-mass bin
    min_charge, n_rows, n_scans : int
        Matrix geometry; row r holds charge ``min_charge + r``
    tolerance_ppm : float
        m/z tolerance added on both sides of each isotope window
    min_mz, max_mz : float
        Acquired MS1 m/z range; isotope windows outside it are skipped
    max_exact_isotope_rank : int
        Isotopes ranked below this keep the most intense peak per column
    max_missing_fraction : float
        Missing-isotope cutoff of the cell correlation

    Returns
    -------
    envelopes : np.ndarray (float64, shape (n_rows, n_scans, n_isotopes))
    peak_ids : np.ndarray (int64, same shape), -1 where no peak matched
    correlation : np.ndarray (float64, shape (n_rows, n_scans))
    accurate_mass : np.ndarray (float64, shape (n_rows, n_scans)), 0 if unknown
    most_abundant_peak : np.ndarray (int64, shape (n_rows, n_scans)), -1 if none
    highest_intensity : np.ndarray (float64, shape (n_rows, n_scans))
    observed_rows : np.ndarray (bool, shape (n_rows,))
    """
    n_isotopes = len(isotope_ratio)

    envelopes = np.zeros((n_rows, n_scans, n_isotopes), dtype=np.float64)
    peak_ids = np.full((n_rows, n_scans, n_isotopes), -1, dtype=np.int64)
    correlation = np.zeros((n_rows, n_scans), dtype=np.float64)
    accurate_mass = np.zeros((n_rows, n_scans), dtype=np.float64)
    most_abundant_peak = np.full((n_rows, n_scans), -1, dtype=np.int64)
    highest_intensity = np.zeros((n_rows, n_scans), dtype=np.float64)
    highest_position = np.zeros((n_rows, n_scans), dtype=np.int64)
    observed_rows = np.zeros(n_rows, dtype=np.bool_)

    for row in nb.prange(n_rows):
        charge = row + min_charge

        for k in range(n_isotopes):
            i = sorted_index_by_intensity[k]
            iso = isotope_index[i]

            mz_lb = (bin_start_mass + iso * C13_MASS_DIFFERENCE) / charge + PROTON_MASS
            mz_ub = (bin_end_mass + iso * C13_MASS_DIFFERENCE) / charge + PROTON_MASS
            mz_lb -= mz_lb * tolerance_ppm * 1e-6
            mz_ub += mz_ub * tolerance_ppm * 1e-6
            if mz_lb < min_mz or mz_ub > max_mz:
                continue

            start, end = search_mz_window(peak_mz, mz_lb, mz_ub)
            for j in range(start, end):
                col = peak_scan_col[j]
                intensity = peak_intensity[j]

                if k < max_exact_isotope_rank:
                    if intensity > envelopes[row, col, i]:
                        envelopes[row, col, i] = intensity
                        peak_ids[row, col, i] = j

                    if envelopes[row, col, i] > highest_intensity[row, col]:
                        highest_position[row, col] = i
                        highest_intensity[row, col] = envelopes[row, col, i]
                        if k == 0:
                            most_abundant_peak[row, col] = j
                            accurate_mass[row, col] = (
                                (peak_mz[j] - PROTON_MASS) * charge - iso * C13_MASS_DIFFERENCE
                            )
                else:
                    current = envelopes[row, col, i]
                    if current > 0:
                        if highest_intensity[row, col] > 0:
                            # Keep the peak closest to the intensity predicted
                            # from the best-matched isotope
                            expected = (
                                highest_intensity[row, col] * isotope_ratio[i]
                                / isotope_ratio[highest_position[row, col]]
                            )
                            if abs(intensity - expected) < abs(current - expected):
                                envelopes[row, col, i] = intensity
                                peak_ids[row, col, i] = j
                        elif intensity > current:
                            envelopes[row, col, i] = intensity
                            peak_ids[row, col, i] = j
                    else:
                        envelopes[row, col, i] = intensity
                        peak_ids[row, col, i] = j

                observed_rows[row] = True

        if observed_rows[row]:
            for col in range(n_scans):
                if highest_intensity[row, col] > 0:
                    correlation[row, col] = envelope_pearson_correlation(
                        isotope_ratio, envelopes[row, col], max_missing_fraction
                    )

    return (
        envelopes,
        peak_ids,
        correlation,
        accurate_mass,
        most_abundant_peak,
        highest_intensity,
        observed_rows,
    )


# =============================================================================
# FeatureMatrix
# =============================================================================


class FeatureMatrix:
    """Dense charge x scan grid of observed isotope envelopes for one query.

    A fresh set of arrays is allocated by every ``build`` call, so matrices of
    different queries never share state.

    Parameters
    ----------
    peak_index : PeakIndex
        Shared, read-only MS1 peak index
    params : FeatureFindingParams
        Feature finding parameters
    mass_binning : MassBinning, optional
        Candidate-mass bins (built from ``params.mass_bin_ppm`` if omitted)
    """

    def __init__(self, peak_index: PeakIndex, params: FeatureFindingParams, mass_binning: MassBinning = None):
        self.peak_index = peak_index
        self.params = params
        self.mass_binning = mass_binning or MassBinning(params.mass_bin_ppm)

        self.query_mass = 0.0
        self.isotope_list = None
        self.min_charge = params.min_charge
        self.max_charge = params.min_charge - 1
        self.envelopes = None
        self.peak_ids = None
        self.correlation = None
        self.accurate_mass = None
        self.most_abundant_peak = None
        self.highest_intensity = None
        self.observed_rows = np.zeros(0, dtype=np.bool_)

    @property
    def n_rows(self) -> int:
        return self.max_charge - self.min_charge + 1

    @property
    def n_scans(self) -> int:
        return self.peak_index.n_scans

    @property
    def observed_row_indices(self) -> np.ndarray:
        """Rows (ascending) with at least one matched peak."""
        return np.flatnonzero(self.observed_rows)

    def build(self, query_mass: float):
        """Populate the matrix for ``query_mass``.

        Raises:
            InvalidInputError: query_mass <= 0 or no isotope passes truncation
            IsotopeModelError: the isotope model produced inf/NaN
        """
        if not query_mass > 0:
            raise InvalidInputError(f"Query mass must be positive, got {query_mass}")

        params = self.params
        bin_num = self.mass_binning.get_bin_number(query_mass)
        self.query_mass = query_mass
        self.isotope_list = IsotopeList(
            self.mass_binning.get_mass_average(bin_num),
            params.max_isotopes,
            params.isotope_relative_threshold,
        )
        self.min_charge, self.max_charge = get_charge_range(query_mass, params)
        n_rows = max(self.n_rows, 0)

        iso = self.isotope_list
        (
            self.envelopes,
            self.peak_ids,
            self.correlation,
            self.accurate_mass,
            self.most_abundant_peak,
            self.highest_intensity,
            self.observed_rows,
        ) = populate_feature_matrix(
            self.peak_index.mz,
            self.peak_index.intensity,
            self.peak_index.scan_col,
            iso.index,
            iso.ratio,
            iso.sorted_index_by_intensity,
            self.mass_binning.get_mass_start(bin_num),
            self.mass_binning.get_mass_end(bin_num),
            self.min_charge,
            n_rows,
            self.n_scans,
            params.tolerance_ppm,
            self.peak_index.min_mz,
            self.peak_index.max_mz,
            params.max_exact_isotope_rank,
            iso.max_missing_fraction,
        )

    def checksum(self) -> float:
        """Order-independent fingerprint of the populated matrix."""
        if self.envelopes is None:
            return 0.0
        return float(
            self.envelopes.sum()
            + self.correlation.sum()
            + self.accurate_mass.sum()
            + self.peak_ids.sum()
        )
