"""Local-background significance of observed isotope envelopes.

Each envelope is compared with the other peaks of its own spectrum inside a
narrow m/z window centred on the envelope's reference (most abundant) peak.

Rank-sum test
    Peaks in the window are ranked by decreasing intensity. If the strongest
    theoretical isotopes (ratio >= 0.7) are genuine, their peaks should hold
    the top ranks. The rank sum is compared with its null distribution using
    the normal approximation.

Poisson test
    The window is divided into tolerance-sized bins. Given the peak density
    of the window, the number of isotope positions hit by chance follows a
    Poisson distribution; observing more matched isotopes than expected is
    significant.

Both scores are reported as -log2(p), capped at 50 when p underflows, and
0.0 for empty windows.
"""

import math
from typing import Tuple

import numpy as np
from scipy import stats

from ..constants import C13_MASS_DIFFERENCE, MAX_SIGNIFICANCE_SCORE
from ..isotopes.envelope import IsotopeList
from ..tolerance import Tolerance
from .cluster import ObservedEnvelope
from .peak_index import PeakIndex, search_mz_window

# Only isotopes at least this intense (relative to the apex) enter the rank sum
RANK_SUM_MIN_RATIO = 0.7


def _to_score(p_value: float) -> float:
    if p_value > 0:
        return -math.log2(p_value)
    return MAX_SIGNIFICANCE_SCORE


def rank_sum_score(n_peaks: int, n_isotopes: int, rank_sum: float) -> float:
    """-log2 p-value of a Wilcoxon rank sum (normal approximation).

    Parameters
    ----------
    n_peaks : int
        Number of peaks in the window (N)
    n_isotopes : int
        Number of isotope peaks among them (n)
    rank_sum : float
        Sum of the isotope peak ranks (rank 1 = most intense)
    """
    if n_isotopes <= 0 or n_peaks <= n_isotopes:
        return 0.0
    mean = n_isotopes * (n_peaks + 1) * 0.5
    var = n_isotopes * (n_peaks - n_isotopes) * (n_peaks + 1) / 12.0
    p_value = stats.norm.cdf((rank_sum - mean) / math.sqrt(var))
    return _to_score(float(p_value))


def poisson_score(n_bins: int, n_checked: int, n_peaks: int, n_observed: int) -> float:
    """-log2 P(X > n_observed) with X ~ Poisson(n_peaks / n_bins * n_checked).

    Parameters
    ----------
    n_bins : int
        Number of tolerance-sized bins in the window
    n_checked : int
        Theoretical isotopes falling inside the window
    n_peaks : int
        Peaks detected inside the window
    n_observed : int
        Isotopes matched to a peak inside the window
    """
    if n_bins <= 0 or n_checked <= 0 or n_peaks <= 0:
        return 0.0
    lam = n_peaks / n_bins * n_checked
    p_value = stats.poisson.sf(n_observed, lam)
    return _to_score(float(p_value))


class LocalWindowSignificanceTester:
    """Default significance tester backed by the run's MS1 spectra.

    Any object with a ``test_significance(isotope_list, envelope)`` method
    returning ``(poisson_score, rank_sum_score)`` can replace it.

    Parameters
    ----------
    peak_index : PeakIndex
        Source of per-scan spectra
    tolerance : Tolerance
        m/z tolerance defining the Poisson bin width
    window_relative : float
        Window width as a fraction of the reference peak m/z
    """

    def __init__(self, peak_index: PeakIndex, tolerance: Tolerance, window_relative: float = 1.0 / 512):
        self.peak_index = peak_index
        self.tolerance = tolerance
        self.window_relative = window_relative

    def test_significance(self, isotope_list: IsotopeList, envelope: ObservedEnvelope) -> Tuple[float, float]:
        """(poisson_score, rank_sum_score) of one observed envelope."""
        if envelope.ref_position < 0:
            return 0.0, 0.0

        ref_id = envelope.peak_ids[envelope.ref_position]
        ref_mz = self.peak_index.mz[ref_id]
        half_width = 0.5 * ref_mz * self.window_relative
        min_mz = ref_mz - half_width
        max_mz = ref_mz + half_width

        spec_mz, spec_intensity = self.peak_index.get_scan_peaks(envelope.col)
        start, end = search_mz_window(spec_mz, min_mz, max_mz)
        n_peaks = end - start
        if n_peaks == 0:
            return 0.0, 0.0

        # 1-based rank of every window peak by decreasing intensity
        order = np.argsort(-spec_intensity[start:end], kind='stable')
        ranks = np.empty(n_peaks, dtype=np.int64)
        ranks[order] = np.arange(1, n_peaks + 1)

        # Rank of each observed isotope peak that lies in the window
        isotope_ranks = np.zeros(len(isotope_list), dtype=np.int64)
        n_observed = 0
        for pos, peak_id, _, _ in envelope.iter_peaks():
            local = self.peak_index.peak_in_scan[peak_id] - start
            if 0 <= local < n_peaks:
                isotope_ranks[pos] = ranks[local]
                n_observed += 1

        # Theoretical isotopes inside the window, placed relative to the reference peak
        ref_index = isotope_list.index[envelope.ref_position]
        theo_mz = ref_mz + (isotope_list.index - ref_index) * C13_MASS_DIFFERENCE / envelope.charge
        n_checked = int(np.count_nonzero((theo_mz >= min_mz) & (theo_mz <= max_mz)))

        n = 0
        rank_sum = 0.0
        for pos in isotope_list.sorted_index_by_intensity:
            if isotope_list.ratio[pos] < RANK_SUM_MIN_RATIO:
                break
            if isotope_ranks[pos] > 0:
                n += 1
                rank_sum += isotope_ranks[pos]

        tol = 0.5 * (self.tolerance.get_tolerance_as_da(max_mz) + self.tolerance.get_tolerance_as_da(min_mz))
        n_bins = int(round((max_mz - min_mz) / tol))

        return (
            poisson_score(n_bins, n_checked, n_peaks, n_observed),
            rank_sum_score(n_peaks, n, rank_sum),
        )
