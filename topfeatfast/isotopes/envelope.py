"""Truncated theoretical isotope envelopes and envelope similarity metrics.

An ``IsotopeList`` holds the isotopes of a candidate mass that pass a relative
intensity threshold, in isotope-index order, together with the rank order by
theoretical intensity. Observed envelopes are float arrays aligned with the
list's internal positions (0 = absent peak).

Metrics
-------
- Pearson correlation (zero-floored, 0 when too many isotopes are missing)
- Bhattacharyya distance (natural log, epsilon floor for missing isotopes)
- Kullback-Leibler divergence (log2, same epsilon floor)

All metrics are Numba kernels releasing the GIL so cluster scoring can run in
a thread pool.
"""

import math

import numpy as np
from numba import njit

from ..constants import MAX_BC_DISTANCE, isotope_mz
from ..exceptions import InvalidInputError
from .averagine import get_approximate_envelope

# Floor mass assigned to missing isotopes before taking logarithms
PROBABILITY_FLOOR = 1e-6

# Above this mass more missing isotopes are tolerated by the correlation
HIGH_MASS_MISSING_CUTOFF = 13000.0


# =============================================================================
# Numba kernels
# =============================================================================


@njit(nogil=True)
def envelope_pearson_correlation(
    theoretical: np.ndarray,
    observed: np.ndarray,
    max_missing_fraction: float,
) -> float:
    """Zero-floored Pearson correlation of an observed envelope.

    Isotopes with observed intensity <= 0 count as missing but still enter
    the mean and variance as zeros.

    Parameters
    ----------
    theoretical : np.ndarray (float64)
        Theoretical relative heights
    observed : np.ndarray (float64)
        Observed intensities aligned with ``theoretical``
    max_missing_fraction : float
        Return 0.0 when more than this fraction of isotopes is missing

    Returns
    -------
    corr : float
        Correlation in [0, 1]
    """
    n = len(theoretical)
    if n == 0:
        return 0.0

    m1 = 0.0
    m2 = 0.0
    n_missing = 0
    for i in range(n):
        m1 += theoretical[i]
        if observed[i] > 0:
            m2 += observed[i]
        else:
            n_missing += 1

    if n_missing > n * max_missing_fraction:
        return 0.0

    m1 /= n
    m2 /= n

    cov = 0.0
    s1 = 0.0
    s2 = 0.0
    for i in range(n):
        d1 = theoretical[i] - m1
        d2 = observed[i] - m2
        cov += d1 * d2
        s1 += d1 * d1
        s2 += d2 * d2

    if s1 <= 0 or s2 <= 0:
        return 0.0
    if cov < 0:
        return 0.0
    return min(cov / math.sqrt(s1 * s2), 1.0)


@njit(nogil=True)
def _observed_probabilities(observed: np.ndarray) -> np.ndarray:
    """Normalize observed intensities, flooring missing isotopes."""
    n = len(observed)
    total = 0.0
    n_present = 0
    for i in range(n):
        if observed[i] > 0:
            total += observed[i]
            n_present += 1

    prob = np.empty(n, dtype=np.float64)
    if n_present == n:
        for i in range(n):
            prob[i] = observed[i] / total
    else:
        qc = PROBABILITY_FLOOR / n_present
        for i in range(n):
            if observed[i] > 0:
                prob[i] = observed[i] / total - qc
            else:
                prob[i] = PROBABILITY_FLOOR
    return prob


@njit(nogil=True)
def bhattacharyya_distance(pdf: np.ndarray, observed: np.ndarray) -> float:
    """Bhattacharyya distance between a theoretical pdf and observed intensities.

    Returns MAX_BC_DISTANCE when nothing was observed.
    """
    n = len(pdf)
    total = 0.0
    for i in range(n):
        if observed[i] > 0:
            total += observed[i]
    if n == 0 or total <= 0:
        return MAX_BC_DISTANCE

    q = _observed_probabilities(observed)
    bc = 0.0
    for i in range(n):
        if q[i] > 0 and pdf[i] > 0:
            bc += math.sqrt(pdf[i] * q[i])
    if bc <= 0:
        return MAX_BC_DISTANCE
    dist = -math.log(bc)
    return dist if dist > 0 else 0.0


@njit(nogil=True)
def kullback_leibler_divergence(pdf: np.ndarray, observed: np.ndarray) -> float:
    """KL(theoretical || observed) in bits with an epsilon floor for missing isotopes.

    Returns MAX_BC_DISTANCE when nothing was observed.
    """
    n = len(pdf)
    total = 0.0
    for i in range(n):
        if observed[i] > 0:
            total += observed[i]
    if n == 0 or total <= 0:
        return MAX_BC_DISTANCE

    q = _observed_probabilities(observed)
    kl = 0.0
    for i in range(n):
        if pdf[i] > 0 and q[i] > 0:
            kl += pdf[i] * (math.log2(pdf[i]) - math.log2(q[i]))
    return kl


def _rank_descending(values: np.ndarray) -> np.ndarray:
    """1-based rank by decreasing value; ties keep index order."""
    order = np.argsort(-values, kind='stable')
    ranks = np.empty(len(values), dtype=np.int64)
    ranks[order] = np.arange(1, len(values) + 1)
    return ranks


# =============================================================================
# IsotopeList
# =============================================================================


class IsotopeList:
    """Theoretical isotope envelope of a candidate mass, truncated and ranked.

    Parameters
    ----------
    mass : float
        Candidate monoisotopic mass (Da)
    max_isotopes : int
        Keep at most this many isotopes (by theoretical intensity rank)
    relative_threshold : float
        Drop isotopes whose relative height is below this value

    Attributes
    ----------
    index : np.ndarray (int64)
        Isotope offset from the monoisotopic peak per internal position
    ratio : np.ndarray (float64)
        Relative heights (apex = 1.0, not normalized)
    pdf : np.ndarray (float64)
        ``ratio`` normalized to sum 1
    sorted_index_by_intensity : np.ndarray (int64)
        Internal positions ordered by decreasing ratio
    """

    def __init__(self, mass: float, max_isotopes: int = 30, relative_threshold: float = 0.1):
        if not mass > 0:
            raise InvalidInputError(f"Mass must be positive, got {mass}")

        self.mono_mass = float(mass)
        full = np.asarray(get_approximate_envelope(mass), dtype=np.float64)
        rankings = _rank_descending(full)

        keep = (full >= relative_threshold) & (rankings <= max_isotopes)
        if not np.any(keep):
            raise InvalidInputError(
                f"No isotope of mass {mass:.4f} above relative threshold {relative_threshold}"
            )

        self.index = np.flatnonzero(keep).astype(np.int64)
        self.ratio = full[keep].copy()
        self.pdf = self.ratio / self.ratio.sum()
        self.sorted_index_by_intensity = np.argsort(-self.ratio, kind='stable').astype(np.int64)

        self._max_missing_fraction = 0.5 if mass < HIGH_MASS_MISSING_CUTOFF else 0.7
        for arr in (self.index, self.ratio, self.pdf, self.sorted_index_by_intensity):
            arr.setflags(write=False)

    def __len__(self) -> int:
        return len(self.ratio)

    def __repr__(self) -> str:
        return f"IsotopeList(mass={self.mono_mass:.4f}, n_isotopes={len(self)})"

    @property
    def most_abundant_position(self) -> int:
        """Internal position of the most abundant isotope."""
        return int(self.sorted_index_by_intensity[0])

    @property
    def most_abundant_isotope_index(self) -> int:
        """Isotope offset of the most abundant isotope."""
        return int(self.index[self.sorted_index_by_intensity[0]])

    def get_isotope_ranked_at(self, ranking: int):
        """(isotope_index, ratio) of the isotope at 1-based ``ranking``."""
        pos = self.sorted_index_by_intensity[ranking - 1]
        return int(self.index[pos]), float(self.ratio[pos])

    def isotope_mz_array(self, mono_mass: float, charge: int) -> np.ndarray:
        """m/z of every kept isotope at ``charge``."""
        return np.array([isotope_mz(mono_mass, charge, int(i)) for i in self.index])

    @property
    def max_missing_fraction(self) -> float:
        return self._max_missing_fraction

    def get_pearson_correlation(self, observed: np.ndarray) -> float:
        return envelope_pearson_correlation(
            self.ratio, np.asarray(observed, dtype=np.float64), self._max_missing_fraction
        )

    def get_bhattacharyya_distance(self, observed: np.ndarray) -> float:
        return bhattacharyya_distance(self.pdf, np.asarray(observed, dtype=np.float64))

    def get_kullback_leibler_divergence(self, observed: np.ndarray) -> float:
        return kullback_leibler_divergence(self.pdf, np.asarray(observed, dtype=np.float64))
