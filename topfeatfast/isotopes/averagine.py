"""Averagine isotope envelopes for intact proteins.

The expected isotope distribution of a protein of unknown sequence is computed
from the averagine composition scaled to the query mass. Each element's heavy
isotopes (+1, +2, +3 Da) are modeled as independent Poisson counts, so the
probability of isotope k is

    P(k) = sum over n1 + 2*n2 + 3*n3 = k of  Pois(mu1, n1) Pois(mu2, n2) Pois(mu3, n3)

with mu_j = sum over elements of count * P(element, +j).

Envelopes are cached per nominal mass: all masses rounding to the same
nominal mass share one envelope.
"""

import logging
import math
import threading
from typing import Dict

import numpy as np
from numba import njit

from ..constants import (
    AVERAGINE_COMPOSITION,
    AVERAGINE_MASS,
    ELEMENT_ISOTOPE_PROBABILITIES,
    ISOTOPE_RELATIVE_INTENSITY_THRESHOLD,
    MAX_NUM_ISOTOPES,
    RESCALING_CONSTANT,
    nominal_mass,
)
from ..exceptions import InvalidInputError, IsotopeModelError

logger = logging.getLogger(__name__)


@njit
def _poisson_pmf(mean: float, n: int) -> float:
    if mean <= 0.0:
        return 1.0 if n == 0 else 0.0
    return math.exp(n * math.log(mean) - mean - math.lgamma(n + 1.0))


@njit
def compute_isotope_distribution(
    element_counts: np.ndarray,
    isotope_probabilities: np.ndarray,
    max_num_isotopes: int = MAX_NUM_ISOTOPES,
    relative_threshold: float = ISOTOPE_RELATIVE_INTENSITY_THRESHOLD,
) -> np.ndarray:
    """Isotope envelope of a composition, scaled so the apex is 1.0.

    Computation stops at the first isotope after the apex whose height is
    below ``relative_threshold * apex`` (that isotope is not included), or
    after ``max_num_isotopes`` isotopes.

    Parameters
    ----------
    element_counts : np.ndarray (float64)
        Atom counts per element, rows matching ``isotope_probabilities``
    isotope_probabilities : np.ndarray (float64, shape (n_elements, 4))
        Isotope probabilities for +0, +1, +2, +3 Da
    max_num_isotopes : int
        Hard cap on the envelope length
    relative_threshold : float
        Truncation threshold relative to the apex

    Returns
    -------
    envelope : np.ndarray (float64)
        Relative heights; may contain inf/nan for pathological inputs
    """
    means = np.zeros(4, dtype=np.float64)
    for j in range(1, 4):
        for e in range(len(element_counts)):
            means[j] += element_counts[e] * isotope_probabilities[e, j]

    dist = np.zeros(max_num_isotopes, dtype=np.float64)
    max_height = 0.0
    n_isotopes = 0
    while n_isotopes < max_num_isotopes:
        k = n_isotopes
        total = 0.0
        for n3 in range(k // 3 + 1):
            p3 = _poisson_pmf(means[3], n3)
            rest = k - 3 * n3
            for n2 in range(rest // 2 + 1):
                n1 = rest - 2 * n2
                total += _poisson_pmf(means[1], n1) * _poisson_pmf(means[2], n2) * p3
        dist[k] = total

        if not np.isfinite(total):
            n_isotopes += 1
            break
        if total > max_height:
            max_height = total
        elif total < max_height * relative_threshold:
            break
        n_isotopes += 1

    result = np.empty(n_isotopes, dtype=np.float64)
    for i in range(n_isotopes):
        result[i] = dist[i] / max_height
    return result


def averagine_composition(mass: float) -> np.ndarray:
    """Element counts (C, H, N, O, S) of an averagine molecule of ``mass``."""
    n_residues = mass / AVERAGINE_MASS
    return np.round(AVERAGINE_COMPOSITION * n_residues)


_envelope_cache: Dict[int, np.ndarray] = {}
_cache_lock = threading.Lock()


def get_approximate_envelope(mass: float) -> np.ndarray:
    """Theoretical isotope envelope of ``mass`` (apex-normalized heights).

    Envelopes are cached per nominal mass and computed from the nominal mass
    itself, so the result does not depend on query order.

    Raises:
        InvalidInputError: mass <= 0
        IsotopeModelError: the envelope contains inf or NaN
    """
    if not mass > 0:
        raise InvalidInputError(f"Mass must be positive, got {mass}")

    key = nominal_mass(mass)
    with _cache_lock:
        cached = _envelope_cache.get(key)
    if cached is not None:
        return cached

    counts = averagine_composition(key / RESCALING_CONSTANT)
    envelope = compute_isotope_distribution(counts, ELEMENT_ISOTOPE_PROBABILITIES)
    if len(envelope) == 0 or not np.all(np.isfinite(envelope)):
        raise IsotopeModelError(f"Non-finite isotope envelope for mass {mass:.4f}")

    envelope.setflags(write=False)
    with _cache_lock:
        envelope = _envelope_cache.setdefault(key, envelope)
    return envelope


def clear_envelope_cache():
    with _cache_lock:
        n = len(_envelope_cache)
        _envelope_cache.clear()
    logger.debug(f"Cleared {n} cached isotope envelopes")
