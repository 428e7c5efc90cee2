"""Theoretical isotope envelopes of intact proteins.

This module provides:
- Averagine isotope distributions cached per nominal mass
- Truncated, ranked isotope lists for candidate masses
- Envelope similarity metrics (Pearson, Bhattacharyya, Kullback-Leibler)
"""

from .averagine import (
    averagine_composition,
    clear_envelope_cache,
    compute_isotope_distribution,
    get_approximate_envelope,
)

from .envelope import (
    IsotopeList,
    bhattacharyya_distance,
    envelope_pearson_correlation,
    kullback_leibler_divergence,
)

__all__ = [
    # Averagine
    'averagine_composition',
    'clear_envelope_cache',
    'compute_isotope_distribution',
    'get_approximate_envelope',

    # Envelope metrics
    'IsotopeList',
    'bhattacharyya_distance',
    'envelope_pearson_correlation',
    'kullback_leibler_divergence',
]
