"""MS1 feature detection for intact proteins.

This module provides:
- m/z-sorted MS1 peak index with binary-search range queries
- Charge x scan feature matrix per candidate mass (parallel over charges)
- Seeded region growing of correlated cells into feature clusters
- Local-background rank-sum / Poisson significance tests
- Cluster scoring, GoodEnough gate and logistic-regression probability
- Cross-mass deduplication with sweep-scoped peak claims
- Mass-bin sweep over a whole run
"""

from .peak_index import (
    PeakIndex,
    search_mz_window,
)

from .feature_matrix import (
    FeatureMatrix,
    MassBinning,
    get_charge_range,
    populate_feature_matrix,
)

from .cluster import (
    FeatureCluster,
    ObservedEnvelope,
    ScoreKind,
)

from .clustering import (
    ClusterFinder,
    extract_xic_profile,
    xic_window,
)

from .significance import (
    LocalWindowSignificanceTester,
    poisson_score,
    rank_sum_score,
)

from .scoring import (
    FeatureScorer,
    LOGISTIC_REGRESSION_BETA,
    is_good_enough,
    logistic_probability,
    xic_correlation_scores,
)

from .deduplication import (
    FeatureDeduplicator,
    PeakClaimTable,
)

from .extraction import (
    Ms1FeatureExtractor,
    SweepSummary,
)

__all__ = [
    # Peak index
    'PeakIndex',
    'search_mz_window',

    # Feature matrix
    'FeatureMatrix',
    'MassBinning',
    'get_charge_range',
    'populate_feature_matrix',

    # Clusters
    'FeatureCluster',
    'ObservedEnvelope',
    'ScoreKind',
    'ClusterFinder',
    'extract_xic_profile',
    'xic_window',

    # Scoring
    'LocalWindowSignificanceTester',
    'poisson_score',
    'rank_sum_score',
    'FeatureScorer',
    'LOGISTIC_REGRESSION_BETA',
    'is_good_enough',
    'logistic_probability',
    'xic_correlation_scores',

    # Deduplication and sweep
    'FeatureDeduplicator',
    'PeakClaimTable',
    'Ms1FeatureExtractor',
    'SweepSummary',
]
