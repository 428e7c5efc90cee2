"""Cluster scoring: envelope statistics, GoodEnough gate and probability.

For every member envelope of a cluster the scorer computes the envelope
correlation, the Bhattacharyya distance and the local significance scores.
Members that pass mass-dependent quality thresholds and both significance
tests are "good" envelopes; only they contribute to the best-member scores
and to the choice of the representative envelope (lowest distance).

Cluster-level scores
--------------------
- Best member correlation / distance / rank-sum / Poisson / KL
- Summed envelope scores (greedy distance pass and greedy correlation pass)
- Distances of envelopes summed per scan column and per charge row
- Even / odd charge distances and the abundance CV over charges
- m/z error of member peaks against the representative mass
- XIC correlation between the top-3 isotopes (1 - r, lower is better)

Two independent accept signals are derived: the deterministic ``GoodEnough``
decision tree and a logistic-regression probability with fixed coefficients.

Examples
--------
>>> scorer = FeatureScorer(params, LocalWindowSignificanceTester(index, params.tolerance))
>>> scorer.score(cluster)
>>> print(f"{cluster.probability:.3f} {cluster.good_enough}")
"""

import math
from typing import Tuple

import numpy as np
from numba import njit

from ..config import FeatureFindingParams
from ..constants import MAX_BC_DISTANCE, isotope_mz, mono_mass_from_mz
from .cluster import N_REGRESSION_SCORES, FeatureCluster, ScoreKind

# Intercept first, then one coefficient per regression score kind
LOGISTIC_REGRESSION_BETA = np.array([
    -13.2533634280100,
    -1.15180441819635,
    12.7696665111291,
    0.0252168712214531,
    0.0345913636891164,
    -6.70169446935268,
    0.594148009986426,
    -2.54090490836123,
    -15.7574867934127,
    -3.96462362695165,
    -6.84017486290071,
    0.697533501805824,
    0.282385690399132,
    -3.98134292531727,
    -12.6184672341575,
    1.04475408931452,
])

# Initial (worst) m/z error; also reported when no peak pair was measured
MZ_ERROR_SENTINEL = 10.0

# Envelope-level flag used for peak claims
GOOD_ENVELOPE_CORRELATION = 0.6
GOOD_ENVELOPE_DISTANCE = 0.2


@njit(nogil=True)
def pairwise_xic_correlations(profile: np.ndarray) -> np.ndarray:
    """Pearson r of every pair of isotope XICs.

    Parameters
    ----------
    profile : np.ndarray
        (n_isotopes, n_columns) float64 intensity matrix, one XIC per row

    Returns
    -------
    np.ndarray
        r for pairs (0, 1), (0, 2), ..., (n-2, n-1); 0 where a XIC is flat
    """
    n_iso, n_col = profile.shape
    centered = np.zeros((n_iso, n_col))
    norms = np.zeros(n_iso)
    for i in range(n_iso):
        mean = 0.0
        for j in range(n_col):
            mean += profile[i, j]
        mean /= max(n_col, 1)
        ss = 0.0
        for j in range(n_col):
            centered[i, j] = profile[i, j] - mean
            ss += centered[i, j] * centered[i, j]
        norms[i] = np.sqrt(ss)

    out = np.zeros(n_iso * (n_iso - 1) // 2)
    k = 0
    for a in range(n_iso):
        for b in range(a + 1, n_iso):
            denominator = norms[a] * norms[b]
            if denominator >= 1e-9:
                numerator = 0.0
                for j in range(n_col):
                    numerator += centered[a, j] * centered[b, j]
                out[k] = max(-1.0, min(1.0, numerator / denominator))
            k += 1
    return out


def xic_correlation_scores(profile: np.ndarray) -> Tuple[float, float]:
    """(1 - mean r, 1 - max r) over pairwise XIC correlations of the top isotopes."""
    if profile is None or len(profile) < 2:
        return 1.0, 1.0
    r = pairwise_xic_correlations(np.ascontiguousarray(profile, dtype=np.float64))
    return 1.0 - float(np.mean(r)), 1.0 - float(np.max(r))


def good_envelope_thresholds(mass: float) -> Tuple[float, float]:
    """(min correlation, max distance) of a good envelope at ``mass``."""
    if mass < 15000:
        return 0.6, 0.25
    elif mass < 25000:
        return 0.4, 0.3
    return 0.3, 0.3


def logistic_probability(scores: np.ndarray) -> float:
    """sigmoid(beta0 + sum_i beta_{i+1} * score_i) over the regression scores."""
    eta = LOGISTIC_REGRESSION_BETA[0] + float(
        np.dot(scores[:N_REGRESSION_SCORES], LOGISTIC_REGRESSION_BETA[1:])
    )
    # Numerically stable sigmoid
    if eta >= 0:
        return 1.0 / (1.0 + math.exp(-eta))
    z = math.exp(eta)
    return z / (1.0 + z)


def is_good_enough(cluster: FeatureCluster, log_p_threshold: float) -> bool:
    """Deterministic accept gate; thresholds tighten for lower masses."""
    if cluster.good_envelope_count < 1:
        return False

    s = cluster.scores
    if s[ScoreKind.RANK_SUM] < log_p_threshold:
        return False
    if s[ScoreKind.POISSON] < log_p_threshold:
        return False

    mass = cluster.representative_mass
    even = s[ScoreKind.BHATTACHARYYA_DISTANCE_SUMMED_OVER_EVEN_CHARGES]
    odd = s[ScoreKind.BHATTACHARYYA_DISTANCE_SUMMED_OVER_ODD_CHARGES]
    abundance_changes = s[ScoreKind.ABUNDANCE_CHANGES_OVER_CHARGES]

    if mass < 8000:
        if even > 0.2 or odd > 0.15 or abundance_changes > 1.75:
            return False
    elif mass < 15000:
        if even > 0.1 or odd > 0.08 or abundance_changes > 1.5:
            return False
    else:
        if even > 0.1 or odd > 0.08 or abundance_changes > 1.3:
            return False

    if mass < 15000:
        limits = (0.6, 0.83, 0.15, 0.04, 0.08, 0.1, 0.2, 0.15, 3.0, 6.0)
    else:
        limits = (0.3, 0.9, 0.3, 0.02, 0.06, 0.07, 0.4, 0.25, 4.0, 6.0)
    (min_corr, min_corr_summed, max_bc, max_bc_summed, max_bc_charges,
     max_bc_times, max_xic_mean, max_xic_min, max_mz_error, max_total_mz_error) = limits

    if s[ScoreKind.ENVELOPE_CORRELATION] < min_corr:
        return False
    if s[ScoreKind.ENVELOPE_CORRELATION_SUMMED] < min_corr_summed:
        return False
    if s[ScoreKind.BHATTACHARYYA_DISTANCE] > max_bc:
        return False
    if s[ScoreKind.BHATTACHARYYA_DISTANCE_SUMMED] > max_bc_summed:
        return False
    if s[ScoreKind.BHATTACHARYYA_DISTANCE_SUMMED_OVER_CHARGES] > max_bc_charges:
        return False
    if s[ScoreKind.BHATTACHARYYA_DISTANCE_SUMMED_OVER_TIMES] > max_bc_times:
        return False
    if s[ScoreKind.XIC_CORR_MEAN] > max_xic_mean:
        return False
    if s[ScoreKind.XIC_CORR_MIN] > max_xic_min:
        return False
    if s[ScoreKind.MZ_ERROR] > max_mz_error:
        return False
    if s[ScoreKind.TOTAL_MZ_ERROR] > max_total_mz_error:
        return False
    return True


class FeatureScorer:
    """Computes the score vector, probability and GoodEnough flag of clusters.

    Scoring a cluster only reads shared data (isotope list, spectra), so
    different clusters can be scored concurrently.

    Parameters
    ----------
    params : FeatureFindingParams
        Feature finding parameters
    significance_tester : object
        Provides ``test_significance(isotope_list, envelope) -> (poisson, rank_sum)``
    """

    def __init__(self, params: FeatureFindingParams, significance_tester):
        self.params = params
        self.significance_tester = significance_tester
        self.log_p_threshold = params.log_p_threshold

    def score(self, cluster: FeatureCluster):
        """Fill ``cluster.scores``, ``probability`` and ``good_enough`` in place."""
        cluster.scored = True
        cluster.probability = 0.0
        cluster.good_enough = False
        cluster.good_envelope_count = 0
        if not cluster.members:
            return

        iso = cluster.isotope_list
        n_iso = len(iso)
        log_p = self.log_p_threshold
        corr_th, bc_th = good_envelope_thresholds(cluster.representative_mass)

        envelope_per_time = np.zeros((cluster.column_length, n_iso))
        envelope_per_charge = np.zeros((cluster.charge_length, n_iso))
        member_corr = np.zeros(len(cluster.members))
        member_bc = np.zeros(len(cluster.members))

        best_corr = 0.0
        best_bc = 1.0
        best_rank_sum = 1.0
        best_poisson = 1.0
        best_kl = MAX_BC_DISTANCE
        rep_envelope = None

        for e, envelope in enumerate(cluster.members):
            poisson, rank_sum = self.significance_tester.test_significance(iso, envelope)
            env_corr = iso.get_pearson_correlation(envelope.intensities)
            bc = iso.get_bhattacharyya_distance(envelope.intensities)

            envelope_per_time[envelope.col - cluster.min_col] += envelope.intensities
            envelope_per_charge[envelope.charge - cluster.min_charge] += envelope.intensities

            if env_corr > corr_th and bc < bc_th and poisson > log_p and rank_sum > log_p:
                envelope.good_enough = (
                    env_corr > GOOD_ENVELOPE_CORRELATION and bc < GOOD_ENVELOPE_DISTANCE
                )
                cluster.good_envelope_count += 1

                best_poisson = max(best_poisson, poisson)
                best_rank_sum = max(best_rank_sum, rank_sum)
                best_corr = max(best_corr, env_corr)
                best_kl = min(best_kl, iso.get_kullback_leibler_divergence(envelope.intensities))
                if bc < best_bc:
                    best_bc = bc
                    rep_envelope = envelope
            else:
                envelope.good_enough = False

            member_corr[e] = env_corr
            member_bc[e] = bc

        if cluster.good_envelope_count < 1 or rep_envelope is None:
            return

        # Representative = best-distance good envelope, at its reference isotope
        ref = rep_envelope.ref_position
        rep_mz = float(rep_envelope.peak_mz[ref])
        cluster.set_representative(
            mono_mass_from_mz(rep_mz, rep_envelope.charge, int(iso.index[ref])),
            rep_mz,
            rep_envelope.charge,
            cluster.scan_nums[rep_envelope.col],
        )

        self._set_charge_and_time_scores(cluster, envelope_per_time, envelope_per_charge)
        self._set_mz_error_scores(cluster, member_corr, member_bc)

        cluster.set_score(ScoreKind.ENVELOPE_CORRELATION, best_corr)
        cluster.set_score(ScoreKind.RANK_SUM, best_rank_sum)
        cluster.set_score(ScoreKind.POISSON, best_poisson)
        cluster.set_score(ScoreKind.BHATTACHARYYA_DISTANCE, best_bc)
        cluster.set_score(ScoreKind.KULLBACK_LEIBLER_DIVERGENCE, best_kl)

        self._set_summed_envelope(cluster, member_corr, member_bc)
        cluster.set_score(
            ScoreKind.KULLBACK_LEIBLER_DIVERGENCE_SUMMED,
            iso.get_kullback_leibler_divergence(cluster.summed_envelope),
        )

        xic_mean, xic_min = xic_correlation_scores(cluster.xic_profile)
        cluster.set_score(ScoreKind.XIC_CORR_MEAN, xic_mean)
        cluster.set_score(ScoreKind.XIC_CORR_MIN, xic_min)

        cluster.probability = logistic_probability(cluster.scores)
        cluster.good_enough = is_good_enough(cluster, log_p)

    def _set_charge_and_time_scores(self, cluster, envelope_per_time, envelope_per_charge):
        iso = cluster.isotope_list

        best_bc_per_time = MAX_BC_DISTANCE
        for env in envelope_per_time:
            best_bc_per_time = min(best_bc_per_time, iso.get_bhattacharyya_distance(env))

        best_bc_per_charge = MAX_BC_DISTANCE
        best_bc_even = MAX_BC_DISTANCE
        best_bc_odd = MAX_BC_DISTANCE
        for i, env in enumerate(envelope_per_charge):
            bc = iso.get_bhattacharyya_distance(env)
            best_bc_per_charge = min(best_bc_per_charge, bc)
            if (cluster.min_charge + i) % 2 == 0:
                best_bc_even = min(best_bc_even, bc)
            else:
                best_bc_odd = min(best_bc_odd, bc)

        if len(envelope_per_charge) > 1:
            abundance_per_charge = envelope_per_charge.sum(axis=1)
            mean = abundance_per_charge.mean()
            cv = abundance_per_charge.std(ddof=1) / mean if mean > 0 else 0.0
            cluster.set_score(ScoreKind.ABUNDANCE_CHANGES_OVER_CHARGES, cv)
            cluster.set_score(ScoreKind.BHATTACHARYYA_DISTANCE_SUMMED_OVER_EVEN_CHARGES, best_bc_even)
            cluster.set_score(ScoreKind.BHATTACHARYYA_DISTANCE_SUMMED_OVER_ODD_CHARGES, best_bc_odd)
        else:
            cluster.set_score(ScoreKind.ABUNDANCE_CHANGES_OVER_CHARGES, 0.0)
            cluster.set_score(ScoreKind.BHATTACHARYYA_DISTANCE_SUMMED_OVER_EVEN_CHARGES, best_bc_per_charge)
            cluster.set_score(ScoreKind.BHATTACHARYYA_DISTANCE_SUMMED_OVER_ODD_CHARGES, best_bc_per_charge)

        cluster.set_score(ScoreKind.BHATTACHARYYA_DISTANCE_SUMMED_OVER_CHARGES, best_bc_per_charge)
        cluster.set_score(ScoreKind.BHATTACHARYYA_DISTANCE_SUMMED_OVER_TIMES, best_bc_per_time)

    def _set_mz_error_scores(self, cluster, member_corr, member_bc):
        iso = cluster.isotope_list
        best_error = MZ_ERROR_SENTINEL
        total_error = 0.0
        total_pairs = 0

        for i, envelope in enumerate(cluster.members):
            if member_bc[i] > 0.3 and member_corr[i] < 0.5:
                continue
            error = 0.0
            n = 0
            for pos, _, mz, _ in envelope.iter_peaks():
                theoretical_mz = isotope_mz(cluster.representative_mass, envelope.charge, int(iso.index[pos]))
                error += abs(mz - theoretical_mz) * 1e6 / theoretical_mz
                n += 1
            if n == 0:
                continue
            total_error += error
            total_pairs += n
            best_error = min(best_error, error / n)

        cluster.set_score(ScoreKind.MZ_ERROR, best_error)
        cluster.set_score(
            ScoreKind.TOTAL_MZ_ERROR,
            total_error / total_pairs if total_pairs > 0 else MZ_ERROR_SENTINEL,
        )

    def _set_summed_envelope(self, cluster, member_corr, member_bc):
        """Greedy summed envelopes; the stored envelope is the correlation pass."""
        iso = cluster.isotope_list
        members = cluster.members

        if len(members) == 1:
            cluster.summed_envelope = members[0].intensities.copy()
            cluster.set_score(
                ScoreKind.BHATTACHARYYA_DISTANCE_SUMMED,
                cluster.get_score(ScoreKind.BHATTACHARYYA_DISTANCE),
            )
            cluster.set_score(
                ScoreKind.ENVELOPE_CORRELATION_SUMMED,
                cluster.get_score(ScoreKind.ENVELOPE_CORRELATION),
            )
            return

        # Distance pass: ascending member distance, skip additions that hurt
        summed = np.zeros(len(iso))
        summed_bc = math.inf
        for j in np.argsort(member_bc, kind='stable'):
            temp = summed + members[j].intensities
            temp_bc = iso.get_bhattacharyya_distance(temp)
            if temp_bc > summed_bc:
                continue
            summed_bc = temp_bc
            summed = temp
        cluster.set_score(ScoreKind.BHATTACHARYYA_DISTANCE_SUMMED, summed_bc)

        # Correlation pass: descending member correlation
        summed = np.zeros(len(iso))
        summed_corr = 0.0
        for j in np.argsort(-member_corr, kind='stable'):
            temp = summed + members[j].intensities
            temp_corr = iso.get_pearson_correlation(temp)
            if temp_corr < summed_corr:
                continue
            summed_corr = temp_corr
            summed = temp
        cluster.set_score(ScoreKind.ENVELOPE_CORRELATION_SUMMED, summed_corr)
        cluster.summed_envelope = summed
