"""Seeded region growing over the charge x scan feature matrix.

Seeds are cells whose envelope correlation reaches ``seed_corr_lower_bound``,
visited best-first (ties broken by row, then column). From each unclaimed
seed, a breadth-first search visits cells within +/-``charge_neighbor_gap``
rows and +/-``scan_neighbor_gap`` columns of the current cell. A neighbour is
added when its accurate mass agrees with the seed's and adding its envelope
improves the running summed envelope (higher correlation or lower
Bhattacharyya distance), or, in the seed's own column, beats the seed
correlation.

Claimed cells are never revisited. When a cluster closes, its whole bounding
box is claimed, so later seeds cannot regrow into it.
"""

from collections import deque
from typing import List, Tuple

import numpy as np

from .cluster import FeatureCluster, ObservedEnvelope
from .feature_matrix import FeatureMatrix


def xic_window(min_col: int, max_col: int, n_scans: int, min_length: int) -> Tuple[int, int]:
    """Pad a column range symmetrically to at least ``min_length`` columns.

    The window is shifted inward when it would cross the first or last column.
    """
    col_len = max_col - min_col + 1
    if col_len >= min_length:
        return min_col, max_col

    pad = int((min_length - col_len) * 0.5)
    min_col = max(min_col - pad, 0)
    if min_col == 0:
        max_col = min(min_length - 1, n_scans - 1)
    else:
        max_col = min(max_col + pad, n_scans - 1)
        if max_col == n_scans - 1:
            min_col = max(max_col - min_length + 1, 0)
    return min_col, max_col


def extract_xic_profile(matrix: FeatureMatrix, cluster: FeatureCluster, min_length: int = 10) -> np.ndarray:
    """Per-column summed intensity of the top-3 theoretical isotopes.

    Sums run over the cluster's charge rows and a column window padded to
    ``min_length``.

    Returns:
        Array of shape (min(3, n_isotopes), n_columns)
    """
    iso = matrix.isotope_list
    min_col, max_col = xic_window(cluster.min_col, cluster.max_col, matrix.n_scans, min_length)
    top = iso.sorted_index_by_intensity[:min(len(iso), 3)]

    block = matrix.envelopes[cluster.min_row:cluster.max_row + 1, min_col:max_col + 1, :]
    return block[:, :, top].sum(axis=0).T.copy()


class ClusterFinder:
    """Groups adjacent, correlated cells of a built ``FeatureMatrix``.

    The claimed grid belongs to one ``find_clusters`` call; nothing is shared
    between queries.

    Parameters
    ----------
    matrix : FeatureMatrix
        Matrix already built for the query mass
    """

    def __init__(self, matrix: FeatureMatrix):
        if matrix.envelopes is None:
            raise ValueError("FeatureMatrix must be built before clustering")
        self.matrix = matrix
        self.params = matrix.params
        self.claimed = np.zeros((max(matrix.n_rows, 0), matrix.n_scans), dtype=np.bool_)

    def get_seed_cells(self) -> List[Tuple[int, int]]:
        """Cells with correlation >= seed bound, best first, ties by (row, col)."""
        corr = self.matrix.correlation
        rows = self.matrix.observed_row_indices
        if len(rows) == 0:
            return []

        sub = corr[rows]
        r_idx, c_idx = np.nonzero(sub >= self.params.seed_corr_lower_bound)
        seed_rows = rows[r_idx]
        values = sub[r_idx, c_idx]
        # lexsort: last key is primary
        order = np.lexsort((c_idx, seed_rows, -values))
        return [(int(seed_rows[i]), int(c_idx[i])) for i in order]

    def make_envelope(self, row: int, col: int) -> ObservedEnvelope:
        """Snapshot the observed envelope of one cell."""
        matrix = self.matrix
        ids = matrix.peak_ids[row, col].copy()
        mz = np.where(ids >= 0, matrix.peak_index.mz[np.maximum(ids, 0)], 0.0)
        return ObservedEnvelope(
            row, col, row + matrix.min_charge,
            matrix.envelopes[row, col].copy(), ids, mz, matrix.isotope_list,
        )

    def find_clusters(self) -> List[FeatureCluster]:
        """Grow clusters from all seeds and keep those above the cutoff."""
        matrix = self.matrix
        params = self.params
        iso = matrix.isotope_list
        tolerance = params.tolerance
        corr = matrix.correlation
        accurate_mass = matrix.accurate_mass
        claimed = self.claimed
        n_scans = matrix.n_scans

        observed = matrix.observed_row_indices
        if len(observed) == 0:
            return []
        first_row, last_row = int(observed[0]), int(observed[-1])

        clusters = []
        for seed_row, seed_col in self.get_seed_cells():
            if claimed[seed_row, seed_col]:
                continue

            seed_mass = accurate_mass[seed_row, seed_col]
            seed_peak = matrix.most_abundant_peak[seed_row, seed_col]
            # Without its most abundant isotope the seed has no accurate mass
            if seed_peak < 0:
                continue

            seed_score = corr[seed_row, seed_col]
            mass_tol = tolerance.get_tolerance_as_da(seed_mass)

            cluster = FeatureCluster(matrix.min_charge, matrix.peak_index.scan_nums, iso)
            seed_envelope = self.make_envelope(seed_row, seed_col)
            cluster.add_member(seed_envelope, seed_score)
            cluster.clustering_score2 = iso.get_bhattacharyya_distance(seed_envelope.intensities)

            queue = deque([(seed_row, seed_col)])
            claimed[seed_row, seed_col] = True

            while queue:
                row, col = queue.popleft()
                for l in range(max(col - params.scan_neighbor_gap, 0),
                               min(col + params.scan_neighbor_gap, n_scans - 1) + 1):
                    dist_from_seed = abs(seed_col - l)
                    for k in range(max(row - params.charge_neighbor_gap, first_row),
                                   min(row + params.charge_neighbor_gap, last_row) + 1):
                        if claimed[k, l]:
                            continue
                        if corr[k, l] < params.seed_corr_lower_bound and dist_from_seed > 1:
                            continue
                        if corr[k, l] < params.near_seed_corr_lower_bound and dist_from_seed < 2:
                            continue
                        if abs(seed_mass - accurate_mass[k, l]) > mass_tol:
                            continue

                        temp = cluster.clustering_envelope + matrix.envelopes[k, l]
                        new_corr = iso.get_pearson_correlation(temp)
                        new_bc = iso.get_bhattacharyya_distance(temp)

                        if (cluster.clustering_score < new_corr
                                or cluster.clustering_score2 > new_bc
                                or (dist_from_seed < 1 and seed_score < new_corr)):
                            queue.append((k, l))
                            cluster.add_member(self.make_envelope(k, l), new_corr)
                            cluster.clustering_score2 = new_bc
                            claimed[k, l] = True

            claimed[cluster.min_row:cluster.max_row + 1, cluster.min_col:cluster.max_col + 1] = True

            if cluster.clustering_score < params.cluster_corr_cutoff:
                continue

            cluster.set_representative(
                seed_mass,
                matrix.peak_index.mz[seed_peak],
                seed_row + matrix.min_charge,
                matrix.peak_index.scan_nums[seed_col],
            )
            cluster.xic_profile = extract_xic_profile(matrix, cluster, params.min_xic_window_length)
            clusters.append(cluster)

        return clusters
