"""MS1 feature extraction for intact proteins.

``Ms1FeatureExtractor`` is the context object of a run: it owns the peak
index, the parameters, the scorer and, during a sweep, the peak claim table.
Every query builds its own feature matrix and claimed grid, so queries never
share mutable state.

Sweep
-----
Candidate-mass bins are processed in increasing mass order, in chunks:

1. Matrix build and region growing per bin (calling thread; the matrix
   kernel is itself parallel over charge rows)
2. Scoring of all clusters of the chunk in a thread pool
3. Deduplication against neighbouring bins and peak claims, sequentially in
   mass order
4. Bins that fell out of the look-back window are flushed to the writer

A failure in one bin is logged and counted; the sweep continues.

Examples
--------
>>> extractor = Ms1FeatureExtractor(run, FeatureFindingParams())
>>> features = extractor.get_probable_features(10234.5)
>>> with FeatureTableWriter("features.tsv") as writer:
...     summary = extractor.run_sweep(3000, 50000, writer)
"""

import logging
import multiprocessing.pool
import os
import time
from dataclasses import dataclass, field
from itertools import chain
from typing import Dict, List, Optional

import numba
import numpy as np

from ..config import FeatureFindingParams
from ..constants import isotope_mz
from ..exceptions import InvalidInputError
from .cluster import FeatureCluster
from .clustering import ClusterFinder
from .deduplication import FeatureDeduplicator, PeakClaimTable
from .feature_matrix import FeatureMatrix, MassBinning
from .peak_index import PeakIndex
from .scoring import FeatureScorer
from .significance import LocalWindowSignificanceTester

logger = logging.getLogger(__name__)

# Bins whose clusters are scored together in one thread-pool pass
SWEEP_CHUNK_BINS = 256


@dataclass
class SweepSummary:
    """Outcome of a mass-bin sweep."""
    n_bins: int = 0
    n_features: int = 0
    n_failed: int = 0
    failed_masses: List[float] = field(default_factory=list)
    elapsed_minutes: float = 0.0


class Ms1FeatureExtractor:
    """Feature finding context for one LC-MS run.

    Parameters
    ----------
    run : InMemoryLcMsRun
        Spectrum source
    params : FeatureFindingParams, optional
        Feature finding parameters (defaults if omitted)
    significance_tester : object, optional
        ``test_significance(isotope_list, envelope) -> (poisson, rank_sum)``;
        a ``LocalWindowSignificanceTester`` over the run by default
    """

    def __init__(self, run, params: Optional[FeatureFindingParams] = None, significance_tester=None):
        self.run = run
        self.params = params or FeatureFindingParams()
        self.peak_index = PeakIndex(run)
        self.mass_binning = MassBinning(self.params.mass_bin_ppm)

        if significance_tester is None:
            significance_tester = LocalWindowSignificanceTester(
                self.peak_index, self.params.tolerance, self.params.significance_window_relative
            )
        self.scorer = FeatureScorer(self.params, significance_tester)
        self.claims: Optional[PeakClaimTable] = None

    @property
    def n_threads(self) -> int:
        return self.params.n_threads or os.cpu_count() or 1

    # -------------------------------------------------------------------------
    # Single-mass queries
    # -------------------------------------------------------------------------

    def _set_kernel_threads(self):
        # numba thread counts are per calling thread
        if self.params.n_threads > 0:
            numba.set_num_threads(min(self.params.n_threads, numba.config.NUMBA_NUM_THREADS))

    def build_matrix(self, query_mass: float) -> FeatureMatrix:
        self._set_kernel_threads()
        matrix = FeatureMatrix(self.peak_index, self.params, self.mass_binning)
        matrix.build(query_mass)
        return matrix

    def find_clusters(self, query_mass: float) -> List[FeatureCluster]:
        """Unscored clusters of ``query_mass`` that passed the correlation cutoff."""
        matrix = self.build_matrix(query_mass)
        return ClusterFinder(matrix).find_clusters()

    def get_all_features(self, query_mass: float) -> List[FeatureCluster]:
        """All scored, active clusters of ``query_mass`` (diagnostics)."""
        clusters = self.find_clusters(query_mass)
        for cluster in clusters:
            self.scorer.score(cluster)
        return [c for c in clusters if c.active]

    def get_probable_features(self, query_mass: float) -> List[FeatureCluster]:
        """Scored clusters with at least one good envelope."""
        return [c for c in self.get_all_features(query_mass) if c.good_envelope_count >= 1]

    def get_probable_features_for_bin(self, bin_num: int) -> List[FeatureCluster]:
        return self.get_probable_features(self.mass_binning.get_mass_average(bin_num))

    # -------------------------------------------------------------------------
    # MS2 association
    # -------------------------------------------------------------------------

    def matching_ms2_scan_nums(self, cluster: FeatureCluster) -> np.ndarray:
        """MS2 scans isolating the feature's most abundant isotope.

        All charges of the search range are tried; only scans strictly inside
        the feature's scan range are kept.
        """
        iso_index = cluster.isotope_list.most_abundant_isotope_index
        found = []
        for charge in range(self.params.min_charge, self.params.max_charge + 1):
            mz = isotope_mz(cluster.representative_mass, charge, iso_index)
            scan_nums = self.run.get_fragmentation_scan_nums(mz)
            found.append(scan_nums[(scan_nums > cluster.min_scan_num) & (scan_nums < cluster.max_scan_num)])
        return np.unique(np.concatenate(found)) if found else np.zeros(0, dtype=np.int64)

    def matching_ms2_scan_nums_for_mass(self, mass: float) -> np.ndarray:
        """MS2 scans matching any probable feature of ``mass``."""
        found = [np.zeros(0, dtype=np.int64)]
        for cluster in self.get_probable_features(mass):
            iso_index = cluster.isotope_list.most_abundant_isotope_index
            for charge in range(cluster.min_charge, cluster.max_charge + 1):
                mz = isotope_mz(mass, charge, iso_index)
                scan_nums = self.run.get_fragmentation_scan_nums(mz)
                found.append(scan_nums[(scan_nums > cluster.min_scan_num) & (scan_nums < cluster.max_scan_num)])
        return np.unique(np.concatenate(found))

    # -------------------------------------------------------------------------
    # Sweep
    # -------------------------------------------------------------------------

    def _score_safely(self, cluster: FeatureCluster) -> Optional[Exception]:
        try:
            self.scorer.score(cluster)
        except Exception as e:
            return e
        return None

    def _score_clusters(self, clusters: List[FeatureCluster]) -> List[Optional[Exception]]:
        if self.n_threads == 1 or len(clusters) < 2:
            return [self._score_safely(c) for c in clusters]
        with multiprocessing.pool.ThreadPool(self.n_threads) as pool:
            return pool.map(self._score_safely, clusters)

    def _neighbor_bins(self, bin_num: int, min_bin: int, max_bin: int) -> List[int]:
        neighbors = []
        if bin_num > min_bin:
            neighbors.append(bin_num - 1)
        if bin_num < max_bin:
            neighbors.append(bin_num + 1)
        if self.params.mass_collapse:
            mass = self.mass_binning.get_mass_average(bin_num)
            for offset in (-2, -1, 1, 2):
                nb_bin = self.mass_binning.get_bin_number(mass + offset)
                if min_bin <= nb_bin <= max_bin:
                    neighbors.append(nb_bin)
        return neighbors

    def _flush(self, bin_clusters: Dict[int, List[FeatureCluster]], end_bin: int, writer) -> int:
        """Write accepted features of all bins <= ``end_bin`` and drop them."""
        threshold = self.params.probability_threshold
        n_written = 0
        for bin_num in sorted(b for b in bin_clusters if b <= end_bin):
            for cluster in bin_clusters.pop(bin_num):
                if not cluster.active:
                    continue
                if cluster.good_enough or cluster.probability > threshold:
                    cluster.update_abundance(self.claims)
                    cluster.expand_elution_range(self.run)
                    writer.write(cluster)
                    n_written += 1
        return n_written

    def run_sweep(self, min_mass: float, max_mass: float, writer) -> SweepSummary:
        """Extract features of every candidate-mass bin in ``[min_mass, max_mass]``.

        Parameters
        ----------
        min_mass, max_mass : float
            Mass range (Da)
        writer : object
            Receives accepted features through ``write(cluster)``

        Returns
        -------
        summary : SweepSummary
        """
        if not 0 < min_mass <= max_mass:
            raise InvalidInputError(f"Invalid mass range [{min_mass}, {max_mass}]")

        params = self.params
        binning = self.mass_binning
        min_bin = binning.get_bin_number(min_mass)
        max_bin = binning.get_bin_number(max_mass)
        total_bins = max_bin - min_bin + 1

        self.claims = PeakClaimTable(len(self.peak_index))
        deduplicator = FeatureDeduplicator(params.tolerance, params.mass_collapse, self.claims)
        bin_clusters: Dict[int, List[FeatureCluster]] = {}
        summary = SweepSummary()
        start_time = time.perf_counter()

        logger.info(
            f"Extracting MS1 features: {min_mass:.1f}-{max_mass:.1f} Da, {total_bins:,} mass bins"
        )

        for chunk_start in range(min_bin, max_bin + 1, SWEEP_CHUNK_BINS):
            chunk = range(chunk_start, min(chunk_start + SWEEP_CHUNK_BINS, max_bin + 1))

            found: Dict[int, List[FeatureCluster]] = {}
            for bin_num in chunk:
                mass = binning.get_mass_average(bin_num)
                try:
                    found[bin_num] = self.find_clusters(mass)
                except Exception as e:
                    logger.warning(f"Skipping mass bin {bin_num} ({mass:.4f} Da): {e!r}")
                    summary.n_failed += 1
                    summary.failed_masses.append(mass)

            tasks = [(b, c) for b in chunk if b in found for c in found[b]]
            errors = self._score_clusters([c for _, c in tasks])
            for (bin_num, _), error in zip(tasks, errors):
                if error is not None and bin_num in found:
                    mass = binning.get_mass_average(bin_num)
                    logger.warning(f"Skipping mass bin {bin_num} ({mass:.4f} Da): {error!r}")
                    del found[bin_num]
                    summary.n_failed += 1
                    summary.failed_masses.append(mass)

            for bin_num in chunk:
                summary.n_bins += 1
                accepted = []
                for cluster in found.get(bin_num, []):
                    if cluster.probability < params.probability_threshold and not cluster.good_enough:
                        continue
                    neighbors = self._neighbor_bins(bin_num, min_bin, max_bin)
                    deduplicator.merge(cluster, chain.from_iterable(bin_clusters.get(b, []) for b in neighbors))
                    accepted.append(cluster)
                    bin_clusters.setdefault(bin_num, []).append(cluster)
                for cluster in accepted:
                    if cluster.active:
                        self.claims.claim(cluster, cluster.major_peaks())

                processed = bin_num - min_bin
                if processed > 0 and processed % params.flush_interval_bins == 0:
                    elapsed = (time.perf_counter() - start_time) / 60.0
                    remaining = (total_bins - processed) * (elapsed / processed)
                    logger.info(
                        f"Processed {processed:,}/{total_bins:,} mass bins "
                        f"({binning.get_mass_end(bin_num):.1f} Da); "
                        f"Elapsed {elapsed:.1f} min; Remaining {remaining:.1f} min"
                    )
                    flush_mass = binning.get_mass_start(bin_num) - params.look_back_da
                    if flush_mass > 0:
                        flush_bin = binning.get_bin_number(flush_mass)
                        summary.n_features += self._flush(bin_clusters, flush_bin, writer)

        summary.n_features += self._flush(bin_clusters, max_bin, writer)
        summary.elapsed_minutes = (time.perf_counter() - start_time) / 60.0

        logger.info(
            f"Extraction completed: {summary.n_bins:,} mass bins, "
            f"{summary.n_features:,} features, {summary.n_failed:,} failed bins; "
            f"Elapsed {summary.elapsed_minutes:.1f} min"
        )
        return summary

    def generate_feature_file(self, output_path, min_mass: float = 3000.0, max_mass: float = 50000.0) -> SweepSummary:
        """Run a sweep and write accepted features to a TSV feature table."""
        from ..io.feature_table import FeatureTableWriter

        with FeatureTableWriter(output_path) as writer:
            return self.run_sweep(min_mass, max_mass, writer)
