"""Cross-mass deduplication of feature clusters and peak ownership.

The same molecule is found again at neighbouring candidate masses (adjacent
mass bins, and with isotope mis-assignment also at +/-1 and +/-2 Da). Two
clusters are duplicates when their charge/scan bounding boxes overlap and
their representative masses agree within tolerance. The more probable one
survives and takes the union of both bounding boxes.

Peak ownership is tracked in a ``PeakClaimTable`` scoped to one sweep: a
peak belongs to at most one cluster, a claim only succeeds on unclaimed
peaks, and a deactivated cluster hands its peaks to the cluster that
replaced it.
"""

import logging
import threading
from typing import Dict, Iterable, List, Optional

import numpy as np

from ..tolerance import Tolerance
from .cluster import FeatureCluster

logger = logging.getLogger(__name__)

UNCLAIMED = -1


class PeakClaimTable:
    """Owner of every peak of a ``PeakIndex`` during one sweep.

    All operations hold an internal lock, so claims are atomic with respect
    to each other.

    Parameters
    ----------
    n_peaks : int
        Number of peaks in the index
    """

    def __init__(self, n_peaks: int):
        self._owner = np.full(n_peaks, UNCLAIMED, dtype=np.int64)
        self._keys: Dict[int, int] = {}
        self._clusters: List[FeatureCluster] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._owner)

    def _key(self, cluster: FeatureCluster) -> int:
        key = self._keys.get(id(cluster))
        if key is None:
            key = len(self._clusters)
            # Holding the cluster keeps id() unique for the table's lifetime
            self._clusters.append(cluster)
            self._keys[id(cluster)] = key
        return key

    @property
    def n_claimed(self) -> int:
        return int(np.count_nonzero(self._owner != UNCLAIMED))

    def claim(self, cluster: FeatureCluster, peak_ids: Iterable[int]) -> int:
        """Give every unclaimed peak of ``peak_ids`` to ``cluster``.

        Returns:
            Number of peaks newly claimed
        """
        ids = np.fromiter(peak_ids, dtype=np.int64)
        with self._lock:
            key = self._key(cluster)
            if len(ids) == 0:
                return 0
            free = ids[self._owner[ids] == UNCLAIMED]
            free = np.unique(free)
            self._owner[free] = key
            return len(free)

    def release(self, cluster: FeatureCluster) -> int:
        """Drop all claims of ``cluster``; returns the number released."""
        with self._lock:
            key = self._keys.get(id(cluster))
            if key is None:
                return 0
            mask = self._owner == key
            self._owner[mask] = UNCLAIMED
            return int(mask.sum())

    def transfer(self, source: FeatureCluster, target: FeatureCluster) -> int:
        """Move all peaks owned by ``source`` to ``target``."""
        with self._lock:
            source_key = self._keys.get(id(source))
            if source_key is None:
                return 0
            target_key = self._key(target)
            mask = self._owner == source_key
            self._owner[mask] = target_key
            return int(mask.sum())

    def owner_of(self, peak_id: int) -> Optional[FeatureCluster]:
        key = self._owner[peak_id]
        return None if key == UNCLAIMED else self._clusters[key]

    def is_available_to(self, peak_id: int, cluster: FeatureCluster) -> bool:
        """True if the peak is unclaimed or owned by ``cluster``."""
        owner = self.owner_of(peak_id)
        return owner is None or owner is cluster

    def peaks_of(self, cluster: FeatureCluster) -> np.ndarray:
        key = self._keys.get(id(cluster))
        if key is None:
            return np.zeros(0, dtype=np.int64)
        return np.flatnonzero(self._owner == key)


class FeatureDeduplicator:
    """Merges clusters found for neighbouring candidate masses.

    Parameters
    ----------
    tolerance : Tolerance
        Mass agreement tolerance
    mass_collapse : bool
        Also treat masses 1 or 2 Da apart as the same feature
    claims : PeakClaimTable, optional
        Peak ownership moved from deactivated clusters to survivors
    """

    def __init__(self, tolerance: Tolerance, mass_collapse: bool = False,
                 claims: Optional[PeakClaimTable] = None):
        self.tolerance = tolerance
        self.mass_collapse = mass_collapse
        self.claims = claims

    def is_duplicate(self, cluster: FeatureCluster, neighbor: FeatureCluster) -> bool:
        if not neighbor.overlaps(cluster):
            return False
        mass_tol = self.tolerance.get_tolerance_as_da(cluster.representative_mass)
        mass_diff = abs(neighbor.representative_mass - cluster.representative_mass)
        if mass_diff < mass_tol:
            return True
        return self.mass_collapse and (
            abs(mass_diff - 1) < mass_tol or abs(mass_diff - 2) < mass_tol
        )

    def merge(self, cluster: FeatureCluster, neighbor_clusters: Iterable[FeatureCluster]) -> bool:
        """Resolve ``cluster`` against already accepted neighbours.

        Stops at the first duplicate. If that neighbour is active, the more
        probable of the two stays active and absorbs the other's bounding box
        (ties keep ``cluster``). If it was already deactivated, ``cluster``
        stays active.

        Returns:
            True if a duplicate was found
        """
        for neighbor in neighbor_clusters:
            if not self.is_duplicate(cluster, neighbor):
                continue

            if neighbor.active:
                if neighbor.probability > cluster.probability:
                    self._deactivate(cluster, neighbor)
                else:
                    self._deactivate(neighbor, cluster)
            else:
                cluster.active = True
            return True
        return False

    def _deactivate(self, loser: FeatureCluster, survivor: FeatureCluster):
        loser.active = False
        survivor.active = True
        survivor.merge(loser)
        if self.claims is not None:
            moved = self.claims.transfer(loser, survivor)
            logger.debug(f"Merged {loser} into {survivor} ({moved} peaks transferred)")
