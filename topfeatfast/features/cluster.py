"""Feature clusters: charge x scan regions of one candidate mass.

A ``FeatureCluster`` is a candidate molecular feature. It owns the observed
isotope envelopes of its member cells, keeps its charge/scan bounding box up
to date as members are added, and carries the score vector filled in by
``FeatureScorer``.
"""

from enum import IntEnum
from typing import Iterator, List, Optional, Tuple

import numpy as np

from ..isotopes.envelope import IsotopeList


class ScoreKind(IntEnum):
    """Score vector layout.

    The first 15 kinds are the logistic-regression features, in coefficient
    order. The Kullback-Leibler kinds are reported but not used by the model.
    """
    ENVELOPE_CORRELATION = 0
    ENVELOPE_CORRELATION_SUMMED = 1
    RANK_SUM = 2
    POISSON = 3
    BHATTACHARYYA_DISTANCE = 4
    BHATTACHARYYA_DISTANCE_SUMMED = 5
    BHATTACHARYYA_DISTANCE_SUMMED_OVER_CHARGES = 6
    BHATTACHARYYA_DISTANCE_SUMMED_OVER_TIMES = 7
    XIC_CORR_MEAN = 8
    XIC_CORR_MIN = 9
    MZ_ERROR = 10
    TOTAL_MZ_ERROR = 11
    BHATTACHARYYA_DISTANCE_SUMMED_OVER_EVEN_CHARGES = 12
    BHATTACHARYYA_DISTANCE_SUMMED_OVER_ODD_CHARGES = 13
    ABUNDANCE_CHANGES_OVER_CHARGES = 14
    KULLBACK_LEIBLER_DIVERGENCE = 15
    KULLBACK_LEIBLER_DIVERGENCE_SUMMED = 16

    @property
    def column_name(self) -> str:
        """CamelCase name used in feature tables."""
        return ''.join(part.capitalize() for part in self.name.split('_'))


N_SCORE_KINDS = len(ScoreKind)
N_REGRESSION_SCORES = 15


class ObservedEnvelope:
    """Observed isotope peaks of one (charge row, scan column) cell.

    Parameters
    ----------
    row, col : int
        Cell coordinates in the feature matrix
    charge : int
        Charge state of the row
    intensities : np.ndarray (float64)
        Intensity per isotope-list position (0 = no peak)
    peak_ids : np.ndarray (int64)
        PeakIndex id per position (-1 = no peak)
    peak_mz : np.ndarray (float64)
        m/z per position (0 = no peak)
    isotope_list : IsotopeList
        Theoretical envelope the positions refer to
    """

    __slots__ = ('row', 'col', 'charge', 'intensities', 'peak_ids', 'peak_mz', 'ref_position', 'good_enough')

    def __init__(self, row: int, col: int, charge: int, intensities: np.ndarray, peak_ids: np.ndarray,
                 peak_mz: np.ndarray, isotope_list: IsotopeList):
        self.row = int(row)
        self.col = int(col)
        self.charge = int(charge)
        self.intensities = np.asarray(intensities, dtype=np.float64)
        self.peak_ids = np.asarray(peak_ids, dtype=np.int64)
        self.peak_mz = np.asarray(peak_mz, dtype=np.float64)
        self.good_enough = False

        # Most intense (by theory) isotope with an observed peak
        self.ref_position = -1
        for pos in isotope_list.sorted_index_by_intensity:
            if self.peak_ids[pos] >= 0:
                self.ref_position = int(pos)
                break

    def __repr__(self) -> str:
        return f"ObservedEnvelope(row={self.row}, col={self.col}, n_peaks={self.n_peaks})"

    @property
    def cell(self) -> Tuple[int, int]:
        return self.row, self.col

    @property
    def n_peaks(self) -> int:
        return int(np.count_nonzero(self.peak_ids >= 0))

    @property
    def abundance(self) -> float:
        return float(self.intensities[self.peak_ids >= 0].sum())

    def iter_peaks(self) -> Iterator[Tuple[int, int, float, float]]:
        """(position, peak_id, mz, intensity) of every observed peak."""
        for pos in np.flatnonzero(self.peak_ids >= 0):
            yield int(pos), int(self.peak_ids[pos]), float(self.peak_mz[pos]), float(self.intensities[pos])

    def sum_to(self, target: np.ndarray):
        target += self.intensities


class FeatureCluster:
    """Candidate molecular feature spanning a charge range and a scan range.

    Parameters
    ----------
    min_charge_offset : int
        Charge of matrix row 0 (rows are converted to charges with it)
    scan_nums : np.ndarray (int64)
        MS1 scan number per matrix column
    isotope_list : IsotopeList
        Theoretical envelope of the query mass
    """

    def __init__(self, min_charge_offset: int, scan_nums: np.ndarray, isotope_list: IsotopeList):
        self.min_charge_offset = int(min_charge_offset)
        self.scan_nums = scan_nums
        self.isotope_list = isotope_list

        self.members: List[ObservedEnvelope] = []
        self.min_col = 0
        self.max_col = 0
        self.min_charge = 0
        self.max_charge = 0
        self.min_scan_num = 0
        self.max_scan_num = 0

        # Region-growth state
        self.clustering_envelope = np.zeros(len(isotope_list), dtype=np.float64)
        self.clustering_score = 0.0   # correlation of clustering_envelope
        self.clustering_score2 = 0.0  # Bhattacharyya distance of clustering_envelope

        self.representative_mass = 0.0
        self.representative_charge = 0
        self.representative_mz = 0.0
        self.representative_scan_num = 0

        self.summed_envelope = np.zeros(len(isotope_list), dtype=np.float64)
        self.scores = np.zeros(N_SCORE_KINDS, dtype=np.float64)
        self.xic_profile: Optional[np.ndarray] = None
        self.probability = 0.0
        self.good_enough = False
        self.good_envelope_count = 0
        self.scored = False
        self.active = True
        self.abundance = 0.0
        self.feature_id = 0

    def __repr__(self) -> str:
        return (
            f"FeatureCluster(mass={self.representative_mass:.4f}, "
            f"charge={self.min_charge}-{self.max_charge}, "
            f"scan={self.min_scan_num}-{self.max_scan_num}, "
            f"n_members={len(self.members)}, prob={self.probability:.3f})"
        )

    # -------------------------------------------------------------------------
    # Geometry
    # -------------------------------------------------------------------------

    @property
    def min_row(self) -> int:
        return self.min_charge - self.min_charge_offset

    @property
    def max_row(self) -> int:
        return self.max_charge - self.min_charge_offset

    @property
    def column_length(self) -> int:
        return 0 if not self.members else self.max_col - self.min_col + 1

    @property
    def charge_length(self) -> int:
        return 0 if not self.members else self.max_charge - self.min_charge + 1

    def member_cells(self) -> List[Tuple[int, int]]:
        return [env.cell for env in self.members]

    def bounding_box_cells(self) -> Iterator[Tuple[int, int]]:
        for row in range(self.min_row, self.max_row + 1):
            for col in range(self.min_col, self.max_col + 1):
                yield row, col

    def add_member(self, envelope: ObservedEnvelope, correlation: Optional[float] = None):
        """Add a member envelope and grow the bounding box to cover it."""
        charge = envelope.row + self.min_charge_offset
        if not self.members:
            self.min_col = self.max_col = envelope.col
            self.min_charge = self.max_charge = charge
        else:
            self.min_col = min(self.min_col, envelope.col)
            self.max_col = max(self.max_col, envelope.col)
            self.min_charge = min(self.min_charge, charge)
            self.max_charge = max(self.max_charge, charge)
        self.min_scan_num = int(self.scan_nums[self.min_col])
        self.max_scan_num = int(self.scan_nums[self.max_col])

        self.members.append(envelope)
        self.clustering_envelope += envelope.intensities
        if correlation is not None:
            self.clustering_score = correlation

    def clear_members(self):
        self.members.clear()
        self.min_col = self.max_col = 0
        self.min_charge = self.max_charge = 0
        self.min_scan_num = self.max_scan_num = 0
        self.clustering_envelope[:] = 0.0

    def overlaps(self, other: 'FeatureCluster') -> bool:
        """True if the scan ranges and the charge ranges both intersect."""
        return (
            self.min_scan_num <= other.max_scan_num
            and other.min_scan_num <= self.max_scan_num
            and self.min_charge <= other.max_charge
            and other.min_charge <= self.max_charge
        )

    def merge(self, other: 'FeatureCluster'):
        """Absorb the bounding box of ``other`` (union)."""
        self.min_col = min(self.min_col, other.min_col)
        self.max_col = max(self.max_col, other.max_col)
        self.min_scan_num = min(self.min_scan_num, other.min_scan_num)
        self.max_scan_num = max(self.max_scan_num, other.max_scan_num)
        self.min_charge = min(self.min_charge, other.min_charge)
        self.max_charge = max(self.max_charge, other.max_charge)

    def set_representative(self, mass: float, mz: float, charge: int, scan_num: int):
        self.representative_mass = float(mass)
        self.representative_mz = float(mz)
        self.representative_charge = int(charge)
        self.representative_scan_num = int(scan_num)

    def expand_elution_range(self, run):
        """Widen the scan range to the neighbouring MS1 scans on DDA runs.

        On runs with MS2 scans, a short feature's scan range is extended to the
        first MS1 scan before (after) it that is separated by fragmentation
        scans, so MS2 scans acquired inside the elution window fall inside
        ``[min_scan_num, max_scan_num]``.
        """
        if run.max_ms_level <= 1 or not self.members:
            return
        if run.max_elution_time > 0:
            net_length = (
                run.get_elution_time(self.max_scan_num) - run.get_elution_time(self.min_scan_num)
            ) / run.max_elution_time
            if net_length >= 0.01:
                return

        scan_nums = self.scan_nums
        for i in range(self.min_col - 1, -1, -1):
            if scan_nums[self.min_col] - scan_nums[i] > self.min_col - i:
                self.min_scan_num = int(scan_nums[i])
                break
        for i in range(self.max_col + 1, len(scan_nums)):
            if scan_nums[i] - scan_nums[self.max_col] > i - self.max_col:
                self.max_scan_num = int(scan_nums[i])
                break

    # -------------------------------------------------------------------------
    # Peaks
    # -------------------------------------------------------------------------

    def major_peaks(self) -> List[int]:
        """Peak ids of envelopes flagged good enough."""
        return [pid for env in self.members if env.good_enough for _, pid, _, _ in env.iter_peaks()]

    def minor_peaks(self) -> List[int]:
        """Peak ids of the remaining envelopes."""
        return [pid for env in self.members if not env.good_enough for _, pid, _, _ in env.iter_peaks()]

    def update_abundance(self, claims=None):
        """Sum member peak intensities, skipping peaks claimed by other clusters."""
        total = 0.0
        for env in self.members:
            for _, pid, _, intensity in env.iter_peaks():
                if claims is not None and not claims.is_available_to(pid, self):
                    continue
                total += intensity
        self.abundance = total

    # -------------------------------------------------------------------------
    # Scores
    # -------------------------------------------------------------------------

    def get_score(self, kind: ScoreKind) -> float:
        return float(self.scores[kind])

    def set_score(self, kind: ScoreKind, value: float):
        self.scores[kind] = value
