"""m/z-sorted index of all MS1 peaks of a run.

Every MS1 peak is tagged with its scan column (position in the MS1 scan
vector) and its position within that scan, then the whole set is sorted by
m/z. Range queries are a binary search for the lower bound followed by a
second binary search for the upper bound, so any number of threads can query
the index concurrently.
"""

import logging
from typing import List, Tuple

import numba as nb
import numpy as np

from ..exceptions import InvalidInputError

logger = logging.getLogger(__name__)


@nb.njit(nogil=True)
def search_mz_window(
    mz_array: np.ndarray,
    low_mz: float,
    high_mz: float,
) -> Tuple[int, int]:
    """Index range of peaks with ``low_mz <= mz <= high_mz``.

    Parameters
    ----------
    mz_array : np.ndarray
        Sorted array of m/z values
    low_mz, high_mz : float
        Inclusive window bounds

    Returns
    -------
    start_idx : int
        Start index (inclusive)
    end_idx : int
        End index (exclusive, Python convention)
    """
    if len(mz_array) == 0 or high_mz < low_mz:
        return 0, 0

    left, right = 0, len(mz_array)
    while left < right:
        mid = (left + right) // 2
        if mz_array[mid] < low_mz:
            left = mid + 1
        else:
            right = mid
    start_idx = left

    left, right = start_idx, len(mz_array)
    while left < right:
        mid = (left + right) // 2
        if mz_array[mid] <= high_mz:
            left = mid + 1
        else:
            right = mid
    end_idx = left

    return start_idx, end_idx


class PeakIndex:
    """Flattened, m/z-sorted MS1 peaks of one run.

    Parameters
    ----------
    run : InMemoryLcMsRun
        Spectrum source (see ``topfeatfast.run``)

    Attributes
    ----------
    mz, intensity : np.ndarray (float64)
        Peak m/z and intensity, sorted by m/z
    scan_col : np.ndarray (int64)
        Column (index into ``scan_nums``) of each peak
    peak_in_scan : np.ndarray (int64)
        Position of each peak within its own spectrum
    scan_nums : np.ndarray (int64)
        MS1 scan numbers, one per column
    """

    def __init__(self, run):
        self.scan_nums = np.asarray(run.get_ms1_scan_numbers(), dtype=np.int64)
        if len(self.scan_nums) == 0:
            raise InvalidInputError("Run contains no MS1 scans")

        self.min_mz = run.min_ms1_mz
        self.max_mz = run.max_ms1_mz

        self._scan_mz: List[np.ndarray] = []
        self._scan_intensity: List[np.ndarray] = []
        mz_parts, int_parts, col_parts, pos_parts = [], [], [], []
        for col, scan_num in enumerate(self.scan_nums):
            spec = run.get_spectrum(int(scan_num))
            self._scan_mz.append(spec.mz)
            self._scan_intensity.append(spec.intensity)
            mz_parts.append(spec.mz)
            int_parts.append(spec.intensity)
            col_parts.append(np.full(len(spec.mz), col, dtype=np.int64))
            pos_parts.append(np.arange(len(spec.mz), dtype=np.int64))

        mz = np.concatenate(mz_parts)
        order = np.argsort(mz, kind='stable')
        self.mz = np.ascontiguousarray(mz[order])
        self.intensity = np.ascontiguousarray(np.concatenate(int_parts)[order])
        self.scan_col = np.ascontiguousarray(np.concatenate(col_parts)[order])
        self.peak_in_scan = np.ascontiguousarray(np.concatenate(pos_parts)[order])

        # Global (sorted) index of every peak, addressed by (column, position)
        self._scan_offsets = np.zeros(len(self.scan_nums) + 1, dtype=np.int64)
        self._scan_offsets[1:] = np.cumsum([len(m) for m in self._scan_mz])
        self._global_of_local = np.empty(len(self.mz), dtype=np.int64)
        self._global_of_local[self._scan_offsets[self.scan_col] + self.peak_in_scan] = np.arange(len(self.mz))

        for arr in (self.mz, self.intensity, self.scan_col, self.peak_in_scan):
            arr.setflags(write=False)

        logger.info(
            f"Indexed {len(self.mz):,} MS1 peaks from {len(self.scan_nums):,} scans"
        )

    def __len__(self) -> int:
        return len(self.mz)

    @property
    def n_scans(self) -> int:
        return len(self.scan_nums)

    def range_query(self, mz_low: float, mz_high: float) -> Tuple[int, int]:
        """Index range ``[start, end)`` of peaks with m/z in ``[mz_low, mz_high]``."""
        return search_mz_window(self.mz, mz_low, mz_high)

    def peaks_in_range(self, mz_low: float, mz_high: float) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """(mz, intensity, scan_col) of the peaks in ``[mz_low, mz_high]``, ascending m/z."""
        start, end = self.range_query(mz_low, mz_high)
        return self.mz[start:end], self.intensity[start:end], self.scan_col[start:end]

    def get_scan_peaks(self, col: int) -> Tuple[np.ndarray, np.ndarray]:
        """(mz, intensity) of the spectrum in column ``col``."""
        return self._scan_mz[col], self._scan_intensity[col]

    def global_peak_id(self, col: int, peak_in_scan: int) -> int:
        """Sorted-array index of peak ``peak_in_scan`` of column ``col``."""
        return int(self._global_of_local[self._scan_offsets[col] + peak_in_scan])
