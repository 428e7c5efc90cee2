"""In-memory LC-MS run used as the spectrum source of feature finding.

Any object exposing the same methods can stand in for ``InMemoryLcMsRun``:

- ``get_ms1_scan_numbers()`` -> ascending int array of MS1 scan numbers
- ``get_spectrum(scan_num)`` -> ``Spectrum`` with m/z sorted ascending
- ``get_precursor_scan_num(scan_num)`` / ``get_next_scan_num(scan_num, ms_level)``
- ``get_fragmentation_scan_nums(mz)`` -> MS2 scans isolating ``mz``
- ``min_ms1_mz`` / ``max_ms1_mz`` / ``max_ms_level``
- ``get_elution_time(scan_num)`` / ``max_elution_time``
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

import numpy as np

from .exceptions import InvalidInputError, MissingSpectrumError


@dataclass
class Spectrum:
    """One scan of the run.

    Attributes:
        scan_num: Scan number (unique within the run)
        mz: Peak m/z values (sorted ascending)
        intensity: Peak intensities aligned with ``mz``
        ms_level: 1 for survey scans, 2 for fragmentation scans
        elution_time: Retention time in minutes
        isolation_window: (min_mz, max_mz) of the precursor isolation (MS2 only)
    """

    scan_num: int
    mz: np.ndarray
    intensity: np.ndarray
    ms_level: int = 1
    elution_time: float = 0.0
    isolation_window: Optional[Tuple[float, float]] = None

    def __post_init__(self):
        self.mz = np.asarray(self.mz, dtype=np.float64)
        self.intensity = np.asarray(self.intensity, dtype=np.float64)
        if self.mz.shape != self.intensity.shape:
            raise InvalidInputError(
                f"Scan {self.scan_num}: m/z and intensity arrays differ in length"
            )
        if len(self.mz) > 1 and np.any(np.diff(self.mz) < 0):
            order = np.argsort(self.mz, kind='stable')
            self.mz = self.mz[order]
            self.intensity = self.intensity[order]

    def __len__(self) -> int:
        return len(self.mz)


class InMemoryLcMsRun:
    """LC-MS run holding all spectra in memory.

    Parameters
    ----------
    spectra : iterable of Spectrum
        Scans of the run in any order; scan numbers must be unique.
    """

    def __init__(self, spectra: Iterable[Spectrum]):
        self._spectra = {}
        for spec in spectra:
            if spec.scan_num in self._spectra:
                raise InvalidInputError(f"Duplicate scan number {spec.scan_num}")
            self._spectra[spec.scan_num] = spec

        self._scan_nums = np.array(sorted(self._spectra), dtype=np.int64)
        self._ms1_scan_nums = np.array(
            [sn for sn in self._scan_nums if self._spectra[sn].ms_level == 1],
            dtype=np.int64,
        )

        ms1_mz = [self._spectra[sn].mz for sn in self._ms1_scan_nums if len(self._spectra[sn]) > 0]
        if ms1_mz:
            self.min_ms1_mz = float(min(mz[0] for mz in ms1_mz))
            self.max_ms1_mz = float(max(mz[-1] for mz in ms1_mz))
        else:
            self.min_ms1_mz = 0.0
            self.max_ms1_mz = 0.0

        self.max_ms_level = max((s.ms_level for s in self._spectra.values()), default=1)
        self.max_elution_time = max((s.elution_time for s in self._spectra.values()), default=0.0)

        # MS2 isolation windows, sorted by scan number
        ms2 = [s for s in (self._spectra[sn] for sn in self._scan_nums)
               if s.ms_level > 1 and s.isolation_window is not None]
        self._ms2_scan_nums = np.array([s.scan_num for s in ms2], dtype=np.int64)
        self._ms2_min_mz = np.array([s.isolation_window[0] for s in ms2], dtype=np.float64)
        self._ms2_max_mz = np.array([s.isolation_window[1] for s in ms2], dtype=np.float64)

    @classmethod
    def from_arrays(
        cls,
        scan_nums: np.ndarray,
        mz_list: List[np.ndarray],
        intensity_list: List[np.ndarray],
        elution_times: Optional[np.ndarray] = None,
    ) -> 'InMemoryLcMsRun':
        """Build an MS1-only run from per-scan m/z and intensity arrays."""
        if elution_times is None:
            elution_times = np.asarray(scan_nums, dtype=np.float64)
        spectra = [
            Spectrum(int(sn), mz, inten, elution_time=float(rt))
            for sn, mz, inten, rt in zip(scan_nums, mz_list, intensity_list, elution_times)
        ]
        return cls(spectra)

    @property
    def num_spectra(self) -> int:
        return len(self._scan_nums)

    @property
    def min_lc_scan(self) -> int:
        return int(self._scan_nums[0]) if len(self._scan_nums) else 0

    @property
    def max_lc_scan(self) -> int:
        return int(self._scan_nums[-1]) if len(self._scan_nums) else 0

    def get_ms1_scan_numbers(self) -> np.ndarray:
        return self._ms1_scan_nums

    def get_spectrum(self, scan_num: int) -> Spectrum:
        try:
            return self._spectra[int(scan_num)]
        except KeyError:
            raise MissingSpectrumError(scan_num) from None

    def get_elution_time(self, scan_num: int) -> float:
        return self.get_spectrum(scan_num).elution_time

    def get_precursor_scan_num(self, scan_num: int) -> int:
        """MS1 scan preceding ``scan_num`` (0 if none)."""
        idx = np.searchsorted(self._ms1_scan_nums, scan_num, side='left')
        return int(self._ms1_scan_nums[idx - 1]) if idx > 0 else 0

    def get_next_scan_num(self, scan_num: int, ms_level: int) -> int:
        """Next scan of ``ms_level`` after ``scan_num`` (max_lc_scan + 1 if none)."""
        idx = np.searchsorted(self._scan_nums, scan_num, side='right')
        for sn in self._scan_nums[idx:]:
            if self._spectra[sn].ms_level == ms_level:
                return int(sn)
        return self.max_lc_scan + 1

    def get_fragmentation_scan_nums(self, mz: float) -> np.ndarray:
        """MS2 scan numbers whose isolation window contains ``mz``."""
        mask = (self._ms2_min_mz <= mz) & (mz <= self._ms2_max_mz)
        return self._ms2_scan_nums[mask]
