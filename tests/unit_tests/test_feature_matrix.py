"""Tests for candidate-mass binning and the charge x scan feature matrix.

Tests:
- Log-scale mass bins
- Charge range heuristic
- Matrix population for a synthetic envelope (correlation, accurate mass)
- Peak selection for strong vs weak isotopes
- Rebuild idempotence and empty runs
"""

import unittest

import numpy as np
import pytest

from conftest import (
    TEST_CHARGE,
    TEST_MASS,
    TEST_SCAN,
    bin_center_mass,
    build_run,
    envelope_peaks,
)
from topfeatfast.config import FeatureFindingParams
from topfeatfast.exceptions import InvalidInputError
from topfeatfast.features.feature_matrix import FeatureMatrix, MassBinning, get_charge_range
from topfeatfast.features.peak_index import PeakIndex
from topfeatfast.isotopes.envelope import IsotopeList


def _build(run, mass=TEST_MASS, params=None):
    matrix = FeatureMatrix(PeakIndex(run), params or FeatureFindingParams())
    matrix.build(mass)
    return matrix


class TestMassBinning(unittest.TestCase):
    """Test candidate-mass bins."""

    def setUp(self):
        self.binning = MassBinning(3.8)

    def test_mass_inside_its_bin(self):
        for mass in (3000.0, 10000.0, 49999.9):
            b = self.binning.get_bin_number(mass)
            self.assertLessEqual(self.binning.get_mass_start(b), mass)
            self.assertLess(mass, self.binning.get_mass_end(b))

    def test_bin_width_is_relative(self):
        b = self.binning.get_bin_number(10000.0)
        width = self.binning.get_mass_end(b) - self.binning.get_mass_start(b)
        self.assertAlmostEqual(width / self.binning.get_mass_average(b) * 1e6, 3.8, places=3)

    def test_consecutive_bins(self):
        b = self.binning.get_bin_number(10000.0)
        self.assertAlmostEqual(self.binning.get_mass_end(b), self.binning.get_mass_start(b + 1))
        self.assertEqual(self.binning.get_bin_number(self.binning.get_mass_average(b + 1)), b + 1)

    def test_invalid_mass(self):
        with self.assertRaises(InvalidInputError):
            self.binning.get_bin_number(0.0)

    def test_invalid_width(self):
        with self.assertRaises(ValueError):
            MassBinning(0.0)


class TestChargeRange(unittest.TestCase):
    """Test plausible charge states per mass."""

    def setUp(self):
        self.params = FeatureFindingParams()

    def test_low_mass(self):
        self.assertEqual(get_charge_range(3000.0, self.params), (2, 10))

    def test_10kda(self):
        self.assertEqual(get_charge_range(10000.0, self.params), (4, 26))

    def test_row_limit(self):
        low, high = get_charge_range(30000.0, self.params)
        self.assertEqual(high - low + 1, self.params.max_charge_length)

    def test_clipped_to_search_range(self):
        params = FeatureFindingParams(min_charge=6, max_charge=20)
        self.assertEqual(get_charge_range(10000.0, params), (6, 20))


class TestFeatureMatrix(unittest.TestCase):
    """Test matrix population on a single synthetic envelope."""

    def setUp(self):
        mz, intensity = envelope_peaks(TEST_MASS, TEST_CHARGE)
        self.intensity = intensity
        self.run = build_run({TEST_SCAN: [(mz, intensity)]})
        self.matrix = _build(self.run)
        self.row = TEST_CHARGE - self.matrix.min_charge
        self.col = TEST_SCAN - 1

    def test_geometry(self):
        self.assertEqual(self.matrix.min_charge, 4)
        self.assertEqual(self.matrix.max_charge, 26)
        self.assertEqual(self.matrix.envelopes.shape, (23, 200, len(self.matrix.isotope_list)))

    def test_isotope_list_at_bin_center(self):
        self.assertAlmostEqual(self.matrix.isotope_list.mono_mass, bin_center_mass(TEST_MASS))

    def test_envelope_cell(self):
        np.testing.assert_allclose(self.matrix.envelopes[self.row, self.col], self.intensity)
        self.assertTrue(np.all(self.matrix.peak_ids[self.row, self.col] >= 0))
        self.assertAlmostEqual(self.matrix.correlation[self.row, self.col], 1.0, places=9)

    def test_accurate_mass(self):
        self.assertAlmostEqual(
            self.matrix.accurate_mass[self.row, self.col], bin_center_mass(TEST_MASS), places=6
        )
        self.assertGreaterEqual(self.matrix.most_abundant_peak[self.row, self.col], 0)

    def test_only_envelope_row_observed(self):
        np.testing.assert_array_equal(self.matrix.observed_row_indices, [self.row])
        other = np.delete(self.matrix.correlation, self.row, axis=0)
        self.assertEqual(other.max(), 0.0)

    def test_rebuild_is_idempotent(self):
        checksum = self.matrix.checksum()
        self.matrix.build(12000.0)
        self.matrix.build(TEST_MASS)
        self.assertEqual(self.matrix.checksum(), checksum)

    def test_invalid_query_mass(self):
        with self.assertRaises(InvalidInputError):
            self.matrix.build(-5.0)


class TestPeakSelection(unittest.TestCase):
    """Test which of several peaks in one isotope window is kept."""

    def setUp(self):
        self.mz, self.intensity = envelope_peaks(TEST_MASS, TEST_CHARGE)
        self.iso = IsotopeList(bin_center_mass(TEST_MASS))

    def _cell_with_decoy(self, position, factor):
        decoy_mz = self.mz[position] * (1 + 5e-6)
        run = build_run({TEST_SCAN: [
            (self.mz, self.intensity),
            (decoy_mz, self.intensity[position] * factor),
        ]})
        matrix = _build(run)
        return matrix.envelopes[TEST_CHARGE - matrix.min_charge, TEST_SCAN - 1]

    def test_strong_isotope_keeps_most_intense(self):
        position = self.iso.sorted_index_by_intensity[0]
        envelope = self._cell_with_decoy(position, 2.0)
        self.assertAlmostEqual(envelope[position], self.intensity[position] * 2.0)

    def test_weak_isotope_keeps_expected_intensity(self):
        position = self.iso.sorted_index_by_intensity[-1]
        envelope = self._cell_with_decoy(position, 100.0)
        self.assertAlmostEqual(envelope[position], self.intensity[position])


def test_empty_run_has_no_observations(empty_run):
    matrix = _build(empty_run)
    assert len(matrix.observed_row_indices) == 0
    assert matrix.correlation.max() == 0.0
    assert np.all(matrix.most_abundant_peak == -1)


def test_single_isotope_matrix(single_envelope_run):
    params = FeatureFindingParams(isotope_relative_threshold=0.999, max_isotopes=1)
    matrix = _build(single_envelope_run, params=params)
    assert len(matrix.isotope_list) == 1


@pytest.mark.parametrize("mass", [3500.0, 10000.0, 25000.0])
def test_charge_rows_match_range(empty_run, mass):
    matrix = _build(empty_run, mass=mass)
    low, high = get_charge_range(mass, matrix.params)
    assert matrix.envelopes.shape[0] == high - low + 1
