"""Tests for the MS1 feature extractor.

Tests:
- Single-mass queries (all / probable features)
- Mass-bin sweep with deduplication and failure isolation
- Feature file generation
- MS2 association
"""

import threading
import unittest

import numba
import numpy as np
import pytest

from conftest import (
    TEST_CHARGE,
    TEST_MASS,
    TEST_SCAN,
    ConstantSignificanceTester,
    FailingSignificanceTester,
    ListWriter,
    bin_center_mass,
    build_run,
    envelope_peaks,
)
from topfeatfast.config import FeatureFindingParams
from topfeatfast.constants import isotope_mz
from topfeatfast.exceptions import InvalidInputError
from topfeatfast.features.cluster import FeatureCluster, ObservedEnvelope
from topfeatfast.features.extraction import Ms1FeatureExtractor, SweepSummary
from topfeatfast.features.feature_matrix import FeatureMatrix
from topfeatfast.io.feature_table import read_feature_table
from topfeatfast.isotopes.envelope import IsotopeList
from topfeatfast.run import InMemoryLcMsRun, Spectrum


class TestSingleMassQueries(unittest.TestCase):
    """Test per-mass feature queries."""

    def setUp(self):
        mz, intensity = envelope_peaks(TEST_MASS, TEST_CHARGE)
        self.run = build_run({TEST_SCAN: [(mz, intensity)]})
        self.extractor = Ms1FeatureExtractor(self.run, significance_tester=ConstantSignificanceTester())

    def test_probable_features(self):
        features = self.extractor.get_probable_features(TEST_MASS)
        self.assertEqual(len(features), 1)
        feature = features[0]
        self.assertTrue(feature.good_enough)
        self.assertGreater(feature.probability, 0.5)
        self.assertEqual((feature.min_charge, feature.max_charge), (TEST_CHARGE, TEST_CHARGE))
        self.assertEqual((feature.min_scan_num, feature.max_scan_num), (TEST_SCAN, TEST_SCAN))

    def test_for_bin_matches_mass(self):
        bin_num = self.extractor.mass_binning.get_bin_number(TEST_MASS)
        by_bin = self.extractor.get_probable_features_for_bin(bin_num)
        by_mass = self.extractor.get_probable_features(TEST_MASS)
        self.assertEqual(len(by_bin), len(by_mass))
        self.assertEqual(by_bin[0].representative_mass, by_mass[0].representative_mass)

    def test_unrelated_mass(self):
        self.assertEqual(self.extractor.get_all_features(12345.0), [])

    def test_all_features_includes_insignificant(self):
        extractor = Ms1FeatureExtractor(self.run, significance_tester=ConstantSignificanceTester(0.0, 0.0))
        self.assertEqual(len(extractor.get_all_features(TEST_MASS)), 1)
        self.assertEqual(extractor.get_probable_features(TEST_MASS), [])

    def test_invalid_mass(self):
        with self.assertRaises(InvalidInputError):
            self.extractor.get_all_features(0.0)


class TestSweep(unittest.TestCase):
    """Test the mass-bin sweep."""

    def setUp(self):
        mz, intensity = envelope_peaks(TEST_MASS, TEST_CHARGE)
        self.run = build_run({TEST_SCAN: [(mz, intensity)]})
        self.center = bin_center_mass(TEST_MASS)

    def _sweep(self, tester, params=None, min_mass=9999.5, max_mass=10000.5):
        extractor = Ms1FeatureExtractor(self.run, params, significance_tester=tester)
        writer = ListWriter()
        summary = extractor.run_sweep(min_mass, max_mass, writer)
        return extractor, writer, summary

    def test_envelope_found_once_per_region(self):
        extractor, writer, summary = self._sweep(ConstantSignificanceTester())
        self.assertIsInstance(summary, SweepSummary)
        self.assertGreaterEqual(len(writer.clusters), 1)
        self.assertEqual(summary.n_features, len(writer.clusters))
        self.assertEqual(summary.n_failed, 0)
        for cluster in writer.clusters:
            self.assertTrue(cluster.active)
            self.assertAlmostEqual(cluster.representative_mass, self.center, delta=0.1)
            self.assertGreater(cluster.abundance, 0.0)

    def test_all_bins_processed(self):
        extractor, _, summary = self._sweep(ConstantSignificanceTester())
        binning = extractor.mass_binning
        expected = binning.get_bin_number(10000.5) - binning.get_bin_number(9999.5) + 1
        self.assertEqual(summary.n_bins, expected)

    def test_periodic_flush(self):
        params = FeatureFindingParams(flush_interval_bins=3, look_back_da=0.05)
        _, writer, summary = self._sweep(ConstantSignificanceTester(), params)
        self.assertGreaterEqual(len(writer.clusters), 1)
        self.assertEqual(summary.n_features, len(writer.clusters))

    def test_single_thread(self):
        params = FeatureFindingParams(n_threads=1)
        _, writer, _ = self._sweep(ConstantSignificanceTester(), params)
        self.assertGreaterEqual(len(writer.clusters), 1)

    def test_failures_are_isolated(self):
        _, writer, summary = self._sweep(FailingSignificanceTester())
        self.assertGreater(summary.n_failed, 0)
        self.assertEqual(len(summary.failed_masses), summary.n_failed)
        self.assertEqual(writer.clusters, [])

    def test_insignificant_features_dropped(self):
        _, writer, summary = self._sweep(ConstantSignificanceTester(0.0, 0.0))
        self.assertEqual(writer.clusters, [])
        self.assertEqual(summary.n_failed, 0)

    def test_claims_recorded(self):
        extractor, writer, _ = self._sweep(ConstantSignificanceTester())
        self.assertGreater(extractor.claims.n_claimed, 0)
        owners = {id(extractor.claims.owner_of(pid)) for c in writer.clusters for pid in c.major_peaks()}
        self.assertTrue(owners <= {id(c) for c in writer.clusters})

    def test_invalid_range(self):
        with self.assertRaises(InvalidInputError):
            self._sweep(ConstantSignificanceTester(), min_mass=5000.0, max_mass=4000.0)


def test_empty_run_sweep(empty_run):
    extractor = Ms1FeatureExtractor(empty_run, significance_tester=ConstantSignificanceTester())
    writer = ListWriter()
    summary = extractor.run_sweep(9000.0, 9001.0, writer)
    assert summary.n_features == 0
    assert summary.n_failed == 0
    assert writer.clusters == []


def test_generate_feature_file(noisy_envelope_run, tmp_path):
    """The default significance tester accepts a clean envelope over background."""
    extractor = Ms1FeatureExtractor(noisy_envelope_run)
    path = tmp_path / "features.tsv"
    summary = extractor.generate_feature_file(path, 9999.5, 10000.5)
    records = read_feature_table(path)
    assert len(records) == summary.n_features >= 1
    assert [r.feature_id for r in records] == list(range(1, len(records) + 1))
    for record in records:
        assert record.good_enough
        assert record.rep_charge == TEST_CHARGE
        assert abs(record.mono_mass - bin_center_mass(TEST_MASS)) < 0.1


class TestMs2Association(unittest.TestCase):
    """Test MS2 scans matched to features."""

    def setUp(self):
        self.mass = 10000.0
        self.iso = IsotopeList(self.mass)
        apex = self.iso.most_abundant_isotope_index
        mz5 = isotope_mz(self.mass, 5, apex)
        mz7 = isotope_mz(self.mass, 7, apex)

        spectra = [Spectrum(sn, [200.0, 4000.0], [1.0, 1.0]) for sn in range(2, 402, 2)]
        spectra += [
            Spectrum(99, [100.0], [1.0], ms_level=2, isolation_window=(mz5 - 1.0, mz5 + 1.0)),
            Spectrum(101, [100.0], [1.0], ms_level=2, isolation_window=(mz7 - 1.0, mz7 + 1.0)),
            Spectrum(111, [100.0], [1.0], ms_level=2, isolation_window=(mz5 - 1.0, mz5 + 1.0)),
            # Above the charge 2 m/z, so no charge state reaches it
            Spectrum(113, [100.0], [1.0], ms_level=2, isolation_window=(6000.0, 6002.0)),
            Spectrum(121, [100.0], [1.0], ms_level=2, isolation_window=(mz5 - 1.0, mz5 + 1.0)),
        ]
        self.run = InMemoryLcMsRun(spectra)
        self.extractor = Ms1FeatureExtractor(self.run, significance_tester=ConstantSignificanceTester())

    def _cluster(self):
        cluster = FeatureCluster(4, self.run.get_ms1_scan_numbers(), self.iso)
        for col in (49, 59):
            ids = np.arange(len(self.iso))
            cluster.add_member(ObservedEnvelope(1, col, 5, self.iso.ratio, ids, np.zeros(len(ids)), self.iso))
        cluster.set_representative(self.mass, isotope_mz(self.mass, 5, 0), 5, 100)
        return cluster

    def test_scans_strictly_inside_range(self):
        cluster = self._cluster()
        self.assertEqual((cluster.min_scan_num, cluster.max_scan_num), (100, 120))
        np.testing.assert_array_equal(self.extractor.matching_ms2_scan_nums(cluster), [101, 111])

    def test_no_feature_no_scans(self):
        self.assertEqual(len(self.extractor.matching_ms2_scan_nums_for_mass(self.mass)), 0)


@pytest.mark.parametrize("n_threads", [0, 2])
def test_n_threads(single_envelope_run, n_threads):
    params = FeatureFindingParams(n_threads=n_threads)
    extractor = Ms1FeatureExtractor(single_envelope_run, params)
    assert extractor.n_threads >= 1
    if n_threads:
        assert extractor.n_threads == n_threads


def test_kernel_threads_follow_calling_thread(single_envelope_run, monkeypatch):
    """A matrix built on another thread still uses the configured thread count."""
    extractor = Ms1FeatureExtractor(single_envelope_run, FeatureFindingParams(n_threads=1))
    seen = []
    original_build = FeatureMatrix.build

    def recording_build(matrix, query_mass):
        seen.append(numba.get_num_threads())
        return original_build(matrix, query_mass)

    monkeypatch.setattr(FeatureMatrix, "build", recording_build)
    worker = threading.Thread(target=extractor.build_matrix, args=(TEST_MASS,))
    worker.start()
    worker.join()
    assert seen == [1]
