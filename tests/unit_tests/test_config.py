"""Tests for feature finding parameters and tolerances.

Tests:
- Defaults and derived values
- Instrument presets
- Parameter validation
- Tolerance conversion
"""

import math
import unittest

from topfeatfast.config import FeatureFindingParams, InstrumentType
from topfeatfast.constants import PROTON_MASS, isotope_mz, mono_mass_from_mz, nominal_mass
from topfeatfast.tolerance import Tolerance


class TestFeatureFindingParams(unittest.TestCase):
    """Test parameter defaults and presets."""

    def test_defaults(self):
        params = FeatureFindingParams()
        self.assertEqual((params.min_charge, params.max_charge), (2, 60))
        self.assertEqual(params.max_charge_length, 40)
        self.assertEqual(params.tolerance_ppm, 10.0)
        self.assertEqual(params.seed_corr_lower_bound, 0.5)
        self.assertEqual(params.cluster_corr_cutoff, 0.7)
        self.assertEqual(params.max_exact_isotope_rank, 4)

    def test_log_p_threshold(self):
        params = FeatureFindingParams()
        self.assertAlmostEqual(params.log_p_threshold, -math.log2(0.02))
        self.assertAlmostEqual(params.log_p_threshold, 5.644, places=3)

    def test_tolerance(self):
        self.assertEqual(FeatureFindingParams(tolerance_ppm=5.0).tolerance, Tolerance(5.0))

    def test_orbitrap_preset(self):
        params = FeatureFindingParams.for_instrument(InstrumentType.ORBITRAP)
        self.assertEqual(params.tolerance_ppm, 10.0)

    def test_tof_preset(self):
        params = FeatureFindingParams.for_instrument(InstrumentType.HIGH_RES_TOF)
        self.assertEqual(params.tolerance_ppm, 5.0)

    def test_unknown_instrument(self):
        with self.assertRaises(ValueError):
            FeatureFindingParams.for_instrument("fticr")

    def test_validation(self):
        invalid = [
            dict(min_charge=0),
            dict(min_charge=10, max_charge=5),
            dict(max_charge_length=0),
            dict(tolerance_ppm=0.0),
            dict(mass_bin_ppm=-1.0),
            dict(max_isotopes=0),
            dict(isotope_relative_threshold=1.0),
            dict(significance_p_value=0.0),
            dict(look_back_da=-1.0),
            dict(flush_interval_bins=0),
            dict(n_threads=-1),
        ]
        for kwargs in invalid:
            with self.assertRaises(ValueError, msg=str(kwargs)):
                FeatureFindingParams(**kwargs)


class TestTolerance(unittest.TestCase):
    """Test ppm tolerance conversion."""

    def test_as_da(self):
        self.assertAlmostEqual(Tolerance(10.0).get_tolerance_as_da(10000.0), 0.1)
        self.assertEqual(Tolerance(10.0).get_tolerance_as_ppm(500.0), 10.0)

    def test_invalid(self):
        with self.assertRaises(ValueError):
            Tolerance(0.0)


class TestIonMath(unittest.TestCase):
    """Test m/z and mass conversion helpers."""

    def test_isotope_mz(self):
        self.assertAlmostEqual(isotope_mz(10000.0, 5, 0), 2000.0 + PROTON_MASS)

    def test_inverse(self):
        mz = isotope_mz(12345.678, 9, 7)
        self.assertAlmostEqual(mono_mass_from_mz(mz, 9, 7), 12345.678, places=8)

    def test_nominal_mass(self):
        self.assertEqual(nominal_mass(10000.0), 9995)
