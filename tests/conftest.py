"""Pytest configuration for TopFeatFast tests.

Synthetic LC-MS runs are built from the averagine model: an intact protein
envelope is placed at a given charge and scan, optionally with background
peaks. Two flanking peaks at 200 and 4000 m/z in every scan fix the acquired
MS1 m/z range.
"""

import numpy as np
import pytest

from topfeatfast.config import FeatureFindingParams
from topfeatfast.constants import isotope_mz
from topfeatfast.features.feature_matrix import MassBinning
from topfeatfast.isotopes.envelope import IsotopeList
from topfeatfast.run import InMemoryLcMsRun, Spectrum

N_SCANS = 200
FLANKING_MZ = (200.0, 4000.0)
TEST_MASS = 10000.0
TEST_CHARGE = 5
TEST_SCAN = 100


class ConstantSignificanceTester:
    """Significance tester returning fixed scores."""

    def __init__(self, poisson=50.0, rank_sum=50.0):
        self.poisson = poisson
        self.rank_sum = rank_sum
        self.n_calls = 0

    def test_significance(self, isotope_list, envelope):
        self.n_calls += 1
        return self.poisson, self.rank_sum


class FailingSignificanceTester:
    """Significance tester that always raises."""

    def test_significance(self, isotope_list, envelope):
        raise RuntimeError("significance test failed")


class ListWriter:
    """Feature sink collecting written clusters."""

    def __init__(self):
        self.clusters = []

    def write(self, cluster):
        self.clusters.append(cluster)
        cluster.feature_id = len(self.clusters)
        return cluster.feature_id


def bin_center_mass(mass, bin_ppm=3.8):
    binning = MassBinning(bin_ppm)
    return binning.get_mass_average(binning.get_bin_number(mass))


def envelope_peaks(mass, charge, scale=1e6, keep_positions=None, factors=None):
    """(mz, intensity) of the theoretical envelope of ``mass`` at ``charge``.

    The envelope is computed at the center of the candidate-mass bin, exactly
    as the feature matrix does.
    """
    center = bin_center_mass(mass)
    iso = IsotopeList(center)
    mz = np.array([isotope_mz(center, charge, int(i)) for i in iso.index])
    intensity = iso.ratio * scale
    if factors is not None:
        intensity = intensity * factors
    if keep_positions is not None:
        mz = mz[keep_positions]
        intensity = intensity[keep_positions]
    return mz, intensity


def background_peaks(center_mz, n_peaks=20, spacing=0.2, intensity=1000.0):
    """Weak peaks half-way between the isotopes of a charge 5 envelope."""
    offsets = (np.arange(n_peaks) - n_peaks // 2) * spacing + 0.5 * spacing
    return center_mz + offsets, np.full(n_peaks, intensity)


def build_run(peaks_by_scan, n_scans=N_SCANS, extra_spectra=()):
    """MS1 run with scans 1..n_scans; ``peaks_by_scan`` maps scan -> [(mz, intensity)]."""
    spectra = []
    for scan_num in range(1, n_scans + 1):
        mz = [FLANKING_MZ[0], FLANKING_MZ[1]]
        intensity = [1.0, 1.0]
        for peak_mz, peak_intensity in peaks_by_scan.get(scan_num, []):
            mz.extend(np.atleast_1d(peak_mz))
            intensity.extend(np.atleast_1d(peak_intensity))
        spectra.append(Spectrum(scan_num, np.array(mz), np.array(intensity), elution_time=float(scan_num)))
    spectra.extend(extra_spectra)
    return InMemoryLcMsRun(spectra)


@pytest.fixture
def params():
    """Default feature finding parameters."""
    return FeatureFindingParams()


@pytest.fixture
def single_envelope_run():
    """Noise-free 10 kDa envelope at charge 5, scan 100."""
    mz, intensity = envelope_peaks(TEST_MASS, TEST_CHARGE)
    return build_run({TEST_SCAN: [(mz, intensity)]})


@pytest.fixture
def noisy_envelope_run():
    """10 kDa envelope at charge 5, scan 100, with weak background peaks."""
    mz, intensity = envelope_peaks(TEST_MASS, TEST_CHARGE)
    apex_mz = mz[np.argmax(intensity)]
    noise_mz, noise_intensity = background_peaks(apex_mz)
    return build_run({TEST_SCAN: [(mz, intensity), (noise_mz, noise_intensity)]})


@pytest.fixture
def complementary_envelope_run():
    """Two adjacent scans whose envelopes are distorted in opposite directions.

    Each cell alone correlates imperfectly with the theory; their sum matches
    it exactly.
    """
    n_iso = len(IsotopeList(bin_center_mass(TEST_MASS)))
    distortion = 0.2 * (-1.0) ** np.arange(n_iso)
    mz_a, int_a = envelope_peaks(TEST_MASS, TEST_CHARGE, factors=1.0 + distortion)
    mz_b, int_b = envelope_peaks(TEST_MASS, TEST_CHARGE, factors=1.0 - distortion)
    return build_run({TEST_SCAN: [(mz_a, int_a)], TEST_SCAN + 1: [(mz_b, int_b)]})


@pytest.fixture
def empty_run():
    """Run with flanking peaks only."""
    return build_run({})


@pytest.fixture
def constant_tester():
    return ConstantSignificanceTester()


# Random seed for reproducibility
@pytest.fixture(scope="session", autouse=True)
def set_random_seed():
    """Set random seed for reproducible tests."""
    np.random.seed(42)
