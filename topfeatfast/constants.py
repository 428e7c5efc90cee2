"""Physical constants and averagine composition for intact-protein feature finding.

This module provides the physical constants, element isotope probabilities and
the averagine residue used throughout TopFeatFast. Values follow NIST and the
classic averagine model (Senko et al., 1995).

Constants are plain floats and numpy arrays so they can be captured by Numba
JIT-compiled kernels.

Key Features
------------
- Correct PROTON_MASS (1.007276466622 Da, not hydrogen atom mass!)
- C13-C12 spacing used for isotope m/z ladders
- Averagine element counts per 111.1254 Da residue
- Per-element isotope probabilities (+0, +1, +2, +3 Da) for C, H, N, O, S

Sources
-------
- NIST physical constants: https://physics.nist.gov/cgi-bin/cuu/Value
- Senko MW, Beu SC, McLafferty FW. JASMS 1995, 6(4):229-233
"""

import numpy as np

# =============================================================================
# Fundamental Physical Constants (NIST values)
# =============================================================================

# Proton mass (NOT hydrogen atom mass!)
# Source: NIST 2018 CODATA
PROTON_MASS = 1.007276466622  # Da

# Mass difference between C12 and C13
# Spacing of the isotope ladder of an intact protein
C13_MASS_DIFFERENCE = 1.00335483  # Da

# Nominal mass = round(mass * RESCALING_CONSTANT)
# Compensates the average mass defect of peptides/proteins
RESCALING_CONSTANT = 0.9995

# =============================================================================
# Averagine Model
# =============================================================================

# Average residue mass and its elemental composition (C, H, N, O, S)
AVERAGINE_MASS = 111.1254  # Da
AVERAGINE_COMPOSITION = np.array(
    [4.9384, 7.7583, 1.3577, 1.4773, 0.0417], dtype=np.float64
)

# Isotope probabilities per element for +0, +1, +2, +3 Da
# Rows: C, H, N, O, S
ELEMENT_ISOTOPE_PROBABILITIES = np.array(
    [
        [0.9893, 0.0107, 0.0, 0.0],        # C
        [0.999885, 0.000115, 0.0, 0.0],    # H
        [0.99632, 0.00368, 0.0, 0.0],      # N
        [0.99757, 0.00038, 0.00205, 0.0],  # O
        [0.9493, 0.0076, 0.0429, 0.0002],  # S
    ],
    dtype=np.float64,
)

# Maximum number of isotopes evaluated for one envelope
MAX_NUM_ISOTOPES = 100

# The averagine envelope stops at the first isotope after the apex whose
# height drops below this fraction of the apex
ISOTOPE_RELATIVE_INTENSITY_THRESHOLD = 0.1

# =============================================================================
# Default Tolerance Settings
# =============================================================================

# Default MS1 mass tolerance in PPM
DEFAULT_MS1_TOLERANCE = 10.0  # ppm

# =============================================================================
# Score Bounds
# =============================================================================

# Bhattacharyya distance reported for empty / degenerate envelopes
MAX_BC_DISTANCE = 10.0

# -log2(p) reported when a p-value underflows to zero
MAX_SIGNIFICANCE_SCORE = 50.0


def isotope_mz(mono_mass: float, charge: int, isotope_index: int) -> float:
    """m/z of isotope ``isotope_index`` of a molecule at ``charge``."""
    return (mono_mass + isotope_index * C13_MASS_DIFFERENCE) / charge + PROTON_MASS


def mono_mass_from_mz(mz: float, charge: int, isotope_index: int) -> float:
    """Monoisotopic mass implied by a peak assigned to ``isotope_index``."""
    return (mz - PROTON_MASS) * charge - isotope_index * C13_MASS_DIFFERENCE


def nominal_mass(mass: float) -> int:
    """Nominal (integer) mass bin used for caching averagine envelopes."""
    return int(round(mass * RESCALING_CONSTANT))
