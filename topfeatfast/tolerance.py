"""Mass tolerance in parts per million."""

from dataclasses import dataclass

from .constants import DEFAULT_MS1_TOLERANCE


@dataclass(frozen=True)
class Tolerance:
    """Relative m/z tolerance.

    Args:
        ppm: Tolerance in parts per million (must be > 0)
    """

    ppm: float = DEFAULT_MS1_TOLERANCE

    def __post_init__(self):
        if not self.ppm > 0:
            raise ValueError(f"Tolerance must be positive, got {self.ppm} ppm")

    def get_tolerance_as_da(self, mz: float) -> float:
        """Absolute tolerance (Da, or Th for m/z values) at ``mz``."""
        return mz * self.ppm * 1e-6

    def get_tolerance_as_ppm(self, mz: float) -> float:
        return self.ppm
