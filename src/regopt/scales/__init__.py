"""Parameter scales estimators.

A scales estimator computes the relative scale of each transform parameter
and the physical size of a parameter step, which the optimizer uses to
normalize the derivative and to choose a learning rate.

**Available estimators:**

- [`PhysicalShiftScalesEstimator`][regopt.scales.PhysicalShiftScalesEstimator]:
  scales from the physical shift of sample points in the virtual domain.
"""

from ._physical_shift import PhysicalShiftScalesEstimator
from .base import ParameterScalesEstimator

__all__ = [
    "ParameterScalesEstimator",
    "PhysicalShiftScalesEstimator",
]
