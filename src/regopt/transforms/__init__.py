"""Parameterized spatial transforms.

The optimizer never manipulates transforms directly: it reads and updates the
parameters of the moving transform through the metric. The transforms in this
module implement the capabilities the metrics need:

- mapping points (`transform_points`),
- the derivative of the mapped points with respect to the parameters
  (`jacobians_wrt_parameters`),
- the number of (local) parameters and whether the parameters have local
  support,
- additive parameter updates (`update_transform_parameters`).

**Available transforms:**

- [`IdentityTransform`][regopt.transforms.IdentityTransform]: no parameters,
  the default fixed and moving transform of a metric.
- [`TranslationTransform`][regopt.transforms.TranslationTransform]: a
  constant offset.
- [`AffineTransform`][regopt.transforms.AffineTransform]: a matrix and a
  translation about a fixed centre.
- [`DisplacementFieldTransform`][regopt.transforms.DisplacementFieldTransform]:
  a dense displacement field with local support.
"""

from ._transforms import (
    AffineTransform,
    DisplacementFieldTransform,
    IdentityTransform,
    TranslationTransform,
)
from .base import Transform

__all__ = [
    "AffineTransform",
    "DisplacementFieldTransform",
    "IdentityTransform",
    "Transform",
    "TranslationTransform",
]
