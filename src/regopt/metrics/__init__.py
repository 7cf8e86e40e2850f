"""Similarity metrics and their virtual domain.

A metric compares a fixed and a moving object and exposes everything a
gradient-based optimizer needs: the value, the derivative with respect to the
parameters of the moving transform, the number of parameters, and a way to
update them. All metrics derive from
[`ObjectToObjectMetric`][regopt.metrics.base.ObjectToObjectMetric].

**Available metrics:**

- [`EuclideanDistancePointSetMetric`][regopt.metrics.point_set.EuclideanDistancePointSetMetric]
- [`ExpectationBasedPointSetMetric`][regopt.metrics.point_set.ExpectationBasedPointSetMetric]
- [`MeanSquaresImageMetric`][regopt.metrics.image.MeanSquaresImageMetric]
"""

from ._virtual_domain import VirtualDomain
from .base import ObjectToObjectMetric
from .image import MeanSquaresImageMetric
from .point_set import (
    EuclideanDistancePointSetMetric,
    ExpectationBasedPointSetMetric,
    PointSetToPointSetMetric,
)

__all__ = [
    "EuclideanDistancePointSetMetric",
    "ExpectationBasedPointSetMetric",
    "MeanSquaresImageMetric",
    "ObjectToObjectMetric",
    "PointSetToPointSetMetric",
    "VirtualDomain",
]
