"""This module defines the base class for parameter scales estimators."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import ArrayLike, NDArray

    from regopt.metrics import ObjectToObjectMetric


class ParameterScalesEstimator(ABC):
    """Abstract base class for parameter scales estimators.

    The parameters of a transform may have very different units, for instance
    the entries of an affine matrix and its translation. A scales estimator
    computes one scale per local parameter that normalizes these units, and
    estimates how large a step in parameter space is in physical units. The
    [`GradientDescentOptimizer`][regopt.optimization.GradientDescentOptimizer]
    uses the scales to divide the derivative, and the step scale to choose a
    learning rate that limits the physical step size.

    The estimator holds a reference to the metric it samples; it does not
    own it. Estimates must be deterministic for a fixed state of the metric
    and its transforms, and must leave the transform parameters unchanged.

    Subclasses must implement:

    - `estimate_scales`: One scale per local parameter.
    - `estimate_step_scale`: The physical size of a parameter step.
    - `estimate_maximum_step_size`: A default maximum physical step size.
    """

    def __init__(self, metric: ObjectToObjectMetric) -> None:
        """Initialize the estimator.

        Args:
            metric: The metric whose moving transform is sampled.
        """
        self._metric = metric

    @property
    def metric(self) -> ObjectToObjectMetric:
        """The metric whose moving transform is sampled."""
        return self._metric

    @metric.setter
    def metric(self, metric: ObjectToObjectMetric) -> None:
        self._metric = metric

    @abstractmethod
    def estimate_scales(self) -> NDArray[np.float64]:
        """Estimate the scales of the local parameters.

        Returns:
            One positive scale per local parameter.
        """

    @abstractmethod
    def estimate_step_scale(self, step: ArrayLike) -> float:
        """Estimate the physical size of a step in parameter space.

        Args:
            step: The step, one value per parameter.

        Returns:
            The maximum physical displacement caused by the step.
        """

    @abstractmethod
    def estimate_maximum_step_size(self) -> float:
        """Estimate a reasonable maximum step size in physical units.

        Returns:
            The maximum step size.
        """
