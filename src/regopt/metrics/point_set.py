"""Similarity metrics between two point sets."""

from __future__ import annotations

import logging
from abc import abstractmethod
from typing import TYPE_CHECKING

import numpy as np
from scipy.spatial import cKDTree

from regopt.exceptions import MetricInitializationError

from .base import ObjectToObjectMetric

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

_LOGGER = logging.getLogger(__name__)


class PointSetToPointSetMetric(ObjectToObjectMetric):
    """Abstract base class for metrics comparing a fixed and a moving point set.

    The fixed points are mapped into the virtual domain with the inverse of
    the fixed transform; the result is available as
    [`virtual_transformed_point_set`][regopt.metrics.point_set.PointSetToPointSetMetric.virtual_transformed_point_set].
    During evaluation, each virtual point is mapped into the moving space
    with the moving transform, and compared with the moving points by a
    per-point value and derivative computed by the derived class. The
    per-point derivatives are projected onto the parameters with the
    Jacobian of the moving transform:

    - for global-support transforms, the projected derivatives are averaged
      over the valid points,
    - for local-support transforms, the projected derivative of each point
      is stored in the block of parameters of its virtual grid location.

    Virtual points outside the virtual domain are not valid. If no virtual
    domain has been set, all points are valid.

    Subclasses must implement:

    - `compute_local_values_and_derivatives`: The per-point values and
      derivatives.
    """

    def __init__(self, fixed_points: ArrayLike, moving_points: ArrayLike) -> None:
        """Initialize the metric.

        Args:
            fixed_points:  The fixed points, one point per row.
            moving_points: The moving points, one point per row.
        """
        fixed_points = np.array(fixed_points, dtype=np.float64, ndmin=2)
        super().__init__(fixed_points.shape[1])
        self._fixed_points = fixed_points
        self._moving_points = np.array(moving_points, dtype=np.float64, ndmin=2)
        self._virtual_transformed_point_set: NDArray[np.float64] | None = None
        self._moving_tree: cKDTree | None = None

    @property
    def fixed_points(self) -> NDArray[np.float64]:
        """The fixed points, one point per row."""
        return self._fixed_points

    @property
    def moving_points(self) -> NDArray[np.float64]:
        """The moving points, one point per row."""
        return self._moving_points

    @property
    def supports_arbitrary_virtual_domain_samples(self) -> bool:
        return False

    @property
    def virtual_transformed_point_set(self) -> NDArray[np.float64]:
        """The fixed points mapped into the virtual domain.

        Raises:
            MetricInitializationError: If the metric is not initialized.
        """
        if self._virtual_transformed_point_set is None:
            msg = "the metric has not been initialized"
            raise MetricInitializationError(msg)
        return self._virtual_transformed_point_set

    @property
    def moving_tree(self) -> cKDTree:
        """The search tree of the moving points."""
        if self._moving_tree is None:
            msg = "the metric has not been initialized"
            raise MetricInitializationError(msg)
        return self._moving_tree

    def initialize(self) -> None:
        """Check the point sets and prepare the nearest neighbour search.

        Raises:
            MetricInitializationError: If a point set is empty or does not
                                       match the dimension of the metric.
        """
        super().initialize()
        for name, points in (
            ("fixed", self._fixed_points),
            ("moving", self._moving_points),
        ):
            if points.size == 0 or points.ndim != 2:  # noqa: PLR2004
                msg = f"the {name} point set is empty"
                raise MetricInitializationError(msg)
            if points.shape[1] != self._dimension:
                msg = (
                    f"the {name} points have dimension {points.shape[1]}, "
                    f"the metric has dimension {self._dimension}"
                )
                raise MetricInitializationError(msg)
        inverse = self._get_fixed_transform().get_inverse()
        self._virtual_transformed_point_set = inverse.transform_points(
            self._fixed_points
        )
        self._moving_tree = cKDTree(self._moving_points)
        _LOGGER.debug(
            "%s: %d fixed points, %d moving points",
            self.__class__.__name__,
            self._fixed_points.shape[0],
            self._moving_points.shape[0],
        )

    @abstractmethod
    def compute_local_values_and_derivatives(
        self, points: NDArray[np.float64]
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Compute the values and derivatives of individual points.

        The derivative of a point is a vector in the moving space pointing in
        the direction that improves the value at that point.

        Args:
            points: Points in the moving space, one point per row.

        Returns:
            The values, and the derivatives with one row per point.
        """

    def get_value(self) -> float:
        virtual_points = self._valid_virtual_points()
        self._number_of_valid_points = virtual_points.shape[0]
        if self._number_of_valid_points == 0:
            _, value = self.verify_number_of_valid_points(
                0.0, np.zeros(0, dtype=np.float64)
            )
            return value
        moving = self._get_moving_transform().transform_points(virtual_points)
        values, _ = self.compute_local_values_and_derivatives(moving)
        _, value = self.verify_number_of_valid_points(
            float(np.mean(values)), np.zeros(0, dtype=np.float64)
        )
        return value

    def get_value_and_derivative(self) -> tuple[float, NDArray[np.float64]]:
        transform = self._get_moving_transform()
        derivative = np.zeros(transform.number_of_parameters, dtype=np.float64)
        virtual_points = self._valid_virtual_points()
        self._number_of_valid_points = virtual_points.shape[0]
        if self._number_of_valid_points == 0:
            _, value = self.verify_number_of_valid_points(0.0, derivative)
            return value, derivative

        moving = transform.transform_points(virtual_points)
        values, local_derivatives = self.compute_local_values_and_derivatives(moving)
        jacobians = transform.jacobians_wrt_parameters(virtual_points)
        projected = np.einsum("mdp,md->mp", jacobians, local_derivatives)

        if transform.has_local_support:
            n_local = transform.number_of_local_parameters
            offsets = np.atleast_1d(
                self.compute_parameter_offset_from_virtual_point(
                    virtual_points, n_local
                )
            )
            for offset, block in zip(offsets, projected, strict=True):
                derivative[offset : offset + n_local] += block
        else:
            derivative[:] = projected.sum(axis=0) / self._number_of_valid_points

        _, value = self.verify_number_of_valid_points(
            float(np.mean(values)), derivative
        )
        return value, derivative

    def _valid_virtual_points(self) -> NDArray[np.float64]:
        points = self.virtual_transformed_point_set
        if self._moving_tree is None:
            msg = "the metric has not been initialized"
            raise MetricInitializationError(msg)
        if self._virtual_domain is None:
            return points
        inside = np.asarray(self.is_inside_virtual_domain(points), dtype=np.bool_)
        return points[inside]


class EuclideanDistancePointSetMetric(PointSetToPointSetMetric):
    """The mean distance of the points to their nearest moving point.

    The derivative of a point is the vector to its nearest moving point.
    """

    def compute_local_values_and_derivatives(
        self, points: NDArray[np.float64]
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        distances, indices = self.moving_tree.query(points, k=1)
        return distances, self._moving_points[indices] - points


class ExpectationBasedPointSetMetric(PointSetToPointSetMetric):
    r"""A metric based on the expectation of a Gaussian mixture.

    Each moving point is modeled by an isotropic Gaussian with standard
    deviation $\sigma$ (`point_set_sigma`). The measure of a point is the sum
    of the Gaussians of its `evaluation_k_neighborhood` nearest moving points:

    $$
    m(x) = \sum_{j=1}^{k} \frac{1}{(\sigma\sqrt{2\pi})^D}
           \exp\left(-\frac{\|x - y_j\|^2}{2\sigma^2}\right)
    $$

    The value of a point is $-m(x)$, so the metric value, the mean over all
    points, decreases as the point sets are brought together. The derivative
    of a point is the vector to the Gaussian-weighted mean of its neighbours.
    """

    def __init__(
        self,
        fixed_points: ArrayLike,
        moving_points: ArrayLike,
        *,
        point_set_sigma: float = 1.0,
        evaluation_k_neighborhood: int = 50,
    ) -> None:
        """Initialize the metric.

        Args:
            fixed_points:              The fixed points, one point per row.
            moving_points:             The moving points, one point per row.
            point_set_sigma:           The standard deviation of the Gaussians.
            evaluation_k_neighborhood: The number of neighbours to evaluate.
        """
        super().__init__(fixed_points, moving_points)
        self.point_set_sigma = point_set_sigma
        self.evaluation_k_neighborhood = evaluation_k_neighborhood

    def initialize(self) -> None:
        """Check the parameters of the metric and the point sets.

        Raises:
            MetricInitializationError: If sigma or the neighbourhood size is
                                       not positive.
        """
        if self.point_set_sigma <= 0.0:
            msg = "the point set sigma must be positive"
            raise MetricInitializationError(msg)
        if self.evaluation_k_neighborhood < 1:
            msg = "the evaluation neighbourhood must contain at least one point"
            raise MetricInitializationError(msg)
        super().initialize()

    def compute_local_values_and_derivatives(
        self, points: NDArray[np.float64]
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        k = min(self.evaluation_k_neighborhood, self._moving_points.shape[0])
        distances, indices = self.moving_tree.query(points, k=k)
        if k == 1:
            distances = distances[:, np.newaxis]
            indices = indices[:, np.newaxis]

        sigma = self.point_set_sigma
        prefactor = 1.0 / (sigma * np.sqrt(2.0 * np.pi)) ** self._dimension
        gaussians = prefactor * np.exp(-(distances**2) / (2.0 * sigma * sigma))
        measure = gaussians.sum(axis=1)

        derivatives = np.zeros_like(points)
        valid = measure > np.finfo(np.float64).eps
        weighted = np.einsum(
            "mk,mkd->md", gaussians[valid], self._moving_points[indices[valid]]
        )
        derivatives[valid] = weighted / measure[valid, np.newaxis] - points[valid]
        return -measure, derivatives
