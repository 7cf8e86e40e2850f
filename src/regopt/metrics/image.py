"""Similarity metrics between two images."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np
from scipy.ndimage import map_coordinates

from regopt.exceptions import MetricInitializationError

from ._virtual_domain import VirtualDomain
from .base import ObjectToObjectMetric

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

_LOGGER = logging.getLogger(__name__)


class MeanSquaresImageMetric(ObjectToObjectMetric):
    r"""The mean squared intensity difference between two images.

    Images are numpy arrays whose axis `d` corresponds to physical axis `d`.
    The physical position of each pixel is defined by a
    [`VirtualDomain`][regopt.metrics.VirtualDomain] describing the geometry of
    the image; by default the image has unit spacing, zero origin and
    identity direction.

    The metric is evaluated at the grid points $v$ of the virtual region,
    which defaults to the grid of the fixed image:

    $$
    f = \frac{1}{N} \sum_{v} \left(F(T_f(v)) - M(T_m(v))\right)^2
    $$

    Intensities are interpolated linearly, and the moving image gradient is
    computed by central differences. Grid points that map outside the fixed
    or the moving image are not valid.
    """

    def __init__(
        self,
        fixed_image: ArrayLike,
        moving_image: ArrayLike,
        *,
        fixed_geometry: VirtualDomain | None = None,
        moving_geometry: VirtualDomain | None = None,
    ) -> None:
        """Initialize the metric.

        Args:
            fixed_image:     The fixed image.
            moving_image:    The moving image.
            fixed_geometry:  The physical geometry of the fixed image.
            moving_geometry: The physical geometry of the moving image.
        """
        fixed_image = np.asarray(fixed_image, dtype=np.float64)
        super().__init__(fixed_image.ndim)
        self._fixed_image = fixed_image
        self._moving_image = np.asarray(moving_image, dtype=np.float64)
        self._fixed_geometry = (
            VirtualDomain(size=fixed_image.shape)
            if fixed_geometry is None
            else fixed_geometry
        )
        self._moving_geometry = (
            VirtualDomain(size=self._moving_image.shape)
            if moving_geometry is None
            else moving_geometry
        )
        self._moving_gradient: NDArray[np.float64] | None = None

    @property
    def fixed_image(self) -> NDArray[np.float64]:
        """The fixed image."""
        return self._fixed_image

    @property
    def moving_image(self) -> NDArray[np.float64]:
        """The moving image."""
        return self._moving_image

    @property
    def supports_arbitrary_virtual_domain_samples(self) -> bool:
        return True

    def initialize(self) -> None:
        """Check the images and compute the moving image gradient.

        Raises:
            MetricInitializationError: If the images do not match their
                                       geometries or the metric dimension.
        """
        super().initialize()
        for name, image, geometry in (
            ("fixed", self._fixed_image, self._fixed_geometry),
            ("moving", self._moving_image, self._moving_geometry),
        ):
            if image.ndim != self._dimension:
                msg = (
                    f"the {name} image has dimension {image.ndim}, "
                    f"the metric has dimension {self._dimension}"
                )
                raise MetricInitializationError(msg)
            if tuple(geometry.size) != image.shape:
                msg = f"the {name} image does not match the size of its geometry"
                raise MetricInitializationError(msg)
        if self._virtual_domain is None:
            self._set_default_virtual_domain(self._fixed_geometry)

        geometry = self._moving_geometry
        assert geometry.spacing is not None
        assert geometry.direction is not None
        gradients = np.gradient(self._moving_image)
        if self._dimension == 1:
            gradients = [gradients]
        index_gradient = np.stack(
            [g / s for g, s in zip(gradients, geometry.spacing, strict=True)],
            axis=-1,
        )
        # Physical gradient: D @ (dI/di / s) for every pixel.
        self._moving_gradient = np.moveaxis(
            index_gradient @ geometry.direction.T, -1, 0
        )

    def _sample(
        self, image: NDArray[np.float64], coordinates: NDArray[np.float64]
    ) -> NDArray[np.float64]:
        return map_coordinates(image, coordinates.T, order=1, mode="nearest")

    def _image_coordinates(
        self, geometry: VirtualDomain, points: NDArray[np.float64]
    ) -> tuple[NDArray[np.float64], NDArray[np.bool_]]:
        assert geometry.index is not None
        coordinates = (
            geometry.transform_physical_point_to_continuous_index(points)
            - geometry.index
        )
        tolerance = 1e-8
        inside = np.all(
            (coordinates >= -tolerance)
            & (coordinates <= geometry.size - 1 + tolerance),
            axis=1,
        )
        return coordinates, inside

    def _evaluate(
        self, *, with_derivative: bool
    ) -> tuple[float, NDArray[np.float64]]:
        if self._moving_gradient is None:
            msg = "the metric has not been initialized"
            raise MetricInitializationError(msg)
        transform = self._get_moving_transform()
        derivative = np.zeros(transform.number_of_parameters, dtype=np.float64)

        region = self.virtual_region
        virtual_indices = region.grid_indices()
        virtual_points = region.transform_index_to_physical_point(virtual_indices)
        fixed_coordinates, fixed_inside = self._image_coordinates(
            self._fixed_geometry,
            self._get_fixed_transform().transform_points(virtual_points),
        )
        moving_coordinates, moving_inside = self._image_coordinates(
            self._moving_geometry, transform.transform_points(virtual_points)
        )
        valid = fixed_inside & moving_inside
        self._number_of_valid_points = int(np.count_nonzero(valid))
        if self._number_of_valid_points == 0:
            _, value = self.verify_number_of_valid_points(0.0, derivative)
            return value, derivative

        fixed_values = self._sample(self._fixed_image, fixed_coordinates[valid])
        moving_values = self._sample(self._moving_image, moving_coordinates[valid])
        difference = fixed_values - moving_values
        value = float(np.mean(difference**2))

        if with_derivative:
            gradient = np.stack(
                [
                    self._sample(component, moving_coordinates[valid])
                    for component in self._moving_gradient
                ],
                axis=-1,
            )
            local_derivatives = 2.0 * difference[:, np.newaxis] * gradient
            jacobians = transform.jacobians_wrt_parameters(virtual_points[valid])
            projected = np.einsum("mdp,md->mp", jacobians, local_derivatives)
            if transform.has_local_support:
                n_local = transform.number_of_local_parameters
                offsets = np.atleast_1d(
                    self.compute_parameter_offset_from_virtual_index(
                        virtual_indices[valid], n_local
                    )
                )
                for offset, block in zip(offsets, projected, strict=True):
                    derivative[offset : offset + n_local] = block
            else:
                derivative[:] = projected.sum(axis=0) / self._number_of_valid_points

        _, value = self.verify_number_of_valid_points(value, derivative)
        return value, derivative

    def get_value(self) -> float:
        value, _ = self._evaluate(with_derivative=False)
        return value

    def get_value_and_derivative(self) -> tuple[float, NDArray[np.float64]]:
        return self._evaluate(with_derivative=True)
