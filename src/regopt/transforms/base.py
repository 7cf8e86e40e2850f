"""This module defines the base class for spatial transforms."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray


class Transform(ABC):
    """Abstract base class for parameterized spatial transforms.

    A transform maps points from one physical space to another, and is
    controlled by a vector of parameters. The parameter vector is owned by the
    transform: [`parameters`][regopt.transforms.base.Transform.parameters]
    returns the array itself, not a copy, and all updates are applied to it in
    place. Metrics and optimizers therefore always see the current state of the
    transform without copying.

    Most transforms have global support: every parameter affects every point.
    Transforms with local support, such as displacement fields, have a block of
    [`number_of_local_parameters`][regopt.transforms.base.Transform.number_of_local_parameters]
    parameters per grid location, each block affecting only the points near
    that location.

    Subclasses must implement:

    - `dimension`: The dimension of the input and output spaces.
    - `transform_points`: Map an array of points.
    - `jacobians_wrt_parameters`: The derivatives of the mapped points with
      respect to the (local) parameters.

    Subclasses may override `get_inverse`, `has_local_support` and
    `number_of_local_parameters`.
    """

    def __init__(self, parameters: ArrayLike) -> None:
        """Initialize the transform with its parameter vector.

        Args:
            parameters: The initial parameter values.
        """
        self._parameters = np.array(parameters, dtype=np.float64, ndmin=1)

    @property
    @abstractmethod
    def dimension(self) -> int:
        """The dimension of the input and output spaces of the transform."""

    @property
    def parameters(self) -> NDArray[np.float64]:
        """The parameter vector of the transform.

        This is the array owned by the transform; modifying it modifies the
        transform.
        """
        return self._parameters

    def set_parameters(self, values: ArrayLike) -> None:
        """Copy new values into the parameter vector.

        Args:
            values: The new parameter values.

        Raises:
            ValueError: If the number of values does not match.
        """
        values = np.asarray(values, dtype=np.float64)
        if values.shape != self._parameters.shape:
            msg = (
                f"expected {self._parameters.size} parameters, "
                f"got an array of shape {values.shape}"
            )
            raise ValueError(msg)
        self._parameters[:] = values

    @property
    def number_of_parameters(self) -> int:
        """The total number of parameters."""
        return int(self._parameters.size)

    @property
    def number_of_local_parameters(self) -> int:
        """The number of parameters affecting a single point."""
        return self.number_of_parameters

    @property
    def has_local_support(self) -> bool:
        """Whether the parameters are indexed per spatial location."""
        return False

    def update_transform_parameters(
        self, update: ArrayLike, factor: float = 1.0
    ) -> None:
        """Update the parameters additively.

        The parameters are updated in place: `parameters += factor * update`.

        Args:
            update: The update, one value per parameter.
            factor: A factor multiplying the update.

        Raises:
            ValueError: If the size of the update does not match.
        """
        update = np.asarray(update, dtype=np.float64)
        if update.size != self._parameters.size:
            msg = (
                f"the update has {update.size} values, "
                f"the transform has {self._parameters.size} parameters"
            )
            raise ValueError(msg)
        if factor == 1.0:
            self._parameters += update
        else:
            self._parameters += factor * update

    @abstractmethod
    def transform_points(self, points: ArrayLike) -> NDArray[np.float64]:
        """Map an array of points.

        Args:
            points: The points to map, one point per row.

        Returns:
            The mapped points, one point per row.
        """

    def transform_point(self, point: ArrayLike) -> NDArray[np.float64]:
        """Map a single point.

        Args:
            point: The point to map.

        Returns:
            The mapped point.
        """
        point = np.asarray(point, dtype=np.float64)
        return self.transform_points(point[np.newaxis, :])[0]

    @abstractmethod
    def jacobians_wrt_parameters(self, points: ArrayLike) -> NDArray[np.float64]:
        """Compute the Jacobians of the mapping with respect to the parameters.

        For global-support transforms the derivatives are taken with respect
        to all parameters, for local-support transforms with respect to the
        local parameters of the location of each point.

        Args:
            points: The points at which the Jacobians are evaluated, one per row.

        Returns:
            An array of shape (points, dimension, local parameters).
        """

    def jacobian_wrt_parameters(self, point: ArrayLike) -> NDArray[np.float64]:
        """Compute the Jacobian of the mapping at a single point.

        Args:
            point: The point at which the Jacobian is evaluated.

        Returns:
            An array of shape (dimension, local parameters).
        """
        point = np.asarray(point, dtype=np.float64)
        return self.jacobians_wrt_parameters(point[np.newaxis, :])[0]

    def get_inverse(self) -> Transform:
        """Return a new transform implementing the inverse mapping.

        Raises:
            NotImplementedError: If the transform cannot be inverted.
        """
        msg = f"{self.__class__.__name__} does not provide an inverse"
        raise NotImplementedError(msg)

    def _as_points(self, points: ArrayLike) -> NDArray[np.float64]:
        points = np.asarray(points, dtype=np.float64)
        if points.ndim != 2 or points.shape[1] != self.dimension:  # noqa: PLR2004
            msg = f"expected an array of {self.dimension}-dimensional points"
            raise ValueError(msg)
        return points
