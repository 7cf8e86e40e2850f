"""The virtual domain: the reference grid at which a metric is evaluated."""

from __future__ import annotations

from typing import Self

import numpy as np
from numpy.typing import ArrayLike, NDArray
from pydantic import ConfigDict, model_validator

from regopt.config.utils import ImmutableBaseModel, immutable_array
from regopt.config.validated_types import Array1D, Array1DInt, Array2D  # noqa: TC001


class VirtualDomain(ImmutableBaseModel):
    r"""A regular grid defining the virtual reference space of a metric.

    The virtual domain defines the physical coordinate system and the
    resolution at which a metric is evaluated. It is described by the `size`
    of its region, the `index` of the first grid point of the region, and the
    `spacing`, `origin` and `direction` that map grid indices to physical
    points:

    $$
    p = o + D \, \mathrm{diag}(s) \, i
    $$

    Grid points are numbered linearly with the first axis varying fastest.
    This numbering defines the layout of per-grid-point data, such as the
    parameters of a local-support transform.

    Only `size` is required: the spacing defaults to one, the origin and the
    region index to zero, and the direction to the identity matrix.

    Attributes:
        size:      The number of grid points along each axis.
        spacing:   The distance between grid points along each axis.
        origin:    The physical position of grid index zero.
        direction: The orientation of the grid axes.
        index:     The index of the first grid point of the region.
    """

    size: Array1DInt
    spacing: Array1D | None = None
    origin: Array1D | None = None
    direction: Array2D | None = None
    index: Array1DInt | None = None

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        extra="forbid",
        validate_default=True,
    )

    @model_validator(mode="after")
    def _set_defaults(self) -> Self:
        self._mutable()
        dimension = self.size.size
        if dimension == 0 or np.any(self.size <= 0):
            msg = "the size of a virtual domain must be a vector of positive values"
            raise ValueError(msg)
        if self.spacing is None:
            self.spacing = immutable_array(np.ones(dimension))
        if self.origin is None:
            self.origin = immutable_array(np.zeros(dimension))
        if self.direction is None:
            self.direction = immutable_array(np.eye(dimension))
        if self.index is None:
            self.index = immutable_array(np.zeros(dimension, dtype=np.intp))
        if (
            self.spacing.shape != (dimension,)
            or self.origin.shape != (dimension,)
            or self.index.shape != (dimension,)
        ):
            msg = "spacing, origin and index must have one entry per dimension"
            raise ValueError(msg)
        if self.direction.shape != (dimension, dimension):
            msg = f"direction must be a {dimension}x{dimension} matrix"
            raise ValueError(msg)
        if np.any(self.spacing <= 0.0):
            msg = "spacing values must be positive"
            raise ValueError(msg)
        if abs(np.linalg.det(self.direction)) < np.finfo(np.float64).eps:
            msg = "the direction matrix is singular"
            raise ValueError(msg)
        self._immutable()
        return self

    @property
    def dimension(self) -> int:
        """The number of dimensions of the domain."""
        return int(self.size.size)

    @property
    def number_of_points(self) -> int:
        """The number of grid points in the region."""
        return int(np.prod(self.size))

    def _index_to_physical(self) -> NDArray[np.float64]:
        assert self.direction is not None
        assert self.spacing is not None
        return self.direction * self.spacing[np.newaxis, :]

    def transform_physical_point_to_continuous_index(
        self, points: ArrayLike
    ) -> NDArray[np.float64]:
        """Convert physical points to continuous grid indices.

        Args:
            points: A point, or an array of points with one point per row.

        Returns:
            The continuous indices, with the same shape as the input.
        """
        assert self.origin is not None
        points = np.asarray(points, dtype=np.float64)
        matrix = np.linalg.inv(self._index_to_physical())
        return (points - self.origin) @ matrix.T

    def transform_physical_point_to_index(self, points: ArrayLike) -> NDArray[np.intp]:
        """Convert physical points to the indices of the nearest grid points.

        Args:
            points: A point, or an array of points with one point per row.

        Returns:
            The integer indices, with the same shape as the input.
        """
        continuous = self.transform_physical_point_to_continuous_index(points)
        return np.floor(continuous + 0.5).astype(np.intp)

    def transform_index_to_physical_point(self, indices: ArrayLike) -> NDArray[np.float64]:
        """Convert grid indices to physical points.

        Args:
            indices: An index, or an array of indices with one index per row.

        Returns:
            The physical points, with the same shape as the input.
        """
        assert self.origin is not None
        indices = np.asarray(indices, dtype=np.float64)
        return self.origin + indices @ self._index_to_physical().T

    def is_inside(self, indices: ArrayLike) -> NDArray[np.bool_] | bool:
        """Check if grid indices are inside the region.

        Args:
            indices: An index, or an array of indices with one index per row.

        Returns:
            A boolean for a single index, or a boolean array.
        """
        assert self.index is not None
        indices = np.asarray(indices)
        inside = np.all(
            (indices >= self.index) & (indices < self.index + self.size), axis=-1
        )
        return bool(inside) if indices.ndim == 1 else inside

    def linear_index(self, indices: ArrayLike) -> NDArray[np.intp] | int:
        """Compute the linear position of grid indices within the region.

        The first axis varies fastest.

        Args:
            indices: An index, or an array of indices with one index per row.

        Returns:
            The linear index, or an array of linear indices.
        """
        assert self.index is not None
        indices = np.asarray(indices, dtype=np.intp)
        strides = np.concatenate(([1], np.cumprod(self.size[:-1]))).astype(np.intp)
        linear = (indices - self.index) @ strides
        return int(linear) if indices.ndim == 1 else linear

    def grid_indices(self) -> NDArray[np.intp]:
        """Return the indices of all grid points in the region.

        Returns:
            An array with one index per row, in linear order.
        """
        assert self.index is not None
        grids = np.indices(self.size[::-1]).reshape(self.dimension, -1)
        return grids[::-1].T + self.index

    def grid_points(self) -> NDArray[np.float64]:
        """Return the physical positions of all grid points in the region.

        Returns:
            An array with one point per row, in linear order.
        """
        return self.transform_index_to_physical_point(self.grid_indices())

    def corner_indices(self) -> NDArray[np.intp]:
        """Return the indices of the corners of the region.

        Returns:
            An array with one index per row.
        """
        assert self.index is not None
        corners = np.array(
            np.meshgrid(*[[0, 1]] * self.dimension, indexing="ij")
        ).reshape(self.dimension, -1)
        return self.index + corners.T * (self.size - 1)

    def central_index(self) -> NDArray[np.intp]:
        """Return the index of the grid point at the centre of the region."""
        assert self.index is not None
        return self.index + self.size // 2

    def is_equivalent(self, other: VirtualDomain, tolerance: float = 1e-6) -> bool:
        """Check if another domain has the same region and physical space.

        Args:
            other:     The domain to compare with.
            tolerance: The tolerance used to compare floating point values.

        Returns:
            `True` if the domains are equivalent.
        """
        return bool(
            np.array_equal(self.size, other.size)
            and np.array_equal(self.index, other.index)
            and np.allclose(self.spacing, other.spacing, rtol=0.0, atol=tolerance)
            and np.allclose(self.origin, other.origin, rtol=0.0, atol=tolerance)
            and np.allclose(self.direction, other.direction, rtol=0.0, atol=tolerance)
        )
