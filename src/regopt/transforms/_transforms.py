from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from .base import Transform

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

    from regopt.metrics import VirtualDomain


class IdentityTransform(Transform):
    """A transform without parameters that maps every point onto itself."""

    def __init__(self, dimension: int) -> None:
        """Initialize an identity transform.

        Args:
            dimension: The dimension of the space.
        """
        super().__init__(np.zeros(0, dtype=np.float64))
        self._dimension = dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    def transform_points(self, points: ArrayLike) -> NDArray[np.float64]:
        return self._as_points(points).copy()

    def jacobians_wrt_parameters(self, points: ArrayLike) -> NDArray[np.float64]:
        points = self._as_points(points)
        return np.zeros((points.shape[0], self._dimension, 0), dtype=np.float64)

    def get_inverse(self) -> IdentityTransform:
        return IdentityTransform(self._dimension)


class TranslationTransform(Transform):
    """A transform that adds a constant offset to every point.

    The parameters are the components of the offset.
    """

    def __init__(self, dimension: int, offset: ArrayLike | None = None) -> None:
        """Initialize a translation transform.

        Args:
            dimension: The dimension of the space.
            offset:    The initial offset, zero if not given.
        """
        super().__init__(np.zeros(dimension) if offset is None else offset)
        if self._parameters.size != dimension:
            msg = f"the offset must have {dimension} components"
            raise ValueError(msg)

    @property
    def dimension(self) -> int:
        return self.number_of_parameters

    @property
    def offset(self) -> NDArray[np.float64]:
        """The offset, a view of the parameters."""
        return self._parameters

    def transform_points(self, points: ArrayLike) -> NDArray[np.float64]:
        return self._as_points(points) + self._parameters

    def jacobians_wrt_parameters(self, points: ArrayLike) -> NDArray[np.float64]:
        points = self._as_points(points)
        return np.broadcast_to(
            np.eye(self.dimension), (points.shape[0], self.dimension, self.dimension)
        ).copy()

    def get_inverse(self) -> TranslationTransform:
        return TranslationTransform(self.dimension, -self._parameters)


class AffineTransform(Transform):
    r"""An affine transform about a fixed centre.

    Points are mapped according to:

    $$
    T(x) = A (x - c) + c + t
    $$

    The parameters are the entries of the matrix $A$ in row-major order,
    followed by the translation $t$. The centre $c$ is fixed and is not
    optimized.
    """

    def __init__(
        self,
        dimension: int,
        *,
        matrix: ArrayLike | None = None,
        translation: ArrayLike | None = None,
        center: ArrayLike | None = None,
    ) -> None:
        """Initialize an affine transform.

        By default the transform is the identity.

        Args:
            dimension:   The dimension of the space.
            matrix:      The initial matrix.
            translation: The initial translation.
            center:      The fixed centre of rotation and scaling.
        """
        matrix = np.eye(dimension) if matrix is None else np.asarray(matrix)
        translation = (
            np.zeros(dimension) if translation is None else np.asarray(translation)
        )
        if matrix.shape != (dimension, dimension) or translation.shape != (dimension,):
            msg = "the matrix and translation do not match the dimension"
            raise ValueError(msg)
        super().__init__(np.concatenate((matrix.ravel(), translation)))
        self._dimension = dimension
        self._center = (
            np.zeros(dimension, dtype=np.float64)
            if center is None
            else np.array(center, dtype=np.float64)
        )

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def matrix(self) -> NDArray[np.float64]:
        """The matrix, a view of the parameters."""
        size = self._dimension * self._dimension
        return self._parameters[:size].reshape(self._dimension, self._dimension)

    @property
    def translation(self) -> NDArray[np.float64]:
        """The translation, a view of the parameters."""
        return self._parameters[self._dimension * self._dimension :]

    @property
    def center(self) -> NDArray[np.float64]:
        """The fixed centre."""
        return self._center

    def set_identity(self) -> None:
        """Reset the transform to the identity."""
        self.matrix[:] = np.eye(self._dimension)
        self.translation[:] = 0.0

    def transform_points(self, points: ArrayLike) -> NDArray[np.float64]:
        centered = self._as_points(points) - self._center
        return centered @ self.matrix.T + self._center + self.translation

    def jacobians_wrt_parameters(self, points: ArrayLike) -> NDArray[np.float64]:
        centered = self._as_points(points) - self._center
        count, dim = centered.shape
        jacobians = np.zeros((count, dim, self.number_of_parameters), dtype=np.float64)
        for row in range(dim):
            jacobians[:, row, row * dim : (row + 1) * dim] = centered
            jacobians[:, row, dim * dim + row] = 1.0
        return jacobians

    def get_inverse(self) -> AffineTransform:
        """Return the inverse affine transform, about the same centre.

        Raises:
            ValueError: If the matrix is singular.
        """
        try:
            inverse_matrix = np.linalg.inv(self.matrix)
        except np.linalg.LinAlgError as exc:
            msg = "the affine matrix is not invertible"
            raise ValueError(msg) from exc
        return AffineTransform(
            self._dimension,
            matrix=inverse_matrix,
            translation=-inverse_matrix @ self.translation,
            center=self._center,
        )


class DisplacementFieldTransform(Transform):
    """A dense displacement field defined on a regular grid.

    The transform stores one displacement vector per grid point of a
    [`VirtualDomain`][regopt.metrics.VirtualDomain]. A point is displaced by
    the vector of the nearest grid point; points outside the grid are not
    displaced. The parameters are the displacement vectors, stored in the
    linear order of the grid points, so each grid point owns a block of
    `dimension` local parameters.
    """

    def __init__(self, domain: VirtualDomain, field: ArrayLike | None = None) -> None:
        """Initialize a displacement field transform.

        Args:
            domain: The grid on which the field is defined.
            field:  The initial displacements, one row per grid point.
        """
        shape = (domain.number_of_points, domain.dimension)
        field = np.zeros(shape) if field is None else np.asarray(field)
        if field.shape != shape:
            msg = f"the displacement field must have shape {shape}"
            raise ValueError(msg)
        super().__init__(field.ravel())
        self._domain = domain

    @property
    def dimension(self) -> int:
        return self._domain.dimension

    @property
    def domain(self) -> VirtualDomain:
        """The grid on which the field is defined."""
        return self._domain

    @property
    def field(self) -> NDArray[np.float64]:
        """The displacements, one row per grid point, a view of the parameters."""
        return self._parameters.reshape(-1, self.dimension)

    @property
    def number_of_local_parameters(self) -> int:
        return self.dimension

    @property
    def has_local_support(self) -> bool:
        return True

    def transform_points(self, points: ArrayLike) -> NDArray[np.float64]:
        points = self._as_points(points)
        indices = self._domain.transform_physical_point_to_index(points)
        inside = np.asarray(self._domain.is_inside(indices), dtype=np.bool_)
        result = points.copy()
        linear = self._domain.linear_index(indices[inside])
        result[inside] += self.field[linear]
        return result

    def jacobians_wrt_parameters(self, points: ArrayLike) -> NDArray[np.float64]:
        points = self._as_points(points)
        return np.broadcast_to(
            np.eye(self.dimension), (points.shape[0], self.dimension, self.dimension)
        ).copy()
