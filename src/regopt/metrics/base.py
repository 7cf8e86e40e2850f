"""This module defines the base class for similarity metrics."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import numpy as np

from regopt.exceptions import MetricInitializationError, VirtualDomainError
from regopt.transforms import DisplacementFieldTransform, IdentityTransform

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

    from regopt.transforms import Transform

    from ._virtual_domain import VirtualDomain

_LOGGER = logging.getLogger(__name__)

MAXIMUM_VALUE = float(np.finfo(np.float64).max)
"""The value reported by a metric that found too few valid points."""


class ObjectToObjectMetric(ABC):
    """Abstract base class for similarity metrics between two objects.

    A metric measures the similarity between a fixed and a moving object, for
    instance two images or two point sets. Both objects are related to a
    common virtual reference space by a transform: the fixed transform maps
    virtual points into the space of the fixed object, the moving transform
    maps virtual points into the space of the moving object. Only the moving
    transform is optimized; the methods that relate to parameters, such as
    [`number_of_parameters`][regopt.metrics.base.ObjectToObjectMetric.number_of_parameters]
    and
    [`update_transform_parameters`][regopt.metrics.base.ObjectToObjectMetric.update_transform_parameters],
    are passed on to it. Both transforms are initialized to identity
    transforms.

    **Derivative convention**

    The derivative returned by a metric is the direction that *improves* the
    metric when it is added to the parameters. Optimizers scale it and pass
    it back to `update_transform_parameters`.

    **Virtual domain**

    The virtual domain defines the resolution at which the metric is
    evaluated and the physical coordinate system. It can be set by the user
    with [`virtual_domain`][regopt.metrics.base.ObjectToObjectMetric.virtual_domain];
    derived classes may synthesize a default during initialization. While it
    is undefined, unit spacing, zero origin and identity direction are
    reported, every point is considered inside, and requesting the region
    raises an error.

    During evaluation derived classes must count the points that were valid
    (for instance, inside both objects), and store the count in
    `_number_of_valid_points`. When too few points are valid,
    [`verify_number_of_valid_points`][regopt.metrics.base.ObjectToObjectMetric.verify_number_of_valid_points]
    substitutes a maximal value and a zero derivative.

    Subclasses must implement:

    - `get_value`: Compute the metric value.
    - `get_value_and_derivative`: Compute the value and the derivative.
    - `supports_arbitrary_virtual_domain_samples`: Whether any virtual point
      corresponds to data.
    """

    def __init__(self, dimension: int) -> None:
        """Initialize the metric.

        Args:
            dimension: The dimension of the virtual domain.
        """
        self._dimension = dimension
        self._fixed_transform: Transform | None = IdentityTransform(dimension)
        self._moving_transform: Transform | None = IdentityTransform(dimension)
        self._virtual_domain: VirtualDomain | None = None
        self._user_has_set_virtual_domain = False
        self._number_of_valid_points = 0
        self.minimum_number_of_valid_points = 1

    @property
    def dimension(self) -> int:
        """The dimension of the virtual domain."""
        return self._dimension

    @property
    def fixed_transform(self) -> Transform | None:
        """The transform mapping virtual points into the fixed space."""
        return self._fixed_transform

    @fixed_transform.setter
    def fixed_transform(self, transform: Transform | None) -> None:
        self._fixed_transform = transform

    @property
    def moving_transform(self) -> Transform | None:
        """The transform mapping virtual points into the moving space."""
        return self._moving_transform

    @moving_transform.setter
    def moving_transform(self, transform: Transform | None) -> None:
        self._moving_transform = transform

    def initialize(self) -> None:
        """Check the inputs of the metric and prepare for evaluation.

        Derived classes extending this method must call it first.

        Raises:
            MetricInitializationError: If a transform is missing or does not
                                       match the dimension of the metric.
        """
        if self._fixed_transform is None:
            msg = "the fixed transform has not been set"
            raise MetricInitializationError(msg)
        if self._moving_transform is None:
            msg = "the moving transform has not been set"
            raise MetricInitializationError(msg)
        for name, transform in (
            ("fixed", self._fixed_transform),
            ("moving", self._moving_transform),
        ):
            if transform.dimension != self._dimension:
                msg = (
                    f"the {name} transform has dimension {transform.dimension}, "
                    f"the metric has dimension {self._dimension}"
                )
                raise MetricInitializationError(msg)
        if self._moving_transform.has_local_support:
            self.verify_displacement_field_size_and_physical_space()

    def _get_moving_transform(self) -> Transform:
        if self._moving_transform is None:
            msg = "the moving transform has not been set"
            raise MetricInitializationError(msg)
        return self._moving_transform

    def _get_fixed_transform(self) -> Transform:
        if self._fixed_transform is None:
            msg = "the fixed transform has not been set"
            raise MetricInitializationError(msg)
        return self._fixed_transform

    @abstractmethod
    def get_value(self) -> float:
        """Compute the metric value at the current parameters.

        Returns:
            The metric value, lower values indicating better alignment.
        """

    @abstractmethod
    def get_value_and_derivative(self) -> tuple[float, NDArray[np.float64]]:
        """Compute the metric value and derivative at the current parameters.

        The derivative has one entry per parameter of the moving transform,
        and points in the direction that improves the metric.

        Returns:
            The metric value and the derivative.
        """

    def get_derivative(self) -> NDArray[np.float64]:
        """Compute the metric derivative at the current parameters.

        Returns:
            The derivative.
        """
        _, derivative = self.get_value_and_derivative()
        return derivative

    @property
    @abstractmethod
    def supports_arbitrary_virtual_domain_samples(self) -> bool:
        """Whether arbitrary virtual domain points correspond to data points.

        Image metrics return `True`. Point-set metrics return `False`, since
        only some virtual points correspond to points of the point sets.
        """

    @property
    def number_of_parameters(self) -> int:
        """The number of parameters of the moving transform."""
        return self._get_moving_transform().number_of_parameters

    @property
    def number_of_local_parameters(self) -> int:
        """The number of local parameters of the moving transform."""
        return self._get_moving_transform().number_of_local_parameters

    @property
    def has_local_support(self) -> bool:
        """Whether the moving transform has local support."""
        return self._get_moving_transform().has_local_support

    def get_parameters(self) -> NDArray[np.float64]:
        """Return the parameters of the moving transform.

        The returned array is owned by the transform, it is not a copy.
        """
        return self._get_moving_transform().parameters

    def set_parameters(self, parameters: ArrayLike) -> None:
        """Copy new values into the parameters of the moving transform.

        Args:
            parameters: The new parameter values.
        """
        self._get_moving_transform().set_parameters(parameters)

    def update_transform_parameters(
        self, derivative: ArrayLike, factor: float = 1.0
    ) -> None:
        """Update the moving transform: `parameters += factor * derivative`.

        Args:
            derivative: The update, one value per parameter.
            factor:     A factor multiplying the update.
        """
        self._get_moving_transform().update_transform_parameters(derivative, factor)

    @property
    def number_of_valid_points(self) -> int:
        """The number of valid points found during the most recent evaluation."""
        return self._number_of_valid_points

    def verify_number_of_valid_points(
        self, value: float, derivative: NDArray[np.float64]
    ) -> tuple[bool, float]:
        """Check that enough valid points were found during evaluation.

        If fewer than `minimum_number_of_valid_points` points were valid, a
        warning is logged, the derivative is set to zero in place, and the
        maximal floating point value is returned as the metric value.

        Args:
            value:      The metric value computed by the evaluation.
            derivative: The derivative computed by the evaluation.

        Returns:
            Whether enough points were valid, and the (possibly substituted) value.
        """
        if self._number_of_valid_points < self.minimum_number_of_valid_points:
            derivative.fill(0.0)
            _LOGGER.warning(
                "%s: only %d valid points found during evaluation, "
                "at least %d are required",
                self.__class__.__name__,
                self._number_of_valid_points,
                self.minimum_number_of_valid_points,
            )
            return False, MAXIMUM_VALUE
        return True, value

    @property
    def virtual_domain(self) -> VirtualDomain | None:
        """The virtual domain, or `None` if undefined."""
        return self._virtual_domain

    @virtual_domain.setter
    def virtual_domain(self, domain: VirtualDomain | None) -> None:
        if domain is not None and domain.dimension != self._dimension:
            msg = (
                f"the virtual domain has dimension {domain.dimension}, "
                f"the metric has dimension {self._dimension}"
            )
            raise VirtualDomainError(msg)
        self._virtual_domain = domain
        self._user_has_set_virtual_domain = domain is not None

    @property
    def user_has_set_virtual_domain(self) -> bool:
        """Whether the virtual domain was provided by the user."""
        return self._user_has_set_virtual_domain

    def _set_default_virtual_domain(self, domain: VirtualDomain) -> None:
        self._virtual_domain = domain
        _LOGGER.debug("%s: using a default virtual domain", self.__class__.__name__)

    @property
    def virtual_spacing(self) -> NDArray[np.float64]:
        """The virtual domain spacing, unit spacing if undefined."""
        if self._virtual_domain is None:
            return np.ones(self._dimension, dtype=np.float64)
        assert self._virtual_domain.spacing is not None
        return self._virtual_domain.spacing

    @property
    def virtual_origin(self) -> NDArray[np.float64]:
        """The virtual domain origin, zero if undefined."""
        if self._virtual_domain is None:
            return np.zeros(self._dimension, dtype=np.float64)
        assert self._virtual_domain.origin is not None
        return self._virtual_domain.origin

    @property
    def virtual_direction(self) -> NDArray[np.float64]:
        """The virtual domain direction, the identity if undefined."""
        if self._virtual_domain is None:
            return np.eye(self._dimension, dtype=np.float64)
        assert self._virtual_domain.direction is not None
        return self._virtual_domain.direction

    @property
    def virtual_region(self) -> VirtualDomain:
        """The virtual domain over which the metric is evaluated.

        Raises:
            VirtualDomainError: If the virtual domain is undefined.
        """
        if self._virtual_domain is None:
            msg = "the virtual domain has not been defined"
            raise VirtualDomainError(msg)
        return self._virtual_domain

    def compute_parameter_offset_from_virtual_index(
        self, index: ArrayLike, number_of_local_parameters: int
    ) -> NDArray[np.intp] | int:
        """Compute the offset of the parameters belonging to a virtual index.

        For local-support transforms, parameters and derivatives are stored
        in a 1D array holding a block of local parameters for each virtual
        grid point. This returns the position of the first parameter of the
        block of the given index: its linear index within the virtual region
        multiplied by the number of local parameters.

        Args:
            index:                      A virtual index, or one index per row.
            number_of_local_parameters: The number of local parameters.

        Returns:
            The offset, or an array of offsets.
        """
        return self.virtual_region.linear_index(index) * number_of_local_parameters

    def compute_parameter_offset_from_virtual_point(
        self, point: ArrayLike, number_of_local_parameters: int
    ) -> NDArray[np.intp] | int:
        """Compute the offset of the parameters belonging to a virtual point.

        The point is first converted to the index of the nearest grid point.

        Args:
            point:                      A virtual point, or one point per row.
            number_of_local_parameters: The number of local parameters.

        Returns:
            The offset, or an array of offsets.
        """
        index = self.virtual_region.transform_physical_point_to_index(point)
        return self.compute_parameter_offset_from_virtual_index(
            index, number_of_local_parameters
        )

    def is_inside_virtual_domain(self, point: ArrayLike) -> NDArray[np.bool_] | bool:
        """Determine if points are within the virtual domain.

        Returns `True` for all points if the virtual domain is undefined,
        which allows point-set metrics to work without a virtual domain.

        Args:
            point: A virtual point, or one point per row.

        Returns:
            A boolean, or a boolean array.
        """
        point = np.asarray(point, dtype=np.float64)
        if self._virtual_domain is None:
            return True if point.ndim == 1 else np.ones(point.shape[0], dtype=np.bool_)
        index = self._virtual_domain.transform_physical_point_to_index(point)
        return self._virtual_domain.is_inside(index)

    def is_index_inside_virtual_domain(
        self, index: ArrayLike
    ) -> NDArray[np.bool_] | bool:
        """Determine if virtual indices are within the virtual domain.

        Args:
            index: A virtual index, or one index per row.

        Returns:
            A boolean, or a boolean array.
        """
        index = np.asarray(index)
        if self._virtual_domain is None:
            return True if index.ndim == 1 else np.ones(index.shape[0], dtype=np.bool_)
        return self._virtual_domain.is_inside(index)

    def transform_physical_point_to_virtual_index(
        self, point: ArrayLike
    ) -> tuple[NDArray[np.intp], NDArray[np.bool_] | bool]:
        """Convert virtual points to the indices of the nearest grid points.

        Args:
            point: A virtual point, or one point per row.

        Returns:
            The indices, and whether they are inside the virtual region.
        """
        region = self.virtual_region
        index = region.transform_physical_point_to_index(point)
        return index, region.is_inside(index)

    def transform_virtual_index_to_physical_point(
        self, index: ArrayLike
    ) -> NDArray[np.float64]:
        """Convert virtual indices to virtual points.

        Args:
            index: A virtual index, or one index per row.

        Returns:
            The physical points.
        """
        return self.virtual_region.transform_index_to_physical_point(index)

    def get_moving_displacement_field_transform(
        self,
    ) -> DisplacementFieldTransform | None:
        """Return the moving transform if it is a displacement field."""
        if isinstance(self._moving_transform, DisplacementFieldTransform):
            return self._moving_transform
        return None

    def verify_displacement_field_size_and_physical_space(self) -> None:
        """Check that a displacement field matches the virtual domain.

        If the moving transform is a displacement field, its grid must have
        the same region and physical space as the virtual domain. If no
        virtual domain has been defined yet, the grid of the field is used.

        Raises:
            VirtualDomainError: If the field and the virtual domain differ.
        """
        field_transform = self.get_moving_displacement_field_transform()
        if field_transform is None:
            return
        if self._virtual_domain is None:
            self._set_default_virtual_domain(field_transform.domain)
            return
        if not self._virtual_domain.is_equivalent(field_transform.domain):
            msg = (
                "the displacement field and the virtual domain differ "
                "in size or physical space"
            )
            raise VirtualDomainError(msg)
