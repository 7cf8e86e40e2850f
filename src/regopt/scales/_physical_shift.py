from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from regopt.enums import SamplingStrategy
from regopt.exceptions import ConfigurationError, VirtualDomainError

from .base import ParameterScalesEstimator

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

    from regopt.metrics import ObjectToObjectMetric

_LOGGER = logging.getLogger(__name__)


class PhysicalShiftScalesEstimator(ParameterScalesEstimator):
    r"""Estimate scales from the physical shift of sample points.

    The estimator measures how far a set of sample points in the virtual
    domain move when the parameters of the moving transform change. For
    each local parameter $i$ a small variation $\delta$ is applied, and the
    maximum shift $s_i$ of the sample points is measured. The scale of the
    parameter is then:

    $$
    \sigma_i = \left(\frac{s_i}{\delta}\right)^2
    $$

    Parameters that do not move any sample point receive the smallest
    non-zero scale.

    The sample points are selected by the sampling strategy:

    - `VIRTUAL_DOMAIN_POINT_SET`: the points passed as
      `virtual_domain_point_set`, the default if such points are given.
    - `CORNERS`: the corners of the virtual region, the default for
      transforms with global support.
    - `CENTRAL_REGION`: the central grid point of the virtual region, the
      default for transforms with local support.
    - `RANDOM`: randomly selected grid points of the virtual region.

    For transforms with local support only the block of local parameters
    belonging to the central sample point is probed. The shift caused by a
    step is then linearized: each block of the step is multiplied by the
    Jacobian at the central point, and the largest resulting displacement is
    reported.
    """

    def __init__(  # noqa: PLR0913
        self,
        metric: ObjectToObjectMetric,
        *,
        sampling_strategy: SamplingStrategy | None = None,
        virtual_domain_point_set: ArrayLike | None = None,
        number_of_random_samples: int = 1000,
        seed: int | None = None,
        small_parameter_variation: float = 0.01,
    ) -> None:
        """Initialize the estimator.

        Args:
            metric:                    The metric whose transform is sampled.
            sampling_strategy:         How to select the sample points.
            virtual_domain_point_set:  Explicit sample points in the virtual domain.
            number_of_random_samples:  The number of points sampled by `RANDOM`.
            seed:                      The seed of the random generator.
            small_parameter_variation: The parameter variation used for probing.
        """
        super().__init__(metric)
        if small_parameter_variation <= 0.0:
            msg = "the small parameter variation must be positive"
            raise ConfigurationError(msg)
        self.sampling_strategy = sampling_strategy
        self.virtual_domain_point_set = (
            None
            if virtual_domain_point_set is None
            else np.array(virtual_domain_point_set, dtype=np.float64, ndmin=2)
        )
        self.number_of_random_samples = number_of_random_samples
        self.seed = seed
        self.small_parameter_variation = small_parameter_variation

    def _resolve_strategy(self) -> SamplingStrategy:
        if self.sampling_strategy is not None:
            return self.sampling_strategy
        if self.virtual_domain_point_set is not None:
            return SamplingStrategy.VIRTUAL_DOMAIN_POINT_SET
        if self._metric.has_local_support:
            return SamplingStrategy.CENTRAL_REGION
        return SamplingStrategy.CORNERS

    def sample_virtual_domain(self) -> NDArray[np.float64]:
        """Select the sample points in the virtual domain.

        Returns:
            The sample points, one point per row.

        Raises:
            ConfigurationError: If the strategy needs a virtual domain or a
                                point set that is not available.
        """
        strategy = self._resolve_strategy()
        if strategy == SamplingStrategy.VIRTUAL_DOMAIN_POINT_SET:
            if self.virtual_domain_point_set is None:
                msg = "no virtual domain point set was provided for sampling"
                raise ConfigurationError(msg)
            return self.virtual_domain_point_set
        try:
            region = self._metric.virtual_region
        except VirtualDomainError as exc:
            msg = f"the {strategy} sampling strategy requires a virtual domain"
            raise ConfigurationError(msg) from exc
        if strategy == SamplingStrategy.CORNERS:
            indices = region.corner_indices()
        elif strategy == SamplingStrategy.CENTRAL_REGION:
            indices = region.central_index()[np.newaxis, :]
        else:
            assert region.index is not None
            rng = np.random.default_rng(self.seed)
            count = min(self.number_of_random_samples, region.number_of_points)
            indices = rng.integers(
                region.index, region.index + region.size, size=(count, region.dimension)
            )
        return region.transform_index_to_physical_point(indices)

    def _local_offset(self, samples: NDArray[np.float64]) -> int:
        return int(
            self._metric.compute_parameter_offset_from_virtual_point(
                samples[0], self._metric.number_of_local_parameters
            )
        )

    def compute_maximum_shift(
        self, samples: NDArray[np.float64], delta: NDArray[np.float64]
    ) -> float:
        """Compute the largest displacement of sample points caused by a change.

        The parameters of the moving transform are restored afterwards.

        Args:
            samples: The sample points in the virtual domain.
            delta:   The parameter change, one value per parameter.

        Returns:
            The maximum physical displacement of the sample points.
        """
        transform = self._metric.moving_transform
        assert transform is not None
        original = self._metric.get_parameters().copy()
        try:
            before = transform.transform_points(samples)
            self._metric.update_transform_parameters(delta, 1.0)
            after = transform.transform_points(samples)
        finally:
            self._metric.set_parameters(original)
        return float(np.max(np.linalg.norm(after - before, axis=1)))

    def estimate_scales(self) -> NDArray[np.float64]:
        samples = self.sample_virtual_domain()
        n_local = self._metric.number_of_local_parameters
        offset = self._local_offset(samples) if self._metric.has_local_support else 0
        delta = np.zeros(self._metric.number_of_parameters, dtype=np.float64)

        shifts = np.zeros(n_local, dtype=np.float64)
        for idx in range(n_local):
            delta[:] = 0.0
            delta[offset + idx] = self.small_parameter_variation
            shifts[idx] = self.compute_maximum_shift(samples, delta)

        scales = (shifts / self.small_parameter_variation) ** 2
        nonzero = scales > 0.0
        if not np.any(nonzero):
            _LOGGER.warning(
                "No parameter moves the sample points, using unit scales"
            )
            return np.ones(n_local, dtype=np.float64)
        scales[~nonzero] = np.min(scales[nonzero])
        _LOGGER.debug("Estimated scales: %s", scales)
        return scales

    def estimate_step_scale(self, step: ArrayLike) -> float:
        step = np.asarray(step, dtype=np.float64)
        max_abs = float(np.max(np.abs(step))) if step.size > 0 else 0.0
        if max_abs <= 0.0:
            return 0.0
        samples = self.sample_virtual_domain()
        if self._metric.has_local_support:
            transform = self._metric.moving_transform
            assert transform is not None
            n_local = self._metric.number_of_local_parameters
            jacobian = transform.jacobian_wrt_parameters(samples[0])
            shifts = step.reshape(-1, n_local) @ jacobian.T
            return float(np.max(np.linalg.norm(shifts, axis=1)))
        factor = self.small_parameter_variation / max_abs
        return self.compute_maximum_shift(samples, step * factor) / factor

    def estimate_maximum_step_size(self) -> float:
        return float(np.min(self._metric.virtual_spacing))
