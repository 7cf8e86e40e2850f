"""Configuration class for the gradient descent optimizer."""

from __future__ import annotations

from typing import Self

import numpy as np
from pydantic import (
    ConfigDict,
    Field,
    NonNegativeFloat,
    NonNegativeInt,
    PositiveFloat,
    PositiveInt,
    model_validator,
)

from .utils import ImmutableBaseModel
from .validated_types import Array1D  # noqa: TC001


class GradientDescentConfig(ImmutableBaseModel):
    r"""Configuration class for the gradient descent optimizer.

    This class, `GradientDescentConfig`, defines the settings of a
    [`GradientDescentOptimizer`][regopt.optimization.GradientDescentOptimizer].
    At each iteration the optimizer updates the parameters $p$ of the moving
    transform according to:

    $$
    p_{n+1} = p_n + \lambda \, \frac{1}{s} \frac{\partial f(p_n)}{\partial p_n}
    $$

    where $\lambda$ is the learning rate and $s$ the parameter scales.

    **Scales**

    - **`scales`**: Manually set scales, one per local parameter of the metric.
      When not given, all scales are one.
    - **`do_estimate_scales`**: Estimate the scales once, at the start of the
      optimization, using the scales estimator passed to the optimizer. This
      overrides `scales`. When left unset, scales are estimated if and only if
      a scales estimator is present.

    **Learning rate**

    - **`learning_rate`**: The manual learning rate, used when no estimation is
      enabled.
    - **`do_estimate_learning_rate_once`**: Estimate the learning rate during
      the first iteration only. When left unset, this is enabled if a scales
      estimator is present and `do_estimate_learning_rate_at_each_iteration`
      is not set.
    - **`do_estimate_learning_rate_at_each_iteration`**: Estimate the learning
      rate at every iteration.
    - **`maximum_step_size_in_physical_units`**: When the learning rate is
      estimated, it is chosen such that no point moves further than this
      distance in physical space in one step. A value of zero requests the
      estimate provided by the scales estimator, typically one voxel.

    **Stopping criteria**

    - **`number_of_iterations`**: The maximum number of iterations.
    - **`minimum_convergence_value`**: The optimization is converged when the
      convergence value, computed by fitting a line to a window of the metric
      values, drops to or below this value.
    - **`convergence_window_size`**: The number of metric values in the window.

    **Other settings**

    - **`return_best_parameters_and_value`**: Track the best value and the
      corresponding parameters, and restore them when the optimization ends.
    - **`number_of_threads`**: The number of threads used to modify the
      gradient by scales and learning rate.

    Note: Learning rate estimation flags
        The two learning rate estimation flags are mutually exclusive: setting
        both to `True` is a configuration error.

    Attributes:
        learning_rate:                               Manual learning rate (default: 1.0).
        maximum_step_size_in_physical_units:         Maximum step size (default: estimated).
        do_estimate_scales:                          Estimate scales (optional).
        do_estimate_learning_rate_at_each_iteration: Estimate learning rate each iteration (default: `False`).
        do_estimate_learning_rate_once:              Estimate learning rate once (optional).
        minimum_convergence_value:                   Convergence threshold (default: 1e-8).
        convergence_window_size:                     Convergence window size (default: 50).
        return_best_parameters_and_value:            Restore the best result (default: `False`).
        number_of_iterations:                        Maximum number of iterations (default: 100).
        number_of_threads:                           Number of threads (default: 1).
        scales:                                      Manual parameter scales (optional).
    """

    learning_rate: PositiveFloat = 1.0
    maximum_step_size_in_physical_units: NonNegativeFloat = 0.0
    do_estimate_scales: bool | None = None
    do_estimate_learning_rate_at_each_iteration: bool = False
    do_estimate_learning_rate_once: bool | None = None
    minimum_convergence_value: NonNegativeFloat = 1e-8
    convergence_window_size: int = Field(default=50, ge=2)
    return_best_parameters_and_value: bool = False
    number_of_iterations: NonNegativeInt = 100
    number_of_threads: PositiveInt = 1
    scales: Array1D | None = None

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        extra="forbid",
        validate_default=True,
    )

    @model_validator(mode="after")
    def _check_settings(self) -> Self:
        self._mutable()
        if (
            self.do_estimate_learning_rate_once
            and self.do_estimate_learning_rate_at_each_iteration
        ):
            msg = (
                "do_estimate_learning_rate_once and "
                "do_estimate_learning_rate_at_each_iteration are mutually exclusive"
            )
            raise ValueError(msg)
        if self.scales is not None and (
            self.scales.size == 0 or np.any(self.scales <= 0.0)
        ):
            msg = "scales must be a non-empty vector of positive values"
            raise ValueError(msg)
        self._immutable()
        return self
