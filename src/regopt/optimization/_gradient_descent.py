"""The gradient descent optimizer."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, Callable, Self

import numpy as np
from pydantic import ValidationError

from regopt.config import GradientDescentConfig
from regopt.enums import EventType, OptimizerState
from regopt.events import EventBroker
from regopt.exceptions import ConfigurationError, EvaluationError

from ._convergence import MAXIMUM_VALUE, WindowConvergenceMonitor
from ._ranges import IndexRange, split_index_range

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from regopt.events import Event
    from regopt.metrics import ObjectToObjectMetric
    from regopt.scales import ParameterScalesEstimator

_LOGGER = logging.getLogger(__name__)

_IDENTITY_SCALES_TOLERANCE = 0.01
_EPSILON = float(np.finfo(np.float64).eps)


class GradientDescentOptimizer:
    """A gradient descent optimizer for registration metrics.

    The optimizer repeatedly evaluates a metric and moves the parameters of
    its moving transform along the derivative. Each iteration:

    1. Evaluates the value and the derivative of the metric.
    2. Stores the value and the parameters if they are the best found so far
       (only when `return_best_parameters_and_value` is set).
    3. Divides the derivative by the scales.
    4. Estimates the learning rate, if requested.
    5. Multiplies the derivative by the learning rate.
    6. Adds the derivative to the parameters of the moving transform.
    7. Adds the value to the convergence monitor.

    Steps 3 and 5 are split over contiguous index ranges, which are processed
    by a thread pool if `number_of_threads` is larger than one. For
    transforms with local support the scales apply to each block of local
    parameters in turn.

    After each iteration the optimizer checks, in this order, for
    convergence, for a stop request, and for the maximum number of
    iterations. A stop can be requested at any time with
    [`stop_optimization`][regopt.optimization.GradientDescentOptimizer.stop_optimization],
    for instance from an event callback; it takes effect at the end of the
    current iteration.

    If the metric finds too few valid points, the iteration is degraded: a
    warning is logged, the parameters are not changed, and the value is not
    used for convergence detection. If the metric raises an exception, the
    optimization fails: the state becomes
    [`FAILED`][regopt.enums.OptimizerState.FAILED] and an
    [`EvaluationError`][regopt.exceptions.EvaluationError] is raised, with
    the parameters left at the values they had before the failing iteration.

    The optimizer emits [`Event`][regopt.events.Event] objects at the start
    of the optimization, after each iteration, and when the optimization
    ends. Observers are added with
    [`add_observer`][regopt.optimization.GradientDescentOptimizer.add_observer].
    """

    def __init__(
        self,
        metric: ObjectToObjectMetric | None = None,
        config: GradientDescentConfig | dict[str, Any] | None = None,
        scales_estimator: ParameterScalesEstimator | None = None,
    ) -> None:
        """Initialize the optimizer.

        The configuration can be given as a
        [`GradientDescentConfig`][regopt.config.GradientDescentConfig] object,
        or as a dictionary that is validated into one.

        Args:
            metric:           The metric to optimize.
            config:           The optimizer configuration.
            scales_estimator: The estimator of scales and learning rates.

        Raises:
            ConfigurationError: If the configuration is invalid.
        """
        self._metric = metric
        self._config = self._validate_config({} if config is None else config)
        self._scales_estimator = scales_estimator
        self._event_broker = EventBroker()
        self._stop_requested = threading.Event()
        self._executor: ThreadPoolExecutor | None = None

        self._state = OptimizerState.IDLE
        self._stop_condition_description = ""
        self._monitor: WindowConvergenceMonitor | None = None
        self._value = MAXIMUM_VALUE
        self._gradient: NDArray[np.float64] = np.zeros(0, dtype=np.float64)
        self._scales: NDArray[np.float64] = np.zeros(0, dtype=np.float64)
        self._scales_are_identity = False
        self._learning_rate = self._config.learning_rate
        self._maximum_step_size = self._config.maximum_step_size_in_physical_units
        self._estimate_learning_rate_once = False
        self._estimate_learning_rate_at_each_iteration = False
        self._learning_rate_estimated = False
        self._convergence_value = MAXIMUM_VALUE
        self._current_iteration = 0
        self._best_value: float | None = None
        self._best_parameters: NDArray[np.float64] | None = None

    @staticmethod
    def _validate_config(
        config: GradientDescentConfig | dict[str, Any],
    ) -> GradientDescentConfig:
        try:
            return GradientDescentConfig.model_validate(config)
        except ValidationError as exc:
            msg = f"invalid optimizer configuration:\n{exc}"
            raise ConfigurationError(msg) from exc

    def _check_not_running(self) -> None:
        if self._state in {OptimizerState.INITIALIZING, OptimizerState.ITERATING}:
            msg = "the optimizer cannot be modified while it is running"
            raise ConfigurationError(msg)

    @property
    def metric(self) -> ObjectToObjectMetric | None:
        """The metric to optimize."""
        return self._metric

    @metric.setter
    def metric(self, metric: ObjectToObjectMetric | None) -> None:
        self._check_not_running()
        self._metric = metric

    @property
    def config(self) -> GradientDescentConfig:
        """The optimizer configuration.

        The configuration may be replaced between runs, by an object or by a
        dictionary.
        """
        return self._config

    @config.setter
    def config(self, config: GradientDescentConfig | dict[str, Any]) -> None:
        self._check_not_running()
        self._config = self._validate_config(config)

    @property
    def scales_estimator(self) -> ParameterScalesEstimator | None:
        """The estimator of scales and learning rates."""
        return self._scales_estimator

    @scales_estimator.setter
    def scales_estimator(self, estimator: ParameterScalesEstimator | None) -> None:
        self._check_not_running()
        self._scales_estimator = estimator

    @property
    def state(self) -> OptimizerState:
        """The state of the optimizer."""
        return self._state

    @property
    def stop_condition_description(self) -> str:
        """A description of the reason the last optimization stopped."""
        return self._stop_condition_description

    @property
    def value(self) -> float:
        """The most recent metric value, or the best value if it was restored."""
        return self._value

    @property
    def current_position(self) -> NDArray[np.float64]:
        """The current parameters of the moving transform.

        This is the array owned by the transform, not a copy.
        """
        return self._get_metric().get_parameters()

    @property
    def gradient(self) -> NDArray[np.float64]:
        """The derivative of the most recent iteration, after modification."""
        return self._gradient

    @property
    def learning_rate(self) -> float:
        """The current learning rate."""
        return self._learning_rate

    @property
    def maximum_step_size_in_physical_units(self) -> float:
        """The maximum step size in use, possibly estimated."""
        return self._maximum_step_size

    @property
    def scales(self) -> NDArray[np.float64]:
        """The scales in use."""
        return self._scales

    @property
    def scales_are_identity(self) -> bool:
        """Whether all scales are within 0.01 of one."""
        return self._scales_are_identity

    @property
    def convergence_value(self) -> float:
        """The most recent convergence value."""
        return self._convergence_value

    @property
    def current_iteration(self) -> int:
        """The number of completed iterations."""
        return self._current_iteration

    def add_observer(
        self, event_type: EventType, callback: Callable[[Event], None]
    ) -> Self:
        """Add an observer that is called when an event is emitted.

        Args:
            event_type: The type of event to observe.
            callback:   The function called with the event.

        Returns:
            The optimizer, to allow chaining.
        """
        self._event_broker.add_observer(event_type, callback)
        return self

    def _get_metric(self) -> ObjectToObjectMetric:
        if self._metric is None:
            msg = "no metric has been set"
            raise ConfigurationError(msg)
        return self._metric

    def _resolve_estimation_flags(self) -> tuple[bool, bool, bool]:
        has_estimator = self._scales_estimator is not None
        config = self._config
        estimate_scales = (
            has_estimator
            if config.do_estimate_scales is None
            else config.do_estimate_scales
        )
        at_each_iteration = config.do_estimate_learning_rate_at_each_iteration
        once = (
            has_estimator and not at_each_iteration
            if config.do_estimate_learning_rate_once is None
            else config.do_estimate_learning_rate_once
        )
        if not has_estimator and (estimate_scales or at_each_iteration or once):
            msg = "scales or learning rate estimation requires a scales estimator"
            raise ConfigurationError(msg)
        return estimate_scales, once, at_each_iteration

    def _initialize_scales(self, *, estimate: bool) -> None:
        metric = self._get_metric()
        n_local = metric.number_of_local_parameters
        if self._config.scales is not None:
            if self._config.scales.size != n_local:
                msg = (
                    f"the number of scales ({self._config.scales.size}) does not "
                    f"match the number of local parameters ({n_local})"
                )
                raise ConfigurationError(msg)
            scales = np.array(self._config.scales, dtype=np.float64)
        else:
            scales = np.ones(n_local, dtype=np.float64)
        if estimate:
            assert self._scales_estimator is not None
            scales = np.asarray(self._scales_estimator.estimate_scales(), dtype=np.float64)
            if scales.size != n_local or np.any(scales <= 0.0):
                msg = (
                    "the scales estimator must return one positive scale "
                    f"per local parameter ({n_local})"
                )
                raise ConfigurationError(msg)
            _LOGGER.info("Estimated scales: %s", scales)
        self._scales = scales
        self._scales_are_identity = bool(
            np.all(np.abs(scales - 1.0) <= _IDENTITY_SCALES_TOLERANCE)
        )

    def start_optimization(self) -> OptimizerState:
        """Start a new optimization run.

        The scales, the learning rate, the convergence window, the best value
        and the iteration counter are initialized, after which the iterations
        run until a stopping criterion is met.

        Returns:
            The terminal state of the optimizer.

        Raises:
            ConfigurationError: If the optimizer is not configured correctly.
            EvaluationError:    If the metric fails during an iteration.
        """
        self._check_not_running()
        self._state = OptimizerState.INITIALIZING
        try:
            self._initialize()
        except ConfigurationError:
            self._state = OptimizerState.IDLE
            raise
        except Exception as exc:
            self._fail(exc)
            raise
        return self._run()

    def _initialize(self) -> None:
        metric = self._get_metric()
        estimate_scales, once, at_each_iteration = self._resolve_estimation_flags()
        self._initialize_scales(estimate=estimate_scales)
        self._estimate_learning_rate_once = once
        self._estimate_learning_rate_at_each_iteration = at_each_iteration
        self._learning_rate = self._config.learning_rate
        self._learning_rate_estimated = False
        self._maximum_step_size = self._config.maximum_step_size_in_physical_units
        if self._maximum_step_size <= _EPSILON and self._scales_estimator is not None:
            self._maximum_step_size = (
                self._scales_estimator.estimate_maximum_step_size()
            )

        self._monitor = WindowConvergenceMonitor(self._config.convergence_window_size)
        self._convergence_value = MAXIMUM_VALUE
        self._current_iteration = 0
        self._best_value = None
        self._best_parameters = None
        self._value = MAXIMUM_VALUE
        self._gradient = np.zeros(metric.number_of_parameters, dtype=np.float64)
        self._stop_condition_description = ""
        self._stop_requested.clear()

        _LOGGER.info(
            "Starting gradient descent: %d parameters, %d iterations",
            metric.number_of_parameters,
            self._config.number_of_iterations,
        )
        self._event_broker.emit(
            EventType.START_OPTIMIZATION,
            iteration=0,
            value=self._value,
            state=self._state,
        )

    def resume_optimization(self) -> OptimizerState:
        """Resume the optimization from the current iteration.

        The convergence window, the best value and the learning rate of the
        previous run are kept. The iteration counter is not reset, so a run
        that stopped at the maximum number of iterations ends immediately,
        unless the configuration was changed.

        Returns:
            The terminal state of the optimizer.

        Raises:
            ConfigurationError: If no optimization was started before.
            EvaluationError:    If the metric fails during an iteration.
        """
        self._check_not_running()
        if self._monitor is None:
            msg = "the optimization cannot be resumed before it is started"
            raise ConfigurationError(msg)
        self._stop_requested.clear()
        self._stop_condition_description = ""
        _LOGGER.info("Resuming gradient descent at iteration %d", self._current_iteration)
        return self._run()

    def stop_optimization(self) -> None:
        """Request the optimization to stop after the current iteration.

        This method may be called from any thread, or from an event callback.
        """
        _LOGGER.debug("Stop requested")
        self._stop_requested.set()

    def _run(self) -> OptimizerState:
        self._state = OptimizerState.ITERATING
        if self._config.number_of_threads > 1:
            self._executor = ThreadPoolExecutor(
                max_workers=self._config.number_of_threads
            )
        try:
            while self._state == OptimizerState.ITERATING:
                if self._current_iteration >= self._config.number_of_iterations:
                    self._finish(
                        OptimizerState.MAX_ITERATIONS_REACHED,
                        "Maximum number of iterations "
                        f"({self._config.number_of_iterations}) exceeded.",
                    )
                    break
                self._advance_one_step()
                if self._convergence_value <= self._config.minimum_convergence_value:
                    self._finish(
                        OptimizerState.CONVERGED,
                        "Convergence checker passed at iteration "
                        f"{self._current_iteration - 1}.",
                    )
                elif self._stop_requested.is_set():
                    self._finish(
                        OptimizerState.USER_STOPPED,
                        "Optimization stopped by the user at iteration "
                        f"{self._current_iteration - 1}.",
                    )
        except Exception as exc:
            self._fail(exc)
            raise
        finally:
            if self._executor is not None:
                self._executor.shutdown()
                self._executor = None
        return self._state

    def _fail(self, exc: Exception) -> None:
        self._state = OptimizerState.FAILED
        self._stop_condition_description = str(exc)
        _LOGGER.error("Gradient descent failed: %s", exc)  # noqa: TRY400
        self._event_broker.emit(
            EventType.END_OPTIMIZATION,
            iteration=self._current_iteration,
            value=self._value,
            state=self._state,
        )

    def _finish(self, state: OptimizerState, description: str) -> None:
        if (
            self._config.return_best_parameters_and_value
            and self._best_parameters is not None
            and self._best_value is not None
        ):
            self._get_metric().set_parameters(self._best_parameters)
            self._value = self._best_value
        self._state = state
        self._stop_condition_description = description
        _LOGGER.info("%s Final value: %g", description, self._value)
        self._event_broker.emit(
            EventType.END_OPTIMIZATION,
            iteration=self._current_iteration,
            value=self._value,
            state=self._state,
        )

    def _advance_one_step(self) -> None:
        metric = self._get_metric()
        iteration = self._current_iteration

        try:
            value, derivative = metric.get_value_and_derivative()
        except Exception as exc:
            msg = f"metric evaluation failed at iteration {iteration}: {exc}"
            raise EvaluationError(msg, iteration) from exc
        self._gradient = np.asarray(derivative, dtype=np.float64)
        if self._gradient.size != metric.number_of_parameters:
            msg = (
                f"the metric returned {self._gradient.size} derivatives "
                f"for {metric.number_of_parameters} parameters"
            )
            raise EvaluationError(msg, iteration)

        degraded = metric.number_of_valid_points < metric.minimum_number_of_valid_points
        if degraded:
            _LOGGER.warning(
                "Iteration %d: too few valid points (%d), parameters not updated",
                iteration,
                metric.number_of_valid_points,
            )
            self._gradient.fill(0.0)
        else:
            if self._config.return_best_parameters_and_value and (
                self._best_value is None or value < self._best_value
            ):
                self._best_value = value
                self._best_parameters = metric.get_parameters().copy()

            self._modify_gradient(self.modify_gradient_by_scales_over_subrange)
            if self._estimate_learning_rate_at_each_iteration or (
                self._estimate_learning_rate_once and not self._learning_rate_estimated
            ):
                self.estimate_learning_rate()
                self._learning_rate_estimated = True
            self._modify_gradient(self.modify_gradient_by_learning_rate_over_subrange)
            metric.update_transform_parameters(self._gradient, 1.0)

            assert self._monitor is not None
            self._monitor.add_value(value)
            self._convergence_value = self._monitor.get_convergence_value()

        self._value = value
        self._current_iteration += 1
        _LOGGER.debug(
            "Iteration %d: value = %g, convergence = %g, learning rate = %g",
            iteration,
            value,
            self._convergence_value,
            self._learning_rate,
        )
        self._event_broker.emit(
            EventType.ITERATION,
            iteration=iteration,
            value=value,
            state=self._state,
        )

    def _modify_gradient(self, operation: Callable[[IndexRange], None]) -> None:
        ranges = split_index_range(
            self._gradient.size, self._config.number_of_threads
        )
        if self._executor is None or len(ranges) < 2:  # noqa: PLR2004
            for index_range in ranges:
                operation(index_range)
            return
        futures = [self._executor.submit(operation, rng) for rng in ranges]
        for future in futures:
            future.result()

    def modify_gradient_by_scales_over_subrange(self, index_range: IndexRange) -> None:
        """Divide a range of the gradient by the scales.

        Scales are indexed modulo their length, so that each block of local
        parameters of a local-support transform is divided by the same scales.
        Nothing is done if all scales are exactly one.

        Args:
            index_range: The range of gradient entries to modify.
        """
        if np.all(self._scales == 1.0):
            return
        indices = np.arange(index_range.start, index_range.end)
        self._gradient[index_range.as_slice()] /= self._scales[
            indices % self._scales.size
        ]

    def modify_gradient_by_learning_rate_over_subrange(
        self, index_range: IndexRange
    ) -> None:
        """Multiply a range of the gradient by the learning rate.

        Args:
            index_range: The range of gradient entries to modify.
        """
        self._gradient[index_range.as_slice()] *= self._learning_rate

    def estimate_learning_rate(self) -> float:
        """Estimate the learning rate from the current, scaled, gradient.

        The learning rate is chosen such that the step moves no point further
        than the maximum step size in physical units. If the gradient causes
        no measurable shift, the learning rate is set to one.

        Returns:
            The new learning rate.

        Raises:
            ConfigurationError: If there is no scales estimator.
        """
        if self._scales_estimator is None:
            msg = "learning rate estimation requires a scales estimator"
            raise ConfigurationError(msg)
        step_scale = self._scales_estimator.estimate_step_scale(self._gradient)
        if step_scale <= _EPSILON:
            self._learning_rate = 1.0
        else:
            self._learning_rate = self._maximum_step_size / step_scale
        _LOGGER.debug("Estimated learning rate: %g", self._learning_rate)
        return self._learning_rate
