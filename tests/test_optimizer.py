from __future__ import annotations

import logging
from typing import Any

import numpy as np
import pytest

from regopt.enums import EventType, OptimizerState
from regopt.events import Event
from regopt.exceptions import (
    ConfigurationError,
    EvaluationError,
    MetricInitializationError,
)
from regopt.metrics import VirtualDomain
from regopt.optimization import GradientDescentOptimizer
from regopt.transforms import DisplacementFieldTransform


@pytest.fixture(name="config")
def config_fixture() -> dict[str, Any]:
    return {
        "learning_rate": 0.5,
        "number_of_iterations": 10,
        "minimum_convergence_value": 0.0,
        "convergence_window_size": 5,
    }


def test_no_metric(config: Any) -> None:
    optimizer = GradientDescentOptimizer(config=config)
    with pytest.raises(ConfigurationError, match="no metric has been set"):
        optimizer.start_optimization()
    assert optimizer.state == OptimizerState.IDLE


def test_scales_length_mismatch(quadratic_metric: Any, config: Any) -> None:
    config["scales"] = [1.0, 1.0, 1.0]
    optimizer = GradientDescentOptimizer(quadratic_metric, config)
    with pytest.raises(ConfigurationError, match="number of scales"):
        optimizer.start_optimization()
    assert optimizer.state == OptimizerState.IDLE
    assert np.array_equal(quadratic_metric.get_parameters(), [3.0, -2.0])
    assert quadratic_metric.evaluations == 0


@pytest.mark.parametrize(
    ("scales", "expected"),
    [(None, True), ([1.0, 1.005], True), ([0.995, 1.0], True), ([1.0, 2.0], False)],
)
def test_identity_scales(
    quadratic_metric: Any, config: Any, scales: Any, expected: bool
) -> None:
    config["scales"] = scales
    config["number_of_iterations"] = 0
    optimizer = GradientDescentOptimizer(quadratic_metric, config)
    assert optimizer.start_optimization() == OptimizerState.MAX_ITERATIONS_REACHED
    assert optimizer.scales_are_identity == expected
    assert optimizer.current_iteration == 0


def test_descent_on_quadratic(quadratic_metric: Any, config: Any) -> None:
    values = []
    iterations = []

    def track(event: Event) -> None:
        iterations.append(event.iteration)
        values.append(event.value)

    config["number_of_iterations"] = 20
    optimizer = GradientDescentOptimizer(quadratic_metric, config).add_observer(
        EventType.ITERATION, track
    )
    state = optimizer.start_optimization()

    assert state == OptimizerState.MAX_ITERATIONS_REACHED
    assert optimizer.current_iteration == 20
    assert iterations == list(range(20))
    assert np.all(np.diff(values) < 0.0)
    assert np.allclose(optimizer.current_position, [3.0 * 0.5**20, -2.0 * 0.5**20])
    assert optimizer.stop_condition_description.startswith("Maximum number")


def test_scales_divide_gradient(quadratic_metric: Any, config: Any) -> None:
    config["scales"] = [2.0, 4.0]
    config["learning_rate"] = 1.0
    config["number_of_iterations"] = 1
    optimizer = GradientDescentOptimizer(quadratic_metric, config)
    optimizer.start_optimization()
    assert np.allclose(optimizer.gradient, [-1.5, 0.5])
    assert np.allclose(optimizer.current_position, [1.5, -1.5])


def test_return_best_under_oscillation(make_metric: Any, config: Any) -> None:
    config["learning_rate"] = 2.1
    config["number_of_iterations"] = 5

    metric = make_metric([1.0])
    optimizer = GradientDescentOptimizer(metric, config)
    optimizer.start_optimization()
    assert np.allclose(optimizer.current_position, [(-1.1) ** 5])

    config["return_best_parameters_and_value"] = True
    metric = make_metric([1.0])
    optimizer = GradientDescentOptimizer(metric, config)
    optimizer.start_optimization()
    assert np.allclose(optimizer.current_position, [1.0])
    assert optimizer.value == pytest.approx(0.5)


def test_constant_window_converges(make_metric: Any, config: Any) -> None:
    config["minimum_convergence_value"] = 1e-8
    config["number_of_iterations"] = 100
    metric = make_metric([1.0, 2.0], [1.0, 2.0], offset=2.0)
    optimizer = GradientDescentOptimizer(metric, config)
    assert optimizer.start_optimization() == OptimizerState.CONVERGED
    assert optimizer.current_iteration == config["convergence_window_size"]
    assert optimizer.convergence_value == 0.0


def test_stop_from_observer(quadratic_metric: Any, config: Any) -> None:
    iterations = []

    def stop_at_three(event: Event) -> None:
        iterations.append(event.iteration)
        if event.iteration == 3:
            optimizer.stop_optimization()

    optimizer = GradientDescentOptimizer(quadratic_metric, config).add_observer(
        EventType.ITERATION, stop_at_three
    )
    assert optimizer.start_optimization() == OptimizerState.USER_STOPPED
    assert iterations == [0, 1, 2, 3]
    assert optimizer.current_iteration == 4
    assert quadratic_metric.evaluations == 4


def test_resume_after_stop(quadratic_metric: Any, config: Any) -> None:
    iterations = []

    def stop_at_three(event: Event) -> None:
        iterations.append(event.iteration)
        if event.iteration == 3:
            optimizer.stop_optimization()

    optimizer = GradientDescentOptimizer(quadratic_metric, config).add_observer(
        EventType.ITERATION, stop_at_three
    )
    optimizer.start_optimization()
    assert optimizer.resume_optimization() == OptimizerState.MAX_ITERATIONS_REACHED
    assert iterations == list(range(10))
    assert np.allclose(optimizer.current_position, [3.0 * 0.5**10, -2.0 * 0.5**10])


def test_resume_before_start(quadratic_metric: Any, config: Any) -> None:
    optimizer = GradientDescentOptimizer(quadratic_metric, config)
    with pytest.raises(ConfigurationError, match="cannot be resumed"):
        optimizer.resume_optimization()


def test_evaluation_failure(quadratic_metric: Any, config: Any) -> None:
    states = []
    quadratic_metric.fail_at = 2
    optimizer = GradientDescentOptimizer(quadratic_metric, config).add_observer(
        EventType.END_OPTIMIZATION, lambda event: states.append(event.state)
    )
    with pytest.raises(EvaluationError, match="iteration 2") as exc_info:
        optimizer.start_optimization()
    assert exc_info.value.iteration == 2
    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert optimizer.state == OptimizerState.FAILED
    assert states == [OptimizerState.FAILED]
    assert np.allclose(optimizer.current_position, [0.75, -0.5])


def test_evaluation_failure_does_not_restore_best(
    quadratic_metric: Any, config: Any
) -> None:
    config["return_best_parameters_and_value"] = True
    config["learning_rate"] = 2.1
    quadratic_metric.fail_at = 2
    optimizer = GradientDescentOptimizer(quadratic_metric, config)
    with pytest.raises(EvaluationError):
        optimizer.start_optimization()
    assert np.allclose(optimizer.current_position, [3.0 * 1.21, -2.0 * 1.21])


def test_initialization_failure_allows_restart(
    quadratic_metric: Any, config: Any
) -> None:
    states = []
    transform = quadratic_metric.moving_transform
    quadratic_metric.moving_transform = None
    optimizer = GradientDescentOptimizer(quadratic_metric, config).add_observer(
        EventType.END_OPTIMIZATION, lambda event: states.append(event.state)
    )
    with pytest.raises(MetricInitializationError):
        optimizer.start_optimization()
    assert optimizer.state == OptimizerState.FAILED
    assert optimizer.stop_condition_description
    assert states == [OptimizerState.FAILED]

    quadratic_metric.moving_transform = transform
    assert optimizer.start_optimization() == OptimizerState.MAX_ITERATIONS_REACHED
    assert optimizer.current_iteration == 10


def test_start_observer_failure(quadratic_metric: Any, config: Any) -> None:
    def fail(event: Event) -> None:
        msg = "observer failed"
        raise RuntimeError(msg)

    optimizer = GradientDescentOptimizer(quadratic_metric, config)
    optimizer.add_observer(EventType.START_OPTIMIZATION, fail)
    with pytest.raises(RuntimeError, match="observer failed"):
        optimizer.start_optimization()
    assert optimizer.state == OptimizerState.FAILED
    assert optimizer.stop_condition_description == "observer failed"
    assert np.allclose(optimizer.current_position, [3.0, -2.0])
    optimizer.config = config


def test_degraded_step(
    quadratic_metric: Any, config: Any, caplog: pytest.LogCaptureFixture
) -> None:
    positions = []
    values = []

    def track(event: Event) -> None:
        positions.append(optimizer.current_position.copy())
        values.append(event.value)

    quadratic_metric.invalid_at = {1}
    config["number_of_iterations"] = 3
    optimizer = GradientDescentOptimizer(quadratic_metric, config).add_observer(
        EventType.ITERATION, track
    )
    with caplog.at_level(logging.WARNING):
        state = optimizer.start_optimization()

    assert state == OptimizerState.MAX_ITERATIONS_REACHED
    assert np.allclose(positions[0], [1.5, -1.0])
    assert np.allclose(positions[1], [1.5, -1.0])
    assert np.allclose(positions[2], [0.75, -0.5])
    assert values[1] == np.finfo(np.float64).max
    assert "too few valid points" in caplog.text


def test_threads_match_serial(make_metric: Any, config: Any) -> None:
    positions = []
    for threads in (1, 3):
        metric = make_metric(
            np.arange(1.0, 8.0), weights=np.linspace(0.5, 2.0, 7)
        )
        config["number_of_threads"] = threads
        config["scales"] = np.arange(1.0, 8.0)
        config["learning_rate"] = 0.3
        config["number_of_iterations"] = 3
        optimizer = GradientDescentOptimizer(metric, config)
        optimizer.start_optimization()
        positions.append(optimizer.current_position.copy())
    np.testing.assert_array_equal(positions[0], positions[1])


def test_local_support_scales(make_metric: Any, config: Any) -> None:
    domain = VirtualDomain(size=[2, 2])
    transform = DisplacementFieldTransform(domain, np.ones((4, 2)))
    metric = make_metric(None, transform=transform)
    config["learning_rate"] = 1.0
    config["number_of_iterations"] = 1
    config["scales"] = [1.0, 4.0]
    optimizer = GradientDescentOptimizer(metric, config)
    optimizer.start_optimization()
    assert np.allclose(optimizer.gradient, [-1.0, -0.25] * 4)
    assert np.allclose(transform.field, [[0.0, 0.75]] * 4)

    optimizer.config = {**config, "scales": [1.0] * 8}
    with pytest.raises(ConfigurationError, match="number of scales"):
        optimizer.start_optimization()


def test_both_learning_rate_flags(quadratic_metric: Any, config: Any) -> None:
    config["do_estimate_learning_rate_once"] = True
    config["do_estimate_learning_rate_at_each_iteration"] = True
    with pytest.raises(ConfigurationError, match="mutually exclusive"):
        GradientDescentOptimizer(quadratic_metric, config)


@pytest.mark.parametrize(
    "flag",
    [
        "do_estimate_scales",
        "do_estimate_learning_rate_once",
        "do_estimate_learning_rate_at_each_iteration",
    ],
)
def test_estimation_without_estimator(
    quadratic_metric: Any, config: Any, flag: str
) -> None:
    config[flag] = True
    optimizer = GradientDescentOptimizer(quadratic_metric, config)
    with pytest.raises(ConfigurationError, match="requires a scales estimator"):
        optimizer.start_optimization()
    assert optimizer.state == OptimizerState.IDLE
    with pytest.raises(ConfigurationError, match="requires a scales estimator"):
        optimizer.estimate_learning_rate()


def test_learning_rate_at_each_iteration(
    quadratic_metric: Any, make_estimator: Any, config: Any
) -> None:
    config["maximum_step_size_in_physical_units"] = 0.5
    config["do_estimate_learning_rate_at_each_iteration"] = True
    config["number_of_iterations"] = 3
    optimizer = GradientDescentOptimizer(
        quadratic_metric, config, make_estimator(quadratic_metric)
    )
    optimizer.start_optimization()
    # Each step moves the largest component by the maximum step size.
    assert np.allclose(optimizer.current_position, [1.5, -1.0])
    assert optimizer.learning_rate == pytest.approx(0.5 / 2.0)


def test_learning_rate_once(
    quadratic_metric: Any, make_estimator: Any, config: Any
) -> None:
    config["maximum_step_size_in_physical_units"] = 0.5
    config["number_of_iterations"] = 2
    optimizer = GradientDescentOptimizer(
        quadratic_metric, config, make_estimator(quadratic_metric)
    )
    optimizer.start_optimization()
    assert optimizer.learning_rate == pytest.approx(1.0 / 6.0)
    factor = (1.0 - 1.0 / 6.0) ** 2
    assert np.allclose(optimizer.current_position, [3.0 * factor, -2.0 * factor])


def test_estimated_maximum_step_size(
    quadratic_metric: Any, make_estimator: Any, config: Any
) -> None:
    config["number_of_iterations"] = 1
    estimator = make_estimator(quadratic_metric, maximum_step_size=0.25)
    optimizer = GradientDescentOptimizer(quadratic_metric, config, estimator)
    optimizer.start_optimization()
    assert optimizer.maximum_step_size_in_physical_units == 0.25
    assert np.allclose(optimizer.current_position, [2.75, -2.0 + 0.25 * 2.0 / 3.0])


def test_zero_step_learning_rate(
    make_metric: Any, make_estimator: Any, config: Any
) -> None:
    metric = make_metric([1.0, 1.0], [1.0, 1.0])
    config["number_of_iterations"] = 1
    optimizer = GradientDescentOptimizer(metric, config, make_estimator(metric))
    optimizer.start_optimization()
    assert optimizer.learning_rate == 1.0


def test_estimated_scales_override(
    quadratic_metric: Any, make_estimator: Any, config: Any
) -> None:
    config["scales"] = [1.0, 1.0]
    config["do_estimate_learning_rate_once"] = False
    config["number_of_iterations"] = 1
    estimator = make_estimator(quadratic_metric, scales=[2.0, 2.0])
    optimizer = GradientDescentOptimizer(quadratic_metric, config, estimator)
    optimizer.start_optimization()
    assert np.array_equal(optimizer.scales, [2.0, 2.0])
    assert not optimizer.scales_are_identity
    assert optimizer.learning_rate == 0.5

    config["scales"] = [1.0]
    optimizer.config = config
    with pytest.raises(ConfigurationError, match="number of scales"):
        optimizer.start_optimization()


def test_config_setter(quadratic_metric: Any, config: Any) -> None:
    optimizer = GradientDescentOptimizer(quadratic_metric, config)
    optimizer.config = {"number_of_iterations": 3}
    optimizer.start_optimization()
    assert optimizer.current_iteration == 3
    with pytest.raises(ConfigurationError, match="invalid optimizer configuration"):
        optimizer.config = {"number_of_threads": 0}
    with pytest.raises(ConfigurationError, match="invalid optimizer configuration"):
        optimizer.config = {"unknown_option": 1}


def test_events(quadratic_metric: Any, config: Any) -> None:
    events: list[Event] = []
    config["number_of_iterations"] = 2
    optimizer = GradientDescentOptimizer(quadratic_metric, config)
    for event_type in EventType:
        optimizer.add_observer(event_type, events.append)
    state = optimizer.start_optimization()
    assert [event.event_type for event in events] == [
        EventType.START_OPTIMIZATION,
        EventType.ITERATION,
        EventType.ITERATION,
        EventType.END_OPTIMIZATION,
    ]
    assert events[-1].state == state
    assert events[1].state == OptimizerState.ITERATING
    assert events[1].value == pytest.approx(0.5 * (9.0 + 4.0))
