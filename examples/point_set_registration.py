"""Example of an affine registration of two point sets.

This example registers two circles of points that are offset from each other,
using an expectation based point set metric and an affine transform. It shows
how to estimate parameter scales and the learning rate from the physical shift
of the points, and how to monitor the optimization using events.
"""

from typing import Any

import numpy as np
from numpy.typing import NDArray

from regopt.enums import EventType
from regopt.events import Event
from regopt.metrics import ExpectationBasedPointSetMetric
from regopt.optimization import GradientDescentOptimizer
from regopt.scales import PhysicalShiftScalesEstimator
from regopt.transforms import AffineTransform

OFFSET = np.array([2.0, 2.0])

CONFIG: dict[str, Any] = {
    "maximum_step_size_in_physical_units": 3.0,
    "number_of_iterations": 10,
    "minimum_convergence_value": 0.0,
    "convergence_window_size": 10,
}


def circle(radius: float = 100.0) -> NDArray[np.float64]:
    """Generate points on a circle.

    Args:
        radius: The radius of the circle.

    Returns:
        The points, one per row.
    """
    theta = np.arange(0.0, 6.25, 0.1)
    return radius * np.column_stack((np.cos(theta), np.sin(theta)))


def report(event: Event) -> None:
    """Report the metric value of an iteration.

    Args:
        event: The iteration event.
    """
    print(f"  iteration {event.iteration}: {event.value}")


def run_registration(config: dict[str, Any]) -> AffineTransform:
    """Run the registration.

    Args:
        config: The configuration of the optimizer.

    Returns:
        The optimized transform.
    """
    fixed = circle()
    moving = fixed + OFFSET

    transform = AffineTransform(2)
    metric = ExpectationBasedPointSetMetric(
        fixed, moving, point_set_sigma=2.0, evaluation_k_neighborhood=10
    )
    metric.moving_transform = transform
    metric.initialize()

    estimator = PhysicalShiftScalesEstimator(
        metric, virtual_domain_point_set=metric.virtual_transformed_point_set
    )
    optimizer = GradientDescentOptimizer(metric, config, estimator).add_observer(
        EventType.ITERATION, report
    )
    optimizer.start_optimization()

    print(f"  stopped: {optimizer.stop_condition_description}")
    print(f"  matrix: {transform.matrix.tolist()}")
    print(f"  translation: {transform.translation}\n")
    return transform


def main() -> None:
    """Run the example and check the result."""
    transform = run_registration(CONFIG)
    fixed = circle()
    assert np.allclose(
        transform.get_inverse().transform_points(fixed + OFFSET), fixed, atol=1e-4
    )


if __name__ == "__main__":
    main()
