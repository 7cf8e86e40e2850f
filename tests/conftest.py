import numpy as np
import pytest
from numpy.typing import ArrayLike, NDArray

from regopt.metrics import ObjectToObjectMetric
from regopt.scales import ParameterScalesEstimator
from regopt.transforms import Transform, TranslationTransform


class QuadraticMetric(ObjectToObjectMetric):
    """A weighted quadratic around a target, with hooks to inject failures."""

    def __init__(
        self,
        initial: ArrayLike,
        target: ArrayLike | None = None,
        *,
        weights: ArrayLike | None = None,
        offset: float = 0.0,
        transform: Transform | None = None,
    ) -> None:
        if transform is None:
            initial = np.asarray(initial, dtype=np.float64)
            transform = TranslationTransform(initial.size, initial)
        super().__init__(transform.dimension)
        self.moving_transform = transform
        size = transform.number_of_parameters
        self.target = np.zeros(size) if target is None else np.asarray(target)
        self.weights = np.ones(size) if weights is None else np.asarray(weights)
        self.offset = offset
        self.evaluations = 0
        self.fail_at: int | None = None
        self.invalid_at: set[int] = set()

    @property
    def supports_arbitrary_virtual_domain_samples(self) -> bool:
        return False

    def get_value(self) -> float:
        self._number_of_valid_points = 1
        residual = self.get_parameters() - self.target
        return float(0.5 * np.sum(self.weights * residual**2)) + self.offset

    def get_value_and_derivative(self) -> tuple[float, NDArray[np.float64]]:
        evaluation = self.evaluations
        self.evaluations += 1
        if self.fail_at == evaluation:
            msg = "evaluation failed"
            raise RuntimeError(msg)
        value = self.get_value()
        derivative = -self.weights * (self.get_parameters() - self.target)
        if evaluation in self.invalid_at:
            self._number_of_valid_points = 0
        _, value = self.verify_number_of_valid_points(value, derivative)
        return value, derivative


class StepSizeEstimator(ParameterScalesEstimator):
    """Measures a step by its largest component."""

    def __init__(
        self,
        metric: ObjectToObjectMetric,
        scales: ArrayLike | None = None,
        maximum_step_size: float = 1.0,
    ) -> None:
        super().__init__(metric)
        self.scales = scales
        self.maximum_step_size = maximum_step_size

    def estimate_scales(self) -> NDArray[np.float64]:
        if self.scales is None:
            return np.ones(self.metric.number_of_local_parameters)
        return np.asarray(self.scales, dtype=np.float64)

    def estimate_step_scale(self, step: ArrayLike) -> float:
        return float(np.max(np.abs(step)))

    def estimate_maximum_step_size(self) -> float:
        return self.maximum_step_size


@pytest.fixture(name="quadratic_metric")
def quadratic_metric_fixture() -> QuadraticMetric:
    return QuadraticMetric([3.0, -2.0])


@pytest.fixture(name="circle_points")
def circle_points_fixture() -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    theta = np.arange(0.0, 6.2 + 0.05, 0.1)
    fixed = 100.0 * np.column_stack((np.cos(theta), np.sin(theta)))
    moving = fixed + np.array([2.0, 2.0])
    return fixed, moving


@pytest.fixture(name="make_metric")
def make_metric_fixture() -> type[QuadraticMetric]:
    return QuadraticMetric


@pytest.fixture(name="make_estimator")
def make_estimator_fixture() -> type[StepSizeEstimator]:
    return StepSizeEstimator
