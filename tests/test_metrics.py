import logging

import numpy as np
import pytest

from regopt.exceptions import MetricInitializationError
from regopt.metrics import (
    EuclideanDistancePointSetMetric,
    ExpectationBasedPointSetMetric,
    VirtualDomain,
)
from regopt.transforms import DisplacementFieldTransform, TranslationTransform

_FIXED = np.array([[0.0, 0.0], [10.0, 0.0], [0.0, 10.0]])
_MOVING = _FIXED + np.array([1.0, 0.0])


def _euclidean_metric() -> EuclideanDistancePointSetMetric:
    metric = EuclideanDistancePointSetMetric(_FIXED, _MOVING)
    metric.moving_transform = TranslationTransform(2)
    metric.initialize()
    return metric


def test_euclidean_metric() -> None:
    metric = _euclidean_metric()
    assert not metric.supports_arbitrary_virtual_domain_samples
    assert metric.number_of_parameters == 2
    value, derivative = metric.get_value_and_derivative()
    assert value == pytest.approx(1.0)
    assert np.allclose(derivative, [1.0, 0.0])
    assert metric.number_of_valid_points == 3
    assert np.allclose(metric.get_derivative(), [1.0, 0.0])

    metric.update_transform_parameters(derivative)
    assert metric.get_value() == pytest.approx(0.0)


def test_fixed_transform() -> None:
    metric = EuclideanDistancePointSetMetric(_FIXED, _MOVING)
    metric.fixed_transform = TranslationTransform(2, [1.0, 0.0])
    metric.initialize()
    assert np.allclose(metric.virtual_transformed_point_set, _FIXED - [1.0, 0.0])
    assert metric.get_value() == pytest.approx(2.0)


def test_expectation_metric() -> None:
    metric = ExpectationBasedPointSetMetric(
        _FIXED, _MOVING, point_set_sigma=1.0, evaluation_k_neighborhood=3
    )
    metric.moving_transform = TranslationTransform(2)
    metric.initialize()
    value, derivative = metric.get_value_and_derivative()
    assert value == pytest.approx(-np.exp(-0.5) / (2.0 * np.pi), rel=1e-6)
    assert np.allclose(derivative, [1.0, 0.0], atol=1e-6)

    metric.set_parameters([1.0, 0.0])
    assert metric.get_value() < value


@pytest.mark.parametrize("neighbors", [1, 50])
def test_expectation_neighborhood(neighbors: int) -> None:
    metric = ExpectationBasedPointSetMetric(
        _FIXED, _MOVING, point_set_sigma=1.0, evaluation_k_neighborhood=neighbors
    )
    metric.moving_transform = TranslationTransform(2)
    metric.initialize()
    _, derivative = metric.get_value_and_derivative()
    assert np.allclose(derivative, [1.0, 0.0], atol=1e-6)


def test_expectation_far_points() -> None:
    metric = ExpectationBasedPointSetMetric(
        _FIXED, _MOVING + 1000.0, point_set_sigma=1.0, evaluation_k_neighborhood=1
    )
    metric.moving_transform = TranslationTransform(2)
    metric.initialize()
    value, derivative = metric.get_value_and_derivative()
    assert value == 0.0
    assert np.array_equal(derivative, [0.0, 0.0])


def test_invalid_settings() -> None:
    metric = ExpectationBasedPointSetMetric(_FIXED, _MOVING, point_set_sigma=0.0)
    with pytest.raises(MetricInitializationError, match="sigma must be positive"):
        metric.initialize()
    metric = ExpectationBasedPointSetMetric(_FIXED, _MOVING, evaluation_k_neighborhood=0)
    with pytest.raises(MetricInitializationError, match="at least one point"):
        metric.initialize()
    metric = EuclideanDistancePointSetMetric(_FIXED, [])
    with pytest.raises(MetricInitializationError, match="moving point set is empty"):
        metric.initialize()
    metric = EuclideanDistancePointSetMetric(_FIXED, np.zeros((2, 3)))
    with pytest.raises(MetricInitializationError, match="moving points have dimension"):
        metric.initialize()


def test_not_initialized() -> None:
    metric = EuclideanDistancePointSetMetric(_FIXED, _MOVING)
    with pytest.raises(MetricInitializationError, match="not been initialized"):
        metric.get_value()


def test_points_outside_domain(caplog: pytest.LogCaptureFixture) -> None:
    metric = _euclidean_metric()
    metric.virtual_domain = VirtualDomain(size=[5, 5], origin=[-1.0, -1.0])
    value, derivative = metric.get_value_and_derivative()
    assert metric.number_of_valid_points == 1
    assert value == pytest.approx(1.0)

    metric.virtual_domain = VirtualDomain(size=[2, 2], origin=[100.0, 100.0])
    with caplog.at_level(logging.WARNING):
        value, derivative = metric.get_value_and_derivative()
    assert metric.number_of_valid_points == 0
    assert value == np.finfo(np.float64).max
    assert np.array_equal(derivative, [0.0, 0.0])
    assert "valid points" in caplog.text


def test_local_support_derivative() -> None:
    domain = VirtualDomain(size=[11, 11])
    metric = EuclideanDistancePointSetMetric(_FIXED, _MOVING)
    metric.moving_transform = DisplacementFieldTransform(domain)
    metric.initialize()
    assert metric.has_local_support
    assert metric.number_of_local_parameters == 2

    _, derivative = metric.get_value_and_derivative()
    expected = np.zeros(2 * 121)
    for linear_index in (0, 10, 110):
        expected[2 * linear_index] = 1.0
    assert np.allclose(derivative, expected)
