from typing import Any

import numpy as np
import pytest

from regopt.config import GradientDescentConfig


def test_defaults() -> None:
    config = GradientDescentConfig()
    assert config.learning_rate == 1.0
    assert config.maximum_step_size_in_physical_units == 0.0
    assert config.do_estimate_scales is None
    assert config.do_estimate_learning_rate_once is None
    assert not config.do_estimate_learning_rate_at_each_iteration
    assert config.minimum_convergence_value == 1e-8
    assert config.convergence_window_size == 50
    assert config.number_of_iterations == 100
    assert config.number_of_threads == 1
    assert config.scales is None


def test_immutable() -> None:
    config = GradientDescentConfig(scales=[1.0, 2.0])
    assert config.scales is not None
    with pytest.raises(AttributeError, match="GradientDescentConfig cannot be modified"):
        config.learning_rate = 2.0
    with pytest.raises(ValueError):  # noqa: PT011
        config.scales[0] = 3.0


def test_scales_convert() -> None:
    config = GradientDescentConfig.model_validate({"scales": 2})
    assert config.scales is not None
    assert np.array_equal(config.scales, [2.0])
    assert config.scales.dtype == np.float64


@pytest.mark.parametrize("scales", [[], [1.0, 0.0], [1.0, -1.0]])
def test_invalid_scales(scales: Any) -> None:
    with pytest.raises(ValueError, match="scales must be a non-empty vector"):
        GradientDescentConfig(scales=scales)


@pytest.mark.parametrize(
    ("field", "value"),
    [
        ("learning_rate", 0.0),
        ("maximum_step_size_in_physical_units", -1.0),
        ("minimum_convergence_value", -1e-3),
        ("convergence_window_size", 1),
        ("number_of_iterations", -1),
        ("number_of_threads", 0),
    ],
)
def test_invalid_values(field: str, value: Any) -> None:
    with pytest.raises(ValueError):  # noqa: PT011
        GradientDescentConfig.model_validate({field: value})


def test_extra_fields_forbidden() -> None:
    with pytest.raises(ValueError, match="Extra inputs are not permitted"):
        GradientDescentConfig.model_validate({"step_size": 1.0})


def test_learning_rate_flags() -> None:
    GradientDescentConfig(do_estimate_learning_rate_once=True)
    GradientDescentConfig(do_estimate_learning_rate_at_each_iteration=True)
    GradientDescentConfig(
        do_estimate_learning_rate_once=False,
        do_estimate_learning_rate_at_each_iteration=True,
    )
    with pytest.raises(ValueError, match="mutually exclusive"):
        GradientDescentConfig(
            do_estimate_learning_rate_once=True,
            do_estimate_learning_rate_at_each_iteration=True,
        )
