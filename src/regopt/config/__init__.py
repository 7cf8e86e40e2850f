"""Configuration classes for the gradient descent optimizer.

The [`GradientDescentConfig`][regopt.config.GradientDescentConfig] class is
a Pydantic model: it can be created from a dictionary of settings with
`GradientDescentConfig.model_validate`, which checks the values and converts
vectors such as the scales into immutable NumPy arrays. Once created, the
configuration object cannot be modified.
"""

from ._gradient_descent_config import GradientDescentConfig

__all__ = [
    "GradientDescentConfig",
]
