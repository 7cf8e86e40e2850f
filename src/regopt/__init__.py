"""Gradient descent optimization for image and point-set registration.

The `regopt` package iteratively updates the parameters of a moving transform
to improve a differentiable similarity metric between a fixed and a moving
dataset. Its main parts are:

- [`GradientDescentOptimizer`][regopt.optimization.GradientDescentOptimizer]:
  the iteration state machine, with scale normalization, learning-rate
  estimation, convergence monitoring and best-value tracking.
- [`ObjectToObjectMetric`][regopt.metrics.ObjectToObjectMetric]: the metric
  contract consumed by the optimizer, including the virtual-domain
  bookkeeping shared by all metrics.
- [`ParameterScalesEstimator`][regopt.scales.ParameterScalesEstimator]: the
  contract for estimating parameter scales and step sizes from the physical
  displacement caused by a transform.
"""

__version__ = "0.1.0"
