"""Gradient descent optimization of registration metrics.

The [`GradientDescentOptimizer`][regopt.optimization.GradientDescentOptimizer]
class drives the optimization of the moving transform of a metric. It uses a
[`WindowConvergenceMonitor`][regopt.optimization.WindowConvergenceMonitor] to
detect convergence, and splits work on the gradient into
[`IndexRange`][regopt.optimization.IndexRange] partitions.
"""

from ._convergence import WindowConvergenceMonitor
from ._gradient_descent import GradientDescentOptimizer
from ._ranges import IndexRange, split_index_range

__all__ = [
    "GradientDescentOptimizer",
    "IndexRange",
    "WindowConvergenceMonitor",
    "split_index_range",
]
