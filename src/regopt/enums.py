"""Enumerations used within the `regopt` library."""

from enum import IntEnum, StrEnum


class OptimizerState(IntEnum):
    """Enumerates the states of a gradient descent optimizer.

    An optimizer starts in the `IDLE` state, moves to `INITIALIZING` when
    [`start_optimization`][regopt.optimization.GradientDescentOptimizer.start_optimization]
    is called, and to `ITERATING` once the configuration has been validated.
    An optimization run always ends in one of the terminal states.
    """

    IDLE = 0
    """No optimization has been started yet."""

    INITIALIZING = 1
    """The configuration, scales and learning rate are being set up."""

    ITERATING = 2
    """The optimization loop is running."""

    CONVERGED = 3
    """The convergence value dropped below the configured minimum."""

    MAX_ITERATIONS_REACHED = 4
    """The configured number of iterations was completed."""

    USER_STOPPED = 5
    """The optimization was stopped on request."""

    FAILED = 6
    """The optimization could not start, or the metric raised an error."""

    @property
    def is_terminal(self) -> bool:
        """Whether this state ends an optimization run."""
        return self >= OptimizerState.CONVERGED


class EventType(IntEnum):
    """Enumerates the types of events emitted by an optimizer.

    Observers registered with
    [`add_observer`][regopt.optimization.GradientDescentOptimizer.add_observer]
    receive an [`Event`][regopt.events.Event] object holding the event type,
    the iteration index, the current metric value and the optimizer state.
    """

    START_OPTIMIZATION = 1
    """Emitted after initialization, just before the first iteration."""

    ITERATION = 2
    """Emitted after each completed iteration."""

    END_OPTIMIZATION = 3
    """Emitted when the optimizer reaches a terminal state."""


class SamplingStrategy(StrEnum):
    """Enumerates the ways to sample the virtual domain for scales estimation.

    The [`PhysicalShiftScalesEstimator`][regopt.scales.PhysicalShiftScalesEstimator]
    measures how far representative points move when the transform parameters
    change. This enumeration selects which points are used.
    """

    CORNERS = "corners"
    """The corners of the virtual domain region."""

    CENTRAL_REGION = "central_region"
    """The grid point at the centre of the virtual domain region."""

    RANDOM = "random"
    """A random subset of the grid points of the virtual domain region."""

    VIRTUAL_DOMAIN_POINT_SET = "virtual_domain_point_set"
    """An explicitly provided set of points in the virtual domain."""
