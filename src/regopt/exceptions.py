"""Exceptions raised within the `regopt` library."""


class RegistrationError(Exception):
    """Base class of all errors raised by `regopt`."""


class ConfigurationError(RegistrationError, ValueError):
    """Raised when an optimization cannot start because it is misconfigured.

    Examples are a missing metric, scales that do not match the number of
    local parameters of the metric, or learning-rate estimation requested
    without a scales estimator.
    """


class EvaluationError(RegistrationError, RuntimeError):
    """Raised when the metric fails while computing its value or derivative.

    The original exception is chained and available via `__cause__`. The
    transform parameters are left as they were before the failing step.
    """

    def __init__(self, message: str, iteration: int) -> None:
        """Initialize the EvaluationError exception.

        Args:
            message:   A description of the failure.
            iteration: The iteration during which the metric failed.
        """
        self.iteration = iteration
        super().__init__(message)


class MalformedInputError(RegistrationError, ValueError):
    """Raised when an input document lacks a required element or attribute."""


class VirtualDomainError(RegistrationError, RuntimeError):
    """Raised when the virtual domain is undefined or inconsistent."""


class MetricInitializationError(RegistrationError, RuntimeError):
    """Raised when a metric is initialized with missing or invalid inputs."""
