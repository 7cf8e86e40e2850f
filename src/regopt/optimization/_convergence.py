from __future__ import annotations

from collections import deque

import numpy as np

MAXIMUM_VALUE = float(np.finfo(np.float64).max)


class WindowConvergenceMonitor:
    """Detect convergence from the trend of recent metric values.

    The monitor keeps the most recent `window_size` values in a window.
    Until the window is full, the convergence value is the largest floating
    point number. Once it is full, the values in the window are normalized by
    the total energy, the sum of the absolute values of all values added since
    the last call to `clear`. A straight line is then fitted through the
    normalized values, against time normalized to the interval [0, 1], and
    the absolute value of its slope is returned. Small values indicate that
    the metric no longer changes.
    """

    def __init__(self, window_size: int = 50) -> None:
        """Initialize the monitor.

        Args:
            window_size: The number of values used to detect convergence.
        """
        if window_size < 2:  # noqa: PLR2004
            msg = "the convergence window must hold at least two values"
            raise ValueError(msg)
        self._window: deque[float] = deque(maxlen=window_size)
        self._total_energy = 0.0
        self._times = np.linspace(0.0, 1.0, window_size)
        self._centered_times = self._times - self._times.mean()

    @property
    def window_size(self) -> int:
        """The number of values in a full window."""
        assert self._window.maxlen is not None
        return self._window.maxlen

    @property
    def total_energy(self) -> float:
        """The sum of the absolute values of all values added."""
        return self._total_energy

    def add_value(self, value: float) -> None:
        """Add a value, dropping the oldest value if the window is full.

        Args:
            value: The new metric value.
        """
        self._window.append(float(value))
        self._total_energy += abs(float(value))

    def clear(self) -> None:
        """Remove all values and reset the total energy."""
        self._window.clear()
        self._total_energy = 0.0

    def get_convergence_value(self) -> float:
        """Compute the convergence value from the current window.

        Returns:
            The absolute slope of the normalized values, or the largest
            floating point number if the window is not yet full.
        """
        if len(self._window) < self.window_size:
            return MAXIMUM_VALUE
        if self._total_energy == 0.0:
            return 0.0
        values = np.fromiter(self._window, dtype=np.float64) / self._total_energy
        # Subtracting a constant does not change the slope, constant windows give 0.
        values -= values[0]
        slope = np.dot(self._centered_times, values) / np.dot(
            self._centered_times, self._centered_times
        )
        return float(abs(slope))
