"""Example of a translation registration of two images.

This example registers two images of a Gaussian blob that are translated with
respect to each other, using the mean squares metric. The optimizer is
configured from an XML document, read with the
`GradientDescentConfigDOMReader`.
"""

import xml.etree.ElementTree as ET

import numpy as np
from numpy.typing import NDArray

from regopt.config import GradientDescentConfig
from regopt.io import GradientDescentConfigDOMReader
from regopt.metrics import MeanSquaresImageMetric
from regopt.optimization import GradientDescentOptimizer
from regopt.scales import PhysicalShiftScalesEstimator
from regopt.transforms import TranslationTransform

SIZE = 32
CENTER = np.array([15.0, 15.0])
SHIFT = np.array([1.5, -1.0])

CONFIG = """
<gradient_descent>
  <learning rate="1.0" maximum_step_size="0.5" estimate_once="true"/>
  <convergence minimum_value="1e-8" window_size="10"/>
  <iterations number="200"/>
</gradient_descent>
"""


def blob(center: NDArray[np.float64], sigma: float = 3.0) -> NDArray[np.float64]:
    """Generate an image of a Gaussian blob.

    Args:
        center: The position of the blob.
        sigma:  The width of the blob.

    Returns:
        The image.
    """
    grid = np.indices((SIZE, SIZE), dtype=np.float64)
    distance = (grid[0] - center[0]) ** 2 + (grid[1] - center[1]) ** 2
    return np.exp(-distance / (2.0 * sigma * sigma))


def run_registration(config: GradientDescentConfig) -> NDArray[np.float64]:
    """Run the registration.

    Args:
        config: The configuration of the optimizer.

    Returns:
        The optimized translation.
    """
    transform = TranslationTransform(2)
    metric = MeanSquaresImageMetric(blob(CENTER), blob(CENTER + SHIFT))
    metric.moving_transform = transform
    metric.initialize()

    optimizer = GradientDescentOptimizer(
        metric, config, PhysicalShiftScalesEstimator(metric)
    )
    optimizer.start_optimization()

    print(f"  stopped: {optimizer.stop_condition_description}")
    print(f"  value: {optimizer.value}")
    print(f"  translation: {transform.offset}\n")
    return transform.offset


def main() -> None:
    """Run the example and check the result."""
    config = GradientDescentConfigDOMReader().update(ET.fromstring(CONFIG))  # noqa: S314
    translation = run_registration(config)
    assert np.allclose(translation, SHIFT, atol=0.05)


if __name__ == "__main__":
    main()
