from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Generic, TypeVar

from pydantic import ValidationError

from regopt.config import GradientDescentConfig
from regopt.exceptions import MalformedInputError

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class DOMReader(ABC, Generic[T]):
    """Abstract base class for readers that build objects from XML documents.

    A reader parses an XML file into an element tree, or accepts an element
    that was already parsed, and passes it to
    [`generate_data`][regopt.io.DOMReader.generate_data], which builds the
    output object. The output is available as
    [`output`][regopt.io.DOMReader.output] after calling
    [`update`][regopt.io.DOMReader.update].
    """

    def __init__(self, file_name: str | Path | None = None) -> None:
        """Initialize the reader.

        Args:
            file_name: The XML file to read.
        """
        self.file_name = file_name
        self._output: T | None = None

    @property
    def output(self) -> T:
        """The object built by the most recent call to `update`.

        Raises:
            RuntimeError: If no object has been read yet.
        """
        if self._output is None:
            msg = "no object has been read, call update() first"
            raise RuntimeError(msg)
        return self._output

    def update(self, node: ET.Element | None = None, userdata: Any = None) -> T:  # noqa: ANN401
        """Read the document and build the output object.

        Args:
            node:     An element to read; the file is parsed if not given.
            userdata: Arbitrary data passed on to `generate_data`.

        Returns:
            The output object.

        Raises:
            MalformedInputError: If the file cannot be read or parsed, or if
                                 the document is invalid.
        """
        if node is None:
            if self.file_name is None:
                msg = "no file name has been set"
                raise MalformedInputError(msg)
            try:
                node = ET.parse(self.file_name).getroot()  # noqa: S314
            except (OSError, ET.ParseError) as exc:
                msg = f"cannot read {self.file_name}: {exc}"
                raise MalformedInputError(msg) from exc
            _LOGGER.debug("Read %s", self.file_name)
        self._output = self.generate_data(node, userdata)
        return self._output

    @abstractmethod
    def generate_data(self, node: ET.Element, userdata: Any) -> T:  # noqa: ANN401
        """Build the output object from an element.

        Args:
            node:     The root element of the document.
            userdata: Arbitrary data passed by `update`.

        Returns:
            The output object.
        """


def _child(node: ET.Element, tag: str) -> ET.Element:
    child = node.find(tag)
    if child is None:
        msg = f"missing required element <{tag}> in <{node.tag}>"
        raise MalformedInputError(msg)
    return child


def _attribute(node: ET.Element, name: str) -> str:
    value = node.get(name)
    if value is None:
        msg = f"missing required attribute '{name}' in <{node.tag}>"
        raise MalformedInputError(msg)
    return value


def _parse_bool(node: ET.Element, name: str) -> bool | None:
    value = node.get(name)
    if value is None:
        return None
    lowered = value.strip().lower()
    if lowered in {"true", "1", "yes", "on"}:
        return True
    if lowered in {"false", "0", "no", "off"}:
        return False
    msg = f"invalid boolean value '{value}' for attribute '{name}' in <{node.tag}>"
    raise MalformedInputError(msg)


class GradientDescentConfigDOMReader(DOMReader[GradientDescentConfig]):
    """Read a gradient descent configuration from an XML document.

    The document has the following form, where the `threads`, `scales` and
    `return_best` elements, and the `maximum_step_size`, `estimate_once` and
    `estimate_at_each_iteration` attributes, are optional:

    ```xml
    <gradient_descent>
      <learning rate="0.5" maximum_step_size="3.0"
                estimate_once="true" estimate_at_each_iteration="false"/>
      <convergence minimum_value="1e-6" window_size="10"/>
      <iterations number="100"/>
      <threads number="2"/>
      <scales values="1 1 0.001"/>
      <return_best value="true"/>
    </gradient_descent>
    ```
    """

    ROOT_TAG = "gradient_descent"

    def generate_data(
        self,
        node: ET.Element,
        userdata: Any,  # noqa: ANN401, ARG002
    ) -> GradientDescentConfig:
        if node.tag != self.ROOT_TAG:
            msg = f"expected a <{self.ROOT_TAG}> element, found <{node.tag}>"
            raise MalformedInputError(msg)

        learning = _child(node, "learning")
        convergence = _child(node, "convergence")
        iterations = _child(node, "iterations")
        values: dict[str, Any] = {
            "learning_rate": _attribute(learning, "rate"),
            "minimum_convergence_value": _attribute(convergence, "minimum_value"),
            "convergence_window_size": _attribute(convergence, "window_size"),
            "number_of_iterations": _attribute(iterations, "number"),
        }
        if (step := learning.get("maximum_step_size")) is not None:
            values["maximum_step_size_in_physical_units"] = step
        if (once := _parse_bool(learning, "estimate_once")) is not None:
            values["do_estimate_learning_rate_once"] = once
        if (each := _parse_bool(learning, "estimate_at_each_iteration")) is not None:
            values["do_estimate_learning_rate_at_each_iteration"] = each

        if (threads := node.find("threads")) is not None:
            values["number_of_threads"] = _attribute(threads, "number")
        if (scales := node.find("scales")) is not None:
            items = _attribute(scales, "values").split()
            try:
                values["scales"] = [float(item) for item in items]
            except ValueError as exc:
                msg = f"invalid scales: {exc}"
                raise MalformedInputError(msg) from exc
        if (return_best := node.find("return_best")) is not None:
            _attribute(return_best, "value")
            values["return_best_parameters_and_value"] = _parse_bool(
                return_best, "value"
            )

        try:
            return GradientDescentConfig.model_validate(values)
        except ValidationError as exc:
            msg = f"invalid gradient descent configuration:\n{exc}"
            raise MalformedInputError(msg) from exc
