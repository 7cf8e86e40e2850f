"""Readers that build `regopt` objects from XML documents."""

from ._dom_reader import DOMReader, GradientDescentConfigDOMReader

__all__ = [
    "DOMReader",
    "GradientDescentConfigDOMReader",
]
