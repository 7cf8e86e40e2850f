"""Helpers shared by the configuration and geometry models.

The models of `regopt` store their array valued fields as read-only NumPy
arrays, so that a validated configuration or virtual domain cannot be changed
behind the back of the optimizer that uses it.
"""

from typing import Any

import numpy as np
from numpy.typing import ArrayLike, NDArray
from pydantic import BaseModel


def immutable_array(
    array_like: ArrayLike,
    **kwargs: Any,  # noqa: ANN401
) -> NDArray[Any]:
    """Create a read-only copy of an array-like value.

    Args:
        array_like: Values to copy into the array.
        kwargs:     Keyword arguments forwarded to `numpy.array`.

    Returns:
        The new array, with its `writeable` flag cleared.
    """
    array = np.array(array_like, **kwargs)
    array.setflags(write=False)
    return array


def _convert_1d_array(array: ArrayLike | None) -> NDArray[np.float64] | None:
    return None if array is None else immutable_array(array, dtype=np.float64, ndmin=1)


def _convert_2d_array(array: ArrayLike | None) -> NDArray[np.float64] | None:
    return None if array is None else immutable_array(array, dtype=np.float64, ndmin=2)


def _convert_1d_array_intp(array: ArrayLike | None) -> NDArray[np.intp] | None:
    return None if array is None else immutable_array(array, dtype=np.intp, ndmin=1)


class ImmutableBaseModel(BaseModel):
    """Pydantic model that is frozen after its validators have run.

    Derived models fill in defaults that depend on other fields, such as the
    dimension of a virtual domain, inside an `after` model validator. The
    validator brackets those assignments with `_mutable()` and `_immutable()`;
    any later assignment raises an `AttributeError`.
    """

    _is_immutable: bool

    def _immutable(self) -> None:
        self._is_immutable = True

    def _mutable(self) -> None:
        self._is_immutable = False

    def __setattr__(self, name: str, value: Any) -> None:  # noqa: ANN401
        if name != "_is_immutable" and self._is_immutable:
            msg = f"{self.__class__.__name__} cannot be modified after validation"
            raise AttributeError(msg)
        super().__setattr__(name, value)
