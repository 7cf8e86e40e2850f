"""Annotated types for Pydantic models providing input conversion and validation.

These types leverage Pydantic's `BeforeValidator` to automatically convert
input values (like lists or scalars) into immutable NumPy arrays during model
initialization.

- [`Array1D`][regopt.config.validated_types.Array1D]: Converts input to an
  immutable 1D `np.float64` array.
- [`Array2D`][regopt.config.validated_types.Array2D]: Converts input to an
  immutable 2D `np.float64` array.
- [`Array1DInt`][regopt.config.validated_types.Array1DInt]: Converts input to an
  immutable 1D `np.intp` array.
"""

from typing import Annotated

import numpy as np
from numpy.typing import NDArray
from pydantic import BeforeValidator

from .utils import _convert_1d_array, _convert_1d_array_intp, _convert_2d_array

Array1D = Annotated[NDArray[np.float64], BeforeValidator(_convert_1d_array)]
"""Convert to an immutable 1D numpy array of floating point values."""

Array2D = Annotated[NDArray[np.float64], BeforeValidator(_convert_2d_array)]
"""Convert to an immutable 2D numpy array of floating point values."""

Array1DInt = Annotated[NDArray[np.intp], BeforeValidator(_convert_1d_array_intp)]
"""Convert to an immutable 1D numpy array of integer values."""
