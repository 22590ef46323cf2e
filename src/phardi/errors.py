"""Exceptions raised while building kernels and reconstructing fODFs."""

import numpy as np


class PhardiError(Exception):
    """Base class for every error raised by phardi."""


class InvalidInputError(PhardiError, ValueError):
    """Raised for empty, mismatched or out-of-range inputs."""


class UnsupportedMethodError(PhardiError, ValueError):
    """Raised when a reconstruction method or noise model is not known."""


class IllConditionedKernelError(PhardiError, np.linalg.LinAlgError):
    """Raised when the regularized basis product cannot be inverted."""


class NumericInstabilityError(PhardiError, ArithmeticError):
    """Raised when RUMBA-SD produces non-finite or negative fODF values.

    Parameters
    ----------
    msg : str
        Description of the failure.
    voxels : ndarray of int
        Columns of the (batched) result that are not usable.
    result : ndarray
        The raw solver output, including the offending columns.
    """

    def __init__(self, msg, voxels=None, result=None):
        super().__init__(msg)
        self.voxels = np.asarray([] if voxels is None else voxels, dtype=int)
        self.result = result
