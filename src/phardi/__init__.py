"""phardi: SH reconstruction kernels and RUMBA-SD fODF deconvolution."""

from .config import ReconstructionOptions
from .core.backends import TorchMatMul, get_matmul, numpy_matmul
from .core.kernel import (
    ReconstructionKernel,
    assemble_kernel,
    build_kernel,
    generate_coefficients,
)
from .core.rumba import rumba_sd
from .errors import (
    IllConditionedKernelError,
    InvalidInputError,
    NumericInstabilityError,
    PhardiError,
    UnsupportedMethodError,
)
from .model import SphDeconvFit, SphDeconvModel
from .utils.gradients import classify_gradients
from .utils.response import signal_kernel
from .utils.sh_basis import construct_sh_basis
from .utils.sh_projection import sh_odf

__all__ = (
    "assemble_kernel",
    "build_kernel",
    "classify_gradients",
    "construct_sh_basis",
    "generate_coefficients",
    "get_matmul",
    "IllConditionedKernelError",
    "InvalidInputError",
    "NumericInstabilityError",
    "numpy_matmul",
    "PhardiError",
    "ReconstructionKernel",
    "ReconstructionOptions",
    "rumba_sd",
    "sh_odf",
    "signal_kernel",
    "SphDeconvFit",
    "SphDeconvModel",
    "TorchMatMul",
    "UnsupportedMethodError",
)
