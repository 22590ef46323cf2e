"""Robust and Unbiased Model-BAsed Spherical Deconvolution (RUMBA-SD)"""
import logging
import numbers

import numpy as np

from ..errors import InvalidInputError, NumericInstabilityError, UnsupportedMethodError
from .backends import numpy_matmul

logger = logging.getLogger(__name__)

# Noise standard deviation: starting value and bounds of the re-estimate,
# for signals normalized to the mean b0
SIGMA0 = 1 / 15
SIGMA_MIN = 1 / 80
SIGMA_MAX = 1 / 8


def mbessel_ratio(n, x):
    r"""
    Fast computation of modified Bessel function ratio (first kind).

    Computes:

    $I_{n}(x) / I_{n-1}(x)$

    using Perron's continued fraction equation where $I_n$ is the modified
    Bessel function of first kind, order $n$ [1]_.

    Parameters
    ----------
    n : int
        Order of Bessel function in numerator (denominator is of order n-1).
        Must be a positive int.
    x : float or ndarray
        Value or array of values with which to compute ratio.

    Returns
    -------
    y : float or ndarray
        Result of ratio computation.

    References
    ----------
    .. [1] W. Gautschi and J. Slavik, "On the computation of modified Bessel
           function ratios," Math. Comp., vol. 32, no. 143, pp. 865-875, 1978,
           doi: 10.1090/S0025-5718-1978-0470267-9
    """

    y = x / ((2 * n + x) - (2 * x * (n + 1 / 2) / (2 * n + 1 + 2 * x - (
        2 * x * (n + 3 / 2) / (2 * n + 2 + 2 * x - (2 * x * (n + 5 / 2) / (
            2 * n + 3 + 2 * x)))))))

    return y


def noise_order(recon_type, n_coils=1):
    """Order of the non-central chi distribution for a reconstruction type."""
    if recon_type == "smf":
        return 1  # Rician noise (same as Noncentral Chi with order 1)
    if recon_type == "sos":
        return n_coils  # Noncentral Chi noise (order = # of coils)
    raise UnsupportedMethodError(
        f"Invalid recon_type. Should be 'smf' or 'sos', received {recon_type}"
    )


def rumba_sd(signal, kernel, fodf0, n_iter, matmul=numpy_matmul,
             recon_type='smf', n_coils=1):
    r"""
    Estimate the fODF of one voxel, or a batch of voxels, with RUMBA-SD [1]_.

    Parameters
    ----------
    signal : ndarray (N,) or (N, V)
        Observed signal, normalized to the mean b0. Columns of a 2D array are
        independent voxels.
    kernel : ndarray (N, M)
        Signal dictionary mapping the fODF on M grid directions to N
        measurements.
    fodf0 : ndarray (M,) or (M, V)
        Initial fODF. Must be non-negative; entries equal to zero stay zero.
    n_iter : int
        Number of iterations. There is no convergence test; with ``0`` a copy
        of ``fodf0`` is returned.
    matmul : callable, optional
        Dense product ``matmul(a, b)``. Every product of the iteration goes
        through it.
    recon_type : {'smf', 'sos'}, optional
        Spatial matched filter (Rician noise) or sum-of-squares
        (non-central chi noise).
    n_coils : int, optional
        Number of coils, only used with ``'sos'``.

    Returns
    -------
    fodf : ndarray (M,) or (M, V)
        Non-negative fODF, not normalized.

    Raises
    ------
    NumericInstabilityError
        If any voxel ends with non-finite or negative values. The exception
        carries the offending columns and the raw result.

    Notes
    -----
    With $\textbf{H}$ the kernel, $\textbf{S}$ the signal and $n$ the noise
    order, each iteration applies

    $\textbf{f}^{k+1} = \textbf{f}^k \circ \frac{\textbf{H}^T\left[\textbf{S}
    \circ\frac{I_n(\textbf{S}\circ\textbf{Hf}^k/\sigma^2)} {I_{n-1}(\textbf{S}
    \circ\textbf{Hf}^k/\sigma^2)} \right ]} {\textbf{H}^T\textbf{Hf}^k}$

    and re-estimates $\sigma^2$ from the residual, bounded to
    ``[SIGMA_MIN ** 2, SIGMA_MAX ** 2]``. The predicted signal
    $\textbf{Hf}^k$ and the denominator are clamped to machine epsilon before
    any division.

    References
    ----------
    .. [1] Canales-Rodriguez, E. J., Daducci, A., Sotiropoulos, S. N., et al.
           (2015). Spherical Deconvolution of Multichannel Diffusion MRI Data
           with Non-Gaussian Noise Models and Spatial Regularization. PLOS ONE,
           10(10), e0138910.
    """
    if not isinstance(n_iter, numbers.Integral) or n_iter < 0:
        raise InvalidInputError(f"n_iter must be a non-negative integer, got {n_iter!r}")
    n_order = noise_order(recon_type, n_coils)

    kernel = np.asarray(kernel)
    dtype = kernel.dtype if kernel.dtype.kind == 'f' else np.dtype(np.float64)
    kernel = kernel.astype(dtype, copy=False)
    signal = np.asarray(signal, dtype=dtype)
    fodf0 = np.asarray(fodf0, dtype=dtype)

    if kernel.ndim != 2 or kernel.size == 0:
        raise InvalidInputError(f"kernel must be a non-empty 2D array, got shape {kernel.shape}")
    n_grad, n_comp = kernel.shape
    if signal.ndim not in (1, 2) or signal.shape[0] != n_grad:
        raise InvalidInputError(
            f"signal shape {signal.shape} does not match kernel shape {kernel.shape}"
        )
    if fodf0.ndim not in (1, 2) or fodf0.shape[0] != n_comp:
        raise InvalidInputError(
            f"fodf0 shape {fodf0.shape} does not match kernel shape {kernel.shape}"
        )
    if not np.all(np.isfinite(fodf0)) or np.any(fodf0 < 0):
        raise InvalidInputError("fodf0 must be finite and non-negative")

    single = signal.ndim == 1 and fodf0.ndim == 1
    data = signal.reshape(n_grad, -1)
    n_vox = data.shape[1]
    fodf = fodf0.reshape(n_comp, -1)
    if fodf.shape[1] not in (1, n_vox):
        raise InvalidInputError(
            f"fodf0 has {fodf.shape[1]} columns but signal has {n_vox} voxels"
        )
    fodf = np.array(np.broadcast_to(fodf, (n_comp, n_vox)), dtype=dtype)

    if n_iter == 0:
        return fodf[:, 0].copy() if single else fodf

    eps = np.finfo(dtype).eps
    kernel_t = np.ascontiguousarray(kernel.T)
    logger.debug("RUMBA-SD: %d measurements, %d directions, %d voxels, %d iterations",
                 n_grad, n_comp, n_vox, n_iter)

    reblurred = np.maximum(matmul(kernel, fodf), eps)

    # Initialize variance, one per voxel
    sigma2 = np.full((1, n_vox), SIGMA0 ** 2, dtype=dtype)
    reblurred_s = data * reblurred / sigma2

    for _ in range(n_iter):
        ratio = mbessel_ratio(n_order, reblurred_s)
        rl_factor = matmul(kernel_t, data * ratio) / \
            np.maximum(matmul(kernel_t, reblurred), eps)

        fodf = fodf * rl_factor

        # Update other variables
        reblurred = np.maximum(matmul(kernel, fodf), eps)
        reblurred_s = data * reblurred / sigma2

        # Iterate variance
        sigma2 = (1 / (n_grad * n_order)) * \
            np.sum((data ** 2 + reblurred ** 2) / 2 -
                   (sigma2 * reblurred_s) * ratio,
                   axis=0, keepdims=True)
        sigma2 = np.clip(sigma2, SIGMA_MIN ** 2, SIGMA_MAX ** 2).astype(dtype, copy=False)

    bad = ~np.all(np.isfinite(fodf), axis=0) | np.any(fodf < 0, axis=0)
    result = fodf[:, 0] if single else fodf
    if np.any(bad):
        raise NumericInstabilityError(
            f"RUMBA-SD produced non-finite or negative fODF values in {int(bad.sum())} voxel(s)",
            voxels=np.flatnonzero(bad),
            result=result,
        )
    return result
