import logging

import numpy as np

from ..errors import InvalidInputError

logger = logging.getLogger(__name__)

# Orders above 8 are unstable with clinical protocols
MAX_SH_ORDER = 8


def n_coefficients(sh_order):
    """Number of even SH coefficients up to ``sh_order``."""
    return (sh_order + 1) * (sh_order + 2) // 2


def obtain_lmax(n_dirs):
    """Largest even SH order that ``n_dirs`` directions can support.

    Parameters
    ----------
    n_dirs : int
        Number of acquired directions.

    Returns
    -------
    sh_order : int
        Largest even ``L`` with ``(L + 1) (L + 2) / 2 <= n_dirs``.
    n_min : int
        Minimum number of directions needed for ``sh_order``.
    """
    if n_dirs < 1:
        raise InvalidInputError(f"at least one direction is required, got {n_dirs}")

    sh_order = 0
    while n_coefficients(sh_order + 2) <= n_dirs:
        sh_order += 2
    return sh_order, n_coefficients(sh_order)


def classify_gradients(diff_grads, atol=0.0):
    """Split a gradient table into b0 and b1 rows and pick the SH order.

    Parameters
    ----------
    diff_grads : array (N, 3)
        Diffusion gradient directions, zero rows for b0 acquisitions.
    atol : float, optional
        Rows whose Euclidean norm is ``<= atol`` are b0 rows.

    Returns
    -------
    sh_order : int
        Maximum SH order, derived from the number of rows of the table and
        capped at ``MAX_SH_ORDER``.
    n_min : int
        Minimum number of directions associated with ``sh_order``.
    b0_indices : array of int
        Indices of the b0 rows, in table order.
    b1_indices : array of int
        Indices of the diffusion weighted rows, in table order.
    """
    diff_grads = np.asarray(diff_grads, dtype=float)
    if diff_grads.ndim != 2 or diff_grads.shape[1] != 3:
        raise InvalidInputError(
            f"gradient table must be an (N, 3) array, got shape {diff_grads.shape}"
        )
    if diff_grads.shape[0] == 0:
        raise InvalidInputError("gradient table is empty")
    if not np.all(np.isfinite(diff_grads)):
        raise InvalidInputError("gradient table contains non-finite values")

    norms = np.linalg.norm(diff_grads, axis=1)
    is_b0 = norms <= atol
    b0_indices = np.flatnonzero(is_b0)
    b1_indices = np.flatnonzero(~is_b0)

    sh_order, n_min = obtain_lmax(diff_grads.shape[0])
    if sh_order > MAX_SH_ORDER:
        sh_order = MAX_SH_ORDER
        n_min = n_coefficients(sh_order)

    logger.info(
        "The maximum order of the spherical harmonics decomposition is Lmax = %d", sh_order
    )
    logger.debug("%d b0 rows, %d b1 rows", len(b0_indices), len(b1_indices))
    return sh_order, n_min, b0_indices, b1_indices
