import numpy as np
from dipy.sims.voxel import all_tensor_evecs

from ..errors import InvalidInputError

# Prolate white matter tensor eigenvalues (mm^2/s)
DEFAULT_WM_RESPONSE = (1.7e-3, 0.2e-3, 0.2e-3)


def signal_kernel(gradients, bvals, directions, wm_response=DEFAULT_WM_RESPONSE,
                  b0_atol=0.0, dtype=np.float64):
    """
    Build the RUMBA-SD signal dictionary for a set of fiber directions.

    Column ``j`` holds the signal of a single tensor oriented along
    ``directions[j]``, ``exp(-b g^T D_j g)``, for every row of the gradient
    table. b0 rows are exactly 1.

    Parameters
    ----------
    gradients : array (N, 3)
        Gradient directions, zero rows for b0 acquisitions.
    bvals : array (N,)
        b-values (s/mm^2).
    directions : array (M, 3)
        Fiber directions of the fODF sampling grid.
    wm_response : sequence of 3 floats, optional
        Tensor eigenvalues, principal first.
    b0_atol : float, optional
        Gradient rows with a norm ``<= b0_atol`` are treated as b0.
    dtype : dtype, optional
        Precision of the returned dictionary.

    Returns
    -------
    kernel : array (N, M)
    """
    gradients = np.asarray(gradients, dtype=float)
    bvals = np.asarray(bvals, dtype=float).reshape(-1)
    directions = np.asarray(directions, dtype=float)
    evals = np.asarray(wm_response, dtype=float)

    if gradients.ndim != 2 or gradients.shape[1] != 3 or len(bvals) != len(gradients):
        raise InvalidInputError(
            f"gradients {gradients.shape} and bvals {bvals.shape} do not describe the same table"
        )
    if directions.ndim != 2 or directions.shape[1] != 3 or len(directions) == 0:
        raise InvalidInputError(
            f"directions must be a non-empty (M, 3) array, got shape {directions.shape}"
        )
    if np.any(np.linalg.norm(directions, axis=1) == 0):
        raise InvalidInputError("directions must be non-zero vectors")
    if evals.shape != (3,) or np.any(evals < 0):
        raise InvalidInputError(f"wm_response must hold 3 non-negative eigenvalues, got {wm_response!r}")

    norms = np.linalg.norm(gradients, axis=1)
    is_b0 = norms <= b0_atol
    unit_g = np.zeros_like(gradients)
    unit_g[~is_b0] = gradients[~is_b0] / norms[~is_b0, None]
    b = np.where(is_b0, 0.0, bvals)

    kernel = np.empty((len(gradients), len(directions)))
    for j, direction in enumerate(directions):
        evecs = all_tensor_evecs(direction / np.linalg.norm(direction))
        D = np.dot(evecs * evals, evecs.T)
        adc = np.einsum('ij,jk,ik->i', unit_g, D, unit_g)
        kernel[:, j] = np.exp(-b * adc)

    return kernel.astype(dtype)
