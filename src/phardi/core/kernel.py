"""Reconstruction kernels for DOT-R2 and CSA-QBI.

The kernel maps the diffusion weighted signal (b1 rows) onto real SH
coefficients through a Laplace-Beltrami regularized least squares fit::

    Kernel = (B^T B + lambda * diag(L^2 (L + 1)^2))^-1 B^T

References
----------
.. [1] Canales-Rodriguez, E. J., Lin, C.-P., Iturria-Medina, Y., Yeh, C.-H.,
       Cho, K.-H., Melie-Garcia, L. Diffusion orientation transform revisited.
       NeuroImage 2010;49:1326-1339.
.. [2] Aganj, I., et al. ODF reconstruction in Q-ball imaging with solid
       angle consideration. Magn. Reson. Med. 2010;64:554-566.
.. [3] Descoteaux, M., Angelino, E., Fitzgibbons, S. and Deriche, R.
       Regularized, fast, and robust analytical Q-ball imaging.
       Magn. Reson. Med. 2007;58:497-510.
"""
import logging
from dataclasses import dataclass

import numpy as np
import scipy.linalg.lapack as ll

from ..config import CSA, DOTR2, ReconstructionOptions, normalize_method
from ..errors import IllConditionedKernelError, InvalidInputError
from ..utils.gradients import classify_gradients
from ..utils.sh_basis import construct_sh_basis, sph_harm_ind_list

logger = logging.getLogger(__name__)

potrf, potrs = ll.get_lapack_funcs(('potrf', 'potrs'))

# Table 1 (second row) of the DOT revisited article omits a denominator term
# for L >= 6; these are the corrected values for L = 0, 2, ..., 10.
DOT_R2_TABLE = np.array([1.0, 3.0 / 32.0, 15.0 / 64.0, 210.0 / 1536.0,
                         630.0 / 15360.0, 13860.0 / 1720320.0])


def dot_r2_factor(L):
    """DOT-R2 coefficient ``(-1)^(L/2) V[L/2] (4/pi)`` for an even order L."""
    if L // 2 >= len(DOT_R2_TABLE):
        raise InvalidInputError(
            f"DOT-R2 coefficients are tabulated up to L = {2 * (len(DOT_R2_TABLE) - 1)}, got L = {L}"
        )
    return (-1.0) ** (L // 2) * DOT_R2_TABLE[L // 2] * (4.0 / np.pi)


def csa_factor(L):
    """CSA-QBI coefficient for an even order L.

    ``1 / (2 sqrt(pi))`` for L = 0, otherwise
    ``(-1 / (8 pi)) (-1)^(L/2) prod(1, 3, ..., L+1) / prod(2, 4, ..., L-2)``
    where an empty product is 1.
    """
    if L == 0:
        return 1.0 / (2.0 * np.sqrt(np.pi))
    odd = np.prod(np.arange(1, L + 2, 2, dtype=float))
    even = np.prod(np.arange(2, L - 1, 2, dtype=float))
    return (-1.0 / (8.0 * np.pi)) * (-1.0) ** (L // 2) * odd / even


_FACTORS = {DOTR2: dot_r2_factor, CSA: csa_factor}


def generate_coefficients(sh_order, method):
    """Per-column method and Laplacian weights.

    Parameters
    ----------
    sh_order : int
        Maximum even SH order.
    method : str
        ``'dotr2'`` or ``'csa'`` (or one of their aliases).

    Returns
    -------
    K_method : array
        Method coefficient for every ``(L, m)`` column; the value depends
        only on L.
    K_laplacian : array
        ``L^2 (L + 1)^2`` for every ``(L, m)`` column.
    """
    factor = _FACTORS[normalize_method(method)]
    m_list, l_list = sph_harm_ind_list(sh_order)

    per_order = {L: factor(L) for L in np.unique(l_list)}
    K_method = np.array([per_order[L] for L in l_list], dtype=float)
    K_laplacian = (l_list.astype(float) ** 2) * (l_list + 1.0) ** 2
    return K_method, K_laplacian


def _cholesky_solve(Q, z):
    """Solve ``Q x = z`` for a symmetric positive definite ``Q``."""
    L, info = potrf(Q, lower=False, overwrite_a=False, clean=False)
    if info > 0:
        msg = "%d-th leading minor not positive definite" % info
        raise IllConditionedKernelError(msg)
    if info < 0:
        msg = 'illegal value in %d-th argument of internal potrf' % -info
        raise ValueError(msg)
    f, info = potrs(L, z, lower=False, overwrite_b=False)
    if info != 0:
        msg = 'illegal value in %d-th argument of internal potrs' % -info
        raise ValueError(msg)
    return f


def assemble_kernel(basis_g, laplacian, lambda_, dtype=np.float64):
    """Tikhonov regularized pseudo-inverse of the gradient SH basis.

    Parameters
    ----------
    basis_g : array (n_b1, n_coef)
        SH basis evaluated at the b1 gradient directions.
    laplacian : array (n_coef,)
        Diagonal of the smoothness matrix.
    lambda_ : float
        Regularization strength, > 0.
    dtype : dtype, optional
        Precision of the returned kernel. The solve always runs in double.

    Returns
    -------
    kernel : array (n_coef, n_b1)
    """
    basis_g = np.asarray(basis_g, dtype=np.float64)
    laplacian = np.asarray(laplacian, dtype=np.float64)
    if basis_g.ndim != 2 or basis_g.size == 0:
        raise InvalidInputError(f"basis_g must be a non-empty 2D array, got shape {basis_g.shape}")
    if laplacian.shape != (basis_g.shape[1],):
        raise InvalidInputError(
            f"laplacian must have shape ({basis_g.shape[1]},), got {laplacian.shape}"
        )
    if not np.isfinite(lambda_) or lambda_ <= 0:
        raise InvalidInputError(f"lambda_ must be a positive finite number, got {lambda_}")

    Q = np.dot(basis_g.T, basis_g) + lambda_ * np.diag(laplacian)
    if not np.all(np.isfinite(Q)):
        raise IllConditionedKernelError("regularized basis product has non-finite entries")

    cond = np.linalg.cond(Q)
    if not np.isfinite(cond) or cond * np.finfo(dtype).eps >= 1:
        raise IllConditionedKernelError(
            "regularized basis product is singular to working precision "
            f"(condition number {cond:.3g}); increase lambda_ or acquire more directions"
        )

    kernel = _cholesky_solve(Q, basis_g.T)
    return kernel.astype(dtype)


@dataclass(frozen=True)
class ReconstructionKernel:
    """Everything derived once per acquisition protocol.

    All arrays are read-only so a kernel can be shared between workers.
    """
    kernel: np.ndarray
    basis_g: np.ndarray
    basis_v: np.ndarray
    theta_g: np.ndarray
    phi_g: np.ndarray
    theta_v: np.ndarray
    phi_v: np.ndarray
    coefficients: np.ndarray
    laplacian: np.ndarray
    sh_order: int
    n_min: int
    b0_indices: np.ndarray
    b1_indices: np.ndarray
    bvals_b1: np.ndarray
    options: ReconstructionOptions

    def __post_init__(self):
        for name, value in vars(self).items():
            if isinstance(value, np.ndarray):
                value.setflags(write=False)

    @property
    def method(self):
        return self.options.method

    @property
    def n_coef(self):
        return self.kernel.shape[0]


def build_kernel(gradients, bvals, out_directions, options=None, b0_atol=0.0):
    """Build the reconstruction kernel for one acquisition protocol.

    Parameters
    ----------
    gradients : array (N, 3)
        Gradient directions, zero rows for b0 acquisitions.
    bvals : array (N,)
        b-values paired with ``gradients``.
    out_directions : array (M, 3)
        Directions of the output (fODF) sampling grid.
    options : ReconstructionOptions, optional
        Method, regularization and precision. Defaults are used if None.
    b0_atol : float, optional
        Gradient rows with a norm ``<= b0_atol`` are treated as b0.

    Returns
    -------
    ReconstructionKernel
    """
    if options is None:
        options = ReconstructionOptions()
    dtype = options.dtype

    gradients = np.asarray(gradients, dtype=float)
    bvals = np.asarray(bvals, dtype=float).reshape(-1)
    if gradients.ndim != 2 or len(bvals) != gradients.shape[0]:
        raise InvalidInputError(
            f"gradients {gradients.shape} and bvals {bvals.shape} do not describe the same table"
        )

    sh_order, n_min, b0_indices, b1_indices = classify_gradients(gradients, atol=b0_atol)
    if len(b1_indices) == 0:
        raise InvalidInputError("gradient table has no diffusion weighted (b1) rows")
    if np.any(bvals[b1_indices] <= 0):
        raise InvalidInputError("every diffusion weighted row needs a positive b-value")

    theta_g, phi_g, basis_g = construct_sh_basis(sh_order, gradients[b1_indices])
    theta_v, phi_v, basis_v = construct_sh_basis(sh_order, out_directions)

    coefficients, laplacian = generate_coefficients(sh_order, options.method)
    kernel = assemble_kernel(basis_g, laplacian, options.lambda_, dtype=dtype)
    logger.info("Built %s kernel with shape %s (lambda = %g)",
                options.method, kernel.shape, options.lambda_)

    return ReconstructionKernel(
        kernel=kernel,
        basis_g=basis_g.astype(dtype),
        basis_v=basis_v.astype(dtype),
        theta_g=theta_g,
        phi_g=phi_g,
        theta_v=theta_v,
        phi_v=phi_v,
        coefficients=coefficients.astype(dtype),
        laplacian=laplacian.astype(dtype),
        sh_order=sh_order,
        n_min=n_min,
        b0_indices=b0_indices,
        b1_indices=b1_indices,
        bvals_b1=bvals[b1_indices],
        options=options,
    )
