import numpy as np
from dipy.core.geometry import cart2sphere
from scipy.special import gammaln, lpmv

from ..errors import InvalidInputError

# |sin(theta)| below this is treated as a pole
_POLE_ATOL = 1e-12


def calculate_max_order(n_coeffs):
    r"""Calculate the maximal even SH order, given the number of coefficients.

    Parameters
    ----------
    n_coeffs : int
        The number of SH coefficients (columns of a basis matrix).

    Returns
    -------
    L : int
        The maximal SH order.

    Notes
    -----
    For the symmetric basis $n = \frac{1}{2} (L+1) (L+2)$, so the positive
    root is $L = \frac{-3 + \sqrt{1 + 8n}}{2}$.
    """
    L1 = (-3 + np.sqrt(1 + 8 * n_coeffs)) / 2.0
    if L1.is_integer() and not np.mod(L1, 2):
        return int(L1)

    raise InvalidInputError(
        f"{n_coeffs} is not a valid number of coefficients for an even "
        "spherical harmonics basis."
    )


def sph_harm_ind_list(sh_order):
    """
    Returns the degree (``m``) and order (``L``) of all the even spherical
    harmonics of order less than or equal to ``sh_order``.

    The pairs are listed in basis column order: ``L = 0, 2, ..., sh_order``
    and, within each ``L``, ``m = -L, ..., L``.

    Parameters
    ----------
    sh_order : int
        even int >= 0, max order to return

    Returns
    -------
    m_list : array
        degrees of even spherical harmonics
    l_list : array
        orders of even spherical harmonics
    """
    _check_sh_order(sh_order)
    l_range = np.arange(0, sh_order + 1, 2, dtype=int)
    ncoef = int((sh_order + 2) * (sh_order + 1) // 2)

    l_list = np.repeat(l_range, l_range * 2 + 1)
    offset = 0
    m_list = np.empty(ncoef, 'int')
    for ii in l_range:
        m_list[offset:offset + 2 * ii + 1] = np.arange(-ii, ii + 1)
        offset = offset + 2 * ii + 1

    return m_list, l_list


def real_sh(m_list, l_list, theta, phi):
    r"""Evaluate orthonormal real spherical harmonics.

    .. math::

        Y_L^m = \begin{cases}
            \sqrt{2} N_L^{|m|} P_L^{|m|}(\cos\theta) \sin(|m|\phi) & m < 0 \\
            N_L^0 P_L^0(\cos\theta) & m = 0 \\
            \sqrt{2} N_L^m P_L^m(\cos\theta) \cos(m\phi) & m > 0
        \end{cases}

    with $N_L^m = \sqrt{\frac{2L+1}{4\pi}\frac{(L-m)!}{(L+m)!}}$ and $P_L^m$ the
    associated Legendre functions without the Condon-Shortley phase.

    Parameters
    ----------
    m_list, l_list : array of int
        Degrees and orders, broadcast against ``theta`` and ``phi``.
    theta : array
        Polar angle in [0, pi].
    phi : array
        Azimuth.

    Returns
    -------
    Y : array
        Real SH values, broadcast shape of the inputs.
    """
    m_abs = np.abs(m_list)
    norm = np.sqrt((2 * l_list + 1) / (4.0 * np.pi))
    norm = norm * np.exp(0.5 * (gammaln(l_list - m_abs + 1) - gammaln(l_list + m_abs + 1)))
    # lpmv includes the Condon-Shortley phase (-1)^m
    legendre = (-1.0) ** m_abs * lpmv(m_abs, l_list, np.cos(theta))

    Y = norm * legendre
    Y = np.where(m_list > 0, np.sqrt(2) * Y * np.cos(m_abs * phi), Y)
    Y = np.where(m_list < 0, np.sqrt(2) * Y * np.sin(m_abs * phi), Y)
    return Y


def construct_sh_basis(sh_order, directions):
    """Build the real SH basis matrix for a set of directions.

    Parameters
    ----------
    sh_order : int
        Maximum even SH order, >= 0.
    directions : array (N, 3)
        Direction vectors, normalized internally.

    Returns
    -------
    theta : array (N,)
        Polar angle of each direction.
    phi : array (N,)
        Azimuth of each direction, 0 at the poles.
    basis : array (N, (sh_order + 1) * (sh_order + 2) / 2)
        Real SH basis, one column per ``(L, m)`` pair as listed by
        :func:`sph_harm_ind_list`.
    """
    _check_sh_order(sh_order)
    directions = np.asarray(directions, dtype=float)
    if directions.ndim != 2 or directions.shape[1] != 3:
        raise InvalidInputError(
            f"directions must be an (N, 3) array, got shape {directions.shape}"
        )
    if directions.shape[0] == 0:
        raise InvalidInputError("directions must contain at least one vector")

    x, y, z = directions.T
    r, theta, phi = cart2sphere(x, y, z)
    if np.any(r == 0) or not np.all(np.isfinite(r)):
        raise InvalidInputError("directions must be finite, non-zero vectors")

    # azimuth is undefined at the poles
    at_pole = np.abs(np.sin(theta)) < _POLE_ATOL
    phi = np.where(at_pole, 0.0, phi)

    m_list, l_list = sph_harm_ind_list(sh_order)
    basis = real_sh(m_list[None, :], l_list[None, :], theta[:, None], phi[:, None])
    basis[np.ix_(at_pole, m_list != 0)] = 0.0

    return theta, phi, basis


def _check_sh_order(sh_order):
    if int(sh_order) != sh_order or sh_order < 0 or sh_order % 2 != 0:
        raise InvalidInputError(f"sh_order must be an even integer >= 0, got {sh_order!r}")
