import numpy as np

from ..config import CSA, DOTR2
from ..errors import UnsupportedMethodError

# Attenuation is clipped to this range before taking logarithms
MIN_ATTENUATION = 0.001
MAX_ATTENUATION = 0.999


def _signal_transform(attenuation, bvals_b1, method):
    E = np.clip(attenuation, MIN_ATTENUATION, MAX_ATTENUATION)
    if method == DOTR2:
        # R^2 weighted DOT: (1 / ADC)^(3/2) along each gradient
        adc = -np.log(E) / bvals_b1
        return adc ** -1.5
    if method == CSA:
        return np.log(-np.log(E))
    raise UnsupportedMethodError(f"no signal transform for method {method!r}")


def sh_coefficients(attenuation_b1, rkernel):
    """
    Analytic QBI SH coefficients from b0-normalized b1 signals.

    Parameters
    ----------
    attenuation_b1 : array (..., n_b1)
        Signal of the b1 rows divided by the mean b0 signal.
    rkernel : ReconstructionKernel

    Returns
    -------
    coef : array (..., n_coef)
    """
    attenuation_b1 = np.asarray(attenuation_b1, dtype=rkernel.kernel.dtype)
    transformed = _signal_transform(attenuation_b1, rkernel.bvals_b1, rkernel.method)
    coef = np.dot(transformed, rkernel.kernel.T) * rkernel.coefficients
    if rkernel.method == CSA:
        # CSA ODFs integrate to one; the constant term is fixed
        coef[..., 0] = rkernel.coefficients[0]
    return coef


def sh_odf(attenuation_b1, rkernel):
    """
    Project the SH coefficients on the output grid, shifted to a zero
    minimum and normalized to a unit sum.
    """
    odf = np.dot(sh_coefficients(attenuation_b1, rkernel), rkernel.basis_v.T)
    odf = odf - odf.min(axis=-1, keepdims=True)
    total = odf.sum(axis=-1, keepdims=True)
    return np.divide(odf, total, out=np.full_like(odf, 1.0 / odf.shape[-1]),
                     where=total > 0)


def sh_prior(attenuation_b1, rkernel, floor=0.01):
    """
    Strictly positive initial fODF for RUMBA-SD from the SH ODF.

    A uniform ``floor`` (as a fraction of the uniform density) is added so
    that no direction starts at zero, since the multiplicative update cannot
    revive a zero entry.
    """
    odf = sh_odf(attenuation_b1, rkernel)
    odf = odf + floor / odf.shape[-1]
    return odf / odf.sum(axis=-1, keepdims=True)
