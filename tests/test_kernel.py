import numpy as np
import numpy.testing as npt
import pytest
from dipy.core.sphere import HemiSphere
from dipy.data import get_sphere

from phardi.config import ReconstructionOptions
from phardi.core.kernel import (assemble_kernel, build_kernel, csa_factor,
                                dot_r2_factor, generate_coefficients)
from phardi.errors import (IllConditionedKernelError, InvalidInputError,
                           UnsupportedMethodError)
from phardi.utils.sh_basis import construct_sh_basis

from conftest import icosahedron_axes, with_b0


def spread_directions():
    hemi = HemiSphere.from_sphere(get_sphere(name='symmetric362'))
    return hemi.vertices[::6]


def test_dot_r2_factor():
    npt.assert_almost_equal(dot_r2_factor(0), 4 / np.pi)
    npt.assert_almost_equal(dot_r2_factor(2), -3 / 32 * 4 / np.pi)
    npt.assert_almost_equal(dot_r2_factor(4), 15 / 64 * 4 / np.pi)
    npt.assert_almost_equal(dot_r2_factor(6), -210 / 1536 * 4 / np.pi)
    signs = np.sign([dot_r2_factor(L) for L in range(0, 11, 2)])
    npt.assert_array_equal(signs, [1, -1, 1, -1, 1, -1])
    npt.assert_raises(InvalidInputError, dot_r2_factor, 12)


def test_csa_factor():
    npt.assert_almost_equal(csa_factor(0), 1 / (2 * np.sqrt(np.pi)))
    npt.assert_almost_equal(csa_factor(2), 3 / (8 * np.pi))
    npt.assert_almost_equal(csa_factor(4), -15 / (16 * np.pi))
    # same values as -L (L + 1) P_L(0) / (8 pi)
    for L, p_l0 in [(2, -1 / 2), (4, 3 / 8), (6, -5 / 16), (8, 35 / 128)]:
        npt.assert_almost_equal(csa_factor(L), -L * (L + 1) * p_l0 / (8 * np.pi))


def test_generate_coefficients():
    K_dot, K_lap = generate_coefficients(4, 'dotr2')
    assert K_dot.shape == K_lap.shape == (15,)
    npt.assert_array_almost_equal(K_dot[1:6], dot_r2_factor(2))
    npt.assert_array_almost_equal(K_dot[6:], dot_r2_factor(4))

    _, K_lap = generate_coefficients(8, 'CSA-QBI')
    npt.assert_array_equal(np.unique(K_lap), [0, 36, 400, 1764, 5184])

    npt.assert_raises(UnsupportedMethodError, generate_coefficients, 4, 'gqi')


def test_assemble_kernel_small_lambda_is_pseudo_inverse():
    directions = spread_directions()
    _, _, basis = construct_sh_basis(4, directions)
    _, K_lap = generate_coefficients(4, 'dotr2')

    kernel = assemble_kernel(basis, K_lap, 1e-10)
    assert kernel.shape == (15, len(directions))
    npt.assert_allclose(np.dot(basis, np.dot(kernel, basis)), basis, atol=1e-6)
    npt.assert_allclose(kernel, np.linalg.pinv(basis), atol=1e-6)


def test_assemble_kernel_regularization_shrinks_high_orders():
    _, _, basis = construct_sh_basis(4, spread_directions())
    _, K_lap = generate_coefficients(4, 'dotr2')

    loose = assemble_kernel(basis, K_lap, 1e-6)
    tight = assemble_kernel(basis, K_lap, 1.0)
    assert np.linalg.norm(tight[6:]) < np.linalg.norm(loose[6:])


def test_assemble_kernel_errors():
    _, K_lap = generate_coefficients(2, 'csa')
    # the L = 0 column carries no penalty, so an empty basis is singular
    npt.assert_raises(IllConditionedKernelError, assemble_kernel,
                      np.zeros((5, 6)), K_lap, 0.006)

    _, _, basis = construct_sh_basis(2, icosahedron_axes())
    npt.assert_raises(InvalidInputError, assemble_kernel, basis, K_lap, 0)
    npt.assert_raises(InvalidInputError, assemble_kernel, basis, K_lap, np.nan)
    npt.assert_raises(InvalidInputError, assemble_kernel, basis, K_lap[:3], 0.006)


def test_ill_conditioned_is_a_linalg_error():
    _, K_lap = generate_coefficients(2, 'csa')
    with pytest.raises(np.linalg.LinAlgError):
        assemble_kernel(np.zeros((5, 6)), K_lap, 0.006)


def test_build_kernel(six_row_table):
    gradients, bvals = six_row_table
    out_dirs = get_sphere(name='repulsion100').vertices
    rkernel = build_kernel(gradients, bvals, out_dirs)

    assert rkernel.sh_order == 2
    assert rkernel.n_min == 6
    assert rkernel.n_coef == 6
    assert rkernel.method == 'dotr2'
    npt.assert_array_equal(rkernel.b0_indices, [0])
    npt.assert_array_equal(rkernel.b1_indices, [1, 2, 3, 4, 5])
    assert rkernel.kernel.shape == (6, 5)
    assert rkernel.basis_g.shape == (5, 6)
    assert rkernel.basis_v.shape == (100, 6)
    npt.assert_array_equal(rkernel.bvals_b1, 1000)


def test_build_kernel_is_read_only(six_row_table):
    gradients, bvals = six_row_table
    rkernel = build_kernel(gradients, bvals, icosahedron_axes())
    for array in (rkernel.kernel, rkernel.basis_g, rkernel.basis_v,
                  rkernel.coefficients, rkernel.b1_indices):
        with pytest.raises(ValueError):
            array[0] = 0


def test_build_kernel_precision(six_row_table):
    gradients, bvals = six_row_table
    options = ReconstructionOptions(method='CSA-QBI', precision='single')
    single = build_kernel(gradients, bvals, icosahedron_axes(), options)
    double = build_kernel(gradients, bvals, icosahedron_axes(),
                          options.replace(precision='double'))
    assert single.kernel.dtype == np.float32
    assert single.basis_v.dtype == np.float32
    assert double.kernel.dtype == np.float64
    npt.assert_allclose(single.kernel, double.kernel, rtol=1e-5, atol=1e-6)


def test_build_kernel_invalid_tables():
    out_dirs = icosahedron_axes()
    npt.assert_raises(InvalidInputError, build_kernel,
                      np.zeros((4, 3)), np.zeros(4), out_dirs)

    gradients, bvals = with_b0(icosahedron_axes())
    npt.assert_raises(InvalidInputError, build_kernel,
                      gradients, bvals[:-1], out_dirs)
    npt.assert_raises(InvalidInputError, build_kernel,
                      gradients, np.zeros_like(bvals), out_dirs)
    npt.assert_raises(InvalidInputError, build_kernel,
                      gradients, bvals, np.empty((0, 3)))
