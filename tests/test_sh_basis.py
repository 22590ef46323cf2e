import numpy as np
import numpy.testing as npt
import pytest
from dipy.data import get_sphere

from phardi.errors import InvalidInputError
from phardi.utils.sh_basis import (calculate_max_order, construct_sh_basis,
                                   sph_harm_ind_list)


def test_sph_harm_ind_list():
    m_list, l_list = sph_harm_ind_list(2)
    npt.assert_array_equal(m_list, [0, -2, -1, 0, 1, 2])
    npt.assert_array_equal(l_list, [0, 2, 2, 2, 2, 2])

    m_list, l_list = sph_harm_ind_list(8)
    assert len(m_list) == len(l_list) == 45
    assert np.all(l_list % 2 == 0)
    assert np.all(np.abs(m_list) <= l_list)


@pytest.mark.parametrize("sh_order, n_coeffs", [(0, 1), (2, 6), (4, 15), (6, 28), (8, 45)])
def test_calculate_max_order(sh_order, n_coeffs):
    assert calculate_max_order(n_coeffs) == sh_order


def test_calculate_max_order_invalid():
    npt.assert_raises(InvalidInputError, calculate_max_order, 7)
    npt.assert_raises(InvalidInputError, calculate_max_order, 10)


@pytest.mark.parametrize("sh_order", [0, 2, 4, 6, 8])
def test_basis_shape(sh_order):
    rng = np.random.default_rng(1234)
    directions = rng.normal(size=(20, 3))
    theta, phi, basis = construct_sh_basis(sh_order, directions)
    assert theta.shape == phi.shape == (20,)
    assert basis.shape == (20, (sh_order + 1) * (sh_order + 2) // 2)
    assert np.all(np.isfinite(basis))


def test_constant_term():
    rng = np.random.default_rng(0)
    directions = rng.normal(size=(10, 3))
    _, _, basis = construct_sh_basis(0, directions)
    npt.assert_allclose(basis[:, 0], 1 / (2 * np.sqrt(np.pi)))


def test_known_values():
    directions = np.array([[0, 0, 1], [1, 0, 0], [0, 0, 2.5]])
    _, _, basis = construct_sh_basis(2, directions)
    # Y_2^0 at the pole, then Y_2^2 on the x axis
    npt.assert_almost_equal(basis[0, 3], np.sqrt(5 / (4 * np.pi)))
    npt.assert_almost_equal(basis[1, 5], np.sqrt(15 / (16 * np.pi)))
    # directions are normalized internally
    npt.assert_array_almost_equal(basis[2], basis[0])


def test_odd_degree_sign():
    directions = np.array([[1, 0, 1], [0, 1, 1], [-1, 0, 1]]) / np.sqrt(2)
    _, _, basis = construct_sh_basis(2, directions)
    expected = np.sqrt(15 / (16 * np.pi))
    # Y_2^1 is proportional to x z and Y_2^-1 to y z, with no (-1)^m phase
    npt.assert_almost_equal(basis[0, 4], expected)
    npt.assert_almost_equal(basis[1, 2], expected)
    npt.assert_almost_equal(basis[2, 4], -expected)
    npt.assert_almost_equal(basis[0, 2], 0)


def test_even_basis_is_antipodally_symmetric():
    rng = np.random.default_rng(42)
    directions = rng.normal(size=(25, 3))
    _, _, basis = construct_sh_basis(6, directions)
    _, _, flipped = construct_sh_basis(6, -directions)
    npt.assert_array_almost_equal(basis, flipped)


def test_orthonormality():
    sphere = get_sphere(name='repulsion724')
    _, _, basis = construct_sh_basis(4, sphere.vertices)
    gram = 4 * np.pi / len(sphere.vertices) * np.dot(basis.T, basis)
    npt.assert_allclose(gram, np.eye(basis.shape[1]), atol=0.05)


def test_poles():
    directions = np.array([[0, 0, 1], [0, 0, -1], [1e-20, 0, 1]])
    theta, phi, basis = construct_sh_basis(4, directions)
    npt.assert_array_equal(phi, 0)
    npt.assert_array_almost_equal(theta, [0, np.pi, 0])

    m_list, _ = sph_harm_ind_list(4)
    npt.assert_array_equal(basis[:, m_list != 0], 0)
    assert np.all(np.isfinite(basis))


def test_invalid_inputs():
    directions = np.eye(3)
    npt.assert_raises(InvalidInputError, construct_sh_basis, -2, directions)
    npt.assert_raises(InvalidInputError, construct_sh_basis, 3, directions)
    npt.assert_raises(InvalidInputError, construct_sh_basis, 2, np.empty((0, 3)))
    npt.assert_raises(InvalidInputError, construct_sh_basis, 2, np.ones((4, 2)))
    npt.assert_raises(InvalidInputError, construct_sh_basis, 2,
                      np.array([[1, 0, 0], [0, 0, 0]]))
