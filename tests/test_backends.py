import numpy as np
import numpy.testing as npt
import pytest

from phardi.core.backends import get_matmul, numpy_matmul
from phardi.core.rumba import rumba_sd
from phardi.errors import InvalidInputError


def test_numpy_backend():
    assert get_matmul() is numpy_matmul
    assert get_matmul(' NumPy ') is numpy_matmul
    a = np.arange(6, dtype=np.float32).reshape(2, 3)
    b = np.ones((3, 4), dtype=np.float32)
    c = numpy_matmul(a, b)
    assert c.dtype == np.float32
    npt.assert_array_equal(c, np.dot(a, b))


def test_unknown_backend():
    npt.assert_raises(InvalidInputError, get_matmul, 'opencl')


def test_torch_backend():
    pytest.importorskip("torch")
    matmul = get_matmul('torch', device='cpu')
    assert 'cpu' in repr(matmul)

    rng = np.random.default_rng(2)
    a = rng.uniform(size=(8, 5))
    b = rng.uniform(size=(5, 3))
    c = matmul(a, b)
    assert isinstance(c, np.ndarray)
    assert c.dtype == np.float64
    npt.assert_allclose(c, np.dot(a, b))

    c32 = matmul(a.astype(np.float32), b)
    assert c32.dtype == np.float32
    npt.assert_allclose(c32, np.dot(a, b), rtol=1e-5)


def test_torch_backend_in_rumba():
    pytest.importorskip("torch")
    matmul = get_matmul('torch', device='cpu')

    rng = np.random.default_rng(9)
    kernel = rng.uniform(0.1, 1, size=(12, 7))
    signal = np.dot(kernel, rng.dirichlet(np.ones(7), size=3).T)
    fodf0 = np.full(7, 1 / 7)
    expected = rumba_sd(signal, kernel, fodf0, 20)
    npt.assert_allclose(rumba_sd(signal, kernel, fodf0, 20, matmul=matmul),
                        expected, rtol=1e-8)
