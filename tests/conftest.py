"""Synthetic acquisition protocols shared by the tests."""
import warnings

import numpy as np
import pytest
from dipy.core.gradients import gradient_table
from dipy.core.sphere import HemiSphere, Sphere
from dipy.data import get_sphere

warnings.simplefilter("always", category=UserWarning)

GOLDEN = (1 + np.sqrt(5)) / 2


def icosahedron_axes():
    """The 6 antipodally distinct vertex axes of an icosahedron."""
    axes = np.array([[0, 1, GOLDEN],
                     [0, -1, GOLDEN],
                     [1, GOLDEN, 0],
                     [-1, GOLDEN, 0],
                     [GOLDEN, 0, 1],
                     [-GOLDEN, 0, 1]], dtype=float)
    return axes / np.linalg.norm(axes, axis=1, keepdims=True)


def with_b0(directions, bval=1000.0, n_b0=1):
    """Prepend ``n_b0`` zero rows to ``directions``; returns (gradients, bvals)."""
    gradients = np.vstack([np.zeros((n_b0, 3)), directions])
    bvals = np.concatenate([np.zeros(n_b0), np.full(len(directions), bval)])
    return gradients, bvals


@pytest.fixture
def icosa_axes():
    return icosahedron_axes()


@pytest.fixture
def icosa_sphere():
    axes = icosahedron_axes()
    return Sphere(xyz=axes)


@pytest.fixture
def six_row_table():
    """One b0 row and the first 5 icosahedron axes at b = 1000."""
    return with_b0(icosahedron_axes()[:5])


@pytest.fixture
def six_row_gtab(six_row_table):
    gradients, bvals = six_row_table
    return gradient_table(bvals, bvecs=gradients)


@pytest.fixture
def hardi_table():
    """One b0 row and 61 well spread directions at b = 1000."""
    hemi = HemiSphere.from_sphere(get_sphere(name='symmetric362'))
    return with_b0(hemi.vertices[::3])


@pytest.fixture
def hardi_gtab(hardi_table):
    gradients, bvals = hardi_table
    return gradient_table(bvals, bvecs=gradients)
