"""Thin volume and gradient I/O on top of dipy.io.

Geometry is carried as the NIfTI affine and is never interpreted here.
"""
from pathlib import Path

import numpy as np
from dipy.core.gradients import gradient_table
from dipy.io.gradients import read_bvals_bvecs
from dipy.io.image import load_nifti, save_nifti

from .errors import InvalidInputError


def read_volume(path):
    """Read a 3D/4D volume, returning ``(data, affine)``."""
    path = Path(path)
    if not path.is_file():
        raise InvalidInputError(f"Volume not found: {path}")
    data, affine = load_nifti(str(path))
    return data, affine


def write_volume(path, data, affine, dtype=np.float32):
    """Write ``data`` with the pass-through ``affine``."""
    save_nifti(str(path), np.asarray(data, dtype=dtype), affine)


def read_gradients(fbval, fbvec, b0_threshold=50):
    """Load FSL style b-values / b-vectors into a GradientTable."""
    bvals, bvecs = read_bvals_bvecs(str(fbval), str(fbvec))
    return gradient_table(bvals, bvecs=bvecs, b0_threshold=b0_threshold)
