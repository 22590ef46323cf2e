"""Tools to turn single voxel fODF fits into volume fits.

Kept close to DIPY's multi_voxel utilities. Voxels whose fit is flagged as
numerically unstable are tracked in ``MultiVoxelFit.flagged``.
"""

import logging

import numpy as np
from numpy.lib.stride_tricks import as_strided
from tqdm import tqdm

from dipy.core.ndindex import ndindex
from dipy.reconst.quick_squash import quick_squash as _squash
from dipy.reconst.base import ReconstFit

logger = logging.getLogger(__name__)


def _progress_bar(total, verbose: bool):
    """Return a tqdm progress bar if requested."""
    if not verbose:
        return None
    return tqdm(total=int(total), position=0)


def multi_voxel_fit(single_voxel_fit):
    """Method decorator to turn a single voxel model fit definition into
    a multi voxel model fit definition.

    Expected single_voxel_fit signature:
        single_voxel_fit(self, data_1d) -> fit_object
    """
    def new_fit(self, data, mask=None, verbose=False):
        """Fit method for every voxel in data."""
        data = np.asarray(data)
        # If only one voxel just return a normal fit
        if data.ndim == 1:
            return single_voxel_fit(self, data)

        # Make a mask if mask is None
        if mask is None:
            shape = data.shape[:-1]
            strides = (0,) * len(shape)
            mask = as_strided(np.array(True), shape=shape, strides=strides)
        # Check the shape of the mask if mask is not None
        elif mask.shape != data.shape[:-1]:
            raise ValueError("mask and data shape do not match")

        # Fit data where mask is True
        fit_array = np.empty(data.shape[:-1], dtype=object)
        bar = _progress_bar(np.sum(mask), verbose=verbose)

        for ijk in ndindex(data.shape[:-1]):
            if mask[ijk]:
                fit_array[ijk] = single_voxel_fit(self, data[ijk])
                if bar is not None:
                    bar.update()

        if bar is not None:
            bar.close()

        fit = MultiVoxelFit(self, fit_array, mask)
        n_flagged = int(fit.flagged.sum())
        if n_flagged:
            logger.warning("%d of %d voxels flagged as numerically unstable",
                           n_flagged, int(np.sum(mask)))
        return fit

    new_fit.__doc__ = single_voxel_fit.__doc__
    return new_fit


class MultiVoxelFit(ReconstFit):
    """Holds an array of fits and allows access to their attributes and methods."""
    def __init__(self, model, fit_array, mask):
        self.model = model
        self.fit_array = fit_array
        self.mask = mask

    @property
    def shape(self):
        return self.fit_array.shape

    @property
    def flagged(self):
        """Boolean array, True where the voxel fit was numerically unstable."""
        flagged = np.zeros(self.fit_array.shape, dtype=bool)
        for ijk in ndindex(self.fit_array.shape):
            fit = self.fit_array[ijk]
            if fit is not None and getattr(fit, "flagged", False):
                flagged[ijk] = True
        return flagged

    def __getattr__(self, attr):
        result = CallableArray(self.fit_array.shape, dtype=object)
        for ijk in ndindex(result.shape):
            if self.mask[ijk]:
                result[ijk] = getattr(self.fit_array[ijk], attr)
        return _squash(result, self.mask)

    def __getitem__(self, index):
        item = self.fit_array[index]
        if isinstance(item, np.ndarray):
            return MultiVoxelFit(self.model, item, self.mask[index])
        else:
            return item

    def predict(self, S0=None):
        """
        Predict the signal for every voxel using each single-voxel fit, with
        S0 given as a scalar or as an array over the voxels. Masked voxels
        predict 0.
        """
        if S0 is None:
            S0 = 1.0

        def gimme_S0(S0_in, ijk_in):
            if isinstance(S0_in, np.ndarray):
                return S0_in[ijk_in]
            else:
                return S0_in

        n_meas = self.model.signal_kernel.shape[0]
        result = np.zeros(self.fit_array.shape + (n_meas,))
        for ijk in ndindex(self.fit_array.shape):
            if self.fit_array[ijk] is not None:
                result[ijk] = self.fit_array[ijk].predict(S0=gimme_S0(S0, ijk))

        return result


class CallableArray(np.ndarray):
    """An array which can be called like a function."""
    def __call__(self, *args, **kwargs):
        result = np.empty(self.shape, dtype=object)
        for ijk in ndindex(self.shape):
            item = self[ijk]
            if item is not None:
                result[ijk] = item(*args, **kwargs)
        return _squash(result)
