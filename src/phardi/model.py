import logging
import warnings

import numpy as np
from dipy.data import get_sphere
from dipy.reconst.odf import OdfFit, OdfModel
from dipy.reconst.shm import lazy_index, normalize_data
from tqdm import tqdm

from .config import ReconstructionOptions
from .core.backends import get_matmul
from .core.kernel import build_kernel
from .core.rumba import rumba_sd
from .errors import InvalidInputError, NumericInstabilityError
from .utils.multi_voxel import MultiVoxelFit, multi_voxel_fit
from .utils.response import DEFAULT_WM_RESPONSE, signal_kernel
from .utils.sh_projection import sh_odf, sh_prior

logger = logging.getLogger(__name__)


class SphDeconvModel(OdfModel):
    """
    fODF reconstruction with RUMBA-SD on a fixed sphere, with DOT-R2 or
    CSA-QBI SH kernels built for the same protocol.

      1) build the SH reconstruction kernel and the RUMBA-SD signal
         dictionary once, from the gradient table and the sphere
      2) per voxel: normalize to the mean b0, pick the initial fODF
         (uniform or the SH ODF) and run RUMBA-SD
      3) return a SphDeconvFit (or a MultiVoxelFit of them)

    Parameters
    ----------
    gtab : GradientTable
        Must contain at least one b0 measurement.
    sphere : Sphere, optional
        fODF sampling grid. Defaults to ``repulsion724``.
    options : ReconstructionOptions, optional
        Protocol configuration. Keyword arguments override its fields.
    wm_response : sequence of 3 floats, optional
        Single fiber tensor eigenvalues used for the signal dictionary.
    matmul : callable, optional
        Dense product backend. Defaults to the one named in ``options``.
    """

    def __init__(self, gtab, sphere=None, options=None,
                 wm_response=DEFAULT_WM_RESPONSE, matmul=None, **kwargs):
        if options is None:
            options = ReconstructionOptions(**kwargs)
        elif kwargs:
            options = options.replace(**kwargs)

        if not np.any(gtab.b0s_mask):
            raise InvalidInputError("Gradient table has no b0 measurements")
        if options.recon_type == 'smf' and options.n_coils != 1:
            msg = "n_coils = %d is ignored with recon_type = 'smf' (Rician noise)."
            warnings.warn(msg % options.n_coils, UserWarning)

        OdfModel.__init__(self, gtab)
        self.options = options
        self.sphere = get_sphere(name='repulsion724') if sphere is None else sphere
        self.wm_response = wm_response

        self._where_b0s = lazy_index(gtab.b0s_mask)
        gradients = np.where(gtab.b0s_mask[:, None], 0.0, gtab.bvecs)
        bvals = np.where(gtab.b0s_mask, 0.0, gtab.bvals)

        self.rkernel = build_kernel(gradients, bvals, self.sphere.vertices, options)
        self.signal_kernel = signal_kernel(gradients, bvals, self.sphere.vertices,
                                           wm_response, dtype=options.dtype)
        self.signal_kernel.setflags(write=False)
        self.matmul = get_matmul(options.matmul) if matmul is None else matmul

    @property
    def n_dirs(self):
        return len(self.sphere.vertices)

    def _normalize(self, data):
        """Divide by the mean b0 and clip to (0, 1]."""
        dtype = self.options.dtype
        data = np.asarray(data)
        out = np.empty(data.shape, dtype=dtype)
        normalize_data(data, self._where_b0s, min_signal=np.finfo(dtype).eps, out=out)
        np.minimum(out, 1, out=out)
        return out

    def _initial_fodf(self, signal):
        """Initial fODF for normalized signals of shape (..., N)."""
        if self.options.init == 'sh':
            return sh_prior(signal[..., self.rkernel.b1_indices], self.rkernel)
        shape = signal.shape[:-1] + (self.n_dirs,)
        return np.full(shape, 1.0 / self.n_dirs, dtype=self.options.dtype)

    def _finalize(self, fodf):
        fodf = fodf / (np.sum(fodf) + np.finfo(fodf.dtype).eps)
        return SphDeconvFit(self, fodf)

    def _flagged_fit(self):
        return SphDeconvFit(self, np.zeros(self.n_dirs, dtype=self.options.dtype), flagged=True)

    def _empty_fit(self):
        return SphDeconvFit(self, np.zeros(self.n_dirs, dtype=self.options.dtype))

    @multi_voxel_fit
    def fit(self, data):
        """
        RUMBA-SD fit of one voxel, wrapped for volumes by multi_voxel_fit.

        Voxels without signal get a zero fODF; voxels where the solver
        becomes unstable get a zero fODF with ``flagged`` set.
        """
        if np.sum(data) == 0:
            return self._empty_fit()

        signal = self._normalize(data)
        fodf0 = self._initial_fodf(signal)
        try:
            fodf = rumba_sd(signal, self.signal_kernel, fodf0, self.options.n_iter,
                            matmul=self.matmul,
                            recon_type=self.options.recon_type,
                            n_coils=self.options.n_coils)
        except NumericInstabilityError as exc:
            logger.warning("Voxel flagged: %s", exc)
            return self._flagged_fit()

        return self._finalize(fodf)

    def fit_batched(self, data, mask=None, batch_size=4096, verbose=False):
        """
        RUMBA-SD fit of many voxels at once.

        Voxels are solved ``batch_size`` at a time so each iteration runs one
        large matrix product, which is where an accelerator backend pays off.
        Results are identical to :meth:`fit`.

        Parameters
        ----------
        data : ndarray (..., N)
        mask : ndarray (...), optional
        batch_size : int, optional
        verbose : bool, optional
            Show a progress bar over batches.

        Returns
        -------
        MultiVoxelFit or SphDeconvFit
        """
        data = np.asarray(data)
        if data.ndim == 1:
            return self.fit(data)
        if batch_size < 1:
            raise InvalidInputError(f"batch_size must be >= 1, got {batch_size}")

        if mask is None:
            mask = np.ones(data.shape[:-1], dtype=bool)
        elif mask.shape != data.shape[:-1]:
            raise ValueError("mask and data shape do not match")
        mask = np.asarray(mask, dtype=bool)

        fit_array = np.empty(data.shape[:-1], dtype=object)
        voxels = np.argwhere(mask)
        starts = range(0, len(voxels), batch_size)
        for start in tqdm(starts, disable=not verbose):
            chunk = voxels[start:start + batch_size]
            index = tuple(chunk.T)
            raw = data[index]
            empty = np.sum(raw, axis=-1) == 0

            signal = self._normalize(raw)
            fodf0 = self._initial_fodf(signal)
            bad = np.zeros(len(chunk), dtype=bool)
            try:
                fodf = rumba_sd(signal.T, self.signal_kernel, fodf0.T, self.options.n_iter,
                                matmul=self.matmul,
                                recon_type=self.options.recon_type,
                                n_coils=self.options.n_coils)
            except NumericInstabilityError as exc:
                logger.warning("%d voxel(s) flagged in batch starting at %d: %s",
                               len(exc.voxels), start, exc)
                fodf = exc.result
                bad[exc.voxels] = True

            for col, ijk in enumerate(chunk):
                ijk = tuple(ijk)
                if empty[col]:
                    fit_array[ijk] = self._empty_fit()
                elif bad[col]:
                    fit_array[ijk] = self._flagged_fit()
                else:
                    fit_array[ijk] = self._finalize(fodf[:, col])

        return MultiVoxelFit(self, fit_array, mask)

    def sh_odf(self, data):
        """
        Analytic DOT-R2 / CSA-QBI ODF on the model sphere.

        Parameters
        ----------
        data : ndarray (..., N)

        Returns
        -------
        odf : ndarray (..., M)
            Min-subtracted ODF with unit sum.
        """
        signal = self._normalize(data)
        return sh_odf(signal[..., self.rkernel.b1_indices], self.rkernel)


class SphDeconvFit(OdfFit):

    def __init__(self, model, fodf, flagged=False):
        """
        Single voxel RUMBA-SD result.

        Parameters
        ----------
        model : SphDeconvModel
        fodf : ndarray (M,)
            fODF on the model sphere, unit sum (zeros if flagged or empty).
        flagged : bool
            True if the solver was numerically unstable for this voxel.
        """
        self.model = model
        self._fodf = fodf
        self.flagged = bool(flagged)

    @property
    def fodf(self):
        return self._fodf

    def odf(self, sphere=None):
        """fODF at the vertices of the model sphere."""
        if sphere is not None and sphere is not self.model.sphere:
            if not np.array_equal(sphere.vertices, self.model.sphere.vertices):
                raise ValueError("Reconstruction sphere must be the same as used"
                                 + " in the SphDeconvModel.")
        return self._fodf

    def predict(self, S0=1.0):
        """Signal predicted on the model gradient table."""
        return S0 * np.dot(self.model.signal_kernel, self._fodf)
