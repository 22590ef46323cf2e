"""Dense matrix multiply backends used inside the RUMBA-SD iterations.

A backend is any callable ``matmul(a, b) -> c`` taking and returning NumPy
arrays. The solver never depends on where the product runs.
"""
import logging

import numpy as np

from ..errors import InvalidInputError

logger = logging.getLogger(__name__)


def numpy_matmul(a, b):
    """Host matrix product; keeps the input precision."""
    return np.matmul(a, b)


class TorchMatMul:
    """Matrix product executed by PyTorch, optionally on a GPU.

    Inputs are copied to ``device``, multiplied there and copied back, so the
    call is synchronous and the result is a NumPy array with the dtype of
    ``a``.

    Parameters
    ----------
    device : str, optional
        Torch device. ``None`` picks ``'cuda'`` when available, else ``'cpu'``.
    """

    def __init__(self, device=None):
        try:
            import torch
        except ImportError as exc:
            raise ImportError(
                "PyTorch is required for the torch matmul backend. "
                "Install with `pip install phardi[gpu]`."
            ) from exc

        self._torch = torch
        if device is None:
            device = "cuda" if torch.cuda.is_available() else "cpu"
        self.device = torch.device(device)
        logger.debug("Using torch matmul on %s", self.device)

    def __call__(self, a, b):
        torch = self._torch
        a = np.asarray(a)
        dtype = a.dtype
        ta = torch.from_numpy(np.ascontiguousarray(a)).to(self.device)
        tb = torch.from_numpy(np.ascontiguousarray(b, dtype=dtype)).to(self.device)
        return torch.matmul(ta, tb).cpu().numpy()

    def __repr__(self):
        return f"TorchMatMul(device='{self.device}')"


_BACKENDS = {
    "numpy": lambda **kwargs: numpy_matmul,
    "torch": TorchMatMul,
}


def get_matmul(name="numpy", **kwargs):
    """Resolve a backend name (``'numpy'`` or ``'torch'``) to a callable."""
    try:
        factory = _BACKENDS[str(name).strip().lower()]
    except KeyError:
        raise InvalidInputError(
            f"Unknown matmul backend {name!r}. Valid options: {' | '.join(_BACKENDS)}"
        ) from None
    return factory(**kwargs)
