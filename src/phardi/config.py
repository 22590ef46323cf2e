"""Reconstruction options shared by kernel construction and RUMBA-SD."""

from __future__ import annotations

import configparser
import dataclasses
import math
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from .errors import InvalidInputError, UnsupportedMethodError

DOTR2 = "dotr2"
CSA = "csa"

_METHOD_ALIASES = {
    "dotr2": DOTR2,
    "dot-r2": DOTR2,
    "dot_r2": DOTR2,
    "qbi_dotr2": DOTR2,
    "csa": CSA,
    "csa-qbi": CSA,
    "csa_qbi": CSA,
    "qbi_csa": CSA,
}

_PRECISIONS = {
    "single": np.float32,
    "float32": np.float32,
    "double": np.float64,
    "float64": np.float64,
}


def normalize_method(value) -> str:
    """Map user spellings of a reconstruction method onto ``'dotr2'``/``'csa'``."""
    key = str(value).strip().lower()
    try:
        return _METHOD_ALIASES[key]
    except KeyError:
        raise UnsupportedMethodError(
            f"unsupported reconstruction method: {value!r}. "
            "Valid options: DOT-R2 | CSA-QBI"
        ) from None


@dataclass(frozen=True)
class ReconstructionOptions:
    """Immutable configuration for one acquisition protocol.

    Parameters
    ----------
    method : str
        SH reconstruction method, ``'dotr2'`` or ``'csa'`` (aliases such as
        ``'DOT-R2'`` and ``'CSA-QBI'`` are accepted).
    lambda_ : float
        Laplace-Beltrami regularization strength, > 0.
    n_iter : int
        Number of RUMBA-SD iterations, > 0.
    precision : str
        ``'single'`` or ``'double'``.
    recon_type : str
        MRI reconstruction: spatial matched filter (``'smf'``, Rician noise)
        or sum-of-squares (``'sos'``, non-central chi noise).
    n_coils : int
        Number of receiver coils, only used with ``'sos'``.
    init : str
        Initial fODF, ``'uniform'`` or ``'sh'`` (prior from the SH ODF).
    matmul : str
        Dense product backend, ``'numpy'`` or ``'torch'``.
    """

    method: str = DOTR2
    lambda_: float = 0.006
    n_iter: int = 300
    precision: str = "double"
    recon_type: str = "smf"
    n_coils: int = 1
    init: str = "uniform"
    matmul: str = "numpy"

    def __post_init__(self):
        # frozen dataclass: normalized values go through object.__setattr__
        object.__setattr__(self, "method", normalize_method(self.method))

        try:
            lambda_ = float(self.lambda_)
        except (TypeError, ValueError):
            raise InvalidInputError(f"lambda_ must be a number, got {self.lambda_!r}") from None
        if not math.isfinite(lambda_) or lambda_ <= 0:
            raise InvalidInputError(f"lambda_ must be a positive finite number, got {lambda_}")
        object.__setattr__(self, "lambda_", lambda_)

        object.__setattr__(self, "n_iter", _positive_int(self.n_iter, "n_iter"))
        object.__setattr__(self, "n_coils", _positive_int(self.n_coils, "n_coils"))

        precision = str(self.precision).strip().lower()
        if precision not in _PRECISIONS:
            raise InvalidInputError(
                f"Invalid precision {self.precision!r}. Valid options: single | double"
            )
        object.__setattr__(self, "precision", "single" if _PRECISIONS[precision] is np.float32 else "double")

        recon_type = str(self.recon_type).strip().lower()
        if recon_type not in ("smf", "sos"):
            raise UnsupportedMethodError(
                f"Invalid recon_type {self.recon_type!r}. Valid options: smf | sos"
            )
        object.__setattr__(self, "recon_type", recon_type)

        init = str(self.init).strip().lower()
        if init not in ("uniform", "sh"):
            raise InvalidInputError(f"Invalid init {self.init!r}. Valid options: uniform | sh")
        object.__setattr__(self, "init", init)

        matmul = str(self.matmul).strip().lower()
        if matmul not in ("numpy", "torch"):
            raise InvalidInputError(f"Invalid matmul {self.matmul!r}. Valid options: numpy | torch")
        object.__setattr__(self, "matmul", matmul)

    @property
    def dtype(self):
        return np.dtype(_PRECISIONS[self.precision])

    def replace(self, **changes) -> "ReconstructionOptions":
        """Return a validated copy with ``changes`` applied."""
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_file(cls, path, section: str = "RECONSTRUCTION") -> "ReconstructionOptions":
        """Read options from an INI file.

        Keys in ``section`` are field names (``lambda`` is accepted for
        ``lambda_``); missing keys keep their defaults.
        """
        path = Path(path)
        if not path.is_file():
            raise InvalidInputError(f"Configuration file not found: {path}")

        parser = configparser.ConfigParser()
        parser.read(path)
        if not parser.has_section(section):
            raise InvalidInputError(f"Configuration file {path} has no [{section}] section")

        fields = {f.name for f in dataclasses.fields(cls)}
        values = {}
        for key, raw in parser.items(section):
            name = "lambda_" if key == "lambda" else key
            if name not in fields:
                raise InvalidInputError(
                    f"Unknown option {key!r} in [{section}] of {path}. "
                    f"Valid options: {', '.join(sorted(fields))}"
                )
            values[name] = raw.strip()
        return cls(**values)


def _positive_int(value, name):
    try:
        as_float = float(value)
    except (TypeError, ValueError):
        raise InvalidInputError(f"{name} must be an integer, got {value!r}") from None
    if not as_float.is_integer() or as_float < 1:
        raise InvalidInputError(f"{name} must be a positive integer, got {value!r}")
    return int(as_float)
