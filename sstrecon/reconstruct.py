"""
Reconstruction driver.

The actual training / inference routine is a *backend* addressed as
``"package.module:function"`` with the signature

    backend(data_all, fnames_rec, params: ReconParams) -> list[float]

``data_all = [data_train, data_test]``; each entry is a list of dicts with
keys ``filename``, ``varname``, ``obs_err_std``, ``jitter_std``, ``isoutput``.
The backend writes one reconstruction per output variable to ``fnames_rec``
and returns the loss, one value per recorded step.  The default backend is
:func:`sstrecon.network.train_and_reconstruct`.
"""
from __future__ import annotations
import dataclasses, importlib, pathlib, time
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

DEFAULT_BACKEND = "sstrecon.network:train_and_reconstruct"
PRECISIONS = ("float32", "float64")
UPSAMPLING = ("nearest", "bilinear")


class ReconstructionError(RuntimeError):
    """The reconstruction backend failed; the original error is chained."""


def _save_epochs(sel, epochs: int) -> list[int]:
    # list, or {start, step[, stop]} like 200:10:epochs
    if isinstance(sel, dict):
        stop = sel.get("stop") or epochs
        return list(range(int(sel["start"]), int(stop) + 1, int(sel.get("step", 1))))
    return [int(e) for e in sel]


@dataclass
class ReconParams:
    epochs: int = 1000
    batch_size: int = 32
    enc_nfilter_internal: list = field(default_factory=lambda: [16, 30, 58, 110, 209])
    clip_grad: float = 5.0
    regularization_L2_beta: float = 1e-4
    ntime_win: int = 3
    upsampling_method: str = "nearest"
    loss_weights_refine: tuple = (0.3, 0.7)
    learning_rate: float = 0.00058
    save_epochs: list = field(default_factory=lambda: list(range(200, 1001, 10)))
    precision: str = "float32"
    device: str = "auto"
    seed: Optional[int] = 42

    def __post_init__(self):
        self.enc_nfilter_internal = [int(n) for n in self.enc_nfilter_internal]
        self.loss_weights_refine = tuple(float(w) for w in self.loss_weights_refine)
        self.save_epochs = sorted({int(e) for e in self.save_epochs})
        self.validate()

    def validate(self):
        if self.epochs < 1 or self.batch_size < 1:
            raise ValueError("epochs and batch_size must be positive")
        if self.ntime_win < 1 or self.ntime_win % 2 == 0:
            raise ValueError(f"ntime_win must be odd, got {self.ntime_win}")
        if not self.enc_nfilter_internal:
            raise ValueError("enc_nfilter_internal is empty")
        if not self.loss_weights_refine:
            raise ValueError("loss_weights_refine is empty")
        if self.precision not in PRECISIONS:
            raise ValueError(f"precision must be one of {PRECISIONS}")
        if self.upsampling_method not in UPSAMPLING:
            raise ValueError(f"upsampling_method must be one of {UPSAMPLING}")
        if not any(1 <= e <= self.epochs for e in self.save_epochs):
            raise ValueError(f"no save epoch within 1..{self.epochs}: {self.save_epochs}")

    @classmethod
    def from_config(cls, R: dict) -> "ReconParams":
        names = {f.name for f in dataclasses.fields(cls)}
        kw = {k: v for k, v in R.items() if k in names and k != "save_epochs"}
        epochs = int(kw.get("epochs", cls.epochs))
        if "save_epochs" in R:
            kw["save_epochs"] = _save_epochs(R["save_epochs"], epochs)
        return cls(**kw)


def resolve_backend(target: str) -> Callable:
    mod, sep, func = target.partition(":")
    if not sep or not mod or not func:
        raise ValueError(f"backend must look like 'package.module:function', got {target!r}")
    fn = getattr(importlib.import_module(mod), func)
    if not callable(fn):
        raise ValueError(f"{target} is not callable")
    return fn


def reconstruct(data_all: Sequence, fnames_rec: Sequence, params: ReconParams,
                backend: Callable | str | None = None) -> list[float]:
    """Run *backend* and return its loss trajectory."""
    if backend is None or isinstance(backend, str):
        backend = resolve_backend(backend or DEFAULT_BACKEND)
    for f in fnames_rec:
        pathlib.Path(f).parent.mkdir(parents=True, exist_ok=True)

    start = time.time()
    try:
        loss = backend(data_all, list(fnames_rec), params)
    except Exception as e:
        raise ReconstructionError(f"reconstruction backend failed: {e}") from e
    print(f"[reconstruct] elapsed time is: {time.time() - start:.1f} seconds")
    return [float(l) for l in loss]


def save_loss(loss: Sequence[float], fname) -> pathlib.Path:
    fname = pathlib.Path(fname)
    fname.parent.mkdir(parents=True, exist_ok=True)
    with open(fname, "w") as f:
        for l in loss:
            f.write(f"{float(l)!r}\n")
    print(f"[reconstruct] loss values saved to {fname}")
    return fname


def run_reconstruction(P: dict, paths: dict, backend=None) -> list[float]:
    """Tutorial set-up: train and reconstruct on the same CV file."""
    R = P["reconstruct"]
    params = ReconParams.from_config(R)
    data = [dict(filename=str(paths["cv"]), varname=P["varname"],
                 obs_err_std=R.get("obs_err_std", 1.0),
                 jitter_std=R.get("jitter_std", 0.05),
                 isoutput=True)]
    data_test = data
    fnames_rec = [paths["rec"]]

    print(f"▶ reconstruction of '{P['varname']}' ({params.epochs} epochs, "
          f"{params.precision}) …")
    loss = reconstruct([data, data_test], fnames_rec, params,
                       backend=backend if backend is not None else R.get("backend"))
    save_loss(loss, paths["loss"])
    return loss
