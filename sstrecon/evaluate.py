"""
Cross-validation skill: RMS of (reconstruction − clean observation) over the
points that were hidden by :mod:`sstrecon.cvpoints`.
"""
from __future__ import annotations
import pathlib
import numpy as np
import xarray as xr
from sklearn.metrics import mean_squared_error


def cv_points(orig, cv) -> np.ndarray:
    """True where the clean field is valid and the CV field is missing."""
    return np.isfinite(np.asarray(orig, dtype=float)) & np.isnan(np.asarray(cv, dtype=float))


def cv_rms(orig, cv, rec) -> float:
    orig, rec = np.asarray(orig, dtype=float), np.asarray(rec, dtype=float)
    sel = cv_points(orig, cv)
    if not sel.any():
        raise ValueError("no cross-validation points (clean and CV fields have the same gaps)")
    r = rec[sel]
    n_bad = int((~np.isfinite(r)).sum())
    if n_bad:
        raise ValueError(f"reconstruction is missing at {n_bad} of {sel.sum()} CV points")
    return float(np.sqrt(mean_squared_error(orig[sel], r)))


def _read(fname, varname, dims=None):
    fname = pathlib.Path(fname)
    if not fname.is_file():
        raise FileNotFoundError(fname)
    with xr.open_dataset(fname) as ds:
        da = ds[varname]
        if dims is not None:
            da = da.transpose(*dims)
        return da.values, da.dims


def cvrms(case: dict, fnameavg) -> float:
    """*case* holds ``fname_orig``, ``fname_cv`` and ``varname``."""
    v = case["varname"]
    orig, dims = _read(case["fname_orig"], v)
    cv, _ = _read(case["fname_cv"], v, dims)
    rec, _ = _read(fnameavg, v, dims)
    rms = cv_rms(orig, cv, rec)
    print(f"[cvrms] {int(cv_points(orig, cv).sum()):,} CV points, RMS = {rms:.4f}")
    return rms
