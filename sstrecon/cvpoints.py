"""
Cross-validation points: clouds of the cloudiest images are copied onto the
cleanest images until `mincvfrac` of the valid observations are hidden.

Output file (default ``<clean>_add_clouds.nc``) holds every variable of the
clean file with

  <varname>  – the measurement with the additional gaps
  cv_mask    – 1 where a valid observation was hidden (int8)

The hidden values themselves stay in the clean file, which is the reference
used by :func:`sstrecon.evaluate.cvrms`.

Pairing
-------
Frames are ranked by their missing fraction over the sea.  The i-th
cleanest frame (recipient) receives the gaps of the i-th cloudiest frame
(donor); frames without any sea observation are not used as donors and a
frame is never paired with itself.  Only sea cells that are valid in the
recipient are hidden, so gaps are added and never removed.
"""
from __future__ import annotations
import pathlib, warnings
import numpy as np
import xarray as xr
from tabulate import tabulate


def default_cv_name(fname) -> pathlib.Path:
    fname = pathlib.Path(fname)
    return fname.with_name(fname.stem + "_add_clouds.nc")


def missing_fraction(missing: np.ndarray, sea: np.ndarray) -> np.ndarray:
    """Per-frame fraction of missing sea pixels; missing is (time, y, x)."""
    return missing[:, sea].mean(axis=1)


def add_clouds(data: np.ndarray, sea: np.ndarray, mincvfrac: float = 0.10):
    """Core of the gap injection on a (time, y, x) array.

    Returns
    -------
    data_cv : copy of *data* with the extra NaNs
    cvmask  : bool (time, y, x), True where a valid value was hidden
    pairs   : list of (recipient, donor, n_new)
    """
    sea = np.asarray(sea, dtype=bool)
    if not sea.any():
        raise ValueError("no sea pixel in mask – cannot choose CV points")

    missing = np.isnan(data)
    frac = missing_fraction(missing, sea)
    nvalid = int((~missing).sum())
    target = mincvfrac * nvalid

    recipients = np.argsort(frac, kind="stable")
    donors = [t for t in np.argsort(-frac, kind="stable") if frac[t] < 1.0]

    data_cv = data.copy()
    cvmask = np.zeros(data.shape, dtype=bool)
    pairs: list[tuple[int, int, int]] = []
    ncv = 0
    for n_dest, n_src in zip(recipients, donors):
        if ncv >= target:
            break
        if n_dest == n_src:
            continue
        new = missing[n_src] & ~missing[n_dest] & sea
        if not new.any():
            continue
        data_cv[n_dest][new] = np.nan
        cvmask[n_dest] = new
        ncv += int(new.sum())
        pairs.append((int(n_dest), int(n_src), int(new.sum())))

    if ncv < target:
        warnings.warn(f"only {ncv} CV points added, {target:.0f} requested "
                      f"(mincvfrac={mincvfrac})")
    return data_cv, cvmask, pairs


def addcvpoint(fname, varname: str = "sst", *, mincvfrac: float = 0.10,
               fnamecv=None) -> tuple[pathlib.Path, list]:
    """Write the cross-validation file for *fname* and return its path."""
    fname = pathlib.Path(fname)
    fnamecv = pathlib.Path(fnamecv) if fnamecv is not None else default_cv_name(fname)

    print(f"▶ adding CV points to {fname.name} (mincvfrac={mincvfrac}) …")
    with xr.open_dataset(fname) as ds:
        ds = ds.load()
    if varname not in ds:
        raise KeyError(f"variable '{varname}' not in {fname}")

    da = ds[varname]
    spatial = [d for d in da.dims if d != "time"]
    data = da.transpose("time", *spatial).values.astype("float64")
    if "mask" in ds:
        sea = ds["mask"].transpose(*spatial).values == 1
    else:
        sea = np.ones(data.shape[1:], dtype=bool)

    data_cv, cvmask, pairs = add_clouds(data, sea, mincvfrac)

    dims = ("time", *spatial)
    cv_da = xr.DataArray(data_cv.astype("float32"), dims=dims,
                         coords={d: da[d] for d in dims if d in da.coords},
                         attrs=dict(da.attrs)).transpose(*da.dims)
    cv_flag = xr.DataArray(cvmask.astype("int8"), dims=dims).transpose(*da.dims)
    cv_flag.attrs.update(long_name="cross-validation points", flag_values=[0, 1],
                         comment=f"valid {varname} hidden for validation")

    out = ds.copy()
    out[varname] = cv_da
    out["cv_mask"] = cv_flag

    nvalid = int(np.isfinite(data).sum())
    ncv = int(cvmask.sum())
    times = da["time"].values
    print(tabulate([[str(times[d])[:10], str(times[s])[:10], n] for d, s, n in pairs],
                   headers=["recipient", "donor (clouds)", "new gaps"],
                   tablefmt="github"))
    print(f"[cv] ✓ {ncv:,} CV points = {ncv / max(nvalid, 1):.1%} of {nvalid:,} "
          f"valid observations in {len(pairs)} images")

    enc = {varname: {"zlib": True, "complevel": 4, "dtype": "float32",
                     "_FillValue": np.float32(-9999.0)},
           "cv_mask": {"zlib": True, "complevel": 4}}
    fnamecv.parent.mkdir(parents=True, exist_ok=True)
    out.to_netcdf(fnamecv, mode="w", encoding=enc)
    print(f"[cv] ✓ wrote {fnamecv}")
    return fnamecv, pairs
