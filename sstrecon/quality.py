"""
Quality control of the raw MODIS subset.

A cell is dropped (set to NaN) when
  • its quality indicator exceeds ``max_qual`` (3 for MODIS L3),
  • the temperature is above ``max_value`` (40 °C),
  • the temperature is ≤ 0 °C (``drop_nonpositive``).
Cells without a quality flag are judged on their value only.
"""
from __future__ import annotations
import pathlib
import numpy as np
import xarray as xr
from tabulate import tabulate
from dask.diagnostics import ProgressBar


def quality_filter(sst: xr.DataArray, qual: xr.DataArray, *,
                   max_qual: float = 3, max_value: float = 40.0,
                   drop_nonpositive: bool = True) -> xr.DataArray:
    """Return a filtered copy of *sst*; the inputs are left untouched."""
    # comparisons with NaN are False → missing flags never mask anything
    bad = (qual > max_qual) | (sst > max_value)
    if drop_nonpositive:
        bad = bad | (sst <= 0)
    out = sst.where(~bad)
    out.attrs = dict(sst.attrs)
    return out


def count_cells(da: xr.DataArray) -> tuple[int, int]:
    """(missing, valid) cell counts."""
    n_miss = int(da.isnull().sum())
    return n_miss, int(da.size) - n_miss


def cleanup(fname_subset, fname, varname: str = "sst", qualname: str = "qual_sst", *,
            max_qual: float = 3, max_value: float = 40.0,
            drop_nonpositive: bool = True, chunk_time: int = 64) -> pathlib.Path:
    """Filter *varname* of the subset file and write the clean file *fname*.

    Every other variable of the subset is copied, the quality field is not.
    """
    fname_subset, fname = pathlib.Path(fname_subset), pathlib.Path(fname)
    if not fname_subset.is_file():
        raise FileNotFoundError(fname_subset)

    print(f"▶ quality filter on {fname_subset.name} …")
    with xr.open_dataset(fname_subset, chunks={"time": chunk_time}) as ds:
        for v in (varname, qualname):
            if v not in ds:
                raise KeyError(f"variable '{v}' not in {fname_subset}")

        sst_t = quality_filter(ds[varname], ds[qualname], max_qual=max_qual,
                               max_value=max_value, drop_nonpositive=drop_nonpositive)
        out = ds.drop_vars([varname, qualname])
        out[varname] = sst_t.astype("float32")
        out[varname].attrs["comment"] = (
            f"qual_sst > {max_qual}, sst > {max_value}"
            + (", sst <= 0" if drop_nonpositive else "") + " removed"
        )

        with ProgressBar():
            out = out.compute()

    n_miss, n_valid = count_cells(out[varname])
    print("[cleanup] observation counts")
    print(tabulate([["missing", f"{n_miss:,}", f"{n_miss / out[varname].size:.1%}"],
                    ["valid",   f"{n_valid:,}", f"{n_valid / out[varname].size:.1%}"]],
                   headers=["", "cells", "share"], tablefmt="github"))

    enc = {v: {"zlib": True, "complevel": 4} for v in out.data_vars}
    enc[varname].update(dtype="float32", _FillValue=np.float32(-9999.0))
    for v in out.variables.values():
        v.encoding.pop("chunksizes", None)
    fname.parent.mkdir(parents=True, exist_ok=True)
    out.to_netcdf(fname, mode="w", encoding=enc)
    print(f"[cleanup] ✓ wrote {fname}")
    return fname
