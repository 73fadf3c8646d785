#!/usr/bin/env python3
"""
Land-sea mask from data coverage and stored in the clean file:
variable 'mask'  (1 = sea, 0 = land / never observed)

A grid point is sea when more than `minseafrac` of its time steps hold a
valid observation.
"""
from __future__ import annotations
import pathlib
import xarray as xr


def sea_fraction(data: xr.DataArray) -> xr.DataArray:
    """Fraction of time steps with a non-missing value, per pixel."""
    return data.notnull().sum("time") / data.sizes["time"]


def compute_mask(data: xr.DataArray, minseafrac: float = 0.05) -> xr.DataArray:
    mask = sea_fraction(data) > minseafrac
    mask.name = "mask"
    return mask


def add_mask(fname, varname: str = "sst", minseafrac: float = 0.05) -> xr.DataArray:
    """Append (or overwrite) the variable ``mask`` in *fname*."""
    fname = pathlib.Path(fname)
    print(f"▶ building land-sea mask (minseafrac={minseafrac}) …")
    with xr.open_dataset(fname) as ds:
        mask = compute_mask(ds[varname].load(), minseafrac)

    n_sea = int(mask.sum())
    print(f"[mask] ✓ sea pixels: {n_sea:,} / {mask.size:,} "
          f"({n_sea / mask.size * 100:.1f} %)")

    # coordinates are already in the file, write the bare variable
    da = mask.astype("int8").drop_vars(list(mask.coords))
    da.attrs.update(long_name="land-sea mask", flag_values=[0, 1],
                    flag_meanings="land sea",
                    comment=f"sea where more than {minseafrac:.0%} of time steps are valid")
    xr.Dataset({"mask": da}).to_netcdf(fname, mode="a")
    print(f"[mask] ✓ mask appended to {fname.name}")
    return mask
