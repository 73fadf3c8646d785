"""
Dataset acquisition: the MODIS SST subset is fetched once and reused.

Two sources are supported
  • http    – a ready-made subset file (default, a few MB)
  • opendap – cut the subset directly from the PO.DAAC aggregation
              (slow, several minutes; the server may answer
              ``Error { code = 500; message = "Java heap space"; }``)
"""
from __future__ import annotations
import pathlib
import numpy as np
import pandas as pd
import requests
import xarray as xr
from tqdm import tqdm

BLOCK = 1024 * 1024          # 1 MB


def fetch_subset(url: str, fname, timeout: int = 300) -> pathlib.Path:
    """Download *url* to *fname* unless the file is already there."""
    fname = pathlib.Path(fname)
    if fname.is_file():
        print(f"[download] ✓ {fname.name} already present")
        return fname

    fname.parent.mkdir(parents=True, exist_ok=True)
    tmp = fname.with_name(fname.name + ".part")
    print(f"▶ downloading {url} → {fname}")

    r = requests.get(url, timeout=timeout, stream=True)
    r.raise_for_status()
    total = int(r.headers.get("content-length", 0)) or None
    with open(tmp, "wb") as f, tqdm(total=total, unit="B", unit_scale=True,
                                    desc=fname.name) as bar:
        for chunk in r.iter_content(chunk_size=BLOCK):
            if not chunk:
                continue
            f.write(chunk)
            bar.update(len(chunk))
    tmp.replace(fname)
    print(f"[download] ✓ {fname.stat().st_size / 1e6:.1f} MB written")
    return fname


def _coord(ds: xr.Dataset, *names: str) -> str:
    for n in names:
        if n in ds.coords:
            return n
    raise KeyError(f"none of the coordinates {names} found")


def subset_opendap(url: str, fname, lon_range, lat_range, time_range) -> pathlib.Path:
    """Write the lon/lat/time box (inclusive) of the remote dataset to *fname*."""
    fname = pathlib.Path(fname)
    if fname.is_file():
        print(f"[download] ✓ {fname.name} already present")
        return fname
    fname.parent.mkdir(parents=True, exist_ok=True)

    t0, t1 = pd.to_datetime(time_range[0]), pd.to_datetime(time_range[-1])
    print(f"▶ opening {url}")
    with xr.open_dataset(url) as ds:
        lon, lat = _coord(ds, "lon", "longitude"), _coord(ds, "lat", "latitude")
        i = (ds[lon] >= lon_range[0]) & (ds[lon] <= lon_range[-1])
        j = (ds[lat] >= lat_range[0]) & (ds[lat] <= lat_range[-1])
        n = (ds["time"] >= t0) & (ds["time"] <= t1)
        sub = ds.isel({lon: np.flatnonzero(i.values), lat: np.flatnonzero(j.values),
                       "time": np.flatnonzero(n.values)})
        sub.to_netcdf(fname)
        nslices = int(n.sum())

    print(f"[download] ✓ NetCDF subset ({nslices} slices) written {fname}")
    return fname


def acquire(P: dict, fname) -> pathlib.Path:
    D = P["download"]
    if D["source"] == "http":
        return fetch_subset(D["url"], fname, timeout=D.get("timeout", 300))
    if D["source"] == "opendap":
        if not D.get("opendap_url"):
            raise ValueError("download.source is 'opendap' but download.opendap_url is empty")
        return subset_opendap(D["opendap_url"], fname,
                              D["lon_range"], D["lat_range"], D["time_range"])
    raise ValueError(f"Unknown download source: {D['source']}")
