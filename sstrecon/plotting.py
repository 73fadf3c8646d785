"""
Figures: loss curve and, per image, the 4-panel CV comparison
(a) original  (b) with added clouds  (c) reconstruction  (d) error std.
"""
from __future__ import annotations
import pathlib
import numpy as np
import xarray as xr
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt


def plot_loss(loss, fname) -> pathlib.Path:
    fname = pathlib.Path(fname)
    loss = np.asarray(loss, dtype=float)
    fig, ax = plt.subplots(figsize=(6, 3.5))
    ax.plot(np.arange(1, loss.size + 1), loss, lw=1)
    if loss.size > 1:
        lo, hi = loss[1:].min(), loss[1:].max()
        if hi > lo:
            ax.set_ylim(lo, hi)
    ax.set_xlabel("epochs"); ax.set_ylabel("loss")
    fig.tight_layout()
    fname.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(fname, dpi=120)
    plt.close(fig)
    return fname


def plotres(case: dict, fnameavg, figdir, clim_quantile=(0.01, 0.99),
            which_plot: str = "cv") -> list[pathlib.Path]:
    """One PNG per time step; with ``which_plot="cv"`` only steps with CV points."""
    figdir = pathlib.Path(figdir); figdir.mkdir(parents=True, exist_ok=True)
    v = case["varname"]
    with xr.open_dataset(case["fname_orig"]) as d0, \
         xr.open_dataset(case["fname_cv"]) as d1, \
         xr.open_dataset(fnameavg) as d2:
        orig = d0[v].transpose("time", ...).load()
        dims = orig.dims
        cv   = d1[v].transpose(*dims).load()
        rec  = d2[v].transpose(*dims).load()
        err  = d2[f"{v}_error"].transpose(*dims).load()

    q = np.nanquantile(orig.values, clim_quantile)
    ydim, xdim = dims[1:]
    extent = None
    if xdim in orig.coords and ydim in orig.coords:
        extent = [float(orig[xdim].min()), float(orig[xdim].max()),
                  float(orig[ydim].min()), float(orig[ydim].max())]

    stem = pathlib.Path(fnameavg).stem
    out = []
    for n in range(orig.sizes["time"]):
        if which_plot == "cv" and not (np.isfinite(orig[n].values) & np.isnan(cv[n].values)).any():
            continue
        fig, axs = plt.subplots(2, 2, figsize=(10, 7), sharex=True, sharey=True)
        panels = [(orig[n], "(a) original", q), (cv[n], "(b) with added clouds", q),
                  (rec[n], "(c) reconstruction", q), (err[n], "(d) error std", None)]
        for ax, (da, title, clim) in zip(axs.flat, panels):
            kw = dict(vmin=clim[0], vmax=clim[1]) if clim is not None else {}
            im = ax.imshow(da.values, origin="lower", extent=extent, aspect="auto", **kw)
            fig.colorbar(im, ax=ax, shrink=0.8)
            ax.set_title(title)
        tstr = str(orig["time"].values[n])[:10] if "time" in orig.coords else str(n)
        fig.suptitle(tstr)
        fig.tight_layout()
        fname = figdir / f"{stem}_{tstr}.png"
        fig.savefig(fname, dpi=100)
        plt.close(fig)
        out.append(fname)
    print(f"[plot] ✓ {len(out)} figures in {figdir}")
    return out
