#!/usr/bin/env python3
"""
Convolutional auto-encoder with error estimates for gappy satellite fields
(DINCAE, Barth et al. 2020, 2022), default backend of the reconstruction
driver.

Input channels for every frame t (centred window of `ntime_win` frames)
    x / σ²      anomaly w.r.t. the per-pixel mean, 0 where missing
    1 / σ²      observation precision, 0 where missing
plus two grid coordinates and cos/sin(day-of-year) of the centre frame.

Training
    • centre frame corrupted with the gaps of a random frame
    • Gaussian jitter (`jitter_std`) on the inputs
    • loss = Gaussian negative log-likelihood over observed target pixels,
      auto-encoder stage and refinement stage weighted by
      `loss_weights_refine`

Output
    At each epoch of `save_epochs` the whole series is reconstructed; the
    mean and the error variance are averaged over these epochs and written as
    <varname> and <varname>_error.  Land (mask == 0) is left missing.
"""
from __future__ import annotations
import math, pathlib, warnings
import numpy as np
import xarray as xr
import torch
import torch.nn as nn
import torch.nn.functional as F

DTYPES = {"float32": torch.float32, "float64": torch.float64}
LOGVAR_MAX = 10.0          # |log σ²| clip, keeps exp() finite
LOG_EVERY  = 10


def get_device(name: str = "auto") -> torch.device:
    if name != "auto":
        return torch.device(name)
    if torch.cuda.is_available():
        return torch.device("cuda")
    warnings.warn("No supported GPU found. We will use the CPU which is very slow.")
    return torch.device("cpu")


# ───────────────────────── data ──────────────────────────────────────────
def _scaled(v: np.ndarray) -> np.ndarray:
    v = v.astype("float64")
    span = v.max() - v.min()
    return (v - v.min()) / span * 2 - 1 if span > 0 else np.zeros_like(v)


class GriddedStack:
    """All variables of one data description, as (time, var, y, x) anomalies."""

    def __init__(self, sources: list[dict], ntime_win: int = 3, seed=None):
        if not sources:
            raise ValueError("empty data description")
        self.ntime_win = ntime_win
        self.rng = np.random.default_rng(seed)

        das, sea = [], None
        for s in sources:
            fname = pathlib.Path(s["filename"])
            if not fname.is_file():
                raise FileNotFoundError(fname)
            with xr.open_dataset(fname) as ds:
                da = ds[s["varname"]].load()
                if sea is None and "mask" in ds:
                    sea = ds["mask"].load()
            das.append(da.transpose("time", ...))

        first = das[0]
        self.dims = first.dims
        if len(self.dims) != 3:
            raise ValueError(f"expected (time, y, x) variables, got {self.dims}")
        for da in das[1:]:
            if da.shape != first.shape:
                raise ValueError("all variables must share the same grid")

        self.names     = [s["varname"] for s in sources]
        self.out_index = [i for i, s in enumerate(sources) if s.get("isoutput", True)]
        if not self.out_index:
            raise ValueError("no output variable (isoutput=True) in data description")
        self.obs_err_std = np.array([float(s.get("obs_err_std", 1.0)) for s in sources])
        self.jitter_std  = np.array([float(s.get("jitter_std", 0.0)) for s in sources])
        self.templates   = [das[i] for i in self.out_index]

        x = np.stack([da.values.astype("float64") for da in das], axis=1)   # (T,V,H,W)
        cnt = np.isfinite(x).sum(0)
        self.meandata = np.where(cnt > 0, np.nansum(x, 0) / np.maximum(cnt, 1), 0.0)
        self.x = x - self.meandata

        ydim, xdim = self.dims[1:]
        self.sea = (sea.transpose(ydim, xdim).values == 1 if sea is not None
                    else np.ones(x.shape[2:], dtype=bool))

        # grid coordinates, scaled to [-1, 1]
        H, W = x.shape[2:]
        cy = _scaled(first[ydim].values if ydim in first.coords else np.arange(H))
        cx = _scaled(first[xdim].values if xdim in first.coords else np.arange(W))
        self.aux_space = np.stack(np.meshgrid(cy, cx, indexing="ij"), 0)    # (2,H,W)

        time = first["time"].values if "time" in first.coords else np.arange(len(first))
        if np.issubdtype(np.asarray(time).dtype, np.datetime64):
            doy = first["time"].dt.dayofyear.values.astype("float64")
        else:
            doy = np.zeros(len(first))
        self.aux_time = np.stack([np.cos(2 * np.pi * doy / 365.25),
                                  np.sin(2 * np.pi * doy / 365.25)], 1)       # (T,2)

    @property
    def ntime(self) -> int:
        return self.x.shape[0]

    @property
    def nchannels(self) -> int:
        return 2 * self.x.shape[1] * self.ntime_win + 4

    def batch(self, idx, train: bool = False):
        T, half = self.ntime, self.ntime_win // 2
        prec0 = 1.0 / self.obs_err_std[:, None, None] ** 2
        X, Y = [], []
        for n in idx:
            chans = []
            for k in range(-half, half + 1):
                frame = self.x[min(max(n + k, 0), T - 1)].copy()
                if train:
                    if k == 0:
                        donor = self.rng.integers(T)
                        frame[np.isnan(self.x[donor])] = np.nan
                    frame += self.rng.normal(size=frame.shape) * self.jitter_std[:, None, None]
                valid = np.isfinite(frame)
                prec = np.where(valid, prec0, 0.0)
                chans += [np.where(valid, frame, 0.0) * prec, prec]
            chans.append(self.aux_space)
            chans.append(np.broadcast_to(self.aux_time[n][:, None, None],
                                         (2, *self.x.shape[2:])))
            X.append(np.concatenate(chans, 0))
            Y.append(self.x[n, self.out_index])
        return (torch.from_numpy(np.stack(X)), torch.from_numpy(np.stack(Y)))


# ───────────────────────── model ─────────────────────────────────────────
class AutoEncoder(nn.Module):
    """Conv encoder/decoder, average pooling, additive skip connections."""

    def __init__(self, cin: int, nfilter: list[int], cout: int,
                 upsampling: str = "nearest"):
        super().__init__()
        self.upsampling = upsampling
        self.enc = nn.ModuleList()
        c = cin
        for nf in nfilter:
            self.enc.append(nn.Conv2d(c, nf, 3, padding=1))
            c = nf
        self.dec = nn.ModuleList(
            nn.Conv2d(nfilter[i + 1], nfilter[i], 3, padding=1)
            for i in reversed(range(len(nfilter) - 1))
        )
        self.head = nn.Conv2d(nfilter[0], cout, 1)
        self.factor = 2 ** (len(nfilter) - 1)

    def forward(self, x):
        H, W = x.shape[-2:]
        ph, pw = (-H) % self.factor, (-W) % self.factor
        x = F.pad(x, (0, pw, 0, ph))

        skips = []
        for i, conv in enumerate(self.enc):
            x = F.leaky_relu(conv(x), 0.2)
            if i < len(self.enc) - 1:
                skips.append(x)
                x = F.avg_pool2d(x, 2)
        for conv in self.dec:
            mode = dict(mode="bilinear", align_corners=False) \
                if self.upsampling == "bilinear" else dict(mode="nearest")
            x = F.interpolate(x, scale_factor=2, **mode)
            x = F.leaky_relu(conv(x), 0.2) + skips.pop()
        return self.head(x)[..., :H, :W]


class DINCAENet(nn.Module):
    """One auto-encoder per stage; later stages also see the previous output."""

    def __init__(self, cin: int, nout: int, nfilter: list[int],
                 nstages: int = 2, upsampling: str = "nearest"):
        super().__init__()
        self.nout = nout
        self.stages = nn.ModuleList(
            AutoEncoder(cin + (2 * nout if s > 0 else 0), nfilter, 2 * nout, upsampling)
            for s in range(nstages)
        )

    def forward(self, x):
        outs, inp = [], x
        for stage in self.stages:
            o = stage(inp)
            outs.append(o)
            inp = torch.cat([x, o], 1)
        return outs

    def split(self, out):
        """(mean, log σ²) of a stage output."""
        m = out[:, :self.nout]
        logvar = out[:, self.nout:].clamp(-LOGVAR_MAX, LOGVAR_MAX)
        return m, logvar


def nll(m, logvar, y):
    """Gaussian negative log-likelihood over the finite entries of *y*."""
    valid = torch.isfinite(y)
    n = valid.sum()
    if n == 0:
        return (m * 0).sum()
    y0 = torch.nan_to_num(y, nan=0.0)
    e = (y0 - m) ** 2 * torch.exp(-logvar) + logvar
    return e[valid].sum() / n


# ───────────────────────── train / reconstruct ───────────────────────────
def _batches(n: int, size: int, rng=None):
    order = rng.permutation(n) if rng is not None else np.arange(n)
    for i in range(0, n, size):
        yield order[i:i + size]


def train_epoch(stack, net, opt, params, device, dtype) -> float:
    net.train(); run = []
    for idx in _batches(stack.ntime, params.batch_size, stack.rng):
        X, y = stack.batch(idx, train=True)
        X, y = X.to(device, dtype), y.to(device, dtype)
        outs = net(X)
        loss = sum(w * nll(*net.split(o), y)
                   for w, o in zip(params.loss_weights_refine, outs))
        opt.zero_grad()
        loss.backward()
        if params.clip_grad:
            nn.utils.clip_grad_norm_(net.parameters(), params.clip_grad)
        opt.step()
        run.append(loss.item())
    return float(np.mean(run))


@torch.no_grad()
def predict(stack, net, params, device, dtype):
    """Mean and error variance of the last stage, (T, nout, H, W)."""
    net.eval()
    ms, vs = [], []
    for idx in _batches(stack.ntime, params.batch_size):
        X, _ = stack.batch(idx, train=False)
        m, logvar = net.split(net(X.to(device, dtype))[-1])
        ms.append(m.double().cpu().numpy())
        vs.append(torch.exp(logvar).double().cpu().numpy())
    return np.concatenate(ms), np.concatenate(vs)


def write_reconstruction(stack, mean, var, fnames_rec):
    for k, (oi, tmpl, fname) in enumerate(zip(stack.out_index, stack.templates, fnames_rec)):
        name = stack.names[oi]
        land = ~stack.sea[None]
        rec = np.where(land, np.nan, mean[:, k] + stack.meandata[oi][None])
        err = np.where(land, np.nan, np.sqrt(var[:, k]))

        coords = {d: tmpl[d] for d in tmpl.dims if d in tmpl.coords}
        ds = xr.Dataset(
            {name: (tmpl.dims, rec.astype("float32"), dict(tmpl.attrs)),
             f"{name}_error": (tmpl.dims, err.astype("float32"),
                               {"long_name": f"expected error standard deviation of {name}",
                                "units": tmpl.attrs.get("units", "")})},
            coords=coords,
        )
        enc = {v: {"zlib": True, "complevel": 4, "_FillValue": np.float32(-9999.0)}
               for v in ds.data_vars}
        ds.to_netcdf(fname, mode="w", encoding=enc)
        print(f"[reconstruct] ✓ wrote {fname}")


def train_and_reconstruct(data_all, fnames_rec, params) -> list[float]:
    data, data_test = data_all
    if params.seed is not None:
        torch.manual_seed(params.seed)
    device, dtype = get_device(params.device), DTYPES[params.precision]

    stack = GriddedStack(data, params.ntime_win, seed=params.seed)
    same = [s["filename"] for s in data] == [s["filename"] for s in data_test]
    stack_test = stack if same else GriddedStack(data_test, params.ntime_win)
    if len(fnames_rec) != len(stack_test.out_index):
        raise ValueError(f"{len(stack_test.out_index)} output variables but "
                         f"{len(fnames_rec)} output files")

    nout = len(stack.out_index)
    net = DINCAENet(stack.nchannels, nout, params.enc_nfilter_internal,
                    nstages=len(params.loss_weights_refine),
                    upsampling=params.upsampling_method).to(device=device, dtype=dtype)
    opt = torch.optim.Adam(net.parameters(), lr=params.learning_rate,
                           weight_decay=params.regularization_L2_beta)

    n_par = sum(p.numel() for p in net.parameters())
    print(f"[reconstruct] {stack.ntime} frames, {stack.nchannels} input channels, "
          f"{n_par:,} parameters on {device}")

    losses: list[float] = []
    save = set(params.save_epochs)
    sum_m = sum_v = None
    nsave = 0
    for ep in range(1, params.epochs + 1):
        loss = train_epoch(stack, net, opt, params, device, dtype)
        if not math.isfinite(loss):
            raise FloatingPointError(f"loss is {loss} at epoch {ep}")
        losses.append(loss)
        if ep == 1 or ep % LOG_EVERY == 0 or ep == params.epochs:
            print(f"E{ep:04d}  loss={loss:.4f}  lr={opt.param_groups[0]['lr']:.1e}")

        if ep in save:
            m, v = predict(stack_test, net, params, device, dtype)
            sum_m = m if sum_m is None else sum_m + m
            sum_v = v if sum_v is None else sum_v + v
            nsave += 1

    write_reconstruction(stack_test, sum_m / nsave, sum_v / nsave, fnames_rec)
    return losses
