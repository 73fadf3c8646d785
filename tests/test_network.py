import numpy as np
import pytest
import torch
import xarray as xr

from sstrecon.masks import add_mask
from sstrecon.network import (AutoEncoder, DINCAENet, GriddedStack, nll,
                              train_and_reconstruct)
from sstrecon.reconstruct import ReconParams
from tests.synthetic import make_subset


@pytest.fixture
def cv_file(tmp_path):
    ds = make_subset(nlon=7, nlat=5, ntime=6).drop_vars("qual_sst")
    v = ds["sst"].values
    v[:, 0, 0] = np.nan                   # land
    v[2, 1:3, 2:5] = np.nan               # clouds
    v[4, 3, :] = np.nan
    fname = tmp_path / "cv.nc"
    ds.to_netcdf(fname)
    add_mask(fname, "sst", minseafrac=0.05)
    return fname


def _data(fname):
    return [dict(filename=str(fname), varname="sst", obs_err_std=1.0,
                 jitter_std=0.05, isoutput=True)]


def test_stack_channels_and_batch(cv_file):
    st = GriddedStack(_data(cv_file), ntime_win=3, seed=0)
    assert st.nchannels == 2 * 1 * 3 + 4
    X, y = st.batch([0, 5], train=True)
    assert X.shape == (2, st.nchannels, 5, 7)
    assert y.shape == (2, 1, 5, 7)
    assert torch.isfinite(X).all()
    assert not st.sea[0, 0] and st.sea.sum() == 34


@pytest.mark.parametrize("upsampling", ["nearest", "bilinear"])
def test_autoencoder_keeps_grid_size(upsampling):
    net = AutoEncoder(6, [4, 8, 16], cout=2, upsampling=upsampling)
    assert net(torch.zeros(2, 6, 13, 11)).shape == (2, 2, 13, 11)


def test_refinement_stages():
    net = DINCAENet(10, nout=1, nfilter=[4, 8], nstages=2)
    outs = net(torch.zeros(3, 10, 8, 8))
    assert len(outs) == 2 and outs[1].shape == (3, 2, 8, 8)


def test_nll_ignores_missing_targets():
    m = torch.zeros(1, 1, 2, 2, requires_grad=True)
    logvar = torch.zeros(1, 1, 2, 2)
    y = torch.tensor([[[[1.0, float("nan")], [1.0, float("nan")]]]])
    loss = nll(m, logvar, y)
    assert loss.item() == pytest.approx(1.0)
    loss.backward()
    assert torch.isfinite(m.grad).all()
    assert m.grad[0, 0, 0, 1] == 0


def test_train_and_reconstruct_small_run(cv_file, tmp_path):
    params = ReconParams(epochs=2, batch_size=4, enc_nfilter_internal=[4, 8],
                         save_epochs=[1, 2], device="cpu", seed=1)
    out = tmp_path / "data-avg.nc"
    loss = train_and_reconstruct([_data(cv_file), _data(cv_file)], [out], params)

    assert len(loss) == 2 and np.isfinite(loss).all()
    with xr.open_dataset(out) as ds, xr.open_dataset(cv_file) as cv:
        assert set(ds.data_vars) == {"sst", "sst_error"}
        rec = ds["sst"].transpose(*cv["sst"].dims).values
        err = ds["sst_error"].transpose(*cv["sst"].dims).values
        sea = cv["mask"].values == 1
    assert rec.shape == (6, 5, 7)
    assert np.isfinite(rec[:, sea]).all() and (err[:, sea] > 0).all()
    assert np.isnan(rec[:, ~sea]).all()


def test_output_count_must_match(cv_file, tmp_path):
    params = ReconParams(epochs=1, save_epochs=[1], enc_nfilter_internal=[4], device="cpu")
    with pytest.raises(ValueError):
        train_and_reconstruct([_data(cv_file), _data(cv_file)],
                              [tmp_path / "a.nc", tmp_path / "b.nc"], params)
