import numpy as np
import xarray as xr

from sstrecon.masks import add_mask, compute_mask, sea_fraction
from tests.synthetic import make_subset


def _field():
    da = make_subset()["sst"].copy()
    v = da.values
    v[:, 0, 0] = np.nan            # never observed        → 0/10
    v[1:, 0, 1] = np.nan           # observed once         → 1/10
    v[2:, 0, 2] = np.nan           # observed twice        → 2/10
    return da


def test_sea_fraction():
    frac = sea_fraction(_field())
    assert frac.dims == ("lat", "lon")
    np.testing.assert_allclose(frac.values[0], [0.0, 0.1, 0.2])
    assert (frac.values[1:] == 1.0).all()


def test_threshold_is_strict():
    mask = compute_mask(_field(), minseafrac=0.1)
    assert mask.values[0].tolist() == [False, False, True]
    assert mask.values[1:].all()


def test_mask_matches_fraction_definition():
    da = _field()
    for thr in (0.0, 0.05, 0.15, 0.5):
        mask = compute_mask(da, thr).values
        frac = np.isfinite(da.values).sum(0) / da.sizes["time"]
        np.testing.assert_array_equal(mask, frac > thr)


def test_add_mask_appends_variable(tmp_path):
    ds = make_subset().drop_vars("qual_sst")
    ds["sst"] = _field()
    fname = tmp_path / "clean.nc"
    ds.to_netcdf(fname)

    add_mask(fname, "sst", minseafrac=0.05)
    with xr.open_dataset(fname) as out:
        assert "mask" in out and "sst" in out
        assert out["mask"].dims == ("lat", "lon")
        assert out["mask"].values[0].tolist() == [0, 1, 1]
        assert int(out["mask"].sum()) == 8
