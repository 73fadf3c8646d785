import numpy as np
import pytest
import xarray as xr

from sstrecon.cvpoints import add_clouds, addcvpoint, default_cv_name
from sstrecon.masks import add_mask


def _load(fname):
    with xr.open_dataset(fname) as ds:
        return ds.load()


def test_default_name(tmp_path):
    assert default_cv_name(tmp_path / "modis_cleanup.nc").name == "modis_cleanup_add_clouds.nc"


def test_cloudiest_onto_cleanest(cloudy_clean_file):
    add_mask(cloudy_clean_file, "sst", minseafrac=0.05)
    fcv, pairs = addcvpoint(cloudy_clean_file, "sst", mincvfrac=0.05)

    # 84 valid → target 4.2: frame 9 (4 gaps) onto frame 0, frame 8 (2 gaps) onto frame 1
    assert pairs == [(0, 9, 4), (1, 8, 2)]
    clean, cv = _load(cloudy_clean_file), _load(fcv)
    np.testing.assert_array_equal(np.isnan(cv["sst"].values[0]), np.isnan(clean["sst"].values[9]))
    np.testing.assert_array_equal(np.isnan(cv["sst"].values[1]), np.isnan(clean["sst"].values[8]))
    assert np.isfinite(cv["sst"].values[2:8]).all()


def test_gaps_are_only_added(cloudy_clean_file):
    with pytest.warns(UserWarning):            # only 6 of 8.4 reachable
        fcv, _ = addcvpoint(cloudy_clean_file, "sst", mincvfrac=0.10)
    c, v = _load(cloudy_clean_file)["sst"].values, _load(fcv)["sst"].values
    assert np.isnan(v[np.isnan(c)]).all()
    both = np.isfinite(v)
    np.testing.assert_array_equal(v[both], c[both])


def test_cv_mask_is_exactly_the_new_gaps(cloudy_clean_file):
    fcv, _ = addcvpoint(cloudy_clean_file, "sst", mincvfrac=0.05)
    c = _load(cloudy_clean_file)["sst"].values
    cv = _load(fcv)
    new = np.isnan(cv["sst"].values) & np.isfinite(c)
    np.testing.assert_array_equal(cv["cv_mask"].values == 1, new)
    assert new.sum() >= 0.05 * np.isfinite(c).sum()


def test_no_cv_points_requested():
    data = np.ones((4, 2, 2))
    data[3, 0, 0] = np.nan
    out, cvmask, pairs = add_clouds(data, np.ones((2, 2), bool), mincvfrac=0.0)
    assert pairs == [] and not cvmask.any()
    np.testing.assert_array_equal(np.isnan(out), np.isnan(data))


def test_land_is_never_masked():
    data = np.ones((3, 2, 2))
    data[2, 0, :] = np.nan                 # clouds over sea and land
    data[2, 1, 1] = np.nan
    sea = np.array([[True, True], [True, False]])
    with pytest.warns(UserWarning):
        out, cvmask, pairs = add_clouds(data, sea, mincvfrac=0.5)
    assert pairs == [(0, 2, 2)]
    assert not cvmask[:, 1, 1].any()
    assert np.isfinite(out[:, 1, 1][:2]).all()


def test_fully_missing_frames_are_not_donors():
    data = np.ones((3, 2, 2))
    data[2] = np.nan
    with pytest.warns(UserWarning):
        out, cvmask, pairs = add_clouds(data, np.ones((2, 2), bool), mincvfrac=0.5)
    assert pairs == [] and not cvmask.any()


def test_all_land_raises():
    with pytest.raises(ValueError):
        add_clouds(np.ones((2, 2, 2)), np.zeros((2, 2), bool))
