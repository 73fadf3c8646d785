import numpy as np
import pytest

from tests.synthetic import make_subset


@pytest.fixture
def subset():
    ds = make_subset()
    # quality / range failures and native gaps at known cells
    ds["qual_sst"][0, 0, 0] = 5
    ds["sst"][1, 1, 1] = 45.0
    ds["sst"][2, 2, 2] = -0.5
    ds["sst"][3, 0, 2] = np.nan
    ds["qual_sst"][4, 1, 0] = np.nan
    return ds


@pytest.fixture
def subset_file(tmp_path, subset):
    fname = tmp_path / "modis_subset.nc"
    subset.to_netcdf(fname)
    return fname


@pytest.fixture
def cloudy_clean_file(tmp_path):
    """Clean 3×3×10 field: frame 9 has 4 gaps, frame 8 has 2, others are clear."""
    ds = make_subset().drop_vars("qual_sst")
    sst = ds["sst"].values.copy()
    sst[9, 0, :] = np.nan
    sst[9, 1, 0] = np.nan
    sst[8, 2, 1:] = np.nan
    ds["sst"] = (("time", "lat", "lon"), sst, ds["sst"].attrs)
    fname = tmp_path / "modis_cleanup.nc"
    ds.to_netcdf(fname)
    return fname
