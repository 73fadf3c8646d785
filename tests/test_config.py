import pytest
import yaml

from sstrecon import config


def test_repo_config_loads():
    P = config.load_params()
    assert P["varname"] == "sst"
    assert P["quality"]["max_qual"] == 3
    assert P["mask"]["minseafrac"] == pytest.approx(0.05)
    assert P["cv"]["mincvfrac"] == pytest.approx(0.10)


def test_user_values_override_defaults(tmp_path):
    cfg = tmp_path / "c.yaml"
    cfg.write_text(yaml.safe_dump({"data_root": "out", "reconstruct": {"epochs": 5},
                                   "files": {"cv": "null"}}))
    P = config.load_params(cfg)
    assert P["reconstruct"]["epochs"] == 5
    assert P["reconstruct"]["batch_size"] == 32            # default kept
    paths = config.resolve_paths(P)
    assert paths["localdir"].resolve() == (tmp_path / "out").resolve()
    assert paths["cv"].name == "modis_cleanup_add_clouds.nc"
    assert paths["rec"].resolve() == (tmp_path / "out" / "Results" / "data-avg.nc").resolve()


def test_quick_run():
    P = config.quick(config.DEFAULTS)
    assert P["reconstruct"]["epochs"] == 10 and P["reconstruct"]["save_epochs"] == [10]
    assert config.DEFAULTS["reconstruct"]["epochs"] == 1000


def test_missing_config(tmp_path):
    with pytest.raises(FileNotFoundError):
        config.load_params(tmp_path / "nope.yaml")
