"""
Parameter handling: one YAML file (``config.yaml`` at the repo root) merged
over the defaults below, plus the file names derived from it.
"""
from __future__ import annotations
import copy, pathlib
import yaml

ROOT = pathlib.Path(__file__).resolve().parents[1]

DEFAULTS: dict = {
    "data_root": "./data",
    "varname":   "sst",
    "qualname":  "qual_sst",
    "chunk_time": 64,
    "download": {
        "source": "http",
        "url": "https://dox.ulg.ac.be/index.php/s/ckHBdhDzAKERwPb/download",
        "opendap_url": None,
        "lon_range":  [-7.0, -0.8],
        "lat_range":  [33.8, 38.2],
        "time_range": ["2000-02-25", "2020-12-31"],
        "timeout": 300,
    },
    "files": {
        "subset": "modis_subset.nc",
        "clean":  "modis_cleanup.nc",
        "cv":     None,                       # <clean>_add_clouds.nc
        "results": "Results",
        "reconstruction": "data-avg.nc",
        "loss": "loss.txt",
    },
    "quality": {"max_qual": 3, "max_value": 40.0, "drop_nonpositive": True},
    "mask":    {"minseafrac": 0.05},
    "cv":      {"mincvfrac": 0.10},
    "reconstruct": {
        "backend": "sstrecon.network:train_and_reconstruct",
        "precision": "float32",
        "device": "auto",
        "seed": 42,
        "epochs": 1000,
        "batch_size": 32,
        "enc_nfilter_internal": [16, 30, 58, 110, 209],
        "clip_grad": 5.0,
        "regularization_L2_beta": 1e-4,
        "ntime_win": 3,
        "upsampling_method": "nearest",
        "loss_weights_refine": [0.3, 0.7],
        "learning_rate": 0.00058,
        "save_epochs": {"start": 200, "step": 10},
        "obs_err_std": 1.0,
        "jitter_std": 0.05,
    },
    "plot": {"enabled": False, "clim_quantile": [0.01, 0.99], "which_plot": "cv"},
}


def _merge(base: dict, over: dict) -> dict:
    out = copy.deepcopy(base)
    for k, v in (over or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge(out[k], v)
        else:
            out[k] = v
    return out


def _none_strings(d):
    # normalise "none"/"null" written as strings in the YAML
    if isinstance(d, dict):
        return {k: _none_strings(v) for k, v in d.items()}
    if isinstance(d, str) and d.strip().lower() in ("none", "null", ""):
        return None
    return d


def load_params(path=None) -> dict:
    """Read *path* (default ``<repo>/config.yaml``) and merge it over DEFAULTS."""
    path = pathlib.Path(path) if path is not None else ROOT / "config.yaml"
    if not path.is_file():
        raise FileNotFoundError(f"config file not found: {path}")
    with open(path, "r") as f:
        user = yaml.safe_load(f) or {}
    P = _merge(DEFAULTS, _none_strings(user))
    P["_config_dir"] = str(path.resolve().parent)
    return P


def quick(P: dict) -> dict:
    """Short run: 10 epochs, one reconstruction saved at the end."""
    P = copy.deepcopy(P)
    P["reconstruct"]["epochs"] = 10
    P["reconstruct"]["save_epochs"] = [10]
    return P


def resolve_paths(P: dict) -> dict[str, pathlib.Path]:
    """All artefact paths of one run, relative paths taken from the config dir."""
    root = pathlib.Path(P["data_root"]).expanduser()
    if not root.is_absolute():
        root = pathlib.Path(P.get("_config_dir", ".")) / root
    F = P["files"]

    clean = root / F["clean"]
    cv = root / F["cv"] if F.get("cv") else clean.with_name(clean.stem + "_add_clouds.nc")
    outdir = root / F["results"]
    return {
        "localdir": root,
        "subset":   root / F["subset"],
        "clean":    clean,
        "cv":       cv,
        "outdir":   outdir,
        "rec":      outdir / F["reconstruction"],
        "loss":     outdir / F["loss"],
        "figdir":   outdir / "Fig",
        "metrics":  outdir / "cvrms.json",
    }
