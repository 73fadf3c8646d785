#!/usr/bin/env python3
"""
Full run: download → cleanup → mask → cv → reconstruct → evaluate [→ plot]

    python -m sstrecon.pipeline --config config.yaml
    python -m sstrecon.pipeline --config config.yaml --quick          # 10 epochs
    python -m sstrecon.pipeline --stages reconstruct evaluate

Any error aborts the run with a non-zero exit status (reported by the
job scripts in jobs/).
"""
from __future__ import annotations
import argparse, json
from sstrecon import config, download, quality, masks, cvpoints, reconstruct, evaluate

STAGES = ["download", "cleanup", "mask", "cv", "reconstruct", "evaluate", "plot"]


def run(P: dict, stages=None, backend=None) -> dict:
    """Run *stages* (default: all, plot only when enabled) and return the results."""
    paths = config.resolve_paths(P)
    if stages is None:
        stages = [s for s in STAGES if s != "plot" or P["plot"].get("enabled")]
    v, Q = P["varname"], P["quality"]
    paths["localdir"].mkdir(parents=True, exist_ok=True)
    paths["outdir"].mkdir(parents=True, exist_ok=True)
    case = dict(fname_orig=paths["clean"], fname_cv=paths["cv"], varname=v)
    res: dict = {}

    if "download" in stages:
        download.acquire(P, paths["subset"])
    if "cleanup" in stages:
        quality.cleanup(paths["subset"], paths["clean"], v, P["qualname"],
                        max_qual=Q["max_qual"], max_value=Q["max_value"],
                        drop_nonpositive=Q["drop_nonpositive"],
                        chunk_time=P.get("chunk_time", 64))
    if "mask" in stages:
        masks.add_mask(paths["clean"], v, minseafrac=P["mask"]["minseafrac"])
    if "cv" in stages:
        cvpoints.addcvpoint(paths["clean"], v, mincvfrac=P["cv"]["mincvfrac"],
                            fnamecv=paths["cv"])
    if "reconstruct" in stages:
        res["loss"] = reconstruct.run_reconstruction(P, paths, backend=backend)
    if "evaluate" in stages:
        res["cvrms"] = evaluate.cvrms(case, paths["rec"])
        print(f"Cross-validation RMS error is: {res['cvrms']}")
        with open(paths["metrics"], "w") as f:
            json.dump({"cvrms": res["cvrms"], "varname": v,
                       "reconstruction": str(paths["rec"])}, f, indent=2)
    if "plot" in stages:
        from sstrecon import plotting      # matplotlib only when plotting
        if "loss" in res:
            plotting.plot_loss(res["loss"], paths["outdir"] / "loss.png")
        G = P["plot"]
        plotting.plotres(case, paths["rec"], paths["figdir"],
                         clim_quantile=tuple(G["clim_quantile"]),
                         which_plot=G["which_plot"])
    return res


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    ap.add_argument("--config", default=None, help="YAML parameters (default: <repo>/config.yaml)")
    ap.add_argument("--stages", nargs="+", choices=STAGES, default=None)
    ap.add_argument("--quick", action="store_true", help="10 epochs, for testing")
    args = ap.parse_args(argv)

    P = config.load_params(args.config)
    if args.quick:
        P = config.quick(P)
    run(P, args.stages)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
