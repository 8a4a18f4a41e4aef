import json
from pathlib import Path

import numpy as np
import pytest

from edepcal.io.calib_store import read_meta, read_records, read_table
from edepcal.pipelines.core import run_pipeline


def _write_events(path: Path, n: int) -> None:
    lines = []
    for j in range(n):
        ev = {
            "run": 12, "event": j,
            "largeant": {
                "particles": [{"track_id": 1, "pdg": 211, "process": "primary", "pz": 1.0, "mass": 0.13957},
                              {"track_id": 2, "pdg": 22}],
                "sim_channels": [
                    {"channel": 3, "tdc_ide": {"0": [{"energy": 4.0, "num_electrons": 1.0e5, "track_id": 1}],
                                               "1": [{"energy": 1.0, "num_electrons": 3.0e4, "track_id": 2}]}},
                    # view 0 channel, excluded
                    {"channel": 1, "tdc_ide": {"0": [{"energy": 50.0, "num_electrons": 1.0e6, "track_id": 1}]}},
                ],
            },
            "gaushit": [{"plane": 2, "integral": 100.0 * (j + 1), "peak_time": 0.0},
                        {"plane": 2, "integral": 50.0, "peak_time": 0.0}],
            "linecluster": [{"hits": [1]}],
        }
        if j == 1:
            del ev["gaushit"]
        lines.append(json.dumps(ev))
    path.write_text("\n".join(lines) + "\n")


def _write_config(tmp_path: Path, fmt: str = "hdf5", workers: int = 0, png: bool = False) -> Path:
    suffix = {"hdf5": "h5", "root": "root", "csv": "csv"}[fmt]
    cfg = tmp_path / "edepcal.toml"
    cfg.write_text(f"""
[run]
best_view = 2
diagnostics_level = 0
progress = false
workers = {workers}
chunk_events = 2

[io]
input_path = "{(tmp_path / 'events.jsonl').as_posix()}"
output_path = "{(tmp_path / 'out' / ('calib.' + suffix)).as_posix()}"
output_format = "{fmt}"

[io.adapter]
type = "jsonl"

[physics]
gev_to_electrons = 1.0e6

[calorimetry]
kind = "fixed"
electrons_per_adc = 100.0

[geometry]
kind = "table"

[geometry.channel_views]
1 = 0
3 = 2

[vis]
export_png_on_write = {str(png).lower()}
bins = 10
""")
    return cfg


def test_run_pipeline_hdf5(tmp_path: Path):
    _write_events(tmp_path / "events.jsonl", 4)
    cfg = _write_config(tmp_path, png=True)

    out = run_pipeline(str(cfg))
    assert out == tmp_path / "out" / "calib.h5"
    assert out.with_suffix(".png").exists()

    cols = read_records(str(out))
    # event 1 has no hit collection and is dropped
    assert cols["event"].tolist() == [0, 2, 3]
    assert np.all(cols["run"] == 12)
    # electrons_to_MeV = 1000 / 1e6; electrons = 100 x ADC
    e2mev = 1e-3
    np.testing.assert_allclose(cols["edep"], [(100 + 50) * 100 * e2mev, (300 + 50) * 100 * e2mev,
                                              (400 + 50) * 100 * e2mev])
    np.testing.assert_allclose(cols["edep_clusters"], 50 * 100 * e2mev)
    np.testing.assert_allclose(cols["edep_truth"], 5.0)
    np.testing.assert_allclose(cols["edep_truth_em"], 1.0)
    np.testing.assert_allclose(cols["edep_truth_attenuated"], 1.3e5 * e2mev)
    np.testing.assert_allclose(cols["ratio_total"], cols["edep"] / 5.0)
    np.testing.assert_allclose(cols["ratio_em"], 5.0)
    np.testing.assert_allclose(cols["ratio_hadronic"], (cols["edep"] - cols["edep_clusters"]) / 4.0)
    assert cols["ratio_hadronic_valid"].all()

    meta = read_meta(str(out))
    assert int(meta["n_events_in"]) == 4 and int(meta["n_events_skipped"]) == 1
    assert meta["diagnostics"]["missing_collection"] == 1


def test_run_pipeline_overrides_and_pool(tmp_path: Path):
    _write_events(tmp_path / "events.jsonl", 5)
    cfg = _write_config(tmp_path, fmt="csv", workers=0)

    serial = read_table(str(run_pipeline(str(cfg), max_events=3)))
    assert serial["event"].tolist() == [0, 2]

    pooled_out = tmp_path / "pooled.csv"
    pooled = read_table(str(run_pipeline(str(cfg), workers=2, output_path=str(pooled_out), max_events=3)))
    assert pooled.equals(serial)

    # selecting a view with no deposits and no hits
    other = read_table(str(run_pipeline(str(cfg), best_view=1, output_path=str(tmp_path / "v1.csv"))))
    assert (other["edep"] == 0.0).all() and (~other["ratio_total_valid"]).all()


def test_run_pipeline_root_output(tmp_path: Path):
    pytest.importorskip("uproot")
    _write_events(tmp_path / "events.jsonl", 2)
    out = run_pipeline(str(_write_config(tmp_path, fmt="root")))
    df = read_table(str(out))
    assert df["event"].tolist() == [0]
