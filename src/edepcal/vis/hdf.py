import numpy as np
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402
from pathlib import Path

from edepcal.io.calib_store import read_records

RATIOS = (
    ("ratio_total", "ratio_total_valid", "reco / truth"),
    ("ratio_em", "ratio_em_valid", "clusters / truth EM"),
    ("ratio_hadronic", "ratio_hadronic_valid", "(reco - clusters) / truth hadronic"),
)

def save_ratio_png(h5_path: str, out_png: str | None = None, bins: int = 50):
    """Histogram the three calibration ratios, valid entries only."""
    h5_path = str(h5_path)
    cols = read_records(h5_path)
    for name, flag, _ in RATIOS:
        if name not in cols or flag not in cols:
            raise KeyError(f"{name} not found in {h5_path}")

    if out_png is None:
        out_png = str(Path(h5_path).with_suffix(".png"))

    fig, axes = plt.subplots(1, len(RATIOS), figsize=(4 * len(RATIOS), 3.5))
    for ax, (name, flag, label) in zip(axes, RATIOS):
        vals = np.asarray(cols[name])[np.asarray(cols[flag], dtype=bool)]
        ax.hist(vals, bins=bins, histtype="step")
        ax.set_xlabel(label)
        ax.set_title(f"{name} (n={vals.size})")
    fig.suptitle(Path(h5_path).name)
    fig.tight_layout()
    fig.savefig(out_png, dpi=150)
    plt.close(fig)
    return out_png
