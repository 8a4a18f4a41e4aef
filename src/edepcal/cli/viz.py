from __future__ import annotations

import typer
from typing import Optional

from edepcal.vis.hdf import save_ratio_png

app = typer.Typer(help="Energy calibration visualization tools")

@app.callback()
def _viz() -> None:
    """Quick-look plots of edepcal outputs."""

@app.command("ratios")
def ratios(
    h5_path: str = typer.Argument(..., help="Path to HDF5 file containing /calibration"),
    out: Optional[str] = typer.Option(None, "--out", "-o", help="Output PNG path (defaults to file.png)"),
    bins: int = typer.Option(50, "--bins", "-b", help="Histogram bins"),
):
    """Histogram the calibration ratios of an HDF5 output to a PNG."""
    out_png = save_ratio_png(h5_path, out_png=out, bins=bins)
    typer.echo(f"Wrote {out_png}")

if __name__ == "__main__":
    app()
