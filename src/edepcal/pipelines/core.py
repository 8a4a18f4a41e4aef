from __future__ import annotations

import os
from concurrent.futures import (
    FIRST_COMPLETED,
    Executor,
    Future,
    ProcessPoolExecutor,
    as_completed,
    wait,
)
from dataclasses import dataclass, fields
from itertools import islice
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union
import typer

import numpy as np
from tqdm import tqdm

from edepcal.config.load import apply_overrides, load_config, snapshot_config_toml
from edepcal.config.schemas import Config
from edepcal.geometry.channels import ChannelMap, make_channel_map
from edepcal.io.adapters import make_adapter
from edepcal.io.calib_store import records_to_columns, write_output
from edepcal.physics.calorimetry import Calorimetry, make_calorimetry
from edepcal.physics.diagnostics import AccountingDiagnostics
from edepcal.physics.particles import build_particle_index
from edepcal.physics.ratios import compute_ratios
from edepcal.physics.reco import cluster_energy, event_energy
from edepcal.physics.records import EventData
from edepcal.physics.truth import accumulate_truth_energy
from edepcal.vis.hdf import save_ratio_png


class MissingCollectionError(RuntimeError):
    """A required input collection is absent from the event."""

    def __init__(self, collection: str, label: str, run: int = 0, event: int = 0):
        self.collection = collection
        self.label = label
        super().__init__(f"run {run} event {event}: required collection '{collection}' ({label}) not found")


@dataclass(slots=True)
class EventRecord:
    """
    One output row. Energies in MeV, gen_momentum in GeV/c.

    edep              lifetime-corrected hit energy on the best view
    edep_uncorrected  same without lifetime correction
    edep_clusters     lifetime-corrected energy summed over clusters
    edep_truth*       truth deposit sums (raw, from carriers, EM parts)
    ratio_*           reco/truth ratios; 0.0 and *_valid=False when not computed
    """
    run: int = 0
    subrun: int = 0
    event: int = 0
    gen_momentum: float = 0.0
    gen_kinetic_MeV: float = 0.0
    edep: float = 0.0
    edep_uncorrected: float = 0.0
    edep_clusters: float = 0.0
    edep_truth: float = 0.0
    edep_truth_attenuated: float = 0.0
    edep_truth_em: float = 0.0
    edep_truth_em_attenuated: float = 0.0
    ratio_total: float = 0.0
    ratio_em: float = 0.0
    ratio_hadronic: float = 0.0
    ratio_total_valid: bool = False
    ratio_em_valid: bool = False
    ratio_hadronic_valid: bool = False


COLUMNS: Tuple[str, ...] = tuple(f.name for f in fields(EventRecord))
COLUMN_DTYPES = {
    name: (np.int32 if name in ("run", "subrun", "event")
           else np.bool_ if name.endswith("_valid")
           else np.float64)
    for name in COLUMNS
}


@dataclass(frozen=True)
class ProcessingContext:
    """
    Run-level, read-only state shared by every event (and every worker).

    labels are only used to name missing collections in error messages.
    """
    best_view: int
    channel_map: ChannelMap
    calorimetry: Calorimetry
    electrons_to_MeV: float
    diagnostics_level: int = 1
    simulation_label: str = "largeant"
    hits_label: str = "gaushit"
    cluster_label: str = "linecluster"

    @classmethod
    def from_cfg(cls, cfg: Config) -> "ProcessingContext":
        return cls(
            best_view=cfg.run.best_view,
            channel_map=make_channel_map(cfg.geometry),
            calorimetry=make_calorimetry(cfg.calorimetry),
            electrons_to_MeV=cfg.physics.electrons_to_MeV,
            diagnostics_level=cfg.run.diagnostics_level,
            simulation_label=cfg.labels.simulation_label,
            hits_label=cfg.labels.hits_label,
            cluster_label=cfg.labels.cluster_label,
        )


def process_event(
    ev: EventData,
    ctx: ProcessingContext,
    diag: AccountingDiagnostics | None = None,
) -> EventRecord:
    """
    Energy accounting for one event.

    Raises MissingCollectionError when particles, hits or clusters are
    absent; a missing truth-deposit collection counts as zero truth energy.
    """
    if ev.particles is None:
        raise MissingCollectionError("particles", ctx.simulation_label, ev.run, ev.event)
    if ev.hits is None:
        raise MissingCollectionError("hits", ctx.hits_label, ev.run, ev.event)
    if ev.clusters is None:
        raise MissingCollectionError("clusters", ctx.cluster_label, ev.run, ev.event)

    index = build_particle_index(ev.particles)

    truth = accumulate_truth_energy(
        ev.sim_channels,
        index,
        view=ctx.best_view,
        channel_map=ctx.channel_map,
        electrons_to_MeV=ctx.electrons_to_MeV,
        diag=diag,
    )

    reco_kw = dict(
        view=ctx.best_view,
        calorimetry=ctx.calorimetry,
        electrons_to_MeV=ctx.electrons_to_MeV,
        t0=index.t0,
    )
    # per-hit anomalies are counted on the corrected full-event pass only
    edep = event_energy(ev.hits, diag=diag, **reco_kw)
    edep_uncorrected = event_energy(ev.hits, lifetime=False, **reco_kw)
    edep_clusters = cluster_energy(ev.hits, ev.clusters, diag=diag, **reco_kw)

    ratios = compute_ratios(edep, edep_clusters, truth.raw, truth.em_raw)

    return EventRecord(
        run=ev.run,
        subrun=ev.subrun,
        event=ev.event,
        gen_momentum=index.gen_momentum,
        gen_kinetic_MeV=index.gen_kinetic_MeV,
        edep=edep,
        edep_uncorrected=edep_uncorrected,
        edep_clusters=edep_clusters,
        edep_truth=truth.raw,
        edep_truth_attenuated=truth.attenuated,
        edep_truth_em=truth.em_raw,
        edep_truth_em_attenuated=truth.em_attenuated,
        ratio_total=ratios.total,
        ratio_em=ratios.em,
        ratio_hadronic=ratios.hadronic,
        ratio_total_valid=ratios.total_valid,
        ratio_em_valid=ratios.em_valid,
        ratio_hadronic_valid=ratios.hadronic_valid,
    )


def process_events(
    events: Iterable[EventData],
    ctx: ProcessingContext,
) -> Tuple[List[EventRecord], AccountingDiagnostics]:
    """
    Serial loop; events with a missing required collection are dropped and
    counted under 'missing_collection'.
    """
    diag = AccountingDiagnostics(level=ctx.diagnostics_level)
    records: List[EventRecord] = []
    for ev in events:
        try:
            records.append(process_event(ev, ctx, diag))
        except MissingCollectionError as exc:
            diag.inc("missing_collection")
            if ctx.diagnostics_level >= 1:
                print(f"[edep] Skipping event: {exc}")
    return records, diag


def _chunked(it: Iterable[EventData], size: int) -> Iterator[List[EventData]]:
    it = iter(it)
    while True:
        chunk = list(islice(it, size))
        if not chunk:
            return
        yield chunk


def _iter_chunk_results(
    ex: Executor,
    chunks: Iterable[List[EventData]],
    ctx: ProcessingContext,
    max_in_flight: int,
) -> Iterator[Tuple[int, Tuple[List[EventRecord], AccountingDiagnostics]]]:
    """
    Submit chunks as they are pulled, never more than max_in_flight pending.

    Yields (chunk index, result) in completion order.
    """
    pending: Dict[Future, int] = {}
    for j, ch in enumerate(chunks):
        pending[ex.submit(process_events, ch, ctx)] = j
        if len(pending) >= max_in_flight:
            done, _ = wait(pending, return_when=FIRST_COMPLETED)
            for fut in done:
                yield pending.pop(fut), fut.result()
    for fut in as_completed(list(pending)):
        yield pending.pop(fut), fut.result()


def run_events(
    events: Iterable[EventData],
    ctx: ProcessingContext,
    *,
    workers: Union[int, str] = 0,
    chunk_events: int = 200,
    progress: bool = False,
) -> Tuple[List[EventRecord], AccountingDiagnostics]:
    """
    Process events serially (workers == 0) or in chunks on a process pool.

    The event stream is read lazily; at most 2 x workers chunks are held
    in flight. Output order always follows input order.
    """
    if workers == "auto":
        workers = max(1, os.cpu_count() or 1)
    elif isinstance(workers, int):
        workers = max(0, workers)
    else:
        raise ValueError("workers must be int or 'auto'")

    # Single-process path (also good for debugging)
    if workers == 0:
        it = tqdm(events, desc="edep", unit="event") if progress else events
        return process_events(it, ctx)

    pbar = tqdm(desc=f"edep x{workers}", unit="chunk") if progress else None

    results: Dict[int, List[EventRecord]] = {}
    diag = AccountingDiagnostics(level=ctx.diagnostics_level)
    with ProcessPoolExecutor(max_workers=workers) as ex:
        for j, (recs, chunk_diag) in _iter_chunk_results(
            ex, _chunked(events, chunk_events), ctx, max_in_flight=2 * workers
        ):
            results[j] = recs
            diag.merge(chunk_diag)
            if pbar:
                pbar.update(1)
    if pbar:
        pbar.close()

    records = [r for j in sorted(results) for r in results[j]]
    return records, diag


def records_as_columns(records: Sequence[EventRecord]):
    return records_to_columns(records, COLUMNS, COLUMN_DTYPES)


def run_pipeline(
    cfg_path: str,
    *,
    best_view: Optional[int] = None,
    workers: Optional[Union[int, str]] = None,
    output_path: Optional[str] = None,
    max_events: Optional[int] = None,
) -> Path:
    """
    Orchestrate a full calibration pass from a TOML config file.

    Keyword arguments override the corresponding config fields when not None.

    Returns
    -------
    Path to the written output file.
    """
    # ---- apply CLI overrides on top of TOML ----
    cfg = apply_overrides(load_config(cfg_path), {
        "run.best_view": best_view,
        "run.workers": workers,
        "io.output_path": output_path,
        "run.max_events": max_events,
    })

    diag_level = cfg.run.diagnostics_level

    # Run-level conditions; fixed for the whole pass
    ctx = ProcessingContext.from_cfg(cfg)

    if diag_level >= 1:
        print(f"[run] config = {cfg_path}")
        print(f"[run] best_view={ctx.best_view} electrons_to_MeV={ctx.electrons_to_MeV:.6e} "
              f"calorimetry={ctx.calorimetry.name} channel_map={ctx.channel_map.name}")
        print(f"[run] input={cfg.io.input_path} -> output={cfg.io.output_path} ({cfg.io.output_format})")

    adapter = make_adapter(cfg.io.adapter, cfg.labels)
    events: Iterable[EventData] = adapter.iter_events(str(cfg.io.input_path))
    if cfg.run.max_events >= 0:
        events = islice(events, cfg.run.max_events)

    records, diag = run_events(
        events,
        ctx,
        workers=cfg.run.workers,
        chunk_events=cfg.run.chunk_events,
        progress=cfg.run.progress,
    )
    n_skipped = diag.count("missing_collection")

    if diag_level >= 1:
        print(f"[pipeline] Processed {len(records)} events, skipped {n_skipped}")
        if diag.reasons:
            print(f"[pipeline] Diagnostics: {diag.reasons}")
        if records and diag_level >= 2:
            r = records[0]
            print(f"[pipeline] First record: edep={r.edep:.4f} edep_truth={r.edep_truth:.4f} "
                  f"ratio_total={r.ratio_total:.4f}")

    out_path = Path(cfg.io.output_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    cols = records_as_columns(records)
    hdf5_kw = {}
    if cfg.io.output_format == "hdf5":
        hdf5_kw = dict(
            config_text=snapshot_config_toml(cfg_path),
            meta={
                "best_view": ctx.best_view,
                "electrons_to_MeV": ctx.electrons_to_MeV,
                "n_events_in": len(records) + n_skipped,
                "n_events_skipped": n_skipped,
            },
            diagnostics=diag.reasons,
        )
    write_output(str(out_path), cfg.io.output_format, cols, **hdf5_kw)

    # Optional PNG export
    if cfg.io.output_format == "hdf5" and cfg.vis.export_png_on_write:
        try:
            out_png = save_ratio_png(str(out_path), bins=cfg.vis.bins)
            if diag_level >= 1:
                print(f"[pipeline] Wrote PNG {out_png}")
        except (KeyError, ValueError, OSError) as e:
            if diag_level >= 1:
                print(f"[pipeline] PNG export failed: {e!r}")

    return out_path


# ---------------------------------------------------------------------------
# Unified CLI entry point
# ---------------------------------------------------------------------------

app = typer.Typer(help="Per-event energy deposition calibration (edepcal.pipelines.core)")


@app.command()
def main(
    cfg_path: str = typer.Argument(
        ...,
        help="Path to TOML config file",
    ),
    best_view: Optional[int] = typer.Option(
        None,
        "--best-view",
        help="Override [run].best_view (readout plane to calibrate)",
    ),
    workers: Optional[int] = typer.Option(
        None,
        "--workers",
        help="Override [run].workers (0 = single process)",
    ),
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Override [io].output_path",
    ),
    max_events: Optional[int] = typer.Option(
        None,
        "--max-events",
        help="Override [run].max_events (-1 = all)",
    ),
):
    """
    Run the energy deposition calibration for a single config.
    """
    out_path = run_pipeline(
        cfg_path,
        best_view=best_view,
        workers=workers,
        output_path=output,
        max_events=max_events,
    )
    typer.echo(str(out_path))


if __name__ == "__main__":
    app()
