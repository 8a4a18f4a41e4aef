# src/edepcal/physics/reco.py
from __future__ import annotations
import math
import sys
from typing import Any, Iterable, Sequence

from .calorimetry import Calorimetry
from .diagnostics import AccountingDiagnostics
from .records import Cluster, ReconstructedHit


def _is_normal_positive(x: float) -> bool:
    """Finite, strictly positive and not subnormal."""
    return math.isfinite(x) and x >= sys.float_info.min


def accumulate_hit_energy(
    hits: Iterable[Any],
    *,
    view: int,
    calorimetry: Calorimetry,
    electrons_to_MeV: float,
    t0: float = 0.0,
    lifetime: bool = True,
    diag: AccountingDiagnostics | None = None,
) -> float:
    """
    Calibrated energy [MeV] of hits on the selected view.

    `hits` may be any iterable of hit-like objects exposing plane, integral
    and peak_time. Hits with an unusable ADC area or energy are skipped.
    With lifetime=False the drift-time correction is omitted.
    """
    total = 0.0
    for h in hits:
        plane = int(h.plane)
        if plane != view:
            continue

        area = float(h.integral)
        if not _is_normal_positive(area):
            if diag is not None:
                diag.inc("hit_bad_integral")
            continue

        dq = calorimetry.electrons_from_adc_area(area, plane)
        if lifetime:
            dq *= calorimetry.lifetime_correction(float(h.peak_time), t0)
        dq *= electrons_to_MeV

        if not _is_normal_positive(dq):
            if diag is not None:
                diag.inc("hit_bad_energy")
            continue
        total += dq
    return total


def event_energy(
    hits: Iterable[ReconstructedHit],
    *,
    view: int,
    calorimetry: Calorimetry,
    electrons_to_MeV: float,
    t0: float = 0.0,
    lifetime: bool = True,
    diag: AccountingDiagnostics | None = None,
) -> float:
    """Energy of the full hit collection of the event."""
    return accumulate_hit_energy(
        hits,
        view=view,
        calorimetry=calorimetry,
        electrons_to_MeV=electrons_to_MeV,
        t0=t0,
        lifetime=lifetime,
        diag=diag,
    )


def cluster_energy(
    hits: Sequence[ReconstructedHit],
    clusters: Iterable[Cluster],
    *,
    view: int,
    calorimetry: Calorimetry,
    electrons_to_MeV: float,
    t0: float = 0.0,
    diag: AccountingDiagnostics | None = None,
) -> float:
    """
    Lifetime-corrected energy summed cluster by cluster.

    Each cluster contributes the energy of the hits it owns; a hit owned by
    two clusters is counted for both. Hit indices outside the event's hit
    list are skipped and counted as 'cluster_bad_hit_index'. Per-hit
    anomalies are left to the full-event pass and not counted here.
    """
    n_hits = len(hits)
    total = 0.0
    for cl in clusters:
        owned = []
        for i in cl.hit_indices:
            i = int(i)
            if 0 <= i < n_hits:
                owned.append(hits[i])
            elif diag is not None:
                diag.inc("cluster_bad_hit_index")
        total += accumulate_hit_energy(
            owned,
            view=view,
            calorimetry=calorimetry,
            electrons_to_MeV=electrons_to_MeV,
            t0=t0,
            lifetime=True,
        )
    return total
