# src/edepcal/physics/truth.py
from __future__ import annotations
import math
from typing import Iterable, NamedTuple, Optional

from .diagnostics import AccountingDiagnostics
from .particles import ParticleIndex, is_em_pdg
from .records import ChargeDeposit, SimChannel
from ..geometry.channels import ChannelMap


class TruthEnergySums(NamedTuple):
    """Truth energy on one view [MeV]: stored, carrier-derived, and their EM parts."""
    raw: float = 0.0
    attenuated: float = 0.0
    em_raw: float = 0.0
    em_attenuated: float = 0.0


def _usable(x: float) -> bool:
    return math.isfinite(x) and x >= 0.0


def classify_em(
    dep: ChargeDeposit,
    index: ParticleIndex,
    diag: AccountingDiagnostics | None = None,
) -> bool:
    """
    True if the deposit belongs to EM activity.

    Negative track ids are EM shower daughters by construction. Positive ids
    are looked up; a miss is reported and treated as not EM. Id 0 is unknown.
    """
    tid = int(dep.track_id)
    if tid < 0:
        return True
    if tid == 0:
        return False
    particle = index.get(tid)
    if particle is None:
        if diag is not None:
            diag.warn("particle_not_found", f"particle not found for track_id={tid}")
        return False
    return is_em_pdg(particle.pdg)


def accumulate_truth_energy(
    sim_channels: Optional[Iterable[SimChannel]],
    index: ParticleIndex,
    *,
    view: int,
    channel_map: ChannelMap,
    electrons_to_MeV: float,
    diag: AccountingDiagnostics | None = None,
) -> TruthEnergySums:
    """
    Sum truth deposits on channels of the selected view in a single pass.

    sim_channels=None (collection absent) gives all-zero sums.
    """
    if sim_channels is None:
        return TruthEnergySums()

    raw = att = em_raw = em_att = 0.0
    for sc in sim_channels:
        if channel_map.view(sc.channel) != view:
            continue
        for dep in sc.deposits():
            e = float(dep.energy)
            e_att = float(dep.num_electrons) * electrons_to_MeV
            ok_raw = _usable(e)
            ok_att = _usable(e_att)
            if diag is not None:
                if not ok_raw:
                    diag.inc("deposit_bad_energy")
                if not ok_att:
                    diag.inc("deposit_bad_electrons")

            if ok_raw:
                raw += e
            if ok_att:
                att += e_att

            # lookup misses are reported for every deposit on the view
            if classify_em(dep, index, diag):
                if ok_raw:
                    em_raw += e
                if ok_att:
                    em_att += e_att

    return TruthEnergySums(raw, att, em_raw, em_att)
