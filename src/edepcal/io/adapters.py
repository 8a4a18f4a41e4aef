"""
edepcal.io.adapters

Readers that turn event files into edepcal.physics.records.EventData for the
energy-accounting pipeline.

Design goals
------------
- Keep I/O concerns isolated from the energy accounting.
- Stream (iterate) large files without loading everything into RAM.
- A collection that is absent from the input is yielded as None so the
  pipeline can tell "missing" from "empty".
- Remain side-effect free: yield Python objects; output is handled downstream.

Entry points
------------
- class ROOTAdapter: flat per-event ROOT tree with jagged branches.
- class JSONLAdapter: one JSON object per event per line.
- function make_adapter(cfg, labels): factory from the [io.adapter] TOML section.

Config (example)
----------------
[io]
input_path = "data/run42.root"

[io.adapter]
type = "root"                 # "root" | "jsonl"
tree = "edepcal/events"

[labels]
simulation_label = "largeant"
hits_label = "gaushit"
cluster_label = "linecluster"

ROOT branch layout (prefix = collection label)
----------------------------------------------
run, subrun, event                                     scalars
<sim>_track_id, _pdg, _px, _py, _pz, _mass, _t         jagged, one per particle
<sim>_process (strings) or <sim>_is_primary (0/1)       jagged, one per particle
<sim>_ide_channel, _ide_tdc, _ide_energy,
<sim>_ide_num_electrons, _ide_track_id                 jagged, one per deposit
<hits>_plane, _integral, _peak_time[, _channel]        jagged, one per hit
<clusters>_ncl                                         scalar, number of clusters
<clusters>_assn_cluster, _assn_hit                     jagged cluster -> hit pairs
"""
from __future__ import annotations
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional
import json

import numpy as np
import uproot

from edepcal.config.schemas import LabelsCfg
from edepcal.io.canonicalize import canonical_deposit, canonical_hit, canonical_particle
from edepcal.physics.particles import PRIMARY_PROCESS
from edepcal.physics.records import (
    ChargeDeposit,
    Cluster,
    EventData,
    ParticleRecord,
    ReconstructedHit,
    SimChannel,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_PARTICLE_FIELDS = ("track_id", "pdg", "px", "py", "pz", "mass", "t")
_IDE_FIELDS = ("ide_channel", "ide_tdc", "ide_energy", "ide_num_electrons", "ide_track_id")
_HIT_FIELDS = ("plane", "integral", "peak_time")
_CLUSTER_FIELDS = ("ncl", "assn_cluster", "assn_hit")


def group_deposits(
    channels: np.ndarray,
    tdcs: np.ndarray,
    energies: np.ndarray,
    num_electrons: np.ndarray,
    track_ids: np.ndarray,
) -> List[SimChannel]:
    """Group flat per-deposit columns into SimChannels keyed by channel then TDC tick."""
    by_channel: Dict[int, SimChannel] = {}
    for ch, tdc, e, ne, tid in zip(channels, tdcs, energies, num_electrons, track_ids):
        ch = int(ch)
        sc = by_channel.get(ch)
        if sc is None:
            sc = by_channel[ch] = SimChannel(channel=ch)
        sc.tdc_ide.setdefault(int(tdc), []).append(
            ChargeDeposit(energy=float(e), num_electrons=float(ne), track_id=int(tid))
        )
    return list(by_channel.values())


def build_clusters(n_clusters: int, assn_cluster: np.ndarray, assn_hit: np.ndarray) -> List[Cluster]:
    """Build clusters from flattened (cluster index, hit index) association pairs."""
    owned: Dict[int, List[int]] = defaultdict(list)
    for c, h in zip(assn_cluster, assn_hit):
        owned[int(c)].append(int(h))
    return [Cluster(cluster_id=c, hit_indices=owned.get(c, [])) for c in range(int(n_clusters))]


# ---------------------------------------------------------------------------
# Base adapter API
# ---------------------------------------------------------------------------

class BaseAdapter:
    """
    Abstract adapter interface.

    Yields EventData with None for collections absent from the input.
    """

    def iter_events(self, path: str) -> Iterator[EventData]:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# ROOT adapter
# ---------------------------------------------------------------------------

class ROOTAdapter(BaseAdapter):
    """
    Read a flat per-event tree written by an analysis dumper or by
    edepcal's own test fixtures.

    Parameters
    ----------
    labels : LabelsCfg
        Collection labels; used as branch prefixes.
    tree : str
        Tree key; falls back to the first TTree in the file if absent.
    step_size : str | int
        uproot iteration chunk size.
    """

    def __init__(
        self,
        labels: LabelsCfg,
        tree: str = "edepcal/events",
        step_size: str | int = "100 MB",
    ) -> None:
        self.labels = labels
        self.tree_key = tree
        self.step_size = step_size

    def _branch(self, label: str, name: str) -> str:
        return f"{label}_{name}"

    def _open_tree(self, f):
        if self.tree_key in f:
            return f[self.tree_key]
        for key, cls in f.classnames().items():
            if cls == "TTree":
                return f[key]
        raise KeyError(f"No TTree found in {f.file_path}")

    def iter_events(self, path: str) -> Iterator[EventData]:
        sim, hit_lbl, cl_lbl = self.labels.simulation_label, self.labels.hits_label, self.labels.cluster_label

        with uproot.open(path) as f:
            tree = self._open_tree(f)
            present = set(tree.keys())

            def have(label: str, fields) -> bool:
                return all(self._branch(label, x) in present for x in fields)

            has_particles = have(sim, _PARTICLE_FIELDS)
            process_branch = None
            if self._branch(sim, "process") in present:
                process_branch = self._branch(sim, "process")
            elif self._branch(sim, "is_primary") in present:
                process_branch = self._branch(sim, "is_primary")
            has_ides = have(sim, _IDE_FIELDS)
            has_hits = have(hit_lbl, _HIT_FIELDS)
            has_hit_channel = self._branch(hit_lbl, "channel") in present
            has_clusters = have(cl_lbl, _CLUSTER_FIELDS)

            wanted = [b for b in ("run", "subrun", "event") if b in present]
            if has_particles:
                wanted += [self._branch(sim, x) for x in _PARTICLE_FIELDS]
                if process_branch is not None:
                    wanted.append(process_branch)
            if has_ides:
                wanted += [self._branch(sim, x) for x in _IDE_FIELDS]
            if has_hits:
                wanted += [self._branch(hit_lbl, x) for x in _HIT_FIELDS]
                if has_hit_channel:
                    wanted.append(self._branch(hit_lbl, "channel"))
            if has_clusters:
                wanted += [self._branch(cl_lbl, x) for x in _CLUSTER_FIELDS]

            entry = 0
            for arrays in tree.iterate(wanted, step_size=self.step_size, library="np"):
                n = len(next(iter(arrays.values()))) if arrays else 0
                for i in range(n):
                    A = lambda label, name: arrays[self._branch(label, name)][i]  # noqa: E731

                    particles: Optional[List[ParticleRecord]] = None
                    if has_particles:
                        procs = arrays[process_branch][i] if process_branch is not None else None
                        particles = []
                        for k in range(len(A(sim, "track_id"))):
                            if procs is None:
                                process = ""
                            elif process_branch.endswith("is_primary"):
                                process = PRIMARY_PROCESS if int(procs[k]) else ""
                            else:
                                process = str(procs[k])
                            particles.append(ParticleRecord(
                                track_id=int(A(sim, "track_id")[k]),
                                pdg=int(A(sim, "pdg")[k]),
                                process=process,
                                px=float(A(sim, "px")[k]),
                                py=float(A(sim, "py")[k]),
                                pz=float(A(sim, "pz")[k]),
                                mass=float(A(sim, "mass")[k]),
                                t=float(A(sim, "t")[k]),
                            ))

                    sim_channels = None
                    if has_ides:
                        sim_channels = group_deposits(*(A(sim, x) for x in _IDE_FIELDS))

                    hits = None
                    if has_hits:
                        planes = A(hit_lbl, "plane")
                        chans = A(hit_lbl, "channel") if has_hit_channel else None
                        hits = [
                            ReconstructedHit(
                                plane=int(planes[k]),
                                integral=float(A(hit_lbl, "integral")[k]),
                                peak_time=float(A(hit_lbl, "peak_time")[k]),
                                channel=int(chans[k]) if chans is not None else -1,
                            )
                            for k in range(len(planes))
                        ]

                    clusters = None
                    if has_clusters:
                        clusters = build_clusters(
                            A(cl_lbl, "ncl"), A(cl_lbl, "assn_cluster"), A(cl_lbl, "assn_hit")
                        )

                    yield EventData(
                        run=int(arrays["run"][i]) if "run" in arrays else 0,
                        subrun=int(arrays["subrun"][i]) if "subrun" in arrays else 0,
                        event=int(arrays["event"][i]) if "event" in arrays else entry,
                        particles=particles,
                        sim_channels=sim_channels,
                        hits=hits,
                        clusters=clusters,
                    )
                    entry += 1


# ---------------------------------------------------------------------------
# JSON-lines adapter
# ---------------------------------------------------------------------------

def event_from_dict(d: Mapping[str, Any], labels: LabelsCfg) -> EventData:
    """
    Build EventData from one decoded JSON event.

    Layout:
      {"run": 1, "subrun": 0, "event": 7,
       "<sim>": {"particles": [...], "sim_channels": [{"channel": c, "tdc_ide": {"tick": [ide, ...]}}]},
       "<hits>": [hit, ...],
       "<clusters>": [{"cluster_id": 0, "hits": [0, 3, ...]}, ...]}
    Field names inside records go through edepcal.io.canonicalize.
    """
    sim = d.get(labels.simulation_label)

    particles = None
    sim_channels = None
    if sim is not None:
        if sim.get("particles") is not None:
            particles = [ParticleRecord(**canonical_particle(p)) for p in sim["particles"]]
        if sim.get("sim_channels") is not None:
            sim_channels = []
            for sc in sim["sim_channels"]:
                tdc_ide = {
                    int(tdc): [ChargeDeposit(**canonical_deposit(ide)) for ide in ides]
                    for tdc, ides in sc.get("tdc_ide", {}).items()
                }
                sim_channels.append(SimChannel(channel=int(sc["channel"]), tdc_ide=tdc_ide))

    hits = None
    if d.get(labels.hits_label) is not None:
        hits = [ReconstructedHit(**canonical_hit(h)) for h in d[labels.hits_label]]

    clusters = None
    if d.get(labels.cluster_label) is not None:
        clusters = [
            Cluster(cluster_id=int(c.get("cluster_id", j)), hit_indices=[int(k) for k in c.get("hits", [])])
            for j, c in enumerate(d[labels.cluster_label])
        ]

    return EventData(
        run=int(d.get("run", 0)),
        subrun=int(d.get("subrun", 0)),
        event=int(d.get("event", 0)),
        particles=particles,
        sim_channels=sim_channels,
        hits=hits,
        clusters=clusters,
    )


class JSONLAdapter(BaseAdapter):
    """Read events stored one JSON object per line (blank and '#' lines skipped)."""

    def __init__(self, labels: LabelsCfg) -> None:
        self.labels = labels

    def iter_events(self, path: str) -> Iterator[EventData]:
        p = Path(path)
        with open(p, "r", encoding="utf-8") as f:
            for lineno, raw in enumerate(f, start=1):
                line = raw.strip()
                if not line or line.startswith("#"):
                    continue
                try:
                    d = json.loads(line)
                except json.JSONDecodeError as exc:
                    raise ValueError(f"{p.name}:{lineno}: invalid JSON event ({exc.msg})") from exc
                yield event_from_dict(d, self.labels)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def make_adapter(cfg: Dict, labels: LabelsCfg | None = None) -> BaseAdapter:
    """
    Create an adapter from a config dict (from TOML/CLI).

    Expected keys under [io.adapter]:
      type: "root" | "jsonl"
      tree: str                 (ROOT-only)
      step_size: str | int      (ROOT-only)
    """
    labels = labels or LabelsCfg()
    typ = (cfg.get("type") or "root").lower()

    if typ == "root":
        return ROOTAdapter(
            labels,
            tree=cfg.get("tree", "edepcal/events"),
            step_size=cfg.get("step_size", "100 MB"),
        )

    if typ == "jsonl":
        return JSONLAdapter(labels)

    raise ValueError(f"Unknown adapter type: {typ}")


# ---------------------------------------------------------------------------
# Manual smoke test: python -m edepcal.io.adapters root file.root
# ---------------------------------------------------------------------------

if __name__ == "__main__":  # pragma: no cover
    import sys
    if len(sys.argv) < 3:
        print("Usage: python -m edepcal.io.adapters <root|jsonl> <path>")
        sys.exit(1)
    kind, path = sys.argv[1], sys.argv[2]
    ad = make_adapter({"type": kind})
    for j, ev in zip(range(5), ad.iter_events(path)):
        n_hits = len(ev.hits) if ev.hits is not None else None
        print(f"[{j:03d}] run={ev.run} event={ev.event} hits={n_hits}")
