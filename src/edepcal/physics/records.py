# src/edepcal/physics/records.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np


@dataclass(slots=True)
class ChargeDeposit:
    """
    Truth-level ionization deposit (one IDE of a simulated channel).

    energy: deposited energy [MeV]
    num_electrons: ionization electrons reaching the readout (after recombination/attenuation)
    track_id: owning truth particle; <0 means EM shower daughter, 0 unknown, >0 look up
    """
    energy: float
    num_electrons: float
    track_id: int
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


@dataclass(slots=True)
class SimChannel:
    """
    Truth deposits on one readout channel, grouped by TDC tick.

    Only the membership of tdc_ide matters; tick order is never relied upon.
    """
    channel: int
    tdc_ide: Dict[int, List[ChargeDeposit]] = field(default_factory=dict)

    def deposits(self):
        for ides in self.tdc_ide.values():
            yield from ides


@dataclass(slots=True)
class ReconstructedHit:
    """
    Reconstructed hit on one wire plane.

    integral: ADC area of the fitted pulse
    peak_time: pulse peak [TDC ticks]
    """
    plane: int
    integral: float
    peak_time: float
    channel: int = -1
    wire: int = -1
    tpc: int = -1


@dataclass(slots=True)
class ParticleRecord:
    """
    Generator / Geant truth particle.

    Momentum in GeV/c, mass in GeV/c^2, production time t in ns.
    """
    track_id: int
    pdg: int
    process: str = ""
    px: float = 0.0
    py: float = 0.0
    pz: float = 0.0
    mass: float = 0.0
    t: float = 0.0

    @property
    def p(self) -> float:
        return float(np.sqrt(self.px * self.px + self.py * self.py + self.pz * self.pz))


@dataclass(slots=True)
class Cluster:
    """A reconstructed cluster and the indices of the hits it owns."""
    cluster_id: int
    hit_indices: List[int] = field(default_factory=list)


@dataclass(slots=True)
class EventData:
    """
    Input collections for one event.

    A collection set to None was not found in the input. particles, hits and
    clusters are required for processing; sim_channels is optional.
    """
    run: int
    event: int
    subrun: int = 0
    particles: Optional[List[ParticleRecord]] = None
    sim_channels: Optional[List[SimChannel]] = None
    hits: Optional[List[ReconstructedHit]] = None
    clusters: Optional[List[Cluster]] = None
