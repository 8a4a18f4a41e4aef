# src/edepcal/physics/particles.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional

import numpy as np

from .records import ParticleRecord

PRIMARY_PROCESS = "primary"

# e-, e+, gamma
EM_PDG_CODES = frozenset({11, -11, 22})


def is_em_pdg(pdg: int) -> bool:
    return int(pdg) in EM_PDG_CODES


@dataclass
class ParticleIndex:
    """
    Event-scoped lookup from truth track id to particle record.

    gen_momentum [GeV/c], gen_kinetic_MeV and t0 [ns] come from the primary
    (first particle with process == "primary"); all stay 0.0 without one.
    """
    particles: Dict[int, ParticleRecord] = field(default_factory=dict)
    primary: Optional[ParticleRecord] = None
    gen_momentum: float = 0.0
    gen_kinetic_MeV: float = 0.0
    t0: float = 0.0

    def get(self, track_id: int) -> Optional[ParticleRecord]:
        return self.particles.get(int(track_id))

    def __contains__(self, track_id: int) -> bool:
        return int(track_id) in self.particles

    def __len__(self) -> int:
        return len(self.particles)


def build_particle_index(particles: Iterable[ParticleRecord]) -> ParticleIndex:
    """
    Index the event's particles and pick up generator kinematics.

    First match wins for the primary; later "primary" records are indexed
    but otherwise ignored.
    """
    index = ParticleIndex()
    for p in particles:
        index.particles[int(p.track_id)] = p
        if index.primary is None and p.process == PRIMARY_PROCESS:
            index.primary = p
            mom = p.p
            index.gen_momentum = mom
            index.gen_kinetic_MeV = float((np.sqrt(mom * mom + p.mass * p.mass) - p.mass) * 1000.0)
            index.t0 = float(p.t)
    return index
