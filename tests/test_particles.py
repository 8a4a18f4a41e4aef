import numpy as np

from edepcal.physics.particles import build_particle_index, is_em_pdg
from edepcal.physics.records import ParticleRecord


def test_primary_kinematics_first_match_wins():
    parts = [
        ParticleRecord(track_id=3, pdg=2212, process="protonInelastic", pz=9.0, mass=0.938, t=5.0),
        ParticleRecord(track_id=1, pdg=11, process="primary", px=0.3, pz=0.4, mass=0.000511, t=12.5),
        ParticleRecord(track_id=2, pdg=22, process="primary", pz=2.0, t=99.0),
    ]
    idx = build_particle_index(parts)

    assert len(idx) == 3
    assert idx.primary is parts[1]
    assert np.isclose(idx.gen_momentum, 0.5)
    ek = (np.sqrt(0.5**2 + 0.000511**2) - 0.000511) * 1000
    assert np.isclose(idx.gen_kinetic_MeV, ek)
    assert idx.t0 == 12.5


def test_no_primary_leaves_defaults():
    idx = build_particle_index([ParticleRecord(track_id=4, pdg=211, process="Decay", pz=1.0)])
    assert idx.primary is None
    assert idx.gen_momentum == 0.0
    assert idx.gen_kinetic_MeV == 0.0
    assert idx.t0 == 0.0
    assert 4 in idx and 5 not in idx
    assert idx.get(5) is None


def test_index_is_rebuilt_not_shared():
    a = build_particle_index([ParticleRecord(track_id=1, pdg=11, process="primary", pz=1.0)])
    b = build_particle_index([])
    assert len(a) == 1 and len(b) == 0
    assert b.primary is None


def test_em_codes():
    assert is_em_pdg(11) and is_em_pdg(-11) and is_em_pdg(22)
    assert not is_em_pdg(13) and not is_em_pdg(2212) and not is_em_pdg(0)
