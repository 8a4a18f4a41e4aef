# src/edepcal/io/canonicalize.py
from __future__ import annotations
from typing import Dict, Any, Iterable, Mapping

_PARTICLE_KEYS = {
    # canonical_key: tuple of fallback source keys
    "track_id": ("track_id", "trackID", "TrackId", "trackId", "id"),
    "pdg": ("pdg", "PdgCode", "pdg_code", "pdgCode"),
    "process": ("process", "Process"),
    "px": ("px", "Px"),
    "py": ("py", "Py"),
    "pz": ("pz", "Pz"),
    "mass": ("mass", "Mass", "m"),
    "t": ("t", "T", "t_ns", "time"),
}

_DEPOSIT_KEYS = {
    "energy": ("energy", "Edep_MeV", "edep"),
    "num_electrons": ("num_electrons", "numElectrons", "n_electrons", "electrons"),
    "track_id": ("track_id", "trackID", "TrackId", "trackId"),
    "x": ("x", "x_cm"),
    "y": ("y", "y_cm"),
    "z": ("z", "z_cm"),
}

_HIT_KEYS = {
    "plane": ("plane", "Plane", "view"),
    "integral": ("integral", "Integral", "adc_area", "area"),
    "peak_time": ("peak_time", "PeakTime", "peakTime", "t_tick"),
    "channel": ("channel", "Channel"),
    "wire": ("wire", "Wire"),
    "tpc": ("tpc", "TPC"),
}

_REQUIRED = {
    "particle": ("track_id", "pdg"),
    "deposit": ("energy", "num_electrons", "track_id"),
    "hit": ("plane", "integral", "peak_time"),
}


def _first(h: Mapping[str, Any], names: Iterable[str], default=None):
    for k in names:
        if k in h:
            return h[k]
    return default


def _canon(d: Mapping[str, Any], keys: Dict[str, tuple], kind: str) -> Dict[str, Any]:
    out = {}
    for canon, names in keys.items():
        val = _first(d, names, None)
        if val is None:
            if canon in _REQUIRED[kind]:
                raise KeyError(f"{kind} record is missing '{canon}' (looked for {names})")
            continue
        out[canon] = val
    return out


def canonical_particle(d: Mapping[str, Any]) -> Dict[str, Any]:
    """Map a particle dict onto ParticleRecord field names."""
    out = _canon(d, _PARTICLE_KEYS, "particle")
    out["track_id"] = int(out["track_id"])
    out["pdg"] = int(out["pdg"])
    out["process"] = str(out.get("process", ""))
    for k in ("px", "py", "pz", "mass", "t"):
        if k in out:
            out[k] = float(out[k])
    # momentum magnitude only; put it along z
    if not any(k in out for k in ("px", "py", "pz")) and "p" in d:
        out["pz"] = float(d["p"])
    return out


def canonical_deposit(d: Mapping[str, Any]) -> Dict[str, Any]:
    """Map a deposit (IDE) dict onto ChargeDeposit field names."""
    out = _canon(d, _DEPOSIT_KEYS, "deposit")
    out["track_id"] = int(out["track_id"])
    for k in ("energy", "num_electrons", "x", "y", "z"):
        if k in out:
            out[k] = float(out[k])
    return out


def canonical_hit(d: Mapping[str, Any]) -> Dict[str, Any]:
    """Map a hit dict onto ReconstructedHit field names."""
    out = _canon(d, _HIT_KEYS, "hit")
    out["plane"] = int(out["plane"])
    out["integral"] = float(out["integral"])
    out["peak_time"] = float(out["peak_time"])
    for k in ("channel", "wire", "tpc"):
        if k in out:
            out[k] = int(out[k])
    return out
