from __future__ import annotations
from dataclasses import dataclass


@dataclass(frozen=True)
class CalibrationRatios:
    """
    Reco / truth energy ratios.

    A ratio whose denominator is not strictly positive is not computed: it
    keeps the default 0.0 and its *_valid flag stays False.
    """
    total: float = 0.0
    em: float = 0.0
    hadronic: float = 0.0
    total_valid: bool = False
    em_valid: bool = False
    hadronic_valid: bool = False


def compute_ratios(
    edep: float,
    edep_clusters: float,
    truth_raw: float,
    truth_em_raw: float,
) -> CalibrationRatios:
    """
    total    = edep / truth_raw
    em       = edep_clusters / truth_em_raw
    hadronic = (edep - edep_clusters) / (truth_raw - truth_em_raw)

    Clusters are taken to cover the EM activity of the event.
    """
    out = {}
    if truth_raw > 0.0:
        out["total"] = edep / truth_raw
        out["total_valid"] = True
    if truth_em_raw > 0.0:
        out["em"] = edep_clusters / truth_em_raw
        out["em_valid"] = True
    truth_had = truth_raw - truth_em_raw
    if truth_had > 0.0:
        out["hadronic"] = (edep - edep_clusters) / truth_had
        out["hadronic_valid"] = True
    return CalibrationRatios(**out)
