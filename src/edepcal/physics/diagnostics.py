from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict


@dataclass
class AccountingDiagnostics:
    """
    Counters for item-level anomalies met while accumulating energy.

    Reasons used by the accumulators:
      particle_not_found     deposit track_id > 0 missing from the particle index
      deposit_bad_energy     deposit energy not finite or negative
      deposit_bad_electrons  carrier-derived energy not finite or negative
      hit_bad_integral       hit ADC area not a normal positive number
      hit_bad_energy         corrected hit energy not a normal positive number
      cluster_bad_hit_index  cluster refers to a hit index outside the event's hits
      missing_collection     event dropped for lack of a required collection
    """
    level: int = 1
    reasons: Dict[str, int] = field(default_factory=dict)

    def inc(self, reason: str, n: int = 1) -> None:
        self.reasons[reason] = self.reasons.get(reason, 0) + n

    def warn(self, reason: str, msg: str) -> None:
        self.inc(reason)
        if self.level >= 2:
            print(f"[edep] {msg}")

    def count(self, reason: str) -> int:
        return self.reasons.get(reason, 0)

    def merge(self, other: "AccountingDiagnostics") -> None:
        for reason, n in other.reasons.items():
            self.inc(reason, n)
