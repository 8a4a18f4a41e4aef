from __future__ import annotations
import numpy as np
from typing import Sequence

# --- Interfaces -------------------------------------------------------------

class Calorimetry:
    """Base protocol: ADC area -> electrons, and drift-time lifetime correction."""
    name: str

    def electrons_from_adc_area(self, area: float, plane: int) -> float:
        raise NotImplementedError

    def lifetime_correction(self, time: float, t0: float = 0.0) -> float:
        raise NotImplementedError

# --- Implementations --------------------------------------------------------

class CalorimetryAlg(Calorimetry):
    """
    Gain per plane and exponential electron-lifetime correction.

    time is the hit peak time in TDC ticks; t0 is the event time in ns.
    Drift time [us] = (time - trigger_offset) * sampling_rate * 1e-3 - t0 * 1e-3
    """
    name = "alg"

    def __init__(
        self,
        cal_area_constants: Sequence[float],
        electron_lifetime_us: float = 3000.0,
        sampling_rate_ns: float = 500.0,
        trigger_offset_ticks: float = 0.0,
    ):
        if electron_lifetime_us <= 0:
            raise ValueError("electron_lifetime_us must be positive")
        self.cal_area_constants = [float(c) for c in cal_area_constants]
        self.tau_us = float(electron_lifetime_us)
        self.sampling_rate_ns = float(sampling_rate_ns)
        self.trigger_offset_ticks = float(trigger_offset_ticks)

    def electrons_from_adc_area(self, area, plane):
        return float(area) / self.cal_area_constants[int(plane)]

    def drift_time_us(self, time, t0=0.0):
        t = float(time) - self.trigger_offset_ticks
        return t * self.sampling_rate_ns * 1e-3 - float(t0) * 1e-3

    def lifetime_correction(self, time, t0=0.0):
        return float(np.exp(self.drift_time_us(time, t0) / self.tau_us))

class FixedGainCalorimetry(Calorimetry):
    """Single gain for all planes, no lifetime correction."""
    name = "fixed"

    def __init__(self, electrons_per_adc: float = 1.0):
        self.electrons_per_adc = float(electrons_per_adc)

    def electrons_from_adc_area(self, area, plane):
        return float(area) * self.electrons_per_adc

    def lifetime_correction(self, time, t0=0.0):
        return 1.0

# --- Factory ----------------------------------------------------------------

def make_calorimetry(cfg_calo) -> Calorimetry:
    if cfg_calo.kind == "alg":
        return CalorimetryAlg(
            cfg_calo.cal_area_constants,
            electron_lifetime_us=cfg_calo.electron_lifetime_us,
            sampling_rate_ns=cfg_calo.sampling_rate_ns,
            trigger_offset_ticks=cfg_calo.trigger_offset_ticks,
        )
    elif cfg_calo.kind == "fixed":
        return FixedGainCalorimetry(cfg_calo.electrons_per_adc)
    else:
        raise ValueError(f"Unknown calorimetry kind {cfg_calo.kind}")
