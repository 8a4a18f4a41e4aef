from __future__ import annotations
from pydantic import BaseModel, Field, field_validator
from typing import Literal, Dict, List, Union, Any

# W_ion = 23.6 eV per ionization electron in liquid argon
DEFAULT_GEV_TO_ELECTRONS = 1.0e9 / 23.6


class RunCfg(BaseModel):
    """
    Global run controls.

    best_view selects the readout plane all energy sums are restricted to.
    """

    best_view: int = 2

    # Performance / execution
    workers: Union[int, Literal["auto"]] = 0
    chunk_events: int = 200
    progress: bool = True

    # Diagnostics
    diagnostics_level: int = 1  # 0=off, 1=minimal, 2=verbose

    # Limits
    max_events: int = -1  # -1 = all

    @field_validator("diagnostics_level")
    def _diag_range(cls, v: int) -> int:
        if v not in (0, 1, 2):
            raise ValueError("diagnostics_level must be 0, 1, or 2")
        return v

    @field_validator("best_view")
    def _view_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("best_view must be >= 0")
        return v

    @field_validator("chunk_events")
    def _chunk_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("chunk_events must be >= 1")
        return v


class IOCfg(BaseModel):
    """
    I/O paths and output format.

    TOML:

    [io]
    input_path    = "events.root"
    output_path   = "calib.h5"
    output_format = "hdf5"         # "hdf5" | "root" | "csv" | "parquet"

    [io.adapter]
    type = "root"                  # "root" | "jsonl"
    """

    input_path: str
    output_path: str
    output_format: Literal["hdf5", "root", "csv", "parquet"] = "hdf5"

    # Adapter-specific sub-config, e.g. [io.adapter]
    adapter: Dict[str, Any] = Field(default_factory=dict)


class LabelsCfg(BaseModel):
    """
    Names of the input collections (producer labels).

    ROOT branches and JSONL keys are prefixed with these.
    """

    simulation_label: str = "largeant"
    hits_label: str = "gaushit"
    cluster_label: str = "linecluster"


class PhysicsCfg(BaseModel):
    gev_to_electrons: float = DEFAULT_GEV_TO_ELECTRONS

    @field_validator("gev_to_electrons")
    def _positive(cls, v: float) -> float:
        if not v > 0:
            raise ValueError("gev_to_electrons must be positive")
        return v

    @property
    def electrons_to_MeV(self) -> float:
        return 1000.0 / self.gev_to_electrons


class CalorimetryCfg(BaseModel):
    kind: Literal["alg", "fixed"] = "alg"
    # ADC area -> electrons gain per plane (ADC x tick / e-)
    cal_area_constants: List[float] = [4.966e-3, 4.966e-3, 4.966e-3]
    electron_lifetime_us: float = 3000.0
    sampling_rate_ns: float = 500.0
    trigger_offset_ticks: float = 0.0
    electrons_per_adc: float = 1.0  # kind="fixed" only


class GeometryCfg(BaseModel):
    """
    Channel -> view lookup.

    kind = "protodune": per-APA blocks of block_sizes channels, views in order
    kind = "table": explicit channel_views mapping
    """

    kind: Literal["protodune", "table"] = "protodune"
    block_sizes: List[int] = [800, 800, 960]
    n_apas: int = 6
    channel_views: Dict[int, int] = Field(default_factory=dict)


class VisCfg(BaseModel):
    export_png_on_write: bool = False
    bins: int = 50


class Config(BaseModel):
    """
    Top-level TOML configuration.
    """

    run: RunCfg = Field(default_factory=RunCfg)
    io: IOCfg
    labels: LabelsCfg = Field(default_factory=LabelsCfg)
    physics: PhysicsCfg = Field(default_factory=PhysicsCfg)
    calorimetry: CalorimetryCfg = Field(default_factory=CalorimetryCfg)
    geometry: GeometryCfg = Field(default_factory=GeometryCfg)
    vis: VisCfg = Field(default_factory=VisCfg)
