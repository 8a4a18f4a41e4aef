from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Protocol, Sequence

# ProtoDUNE-SP APA readout: 800 U, 800 V, 960 collection (Z) channels
NB_ICHANNELS = 800
NB_CCHANNELS = 960
NB_APA_CHANNELS = 2 * NB_ICHANNELS + NB_CCHANNELS

VIEW_U, VIEW_V, VIEW_Z = 0, 1, 2
VIEW_UNKNOWN = -1


class ChannelMap(Protocol):
    name: str

    def view(self, channel: int) -> int:
        """Return the readout view (plane index) a channel belongs to, or -1."""


@dataclass
class ProtoDUNEChannelMap:
    """
    Block channel map: every APA carries U, V, then collection channels.

    block_sizes lists the channel count of each view inside one APA, in
    view order; n_apas bounds the valid channel range.
    """
    block_sizes: Sequence[int] = (NB_ICHANNELS, NB_ICHANNELS, NB_CCHANNELS)
    n_apas: int = 6
    name: str = "protodune"

    @property
    def apa_channels(self) -> int:
        return int(sum(self.block_sizes))

    @property
    def n_channels(self) -> int:
        return self.apa_channels * self.n_apas

    def view(self, channel: int) -> int:
        ch = int(channel)
        if ch < 0 or ch >= self.n_channels:
            return VIEW_UNKNOWN
        local = ch % self.apa_channels
        for v, size in enumerate(self.block_sizes):
            if local < size:
                return v
            local -= size
        return VIEW_UNKNOWN


@dataclass
class TableChannelMap:
    """Explicit channel -> view table; channels not listed map to `default`."""
    table: Dict[int, int] = field(default_factory=dict)
    default: int = VIEW_UNKNOWN
    name: str = "table"

    @classmethod
    def from_mapping(cls, mapping: Optional[Mapping] = None, default: int = VIEW_UNKNOWN):
        # TOML tables give string keys
        return cls(table={int(k): int(v) for k, v in (mapping or {}).items()}, default=default)

    def view(self, channel: int) -> int:
        return self.table.get(int(channel), self.default)


def make_channel_map(cfg_geometry) -> ChannelMap:
    if cfg_geometry.kind == "protodune":
        return ProtoDUNEChannelMap(
            block_sizes=tuple(cfg_geometry.block_sizes),
            n_apas=cfg_geometry.n_apas,
        )
    elif cfg_geometry.kind == "table":
        return TableChannelMap.from_mapping(cfg_geometry.channel_views)
    else:
        raise ValueError(f"Unknown geometry kind {cfg_geometry.kind}")
