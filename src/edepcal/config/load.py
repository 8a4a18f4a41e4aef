from __future__ import annotations
from pathlib import Path
from typing import Any, Mapping

from .schemas import Config

try:
    import tomllib  # py311+
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # py<=310


def load_config(path: str | Path) -> Config:
    """Parse and validate an edepcal TOML file."""
    with open(path, "rb") as fh:
        return Config(**tomllib.load(fh))


def apply_overrides(cfg: Config, overrides: Mapping[str, Any]) -> Config:
    """
    Return a revalidated copy of cfg with "section.field" overrides applied.

    None values leave the configured value in place, so CLI options that
    were not given can be passed straight through.
    """
    data = cfg.model_dump()
    for key, value in overrides.items():
        if value is None:
            continue
        section, name = key.split(".", 1)
        if section not in data or name not in data[section]:
            raise KeyError(f"Unknown config field '{key}'")
        data[section][name] = value
    return Config(**data)


def snapshot_config_toml(path: str | Path) -> str:
    """Raw TOML text, stored verbatim in output metadata."""
    return Path(path).read_text()
