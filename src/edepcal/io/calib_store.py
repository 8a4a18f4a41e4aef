from __future__ import annotations
from typing import Any, Dict, Mapping, Optional, Sequence
import h5py
import numpy as np
import pandas as pd
import uproot
from datetime import datetime, timezone
from pathlib import Path

FORMAT_VERSION = "1.0"
SOFTWARE = "edep-cal 0.1.0"
GROUP = "calibration"
TREE_NAME = "calibration"


def records_to_columns(records: Sequence[Any], columns: Sequence[str], dtypes: Mapping[str, Any]) -> Dict[str, np.ndarray]:
    """
    Turn a sequence of row objects into one numpy array per column.

    Zero rows still give correctly typed empty arrays.
    """
    return {
        name: np.array([getattr(r, name) for r in records], dtype=dtypes[name])
        for name in columns
    }


def write_init(path: str, config_text: str = "", meta: Optional[Mapping[str, Any]] = None) -> h5py.File:
    f = h5py.File(path, "w")
    # Root attrs
    f.attrs["format_version"] = FORMAT_VERSION
    f.attrs["created_utc"] = datetime.now(timezone.utc).isoformat()
    f.attrs["software"] = SOFTWARE
    f.attrs["config_text"] = config_text

    # /meta
    grp = f.create_group("meta")
    for k, v in (meta or {}).items():
        grp.attrs[k] = v
    return f


def write_columns(f: h5py.File, cols: Mapping[str, np.ndarray]) -> None:
    """
    Store one dataset per column under /calibration.

    Existing datasets of the same name are replaced.
    """
    grp = f.require_group(GROUP)
    for name, arr in cols.items():
        if name in grp:
            del grp[name]
        # empty datasets cannot be chunked
        grp.create_dataset(name, data=arr, compression="gzip" if arr.size else None)
    grp.attrs["columns"] = np.array(list(cols.keys()), dtype=h5py.string_dtype())
    grp.attrs["n_rows"] = int(len(next(iter(cols.values())))) if cols else 0


def write_diagnostics(f: h5py.File, reasons: Mapping[str, int]) -> None:
    grp = f.require_group("meta").require_group("diagnostics")
    for k, n in reasons.items():
        grp.attrs[k] = int(n)


def write_hdf5(path: str, cols: Mapping[str, np.ndarray], *, config_text: str = "",
               meta: Optional[Mapping[str, Any]] = None,
               diagnostics: Optional[Mapping[str, int]] = None) -> Path:
    f = write_init(path, config_text, meta)
    try:
        write_columns(f, cols)
        if diagnostics:
            write_diagnostics(f, diagnostics)
    finally:
        f.close()
    return Path(path)


def write_root(path: str, cols: Mapping[str, np.ndarray]) -> Path:
    """Write a flat TTree, one branch per column. Bool columns are stored as int8."""
    branches = {
        name: (arr.astype(np.int8) if arr.dtype == np.bool_ else arr)
        for name, arr in cols.items()
    }
    with uproot.recreate(path) as f:
        f[TREE_NAME] = branches
    return Path(path)


def write_table(path: str, cols: Mapping[str, np.ndarray], fmt: str) -> Path:
    df = pd.DataFrame(dict(cols))
    if fmt == "csv":
        df.to_csv(path, index=False)
    elif fmt == "parquet":
        df.to_parquet(path, index=False)
    else:
        raise ValueError(f"Unknown table format {fmt}")
    return Path(path)


def write_output(path: str, fmt: str, cols: Mapping[str, np.ndarray], **hdf5_kw) -> Path:
    """
    Dispatch on output format: "hdf5" | "root" | "csv" | "parquet".

    Only HDF5 keeps config text, run metadata and diagnostics.
    """
    if fmt == "hdf5":
        return write_hdf5(path, cols, **hdf5_kw)
    if fmt == "root":
        return write_root(path, cols)
    if fmt in ("csv", "parquet"):
        return write_table(path, cols, fmt)
    raise ValueError(f"Unknown output format {fmt}")


def read_records(path: str) -> Dict[str, np.ndarray]:
    """Read /calibration columns of an HDF5 output back, in stored column order."""
    path = str(path)
    with h5py.File(path, "r") as f:
        if GROUP not in f:
            raise KeyError(f"/{GROUP} not found in {path}")
        grp = f[GROUP]
        names = [n.decode() if isinstance(n, bytes) else str(n) for n in grp.attrs.get("columns", list(grp.keys()))]
        return {name: np.array(grp[name]) for name in names}


def read_meta(path: str) -> Dict[str, Any]:
    """Root and /meta attributes of an HDF5 output, plus diagnostics counters."""
    with h5py.File(str(path), "r") as f:
        out: Dict[str, Any] = {k: f.attrs[k] for k in f.attrs}
        if "meta" in f:
            out.update({k: f["meta"].attrs[k] for k in f["meta"].attrs})
            if "diagnostics" in f["meta"]:
                out["diagnostics"] = {k: int(v) for k, v in f["meta"]["diagnostics"].attrs.items()}
    return out


def read_table(path: str) -> pd.DataFrame:
    """Load any edepcal output as a DataFrame (HDF5, ROOT, CSV or Parquet)."""
    p = Path(path)
    suffix = p.suffix.lower()
    if suffix in {".h5", ".hdf5"}:
        return pd.DataFrame(read_records(str(p)))
    if suffix == ".root":
        with uproot.open(str(p)) as f:
            return f[TREE_NAME].arrays(library="pd")
    if suffix == ".csv":
        return pd.read_csv(p)
    if suffix in {".parquet", ".pq"}:
        return pd.read_parquet(p)
    raise ValueError(f"Unrecognized output file: {p.name} (expected .h5/.root/.csv/.parquet)")
