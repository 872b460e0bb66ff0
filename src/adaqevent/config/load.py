from __future__ import annotations
from pathlib import Path
from typing import Any, Dict

from .schemas import Config

try:
    import tomllib  # py311+
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # py<=310

REQUIRED_SECTIONS = ("store",)


def read_toml(path: str | Path) -> Dict[str, Any]:
    return tomllib.loads(Path(path).read_text())


def load_config(path: str | Path) -> Config:
    """
    Parse a TOML file into a Config.

    A missing required table ([store]) raises ValueError naming the table
    and the file; everything else is validated by the pydantic models.
    """
    data = read_toml(path)
    missing = [s for s in REQUIRED_SECTIONS if s not in data]
    if missing:
        tables = ", ".join(f"[{s}]" for s in missing)
        raise ValueError(f"{path}: missing required table(s) {tables}")
    return Config(**data)


def snapshot_config_toml(path: str | Path) -> str:
    """Return the raw TOML text for embedding in HDF5 metadata."""
    return Path(path).read_text()
