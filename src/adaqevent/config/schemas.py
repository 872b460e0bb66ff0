from __future__ import annotations
from pydantic import BaseModel, Field, field_validator
from typing import Literal, Optional


class RunCfg(BaseModel):
    """
    Global run controls.
    """

    # Diagnostics
    diagnostics_level: int = 1  # 0=off, 1=minimal, 2=verbose

    @field_validator("diagnostics_level")
    def _diag_range(cls, v: int) -> int:
        if v not in (0, 1, 2):
            raise ValueError("diagnostics_level must be 0, 1, or 2")
        return v


class StoreCfg(BaseModel):
    """
    HDF5 event store.

    TOML:

    [store]
    output_path  = "events.h5"
    group        = "/events"
    compression  = "gzip"       # "gzip" | "lzf" | "none"
    compression_level = 4       # gzip only
    chunk_events = 1024         # records buffered per flush
    """

    output_path: str
    group: str = "/events"
    compression: Literal["gzip", "lzf", "none"] = "gzip"
    compression_level: Optional[int] = Field(default=None, ge=0, le=9)
    chunk_events: int = Field(default=1024, ge=1)

    @field_validator("group")
    def _abs_group(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError("group must be an absolute HDF5 path, e.g. '/events'")
        return v.rstrip("/") or "/"


class Config(BaseModel):
    """
    Top-level TOML configuration.
    """

    run: RunCfg = Field(default_factory=RunCfg)
    store: StoreCfg
