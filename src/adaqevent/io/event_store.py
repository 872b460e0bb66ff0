"""
adaqevent.io.event_store

HDF5 container for EventRecords.

Layout
------
/                                 attrs: schema_version, record, created_utc,
                                         software, [config_text]
/events/event_id                  (N,)    int32
/events/run_id                    (N,)    int32
/events/total_edep                (N,)    float64
/events/photons_created           (N,)    int32
/events/photons_detected          (N,)    int32
/events/photon_creation_time/ptr  (N+1,)  int64   CSR pointers into values
/events/photon_creation_time/values (M,)  float64
/events/photon_detection_time/ptr (N+1,)  int64
/events/photon_detection_time/values (K,) float64
/events/vertex_pos                (N, 3)  float64
/events/vertex_mom_dir            (N, 3)  float64
/events/vertex_ke                 (N,)    float64
/events/vertex_pcode              (N,)    int32

Event i's creation times are values[ptr[i]:ptr[i+1]].

write_events() writes a whole batch at once; EventWriter appends as the
simulation runs so one EventRecord can be filled, written, and
initialize()d for every event.
"""
from __future__ import annotations
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

import h5py
import numpy as np

from adaqevent.config.load import snapshot_config_toml
from adaqevent.config.schemas import Config
from adaqevent.io.schema import (
    EVENT_FIELDS,
    RECORD_NAME,
    SCHEMA_VERSION,
    FieldSpec,
    check_schema_version,
    decode_record,
    encode_record,
)
from adaqevent.physics.event import EventRecord

SOFTWARE = "adaq-event 0.1.0"
DEFAULT_GROUP = "/events"


def _compression_kwargs(compression: str = "gzip", level: Optional[int] = None) -> Dict[str, Any]:
    if compression == "none":
        return {}
    if compression == "lzf":
        return {"compression": "lzf"}
    if compression == "gzip":
        kw: Dict[str, Any] = {"compression": "gzip"}
        if level is not None:
            kw["compression_opts"] = int(level)
        return kw
    raise ValueError(f"Unknown compression {compression!r}; expected 'gzip', 'lzf' or 'none'")


def _tag_root(f: h5py.File) -> None:
    f.attrs["schema_version"] = SCHEMA_VERSION
    f.attrs["record"] = RECORD_NAME


def write_init(path: str | Path, cfg_path: str | Path | None = None) -> h5py.File:
    """
    Create (truncate) an event file and write the root attributes.

    Returns the open h5py.File; the caller closes it.
    """
    f = h5py.File(str(path), "w")
    _tag_root(f)
    f.attrs["created_utc"] = datetime.now(timezone.utc).isoformat()
    f.attrs["software"] = SOFTWARE
    if cfg_path is not None:
        f.attrs["config_text"] = snapshot_config_toml(cfg_path)
    return f


def _columns_from_encoded(rows: Sequence[Dict[str, Any]]) -> Dict[str, np.ndarray]:
    """
    Turn encoded records (see encode_record) into column arrays.

    Keys are field names, plus '<name>/ptr' and '<name>/values' for the
    ragged sequence fields.
    """
    n = len(rows)
    cols: Dict[str, np.ndarray] = {}
    for spec in EVENT_FIELDS:
        if spec.kind == "scalar":
            cols[spec.name] = np.fromiter((r[spec.name] for r in rows), dtype=spec.dtype, count=n)
        elif spec.kind == "vector3":
            arr = np.empty((n, 3), dtype=spec.dtype)
            for i, r in enumerate(rows):
                arr[i, :] = r[spec.name]
            cols[spec.name] = arr
        else:
            ptr = np.zeros(n + 1, dtype=np.int64)
            k = 0
            for i, r in enumerate(rows):
                k += len(r[spec.name])
                ptr[i + 1] = k
            vals = np.empty(k, dtype=spec.dtype)
            w = 0
            for r in rows:
                seq = r[spec.name]
                vals[w:w + len(seq)] = seq
                w += len(seq)
            cols[f"{spec.name}/ptr"] = ptr
            cols[f"{spec.name}/values"] = vals
    return cols


def write_events(
    f: h5py.File,
    records: Iterable[EventRecord],
    *,
    group: str = DEFAULT_GROUP,
    compression: str = "gzip",
    compression_level: Optional[int] = None,
) -> int:
    """
    Write a batch of records under `group`, replacing any datasets already
    there. Tags the file root with the schema version.

    Every record is encoded and every column built before the file is
    touched, so bad input (e.g. an out-of-range integer) leaves the file as
    it was. An HDF5 error during the write itself leaves the group with
    mismatched columns, which readers reject as corrupt.

    Returns the number of records written.
    """
    rows = [encode_record(r) for r in records]
    cols = _columns_from_encoded(rows)
    ckw = _compression_kwargs(compression, compression_level)

    _tag_root(f)
    grp = f.require_group(group)
    for key in cols:
        if key in grp:
            del grp[key]
    for key, data in cols.items():
        grp.create_dataset(key, data=data, **(ckw if data.size else {}))
    return len(rows)


def read_schema_version(path: str | Path) -> int:
    with h5py.File(str(path), "r") as f:
        return check_schema_version(f.attrs.get("schema_version"))


def _read_columns(f: h5py.File, group: str, path: str) -> Dict[str, np.ndarray]:
    if group not in f:
        raise KeyError(f"{group} not found in {path}")
    grp = f[group]
    cols: Dict[str, np.ndarray] = {}
    for spec in EVENT_FIELDS:
        keys = [spec.name] if spec.kind != "sequence" else [f"{spec.name}/ptr", f"{spec.name}/values"]
        for key in keys:
            if key not in grp:
                raise KeyError(f"{group}/{key} not found in {path}")
            cols[key] = np.asarray(grp[key][...])
    return cols


def _check_lengths(cols: Dict[str, np.ndarray], path: str) -> int:
    n = len(cols[EVENT_FIELDS[0].name])
    for spec in EVENT_FIELDS:
        if spec.kind == "sequence":
            ptr = cols[f"{spec.name}/ptr"]
            vals = cols[f"{spec.name}/values"]
            if (
                len(ptr) != n + 1
                or ptr[0] != 0
                or int(ptr[-1]) != len(vals)
                or np.any(np.diff(ptr) < 0)
            ):
                raise ValueError(f"Corrupt CSR pointers for {spec.name} in {path}")
        elif len(cols[spec.name]) != n:
            raise ValueError(
                f"Column length mismatch in {path}: {spec.name} has "
                f"{len(cols[spec.name])} rows, expected {n}"
            )
    return n


def _row(cols: Dict[str, np.ndarray], spec: FieldSpec, i: int) -> Any:
    if spec.kind == "scalar":
        return cols[spec.name][i]
    if spec.kind == "vector3":
        return tuple(cols[spec.name][i])
    ptr = cols[f"{spec.name}/ptr"]
    return cols[f"{spec.name}/values"][ptr[i]:ptr[i + 1]].tolist()


def iter_events(path: str | Path, group: str = DEFAULT_GROUP) -> Iterator[EventRecord]:
    """
    Yield EventRecords stored in `path`.

    The schema version is checked before anything under `group` is read;
    unknown or newer versions raise SchemaVersionError.
    """
    path = str(path)
    with h5py.File(path, "r") as f:
        version = check_schema_version(f.attrs.get("schema_version"))
        cols = _read_columns(f, group, path)
    n = _check_lengths(cols, path)
    for i in range(n):
        data: Dict[str, Any] = {"schema_version": version}
        for spec in EVENT_FIELDS:
            data[spec.name] = _row(cols, spec, i)
        yield decode_record(data)


def read_events(path: str | Path, group: str = DEFAULT_GROUP) -> List[EventRecord]:
    return list(iter_events(path, group))


class EventWriter:
    """
    Append EventRecords to an HDF5 file as they are produced.

    fill() snapshots the record, so the caller may initialize() and reuse
    the same instance for the next event. Snapshots are buffered and
    flushed to resizable datasets every `chunk_events` records and on
    close().

        with EventWriter("run7.h5") as w:
            rec = EventRecord()
            for eid in range(n):
                ...populate rec...
                w.fill(rec)
                rec.initialize()
    """

    def __init__(
        self,
        path: str | Path,
        *,
        group: str = DEFAULT_GROUP,
        compression: str = "gzip",
        compression_level: Optional[int] = None,
        chunk_events: int = 1024,
        diagnostics_level: int = 1,
        cfg_path: str | Path | None = None,
    ):
        if chunk_events < 1:
            raise ValueError("chunk_events must be >= 1")
        self.path = Path(path)
        self.group = group
        self.chunk_events = int(chunk_events)
        self.diagnostics_level = diagnostics_level
        self._ckw = _compression_kwargs(compression, compression_level)
        self._buffer: List[Dict[str, Any]] = []
        self._n_written = 0

        self._file: Optional[h5py.File] = write_init(self.path, cfg_path=cfg_path)
        self._create_datasets(self._file.require_group(group))
        if self.diagnostics_level >= 2:
            print(f"[store] Opened {self.path} (group={group}, chunk_events={self.chunk_events})")

    @classmethod
    def from_config(cls, cfg: Config, cfg_path: str | Path | None = None) -> "EventWriter":
        st = cfg.store
        return cls(
            st.output_path,
            group=st.group,
            compression=st.compression,
            compression_level=st.compression_level,
            chunk_events=st.chunk_events,
            diagnostics_level=cfg.run.diagnostics_level,
            cfg_path=cfg_path,
        )

    def _create_datasets(self, grp: h5py.Group) -> None:
        for spec in EVENT_FIELDS:
            if spec.kind == "scalar":
                grp.create_dataset(spec.name, shape=(0,), maxshape=(None,), dtype=spec.dtype,
                                   chunks=True, **self._ckw)
            elif spec.kind == "vector3":
                grp.create_dataset(spec.name, shape=(0, 3), maxshape=(None, 3), dtype=spec.dtype,
                                   chunks=True, **self._ckw)
            else:
                grp.create_dataset(f"{spec.name}/ptr", data=np.zeros(1, dtype=np.int64),
                                   maxshape=(None,), chunks=True, **self._ckw)
                grp.create_dataset(f"{spec.name}/values", shape=(0,), maxshape=(None,),
                                   dtype=spec.dtype, chunks=True, **self._ckw)

    @property
    def n_written(self) -> int:
        """Records flushed to disk plus records still buffered."""
        return self._n_written + len(self._buffer)

    @property
    def closed(self) -> bool:
        return self._file is None

    def fill(self, record: EventRecord) -> None:
        if self._file is None:
            raise ValueError(f"EventWriter for {self.path} is closed")
        self._buffer.append(encode_record(record))
        if len(self._buffer) >= self.chunk_events:
            self.flush()

    def flush(self) -> None:
        """
        Append buffered records to the datasets.

        Columns are built before any dataset is resized. If HDF5 fails
        midway the group is left with mismatched columns, which readers
        reject as corrupt; the buffer is kept so the failure is visible.
        """
        if self._file is None or not self._buffer:
            return
        cols = _columns_from_encoded(self._buffer)
        grp = self._file[self.group]
        n_new = len(self._buffer)

        for spec in EVENT_FIELDS:
            if spec.kind == "sequence":
                ptr_ds = grp[f"{spec.name}/ptr"]
                val_ds = grp[f"{spec.name}/values"]
                p0 = ptr_ds.shape[0]
                base = int(ptr_ds[p0 - 1])
                new_ptr = cols[f"{spec.name}/ptr"][1:] + base
                new_vals = cols[f"{spec.name}/values"]
                ptr_ds.resize((p0 + n_new,))
                ptr_ds[p0:] = new_ptr
                v0 = val_ds.shape[0]
                if new_vals.size:
                    val_ds.resize((v0 + new_vals.size,))
                    val_ds[v0:] = new_vals
            else:
                ds = grp[spec.name]
                r0 = ds.shape[0]
                ds.resize(r0 + n_new, axis=0)
                ds[r0:] = cols[spec.name]

        self._n_written += n_new
        self._buffer.clear()
        self._file.flush()
        if self.diagnostics_level >= 2:
            print(f"[store] Flushed {n_new} events ({self._n_written} total) to {self.path}")

    def close(self) -> None:
        if self._file is None:
            return
        try:
            self.flush()
        finally:
            self._file.close()
            self._file = None
        if self.diagnostics_level >= 1:
            print(f"[store] Wrote {self._n_written} events to {self.path}")

    def __enter__(self) -> "EventWriter":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
