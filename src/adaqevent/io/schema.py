"""
adaqevent.io.schema

Versioned field layout of an EventRecord and the plain-Python encode/decode
pair used by every persistence backend.

A writer stores SCHEMA_VERSION alongside the records; a reader calls
check_schema_version() before touching any field and refuses versions it
does not know rather than guessing at the layout.

Version history
---------------
1 : event_id, run_id, total_edep, photons_created, photons_detected,
    photon_creation_time, photon_detection_time, vertex_pos,
    vertex_mom_dir, vertex_ke, vertex_pcode
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable, Dict, Literal, Mapping, Tuple

import numpy as np

from adaqevent.physics.event import EventRecord
from adaqevent.physics.vectors import Vec3

SCHEMA_VERSION = 1
SUPPORTED_SCHEMA_VERSIONS: Tuple[int, ...] = (1,)
RECORD_NAME = "ADAQEvent"

FieldKind = Literal["scalar", "sequence", "vector3"]


class SchemaVersionError(ValueError):
    """Persisted data carries a schema version this reader cannot decode."""


@dataclass(frozen=True, slots=True)
class FieldSpec:
    name: str
    kind: FieldKind
    dtype: np.dtype


_I4 = np.dtype(np.int32)
_F8 = np.dtype(np.float64)

EVENT_FIELDS: Tuple[FieldSpec, ...] = (
    FieldSpec("event_id", "scalar", _I4),
    FieldSpec("run_id", "scalar", _I4),
    FieldSpec("total_edep", "scalar", _F8),
    FieldSpec("photons_created", "scalar", _I4),
    FieldSpec("photons_detected", "scalar", _I4),
    FieldSpec("photon_creation_time", "sequence", _F8),
    FieldSpec("photon_detection_time", "sequence", _F8),
    FieldSpec("vertex_pos", "vector3", _F8),
    FieldSpec("vertex_mom_dir", "vector3", _F8),
    FieldSpec("vertex_ke", "scalar", _F8),
    FieldSpec("vertex_pcode", "scalar", _I4),
)

FIELD_NAMES: Tuple[str, ...] = tuple(s.name for s in EVENT_FIELDS)


def fields_of_kind(kind: FieldKind) -> Tuple[FieldSpec, ...]:
    return tuple(s for s in EVENT_FIELDS if s.kind == kind)


def check_schema_version(version: Any) -> int:
    """
    Return the version as int, or raise SchemaVersionError if it is missing
    or not one of SUPPORTED_SCHEMA_VERSIONS.
    """
    if version is None:
        raise SchemaVersionError("No schema_version tag found; refusing to decode")
    # bools and floats would truncate to a known tag
    if isinstance(version, (bool, np.bool_)) or not isinstance(version, (int, np.integer)):
        raise SchemaVersionError(f"Malformed schema_version tag: {version!r}")
    v = int(version)
    if v not in SUPPORTED_SCHEMA_VERSIONS:
        newest = max(SUPPORTED_SCHEMA_VERSIONS)
        hint = " (written by a newer release)" if v > newest else ""
        raise SchemaVersionError(
            f"Unsupported {RECORD_NAME} schema_version={v}{hint}; "
            f"supported: {list(SUPPORTED_SCHEMA_VERSIONS)}"
        )
    return v


def visit_fields(record: EventRecord, visitor: Callable[[FieldSpec, Any], None]) -> None:
    """Call visitor(spec, value) for each field of record, in EVENT_FIELDS order."""
    for spec, (name, value) in zip(EVENT_FIELDS, record.iter_fields()):
        if spec.name != name:
            raise RuntimeError(f"EventRecord field order drifted: {name!r} != {spec.name!r}")
        visitor(spec, value)


def _check_int_range(spec: FieldSpec, value: Any) -> None:
    info = np.iinfo(spec.dtype)
    if not info.min <= value <= info.max:
        raise ValueError(
            f"{spec.name}={value} does not fit {spec.dtype.name} "
            f"[{info.min}, {info.max}]"
        )


def encode_record(record: EventRecord) -> Dict[str, Any]:
    """
    Flatten a record into a plain dict tagged with SCHEMA_VERSION.

    Scalars keep their Python value, sequences become lists, vectors become
    3-tuples. Key order follows EVENT_FIELDS.

    Integer fields outside their storage dtype (int32) raise ValueError, so
    a writer never buffers a record it cannot store.
    """
    out: Dict[str, Any] = {"schema_version": SCHEMA_VERSION}

    def _put(spec: FieldSpec, value: Any) -> None:
        if spec.kind == "vector3":
            out[spec.name] = tuple(value)
        else:
            if spec.kind == "scalar" and spec.dtype.kind == "i":
                _check_int_range(spec, value)
            out[spec.name] = value

    visit_fields(record, _put)
    return out


def decode_record(data: Mapping[str, Any]) -> EventRecord:
    """
    Inverse of encode_record.

    The version tag is checked before any field is read, so an unknown
    layout is rejected as a whole. Missing fields raise KeyError.
    """
    check_schema_version(data.get("schema_version"))
    rec = EventRecord()
    rec.set_event_id(int(data["event_id"]))
    rec.set_run_id(int(data["run_id"]))
    rec.set_total_edep(float(data["total_edep"]))
    rec.set_photons_created(int(data["photons_created"]))
    rec.set_photons_detected(int(data["photons_detected"]))
    for t in data["photon_creation_time"]:
        rec.add_photon_creation_time(float(t))
    for t in data["photon_detection_time"]:
        rec.add_photon_detection_time(float(t))
    rec.set_vertex_pos(*Vec3.of(*data["vertex_pos"]))
    rec.set_vertex_mom_dir(*Vec3.of(*data["vertex_mom_dir"]))
    rec.set_vertex_ke(float(data["vertex_ke"]))
    rec.set_vertex_pcode(int(data["vertex_pcode"]))
    return rec
