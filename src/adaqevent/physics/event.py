# src/adaqevent/physics/event.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Iterator, List, Tuple

from .vectors import Vec3, ZERO


@dataclass(slots=True)
class EventRecord:
    """
    Event-level data of one simulated detector event.

    Holds the run/event identity, the total ionizing energy deposited,
    scintillation/Cerenkov photon counts and per-photon times, and the
    state of the vertex (track ID == 0) particle.

    The record is a passive container: nothing is validated, and counts are
    independent of the lengths of the timing lists. Construct it, fill it
    for one event, hand it to a writer, then .initialize() it for the next
    event.

    Field declaration order is the serialization order.
    """
    event_id: int = field(init=False)
    run_id: int = field(init=False)
    total_edep: float = field(init=False)
    photons_created: int = field(init=False)
    photons_detected: int = field(init=False)
    photon_creation_time: List[float] = field(init=False)
    photon_detection_time: List[float] = field(init=False)
    vertex_pos: Vec3 = field(init=False)
    vertex_mom_dir: Vec3 = field(init=False)
    vertex_ke: float = field(init=False)
    vertex_pcode: int = field(init=False)

    def __post_init__(self) -> None:
        self.photon_creation_time = []
        self.photon_detection_time = []
        self.initialize()

    def initialize(self) -> None:
        """Reset every field to its zero value; the timing lists are cleared in place."""
        self.event_id = self.run_id = 0
        self.total_edep = 0.0
        self.photons_created = self.photons_detected = 0
        self.photon_creation_time.clear()
        self.photon_detection_time.clear()
        self.vertex_pos = ZERO
        self.vertex_mom_dir = ZERO
        self.vertex_ke = 0.0
        self.vertex_pcode = 0

    # Event metadata
    def set_event_id(self, eid: int) -> None:
        self.event_id = eid

    def get_event_id(self) -> int:
        return self.event_id

    def set_run_id(self, rid: int) -> None:
        self.run_id = rid

    def get_run_id(self) -> int:
        return self.run_id

    # Total ionizing energy deposited
    def set_total_edep(self, edep: float) -> None:
        self.total_edep = edep

    def get_total_edep(self) -> float:
        return self.total_edep

    # Scintillation/Cerenkov photon counts
    def set_photons_created(self, n: int) -> None:
        self.photons_created = n

    def get_photons_created(self) -> int:
        return self.photons_created

    def set_photons_detected(self, n: int) -> None:
        self.photons_detected = n

    def get_photons_detected(self) -> int:
        return self.photons_detected

    # Per-photon times
    def add_photon_creation_time(self, t: float) -> None:
        self.photon_creation_time.append(t)

    def clear_photon_creation_time(self) -> None:
        self.photon_creation_time.clear()

    def get_photon_creation_time(self) -> List[float]:
        return list(self.photon_creation_time)

    def add_photon_detection_time(self, t: float) -> None:
        self.photon_detection_time.append(t)

    def clear_photon_detection_time(self) -> None:
        self.photon_detection_time.clear()

    def get_photon_detection_time(self) -> List[float]:
        return list(self.photon_detection_time)

    # Vertex particle
    def set_vertex_pos(self, x: float, y: float, z: float) -> None:
        self.vertex_pos = Vec3(x, y, z)

    def get_vertex_pos(self) -> Vec3:
        return self.vertex_pos

    def set_vertex_mom_dir(self, px: float, py: float, pz: float) -> None:
        self.vertex_mom_dir = Vec3(px, py, pz)

    def get_vertex_mom_dir(self) -> Vec3:
        return self.vertex_mom_dir

    def set_vertex_ke(self, ke: float) -> None:
        self.vertex_ke = ke

    def get_vertex_ke(self) -> float:
        return self.vertex_ke

    def set_vertex_pcode(self, pcode: int) -> None:
        self.vertex_pcode = pcode

    def get_vertex_pcode(self) -> int:
        return self.vertex_pcode

    def iter_fields(self) -> Iterator[Tuple[str, Any]]:
        """
        Yield (name, value) for every field in serialization order.

        Timing lists are yielded as copies.
        """
        yield "event_id", self.event_id
        yield "run_id", self.run_id
        yield "total_edep", self.total_edep
        yield "photons_created", self.photons_created
        yield "photons_detected", self.photons_detected
        yield "photon_creation_time", list(self.photon_creation_time)
        yield "photon_detection_time", list(self.photon_detection_time)
        yield "vertex_pos", self.vertex_pos
        yield "vertex_mom_dir", self.vertex_mom_dir
        yield "vertex_ke", self.vertex_ke
        yield "vertex_pcode", self.vertex_pcode

    def copy(self) -> "EventRecord":
        out = EventRecord()
        for name, value in self.iter_fields():
            if isinstance(value, list):
                getattr(out, name).extend(value)
            else:
                setattr(out, name, value)
        return out
