from pathlib import Path

import h5py
import numpy as np
import pytest

from adaqevent.config.schemas import Config
from adaqevent.io.event_store import (
    EventWriter,
    iter_events,
    read_events,
    read_schema_version,
    write_events,
    write_init,
)
from adaqevent.io.schema import RECORD_NAME, SCHEMA_VERSION, SchemaVersionError
from adaqevent.physics.event import EventRecord


def _make_records(n: int) -> list[EventRecord]:
    rng = np.random.default_rng(1234)
    out = []
    for i in range(n):
        rec = EventRecord()
        rec.set_event_id(i)
        rec.set_run_id(7)
        rec.set_total_edep(float(rng.exponential(1.0)))
        n_c = int(rng.integers(0, 6))
        n_d = int(rng.integers(0, n_c + 1))
        rec.set_photons_created(n_c)
        rec.set_photons_detected(n_d)
        for t in np.sort(rng.uniform(0.0, 1e-7, size=n_c)):
            rec.add_photon_creation_time(float(t))
        for t in rng.uniform(0.0, 1e-7, size=n_d):
            rec.add_photon_detection_time(float(t))
        rec.set_vertex_pos(*(float(v) for v in rng.normal(size=3)))
        rec.set_vertex_mom_dir(*(float(v) for v in rng.normal(size=3)))
        rec.set_vertex_ke(float(rng.uniform(0.1, 14.1)))
        rec.set_vertex_pcode(2112 if i % 2 else 22)
        out.append(rec)
    return out


def test_write_read_events_roundtrip(tmp_path: Path):
    records = _make_records(25)
    out = tmp_path / "events.h5"
    with write_init(out) as f:
        n = write_events(f, records)
    assert n == 25

    back = read_events(out)
    assert len(back) == len(records)
    for a, b in zip(records, back):
        assert a == b
        assert a.get_photon_creation_time() == b.get_photon_creation_time()
    assert read_schema_version(out) == SCHEMA_VERSION


def test_layout_and_root_attrs(tmp_path: Path):
    records = _make_records(4)
    out = tmp_path / "events.h5"
    with write_init(out) as f:
        write_events(f, records)

    with h5py.File(out, "r") as f:
        assert int(f.attrs["schema_version"]) == SCHEMA_VERSION
        assert f.attrs["record"] == RECORD_NAME
        assert "created_utc" in f.attrs and "software" in f.attrs

        g = f["/events"]
        assert g["event_id"].shape == (4,)
        assert g["event_id"].dtype == np.int32
        assert g["total_edep"].dtype == np.float64
        assert g["vertex_pos"].shape == (4, 3)

        ptr = g["photon_creation_time/ptr"][...]
        vals = g["photon_creation_time/values"][...]
        assert ptr.shape == (5,) and ptr[0] == 0
        np.testing.assert_array_equal(
            np.diff(ptr), [len(r.get_photon_creation_time()) for r in records]
        )
        assert int(ptr[-1]) == vals.shape[0]
        np.testing.assert_array_equal(g["vertex_pcode"][...], [r.get_vertex_pcode() for r in records])


def test_empty_sequences_and_default_records(tmp_path: Path):
    records = [EventRecord(), EventRecord()]
    records[1].add_photon_detection_time(3.0)
    out = tmp_path / "defaults.h5"
    with write_init(out) as f:
        write_events(f, records, compression="none")

    back = read_events(out)
    assert back[0] == EventRecord()
    assert back[1].get_photon_creation_time() == []
    assert back[1].get_photon_detection_time() == [3.0]


def test_empty_batch(tmp_path: Path):
    out = tmp_path / "empty.h5"
    with write_init(out) as f:
        assert write_events(f, []) == 0
    assert read_events(out) == []


def test_rewrite_replaces_previous_batch(tmp_path: Path):
    out = tmp_path / "events.h5"
    with write_init(out) as f:
        write_events(f, _make_records(10))
        write_events(f, _make_records(3), compression="lzf")
    assert len(read_events(out)) == 3


def test_custom_group_and_missing_group(tmp_path: Path):
    out = tmp_path / "events.h5"
    records = _make_records(3)
    with write_init(out) as f:
        write_events(f, records, group="/sim/run7")
    assert read_events(out, group="/sim/run7") == records
    with pytest.raises(KeyError):
        read_events(out)


def test_reader_rejects_newer_schema(tmp_path: Path):
    out = tmp_path / "future.h5"
    with write_init(out) as f:
        write_events(f, _make_records(2))
        f.attrs["schema_version"] = SCHEMA_VERSION + 1

    with pytest.raises(SchemaVersionError):
        read_events(out)
    with pytest.raises(SchemaVersionError):
        read_schema_version(out)
    # nothing is yielded before the version is rejected
    it = iter_events(out)
    with pytest.raises(SchemaVersionError):
        next(it)


def test_reader_rejects_untagged_file(tmp_path: Path):
    out = tmp_path / "untagged.h5"
    with write_init(out) as f:
        write_events(f, _make_records(2))
        del f.attrs["schema_version"]
    with pytest.raises(SchemaVersionError):
        read_events(out)


def test_write_events_tags_plain_file(tmp_path: Path):
    out = tmp_path / "plain.h5"
    records = _make_records(2)
    with h5py.File(out, "w") as f:
        write_events(f, records)
    assert read_events(out) == records


def test_corrupt_pointers_are_detected(tmp_path: Path):
    out = tmp_path / "corrupt.h5"
    with write_init(out) as f:
        write_events(f, _make_records(3), compression="none")
        ptr = f["/events/photon_detection_time/ptr"]
        last = ptr.shape[0] - 1
        ptr[last] = ptr[last] + 5
    with pytest.raises(ValueError, match="CSR"):
        read_events(out)


def test_decreasing_pointers_are_detected(tmp_path: Path):
    out = tmp_path / "backwards.h5"
    records = [EventRecord() for _ in range(3)]
    for t in (1.0, 2.0, 3.0):
        records[0].add_photon_creation_time(t)
    with write_init(out) as f:
        write_events(f, records, compression="none")
        f["/events/photon_creation_time/ptr"][...] = np.array([0, 3, 1, 3], dtype=np.int64)
    with pytest.raises(ValueError, match="CSR"):
        read_events(out)


def test_write_events_out_of_range_int_leaves_file_untouched(tmp_path: Path):
    out = tmp_path / "range.h5"
    good = _make_records(2)
    bad = EventRecord()
    bad.set_event_id(2**31)
    with write_init(out) as f:
        write_events(f, good)
        with pytest.raises(ValueError, match="event_id"):
            write_events(f, [good[0], bad])
    assert read_events(out) == good


def test_event_writer_drops_unstorable_record(tmp_path: Path):
    out = tmp_path / "writer_range.h5"
    good = _make_records(4)
    bad = EventRecord()
    bad.set_vertex_pcode(-(2**40))
    with EventWriter(out, chunk_events=3, diagnostics_level=0) as w:
        w.fill(good[0])
        w.fill(good[1])
        with pytest.raises(ValueError, match="vertex_pcode"):
            w.fill(bad)
        w.fill(good[2])
        w.fill(good[3])
        assert w.n_written == 4
    assert read_events(out) == good


def test_event_writer_reuses_one_record_across_chunks(tmp_path: Path):
    out = tmp_path / "writer.h5"
    expected = _make_records(7)

    rec = EventRecord()
    with EventWriter(out, chunk_events=3, diagnostics_level=0) as w:
        for src in expected:
            rec.set_event_id(src.get_event_id())
            rec.set_run_id(src.get_run_id())
            rec.set_total_edep(src.get_total_edep())
            rec.set_photons_created(src.get_photons_created())
            rec.set_photons_detected(src.get_photons_detected())
            for t in src.get_photon_creation_time():
                rec.add_photon_creation_time(t)
            for t in src.get_photon_detection_time():
                rec.add_photon_detection_time(t)
            rec.set_vertex_pos(*src.get_vertex_pos())
            rec.set_vertex_mom_dir(*src.get_vertex_mom_dir())
            rec.set_vertex_ke(src.get_vertex_ke())
            rec.set_vertex_pcode(src.get_vertex_pcode())
            w.fill(rec)
            rec.initialize()
        assert w.n_written == 7

    assert w.closed
    assert read_events(out) == expected
    with h5py.File(out, "r") as f:
        assert f["/events/photon_creation_time/ptr"].shape == (8,)


def test_event_writer_empty_and_double_close(tmp_path: Path):
    out = tmp_path / "none.h5"
    w = EventWriter(out, diagnostics_level=0)
    w.close()
    w.close()
    assert read_events(out) == []
    with pytest.raises(ValueError):
        w.fill(EventRecord())


def test_event_writer_rejects_bad_chunk(tmp_path: Path):
    with pytest.raises(ValueError):
        EventWriter(tmp_path / "x.h5", chunk_events=0)


def test_event_writer_from_config(tmp_path: Path, capsys):
    cfg_path = tmp_path / "store.toml"
    cfg_path.write_text('[store]\noutput_path = "x.h5"\n')
    out = tmp_path / "cfg.h5"
    cfg = Config(
        run={"diagnostics_level": 1},
        store={"output_path": str(out), "group": "/run0", "compression": "gzip",
               "compression_level": 6, "chunk_events": 2},
    )
    records = _make_records(5)
    with EventWriter.from_config(cfg, cfg_path=cfg_path) as w:
        for r in records:
            w.fill(r)

    assert "[store] Wrote 5 events" in capsys.readouterr().out
    assert read_events(out, group="/run0") == records
    with h5py.File(out, "r") as f:
        assert "output_path" in f.attrs["config_text"]
        assert f["/run0/event_id"].compression == "gzip"
