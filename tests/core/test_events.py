# Copyright 2026. Tests for conductor.core.events.

import json

from conductor.core.events import (
    SCHEMA_VERSION,
    Event,
    EventLog,
    EventType,
    _event_to_json,
    log_event,
)


def _make_event(**overrides) -> Event:
    defaults = dict(v=SCHEMA_VERSION, event="stage_started", ts="2026-02-23T15:00:00Z")
    defaults.update(overrides)
    return Event(**defaults)


class TestEventToJson:
    def test_includes_required_fields(self):
        d = json.loads(_event_to_json(_make_event()))
        assert d == {"v": SCHEMA_VERSION, "event": "stage_started", "ts": "2026-02-23T15:00:00Z"}

    def test_keeps_populated_optional_fields(self):
        d = json.loads(_event_to_json(_make_event(stage="driver", pid=42, cycle=2, watch=True)))
        assert d["stage"] == "driver"
        assert d["pid"] == 42
        assert d["cycle"] == 2
        assert d["watch"] is True

    def test_compact_separators(self):
        assert ", " not in _event_to_json(_make_event(stage="compile"))


class TestEventLog:
    def test_emit_appends_lines(self, tmp_path):
        events = EventLog(str(tmp_path / "events"))
        events.emit(EventType.PIPELINE_STARTED, watch=True)
        events.emit(EventType.STAGE_FAILED, stage="compile", error="tsc exited with code 1")
        read = events.read()
        assert [e["event"] for e in read] == ["pipeline_started", "stage_failed"]
        assert read[1]["error"] == "tsc exited with code 1"

    def test_disabled_without_dir(self):
        events = EventLog("")
        events.emit(EventType.PIPELINE_STARTED)
        assert events.read() == []

    def test_read_skips_corrupt_lines(self, tmp_path):
        (tmp_path / "events.jsonl").write_text('{"event":"a"}\nnot json\n\n{"event":"b"}\n')
        assert [e["event"] for e in EventLog(str(tmp_path)).read()] == ["a", "b"]

    def test_log_event_no_crash_on_unwritable_dir(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        log_event(str(blocker / "sub"), _make_event())
