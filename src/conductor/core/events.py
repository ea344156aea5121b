# Copyright 2026. Structured pipeline event log.

import enum
import json
import os
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

SCHEMA_VERSION = 1


class EventType(str, enum.Enum):
    PIPELINE_STARTED = "pipeline_started"
    PIPELINE_COMPLETED = "pipeline_completed"
    PIPELINE_FAILED = "pipeline_failed"
    STAGE_STARTED = "stage_started"
    STAGE_PASSED = "stage_passed"
    STAGE_FAILED = "stage_failed"
    PROCESS_SPAWNED = "process_spawned"
    PROCESS_TERMINATED = "process_terminated"


@dataclass
class Event:
    v: int
    event: str
    ts: str
    stage: str = ""
    pid: int = 0
    cycle: int = 0
    watch: bool = False
    error: str = ""
    detail: str = ""


_ALWAYS_KEEP = {"v", "event", "ts"}
_SKIP_VALUES = {"", 0, None, False}


def _event_to_json(event: Event) -> str:
    d = {}
    for k, val in asdict(event).items():
        if k in _ALWAYS_KEEP or val not in _SKIP_VALUES:
            d[k] = val
    return json.dumps(d, separators=(",", ":"))


def _now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def log_event(events_dir: str, event: Event) -> None:
    if not events_dir:
        return
    path = os.path.join(events_dir, "events.jsonl")
    try:
        os.makedirs(events_dir, exist_ok=True)
        with open(path, "a") as f:
            f.write(_event_to_json(event) + "\n")
    except OSError:
        pass


class EventLog:
    """Appends pipeline events to `<events_dir>/events.jsonl`. Disabled when events_dir is empty."""

    def __init__(self, events_dir: str = ""):
        self.events_dir = events_dir

    def emit(self, event_type: EventType, **kwargs) -> None:
        ev = Event(v=SCHEMA_VERSION, event=event_type.value, ts=_now_iso(), **kwargs)
        log_event(self.events_dir, ev)

    def read(self) -> list[dict]:
        if not self.events_dir:
            return []
        path = os.path.join(self.events_dir, "events.jsonl")
        if not os.path.isfile(path):
            return []
        events = []
        with open(path) as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(json.loads(line))
                except json.JSONDecodeError:
                    continue
        return events
