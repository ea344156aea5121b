"""Shared fakes and fixtures for pipeline tests."""

import itertools
import json
from pathlib import Path

from conductor.core.process import IOMode


def write_json(path: Path, data) -> str:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data))
    return str(path)


def make_configs(tmp: Path, port: int = 9515, out_dir: str = "dist") -> tuple[str, str]:
    """Write a tsconfig and a runner config under tmp; return their paths."""
    ts_config = write_json(tmp / "e2e" / "tsconfig.e2e.json", {
        "compilerOptions": {"outDir": out_dir},
    })
    runner_config = write_json(tmp / "e2e" / "runner.json", {
        "src_folders": ["specs"],
        "webdriver": {"port": port, "start_process": True},
    })
    return ts_config, runner_config


class FakeHandle:
    def __init__(self, stage: str, pid: int, executable: str, args: list[str],
                 io_mode: IOMode, cwd: str | None = None):
        self.stage = stage
        self.pid = pid
        self.executable = executable
        self.args = args
        self.io_mode = io_mode
        self.cwd = cwd
        self.alive = True
        self.terminated = False
        self.exit_code: int | None = None
        self.exit_callbacks = []
        self.message_callbacks = []

    def wait(self, timeout=None) -> bool:
        return not self.alive

    def exit(self, code: int) -> None:
        self.alive = False
        self.exit_code = code
        for cb in self.exit_callbacks:
            cb(code)

    def message(self, msg) -> None:
        for cb in self.message_callbacks:
            cb(msg)


class FakeSupervisor:
    """Records every start/terminate in order. `hooks[stage]` runs right after a start."""

    grace_period = 0.0

    def __init__(self):
        self.calls: list[tuple[str, str, int]] = []
        self.handles: list[FakeHandle] = []
        self.hooks = {}
        self.spawn_errors = {}
        self.live_at_start: list[list[int]] = []
        self._pids = itertools.count(1000)

    def start(self, stage, executable, args, io_mode=IOMode.INHERIT,
              on_exit=None, on_message=None, cwd=None) -> FakeHandle:
        if stage in self.spawn_errors:
            raise self.spawn_errors[stage]
        self.live_at_start.append([h.pid for h in self.handles if h.stage == stage and h.alive])
        handle = FakeHandle(stage, next(self._pids), executable, list(args), io_mode, cwd)
        if on_exit:
            handle.exit_callbacks.append(on_exit)
        if on_message:
            handle.message_callbacks.append(on_message)
        self.handles.append(handle)
        self.calls.append(("start", stage, handle.pid))
        hook = self.hooks.get(stage)
        if hook:
            hook(handle)
        return handle

    def on_exit(self, handle, callback):
        handle.exit_callbacks.append(callback)

    def on_message(self, handle, callback):
        handle.message_callbacks.append(callback)

    def terminate(self, handle):
        handle.terminated = True
        self.calls.append(("terminate", handle.stage, handle.pid))
        handle.alive = False
        return None

    def started(self, stage: str) -> list[FakeHandle]:
        return [h for h in self.handles if h.stage == stage]
