# Copyright 2026. Child process supervision with subtree termination.

import enum
import json
import os
import signal
import subprocess
import threading
import time
from typing import Any, Callable

import psutil

from conductor.core.errors import ProcessSpawnError, TerminationError
from conductor.core.events import EventLog, EventType
from conductor.core.logging import log_fail, log_info, safe_print

DEFAULT_GRACE_PERIOD_S = 5.0

ExitCallback = Callable[[int], None]
MessageCallback = Callable[[Any], None]


class IOMode(str, enum.Enum):
    INHERIT = "inherit"
    MESSAGES = "messages"


def decode_message(line: str) -> Any:
    """A stdout line holding a JSON object is a structured message; anything else stays text."""
    text = line.rstrip("\n")
    if text.startswith("{"):
        try:
            msg = json.loads(text)
        except json.JSONDecodeError:
            return text
        if isinstance(msg, dict):
            return msg
    return text


class SupervisedProcess:
    """Handle owning exactly one child OS process.

    Exit is observed by a watcher thread; in MESSAGES mode a reader thread
    echoes stdout and feeds message callbacks. Every message read before the
    process exits is dispatched before the exit callbacks run.
    """

    def __init__(self, stage: str, popen: subprocess.Popen):
        self.stage = stage
        self.popen = popen
        self.terminated = False
        self.exit_code: int | None = None
        self._lock = threading.Lock()
        self._exited = threading.Event()
        self._exit_callbacks: list[ExitCallback] = []
        self._message_callbacks: list[MessageCallback] = []
        self._reader: threading.Thread | None = None
        self._watcher: threading.Thread | None = None

    @property
    def pid(self) -> int:
        return self.popen.pid

    @property
    def alive(self) -> bool:
        return not self._exited.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._exited.wait(timeout)

    def add_exit_callback(self, callback: ExitCallback) -> None:
        with self._lock:
            if not self._exited.is_set():
                self._exit_callbacks.append(callback)
                return
            code = self.exit_code
        callback(code)

    def add_message_callback(self, callback: MessageCallback) -> None:
        with self._lock:
            self._message_callbacks.append(callback)

    def _begin(self) -> None:
        if self.popen.stdout is not None:
            self._reader = threading.Thread(target=self._read_messages, daemon=True)
            self._reader.start()
        self._watcher = threading.Thread(target=self._watch_exit, daemon=True)
        self._watcher.start()

    def _read_messages(self) -> None:
        for line in self.popen.stdout:
            safe_print(line.rstrip("\n"), flush=True)
            message = decode_message(line)
            with self._lock:
                callbacks = list(self._message_callbacks)
            for cb in callbacks:
                try:
                    cb(message)
                except Exception as exc:
                    log_fail(self.stage, f"message handler raised {type(exc).__name__}: {exc}")

    def _watch_exit(self) -> None:
        code = self.popen.wait()
        if self._reader is not None:
            self._reader.join(timeout=5)
        with self._lock:
            self.exit_code = code
            self._exited.set()
            callbacks = self._exit_callbacks
            self._exit_callbacks = []
        for cb in callbacks:
            try:
                cb(code)
            except Exception as exc:
                log_fail(self.stage, f"exit handler raised {type(exc).__name__}: {exc}")


def _signal_group(pgid: int, sig: int, errors: list[str]) -> None:
    try:
        os.killpg(pgid, sig)
    except ProcessLookupError:
        pass
    except PermissionError as e:
        errors.append(f"process group {pgid}: {e}")


def _group_gone(pgid: int, deadline: float) -> bool:
    while time.monotonic() < deadline:
        try:
            os.killpg(pgid, 0)
        except (ProcessLookupError, PermissionError):
            return True
        time.sleep(0.1)
    return False


class ProcessSupervisor:
    """Starts, observes and kills child processes on behalf of pipeline stages."""

    def __init__(self, grace_period: float = DEFAULT_GRACE_PERIOD_S,
                 cwd: str | None = None, env: dict[str, str] | None = None,
                 events: EventLog | None = None):
        self.grace_period = grace_period
        self.cwd = cwd
        self.env = env
        self.events = events or EventLog()

    def start(self, stage: str, executable: str, args: list[str],
              io_mode: IOMode = IOMode.INHERIT,
              on_exit: ExitCallback | None = None,
              on_message: MessageCallback | None = None,
              cwd: str | None = None) -> SupervisedProcess:
        cmd = [executable, *args]
        stdout = subprocess.PIPE if io_mode == IOMode.MESSAGES else None
        try:
            popen = subprocess.Popen(
                cmd, stdout=stdout, cwd=cwd or self.cwd, env=self.env,
                encoding="utf-8", errors="replace", bufsize=1,
                start_new_session=True,
            )
        except OSError as e:
            raise ProcessSpawnError(stage, executable, str(e)) from e

        handle = SupervisedProcess(stage, popen)
        if on_exit:
            handle.add_exit_callback(on_exit)
        if on_message:
            handle.add_message_callback(on_message)
        handle._begin()
        log_info(stage, f"started {os.path.basename(executable)} (pid {popen.pid})")
        self.events.emit(EventType.PROCESS_SPAWNED, stage=stage, pid=popen.pid)
        return handle

    def on_exit(self, handle: SupervisedProcess, callback: ExitCallback) -> None:
        handle.add_exit_callback(callback)

    def on_message(self, handle: SupervisedProcess, callback: MessageCallback) -> None:
        handle.add_message_callback(callback)

    def terminate(self, handle: SupervisedProcess) -> TerminationError | None:
        """Signal the process and all its descendants, escalating in the background.

        Returns once signals are sent. The process may still be alive.
        """
        handle.terminated = True
        errors: list[str] = []
        # Each child leads its own process group, which outlives the leader
        # while any member is left.
        _signal_group(handle.pid, signal.SIGTERM, errors)
        if not handle.alive:
            if errors:
                log_fail(handle.stage, f"could not stop group of pid {handle.pid}: {errors[0]}")
            else:
                threading.Thread(target=self._escalate, args=(handle, []), daemon=True).start()
            return None

        try:
            descendants = psutil.Process(handle.pid).children(recursive=True)
        except psutil.NoSuchProcess:
            descendants = []
        except psutil.AccessDenied as e:
            descendants = []
            errors.append(f"cannot list children: {e}")

        for proc in descendants:
            try:
                proc.send_signal(signal.SIGTERM)
            except psutil.NoSuchProcess:
                pass
            except psutil.AccessDenied:
                errors.append(f"access denied for pid {proc.pid}")
        try:
            handle.popen.send_signal(signal.SIGTERM)
        except OSError as e:
            errors.append(str(e))

        threading.Thread(
            target=self._escalate, args=(handle, descendants), daemon=True,
        ).start()
        self.events.emit(EventType.PROCESS_TERMINATED, stage=handle.stage, pid=handle.pid,
                         error="; ".join(errors))

        if errors:
            error = TerminationError(handle.stage, handle.pid, "; ".join(errors))
            log_fail(handle.stage, str(error))
            return error
        return None

    def _escalate(self, handle: SupervisedProcess, descendants: list[psutil.Process]) -> None:
        deadline = time.monotonic() + self.grace_period
        if not handle.wait(self.grace_period):
            try:
                handle.popen.kill()
            except OSError as e:
                log_fail(handle.stage, f"SIGKILL failed for pid {handle.pid}: {e}")
        remaining = max(0.1, deadline - time.monotonic())
        _, alive = psutil.wait_procs(descendants, timeout=remaining)
        for proc in alive:
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                pass
            except psutil.AccessDenied:
                log_fail(handle.stage, f"SIGKILL denied for descendant pid {proc.pid}")

        if not _group_gone(handle.pid, deadline):
            errors: list[str] = []
            _signal_group(handle.pid, signal.SIGKILL, errors)
            if errors:
                log_fail(handle.stage, f"SIGKILL failed for group {handle.pid}: {errors[0]}")


class ProcessSlots:
    """Named process slots, at most one live process per stage."""

    def __init__(self, supervisor: ProcessSupervisor, settle_timeout: float | None = None):
        self.supervisor = supervisor
        self.settle_timeout = (
            settle_timeout if settle_timeout is not None else supervisor.grace_period + 1
        )
        self._slots: dict[str, SupervisedProcess] = {}

    def get(self, stage: str) -> SupervisedProcess | None:
        return self._slots.get(stage)

    def live(self) -> dict[str, SupervisedProcess]:
        return {stage: h for stage, h in self._slots.items() if h.alive}

    def supersede(self, stage: str,
                  spawn: Callable[[], SupervisedProcess]) -> SupervisedProcess:
        """Kill the slot's previous occupant (if live), then spawn its replacement."""
        previous = self._slots.pop(stage, None)
        if previous is not None and previous.alive:
            log_info(stage, f"stopping previous process (pid {previous.pid})")
            self.supervisor.terminate(previous)
            if not previous.wait(self.settle_timeout):
                log_fail(stage, f"pid {previous.pid} not confirmed dead, starting replacement")
        handle = spawn()
        self._slots[stage] = handle
        return handle

    def release(self, stage: str) -> None:
        handle = self._slots.pop(stage, None)
        if handle is not None and handle.alive:
            self.supervisor.terminate(handle)

    def release_all(self) -> None:
        for stage in list(self._slots):
            self.release(stage)
