# Copyright 2026. Dev-server stage: delegates serving to a sub-builder and derives the base URL.

import re
import socket
import threading
import time
from typing import Any, Iterator, Protocol
from urllib.parse import urlsplit, urlunsplit

from conductor.core.errors import ConfigParseError
from conductor.core.logging import log_fail, log_info
from conductor.core.process import IOMode, ProcessSlots, SupervisedProcess
from conductor.workspace import (
    DevServerConfig, TargetSpec, Workspace, validate_dev_server_options,
)
from .base import BuildEvent, StageChannel, StageResult

STAGE = "serve"

_SCHEME_RE = re.compile(r"^\w+://")
_READY_POLL_S = 0.5


class SubBuilder(Protocol):
    def resolve(self, target: TargetSpec, overrides: dict[str, Any]) -> DevServerConfig: ...

    def run(self, config: DevServerConfig) -> Iterator[BuildEvent]: ...


def resolve_base_url(config: DevServerConfig) -> str:
    protocol = "https" if config.ssl else "http"
    if config.public_host:
        public_host = config.public_host
        if not _SCHEME_RE.match(public_host):
            public_host = f"{protocol}://{public_host}"
        return urlunsplit(urlsplit(public_host))
    return urlunsplit((protocol, f"{config.host}:{config.port}", config.serve_path, "", ""))


def _connect_host(host: str) -> str:
    if host in ("0.0.0.0", ""):
        return "127.0.0.1"
    if host == "::":
        return "::1"
    return host


class WorkspaceServeBuilder:
    """Serves a workspace target by running its command in the `serve` slot."""

    def __init__(self, workspace: Workspace, slots: ProcessSlots):
        self.workspace = workspace
        self.slots = slots

    def resolve(self, target: TargetSpec, overrides: dict[str, Any]) -> DevServerConfig:
        options = self.workspace.target_options(target, overrides)
        return validate_dev_server_options(self.workspace, target, options)

    def run(self, config: DevServerConfig) -> Iterator[BuildEvent]:
        exits = StageChannel(STAGE)
        owner: list[SupervisedProcess] = []

        def on_exit(code: int) -> None:
            if owner and owner[0].terminated:
                return
            exits.emit(False, f"dev server exited with code {code}", code)

        def spawn() -> SupervisedProcess:
            return self.slots.supervisor.start(
                STAGE, config.command[0], config.command[1:],
                io_mode=IOMode.INHERIT, on_exit=on_exit, cwd=str(config.cwd),
            )

        handle = self.slots.supersede(STAGE, spawn)
        owner.append(handle)

        error = self._wait_until_ready(config, handle)
        if error:
            yield BuildEvent(success=False, error=error)
            return
        yield BuildEvent(success=True)

        result = exits.next()
        yield BuildEvent(success=False, error=result.detail)

    def _wait_until_ready(self, config: DevServerConfig, handle: SupervisedProcess) -> str:
        deadline = time.monotonic() + config.startup_timeout
        host = _connect_host(config.host)
        while time.monotonic() < deadline:
            if not handle.alive:
                return f"dev server exited with code {handle.exit_code} before listening"
            try:
                with socket.create_connection((host, config.port), timeout=1):
                    return ""
            except OSError:
                pass
            handle.wait(_READY_POLL_S)
        return f"dev server not listening on {host}:{config.port} after {config.startup_timeout:.0f}s"


class DevServerStage:
    """Runs a sub-builder and keeps listening to it after its first event.

    Later events land on `channel`; `check()` reports the first failure
    among them.
    """

    name = STAGE

    def __init__(self, builder: SubBuilder):
        self.builder = builder
        self.channel = StageChannel(STAGE)
        self._events: Iterator[BuildEvent] | None = None

    def start(self, target: str, watch: bool) -> tuple[str, StageResult]:
        """Resolve the target, capture its base URL, then run the sub-build to its first event."""
        try:
            spec = TargetSpec.parse(target)
        except ValueError as e:
            raise ConfigParseError(target, str(e))
        config = self.builder.resolve(spec, {"watch": watch})
        base_url = resolve_base_url(config)
        log_info(STAGE, f"serving {spec} at {base_url}")

        self._events = self.builder.run(config)
        first = next(self._events, None)
        if first is None:
            return base_url, StageResult(STAGE, False, "dev server produced no build event")
        if not first.success:
            log_fail(STAGE, first.error or "dev server failed")
        else:
            threading.Thread(target=self._follow, args=(self._events,), daemon=True).start()
        return base_url, StageResult(STAGE, first.success, first.error)

    def _follow(self, events: Iterator[BuildEvent]) -> None:
        for event in events:
            self.channel.emit(event.success, event.error)

    def check(self) -> StageResult | None:
        for result in self.channel.drain():
            if not result.success:
                return result
        return None
