# Copyright 2026. TypeScript compile stage, one-shot or watch.

import re
from typing import Any

from conductor.core.process import IOMode, ProcessSlots, SupervisedProcess
from .base import StageChannel

STAGE = "compile"

# tsc --watch prints this line at the end of every build cycle, errors or not.
_CYCLE_COMPLETE_RE = re.compile(r"Watching for file changes", re.IGNORECASE)


def is_cycle_complete(message: Any) -> bool:
    if isinstance(message, dict):
        return message.get("type") == "cycle"
    return bool(_CYCLE_COMPLETE_RE.search(str(message)))


class CompileStage:
    """Runs the compiler in the `compile` slot.

    One-shot: a single result on exit, success iff exit code 0.
    Watch: a success result per completed build cycle. Diagnostics are the
    compiler's to print; a cycle with type errors still counts as complete.
    """

    name = STAGE

    def __init__(self, slots: ProcessSlots, tsc: str):
        self.slots = slots
        self.tsc = tsc

    def start(self, ts_config: str, watch: bool, channel: StageChannel) -> SupervisedProcess:
        args = ["-p", ts_config]
        if watch:
            args.append("--watch")
        owner: list[SupervisedProcess] = []

        def superseded() -> bool:
            return bool(owner) and owner[0].terminated

        def on_exit(code: int) -> None:
            if superseded():
                return
            if watch:
                channel.emit(False, f"compiler exited unexpectedly with code {code}", code)
            elif code == 0:
                channel.emit(True)
            else:
                channel.emit(False, f"tsc exited with code {code}", code)

        def on_message(message: Any) -> None:
            if not superseded() and is_cycle_complete(message):
                channel.emit(True)

        def spawn() -> SupervisedProcess:
            return self.slots.supervisor.start(
                STAGE, self.tsc, args,
                io_mode=IOMode.MESSAGES if watch else IOMode.INHERIT,
                on_exit=on_exit,
                on_message=on_message if watch else None,
            )

        handle = self.slots.supersede(STAGE, spawn)
        owner.append(handle)
        return handle
