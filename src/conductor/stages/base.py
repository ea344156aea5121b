# Copyright 2026. Stage results and the channel that carries them to the coordinator.

import queue
from dataclasses import dataclass


@dataclass(frozen=True)
class StageResult:
    stage: str
    success: bool
    detail: str = ""
    exit_code: int | None = None


@dataclass(frozen=True)
class BuildEvent:
    success: bool
    error: str = ""


class StageChannel:
    """Thread-safe queue of StageResults.

    Process observer threads put; the coordinator blocks on `next()` or
    `latest()`. A channel is never polled.
    """

    def __init__(self, stage: str):
        self.stage = stage
        self._queue: queue.Queue[StageResult] = queue.Queue()

    def put(self, result: StageResult) -> None:
        self._queue.put(result)

    def emit(self, success: bool, detail: str = "", exit_code: int | None = None) -> None:
        self.put(StageResult(self.stage, success, detail, exit_code))

    def next(self, timeout: float | None = None) -> StageResult:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            raise TimeoutError(f"no result from stage '{self.stage}' within {timeout}s")

    def drain(self) -> list[StageResult]:
        results = []
        while True:
            try:
                results.append(self._queue.get_nowait())
            except queue.Empty:
                return results

    def latest(self, timeout: float | None = None) -> StageResult:
        """Block for one result, then collapse anything queued behind it.

        A failure anywhere in the batch wins over later successes.
        """
        batch = [self.next(timeout)] + self.drain()
        for result in batch:
            if not result.success:
                return result
        return batch[-1]
