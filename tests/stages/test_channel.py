# Copyright 2026. Tests for conductor.stages.base.

import threading

import pytest

from conductor.stages.base import StageChannel, StageResult


class TestStageChannel:
    def test_emit_tags_stage(self):
        channel = StageChannel("compile")
        channel.emit(False, "tsc exited with code 2")
        assert channel.next(timeout=1) == StageResult("compile", False, "tsc exited with code 2")

    def test_next_times_out(self):
        with pytest.raises(TimeoutError, match="driver"):
            StageChannel("driver").next(timeout=0.05)

    def test_next_blocks_until_put_from_another_thread(self):
        channel = StageChannel("compile")
        timer = threading.Timer(0.1, channel.emit, args=(True,))
        timer.start()
        try:
            assert channel.next(timeout=5).success
        finally:
            timer.cancel()

    def test_drain_returns_everything_queued(self):
        channel = StageChannel("driver")
        channel.emit(True)
        channel.emit(False, "driver exited with code 1")
        assert [r.success for r in channel.drain()] == [True, False]
        assert channel.drain() == []

    def test_latest_collapses_successes(self):
        channel = StageChannel("compile")
        for detail in ("a", "b", "c"):
            channel.emit(True, detail)
        assert channel.latest(timeout=1).detail == "c"
        assert channel.drain() == []

    def test_latest_failure_wins(self):
        channel = StageChannel("compile")
        channel.emit(True, "first")
        channel.emit(False, "compiler exited unexpectedly with code 1")
        channel.emit(True, "later")
        result = channel.latest(timeout=1)
        assert not result.success
        assert "unexpectedly" in result.detail
