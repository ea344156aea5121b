"""Pipeline coordinator: compile -> serve -> drive -> test, one-shot or watch.

The coordinator is a generator. It blocks only on stage results (process
exit, process message, first sub-build event, test engine completion) and
yields one BuildEvent per completed test run.
"""

import shutil
import time
from pathlib import Path
from typing import Iterator

from conductor.config import (
    CompilerConfig, PipelineOptions, RunnerConfig, Settings,
    load_compiler_config, load_runner_config,
)
from conductor.core.errors import ConductorError, ProcessExitFailure, StageFailure
from conductor.core.events import EventLog, EventType
from conductor.core.logging import log_fail, log_info, log_ok, log_warn
from conductor.core.process import ProcessSlots, ProcessSupervisor
from conductor.stages.base import BuildEvent, StageChannel, StageResult
from conductor.stages.compile import CompileStage
from conductor.stages.devserver import DevServerStage, WorkspaceServeBuilder
from conductor.stages.driver import DriverStage
from conductor.stages.testrun import PytestEngine, RunnerEngine, run_tests
from conductor.workspace import DEFAULT_WORKSPACE_FILE, Workspace, load_workspace


def _failure(result: StageResult) -> StageFailure:
    failure = StageFailure(result.stage, result.detail)
    if result.exit_code is not None:
        failure.__cause__ = ProcessExitFailure(result.stage, result.exit_code)
    return failure


class PipelineCoordinator:
    def __init__(self, options: PipelineOptions, slots: ProcessSlots,
                 compile_stage: CompileStage, driver_stage: DriverStage,
                 devserver_stage: DevServerStage | None = None,
                 engine: RunnerEngine | None = None,
                 events: EventLog | None = None,
                 terminate_host_on_completion: bool = False):
        if options.dev_server_target and devserver_stage is None:
            raise ValueError("dev_server_target is set but no dev-server stage was given")
        self.options = options
        self.slots = slots
        self.compile_stage = compile_stage
        self.driver_stage = driver_stage
        self.devserver_stage = devserver_stage
        self.engine = engine or PytestEngine()
        self.events = events or EventLog()
        self.terminate_host_on_completion = terminate_host_on_completion
        self.base_url: str | None = None
        self.cycle = 0
        self._serving = False
        self._driver_channel: StageChannel | None = None

    def run(self) -> Iterator[BuildEvent]:
        compiler_config = load_compiler_config(self.options.ts_config)
        runner_config = load_runner_config(self.options.runner_config)
        self.events.emit(EventType.PIPELINE_STARTED, watch=self.options.watch)
        try:
            yield from self._cycles(compiler_config, runner_config)
        except ConductorError as exc:
            self.events.emit(EventType.PIPELINE_FAILED, cycle=self.cycle, error=str(exc))
            raise
        finally:
            self.shutdown()

    def shutdown(self) -> None:
        self.slots.release_all()

    def _cycles(self, compiler_config: CompilerConfig,
                runner_config: RunnerConfig) -> Iterator[BuildEvent]:
        watch = self.options.watch
        self._clear_output(compiler_config.out_dir)

        compile_channel = StageChannel(self.compile_stage.name)
        self._stage_started(self.compile_stage.name)
        self.compile_stage.start(self.options.ts_config, watch, compile_channel)

        while True:
            started = time.monotonic()
            result = compile_channel.latest()
            self.cycle += 1
            if not result.success:
                self._stage_failed(result)
                raise _failure(result)
            self._stage_passed(result, time.monotonic() - started)

            if self._serving:
                died = self.devserver_stage.check()
                if died is not None:
                    self._stage_failed(died)
                    raise _failure(died)
            elif self.devserver_stage is not None:
                self._start_dev_server()

            driver_result = self._start_driver(runner_config)
            if not driver_result.success:
                self._stage_failed(driver_result)
                if not watch:
                    raise _failure(driver_result)
                yield BuildEvent(success=False, error=driver_result.detail)
                continue
            self._stage_passed(driver_result)

            event = self._run_tests(runner_config)
            yield event

            if not watch:
                self.events.emit(
                    EventType.PIPELINE_COMPLETED if event.success else EventType.PIPELINE_FAILED,
                    cycle=self.cycle, error=event.error,
                )
                if self.terminate_host_on_completion:
                    self.shutdown()
                    raise SystemExit(0 if event.success else 1)
                return
            log_info("pipeline", "waiting for the next compile cycle")

    def _clear_output(self, out_dir: Path) -> None:
        if out_dir.exists():
            log_info(self.compile_stage.name, f"clearing {out_dir}")
            shutil.rmtree(out_dir)

    def _start_dev_server(self) -> None:
        stage = self.devserver_stage.name
        self._stage_started(stage)
        started = time.monotonic()
        self.base_url, result = self.devserver_stage.start(
            self.options.dev_server_target, self.options.watch,
        )
        if not result.success:
            self._stage_failed(result)
            raise _failure(result)
        self._serving = True
        self._stage_passed(result, time.monotonic() - started)

    def _start_driver(self, runner_config: RunnerConfig) -> StageResult:
        if self._driver_channel is not None:
            for late in self._driver_channel.drain():
                if not late.success:
                    log_warn(late.stage, f"previous driver: {late.detail}")
        channel = StageChannel(self.driver_stage.name)
        self._driver_channel = channel
        self._stage_started(self.driver_stage.name)
        self.driver_stage.start(runner_config.webdriver_port, channel,
                                executable=runner_config.server_path)
        return channel.next()

    def _run_tests(self, runner_config: RunnerConfig) -> BuildEvent:
        self._stage_started("test")
        started = time.monotonic()
        result = run_tests(self.engine, runner_config, self.base_url)
        if result.success:
            self._stage_passed(result, time.monotonic() - started)
        else:
            self._stage_failed(result)
        return BuildEvent(success=result.success, error=result.detail)

    def _stage_started(self, stage: str) -> None:
        log_info(stage, "starting")
        self.events.emit(EventType.STAGE_STARTED, stage=stage, cycle=self.cycle)

    def _stage_passed(self, result: StageResult, duration_s: float | None = None) -> None:
        log_ok(result.stage, result.detail or "ok", duration_s)
        self.events.emit(EventType.STAGE_PASSED, stage=result.stage, cycle=self.cycle)

    def _stage_failed(self, result: StageResult) -> None:
        log_fail(result.stage, result.detail or "failed")
        self.events.emit(EventType.STAGE_FAILED, stage=result.stage, cycle=self.cycle,
                         error=result.detail)


def build_pipeline(options: PipelineOptions, settings: Settings | None = None,
                   workspace: Workspace | None = None,
                   engine: RunnerEngine | None = None,
                   terminate_host_on_completion: bool = False) -> PipelineCoordinator:
    """Wire the default stages for `options`. Workspace errors surface here, before any spawn."""
    settings = settings or Settings.from_env()
    events = EventLog(settings.events_dir)
    supervisor = ProcessSupervisor(
        grace_period=settings.kill_grace_s, cwd=str(settings.workspace_root), events=events,
    )
    slots = ProcessSlots(supervisor)

    devserver_stage = None
    if options.dev_server_target:
        if workspace is None:
            workspace = load_workspace(settings.workspace_root / DEFAULT_WORKSPACE_FILE)
        devserver_stage = DevServerStage(WorkspaceServeBuilder(workspace, slots))

    return PipelineCoordinator(
        options=options,
        slots=slots,
        compile_stage=CompileStage(slots, settings.resolve_tool(settings.tsc, "tsc")),
        driver_stage=DriverStage(slots, settings.resolve_tool(settings.driver, "chromedriver")),
        devserver_stage=devserver_stage,
        engine=engine,
        events=events,
        terminate_host_on_completion=terminate_host_on_completion,
    )
