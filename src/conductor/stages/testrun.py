# Copyright 2026. In-process test run against the served app and the running driver.

from typing import Protocol

import pytest

from conductor.config import RunnerConfig
from .base import StageResult

STAGE = "test"


class RunnerEngine(Protocol):
    def run(self, config: RunnerConfig, base_url: str | None) -> int: ...


class RunnerFixtures:
    """pytest plugin handing the pipeline's endpoints to the e2e suite."""

    def __init__(self, config: RunnerConfig, base_url: str | None):
        self.config = config
        self._base_url = base_url or config.launch_url

    @pytest.fixture(scope="session")
    def base_url(self) -> str:
        return self._base_url

    @pytest.fixture(scope="session")
    def webdriver_url(self) -> str:
        return f"http://localhost:{self.config.webdriver_port}"

    @pytest.fixture(scope="session")
    def runner_config(self) -> RunnerConfig:
        return self.config


class PytestEngine:
    def __init__(self, extra_args: list[str] | None = None):
        self.extra_args = extra_args or []

    def run(self, config: RunnerConfig, base_url: str | None) -> int:
        args = [*config.resolved_src_folders(), *self.extra_args]
        return int(pytest.main(args, plugins=[RunnerFixtures(config, base_url)]))


def run_tests(engine: RunnerEngine, config: RunnerConfig, base_url: str | None) -> StageResult:
    """Run the suite with driver auto-start disabled, since the pipeline owns the driver."""
    code = engine.run(config.for_test_run(base_url), base_url)
    if code == 0:
        return StageResult(STAGE, True)
    return StageResult(STAGE, False, f"test run exited with code {code}")
