# Copyright 2026. Pipeline error kinds.


class ConductorError(RuntimeError):
    """Base class for every error the pipeline surfaces to its caller."""


class ConfigParseError(ConductorError):
    """A configuration or workspace file is missing or malformed."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Could not read config {path}: {reason}")


class ProcessSpawnError(ConductorError):
    def __init__(self, stage: str, executable: str, reason: str):
        self.stage = stage
        self.executable = executable
        super().__init__(f"{stage}: could not start '{executable}': {reason}")


class ProcessExitFailure(ConductorError):
    def __init__(self, stage: str, exit_code: int | None):
        self.stage = stage
        self.exit_code = exit_code
        super().__init__(f"{stage}: process exited with code {exit_code}")


class TerminationError(ConductorError):
    """Subtree kill could not be confirmed. Logged, never raised by the supervisor."""

    def __init__(self, stage: str, pid: int, reason: str):
        self.stage = stage
        self.pid = pid
        super().__init__(f"{stage}: could not terminate pid {pid}: {reason}")


class StageFailure(ConductorError):
    def __init__(self, stage: str, detail: str = ""):
        self.stage = stage
        self.detail = detail
        msg = f"Stage '{stage}' failed"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)
