# Copyright 2026. Pipeline options, environment settings and config file loading.

import copy
import json
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from conductor.core.errors import ConfigParseError
from conductor.core.process import DEFAULT_GRACE_PERIOD_S


@dataclass(frozen=True)
class PipelineOptions:
    ts_config: str
    runner_config: str
    dev_server_target: str = ""
    watch: bool = False


@dataclass
class Settings:
    workspace_root: Path = field(default_factory=Path.cwd)
    tsc: str = ""
    driver: str = ""
    kill_grace_s: float = DEFAULT_GRACE_PERIOD_S
    events_dir: str = ""
    activity_log: str = ""

    @classmethod
    def from_env(cls) -> "Settings":
        grace = os.environ.get("CONDUCTOR_KILL_GRACE_S", "")
        try:
            kill_grace_s = float(grace) if grace else DEFAULT_GRACE_PERIOD_S
        except ValueError:
            raise ConfigParseError("CONDUCTOR_KILL_GRACE_S", f"not a number: {grace!r}")
        return cls(
            workspace_root=Path(os.environ.get("CONDUCTOR_WORKSPACE", "") or Path.cwd()),
            tsc=os.environ.get("CONDUCTOR_TSC", ""),
            driver=os.environ.get("CONDUCTOR_DRIVER", ""),
            kill_grace_s=kill_grace_s,
            events_dir=os.environ.get("CONDUCTOR_EVENTS_DIR", ""),
            activity_log=os.environ.get("CONDUCTOR_ACTIVITY_LOG", ""),
        )

    def resolve_tool(self, override: str, name: str) -> str:
        """Pick an explicit override, then the workspace's node_modules/.bin, then PATH."""
        if override:
            return override
        local = self.workspace_root / "node_modules" / ".bin" / name
        if local.is_file():
            return str(local)
        return shutil.which(name) or name


def read_json(path: str) -> dict:
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ConfigParseError(path, "file not found")
    except OSError as e:
        raise ConfigParseError(path, str(e))
    except json.JSONDecodeError as e:
        raise ConfigParseError(path, f"invalid JSON: {e}")
    if not isinstance(data, dict):
        raise ConfigParseError(path, "top-level value must be an object")
    return data


@dataclass
class CompilerConfig:
    path: str
    out_dir: Path


def load_compiler_config(path: str) -> CompilerConfig:
    data = read_json(path)
    compiler_options = data.get("compilerOptions")
    if not isinstance(compiler_options, dict):
        raise ConfigParseError(path, "compilerOptions must be an object")
    out_dir = compiler_options.get("outDir")
    if not out_dir or not isinstance(out_dir, str):
        raise ConfigParseError(path, "compilerOptions.outDir is required")
    return CompilerConfig(path=path, out_dir=Path(path).parent / out_dir)


@dataclass
class RunnerConfig:
    path: str
    src_folders: list[str]
    webdriver_port: int
    start_process: bool = False
    server_path: str = ""
    launch_url: str = ""
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def project_dir(self) -> Path:
        return Path(self.path).parent

    def resolved_src_folders(self) -> list[str]:
        return [
            folder if os.path.isabs(folder) else str(self.project_dir / folder)
            for folder in self.src_folders
        ]

    def for_test_run(self, base_url: str | None) -> "RunnerConfig":
        """Copy handed to the test engine: driver auto-start off, launch URL from the dev server."""
        raw = copy.deepcopy(self.raw)
        raw.setdefault("webdriver", {})["start_process"] = False
        launch_url = self.launch_url
        if base_url:
            raw["launch_url"] = base_url
            launch_url = base_url
        return RunnerConfig(
            path=self.path,
            src_folders=list(self.src_folders),
            webdriver_port=self.webdriver_port,
            start_process=False,
            server_path=self.server_path,
            launch_url=launch_url,
            raw=raw,
        )


def load_runner_config(path: str) -> RunnerConfig:
    data = read_json(path)
    src = data.get("src_folders", [])
    if isinstance(src, str):
        src = [src]
    if not isinstance(src, list) or not all(isinstance(s, str) for s in src):
        raise ConfigParseError(path, "src_folders must be a string or a list of strings")
    if not src or not all(src):
        raise ConfigParseError(path, "src_folders is required")

    webdriver = data.get("webdriver")
    if not isinstance(webdriver, dict):
        raise ConfigParseError(path, "webdriver section is required")
    port = webdriver.get("port")
    if isinstance(port, str) and port.isdigit():
        port = int(port)
    if not isinstance(port, int) or isinstance(port, bool) or not 0 < port < 65536:
        raise ConfigParseError(path, f"webdriver.port must be a valid port, got {port!r}")

    return RunnerConfig(
        path=path,
        src_folders=src,
        webdriver_port=port,
        start_process=bool(webdriver.get("start_process", False)),
        server_path=webdriver.get("server_path", "") or "",
        launch_url=data.get("launch_url", "") or "",
        raw=data,
    )
