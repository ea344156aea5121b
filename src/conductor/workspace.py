"""Workspace file loading, target resolution and dev-server option validation.

A workspace file declares projects and their targets:

    {
      "projects": {
        "my-app": {
          "root": "apps/my-app",
          "targets": {
            "serve": {
              "command": "npm run start -- --port {{PORT}}",
              "options": {"port": 4200},
              "configurations": {"production": {"ssl": true}}
            }
          }
        }
      }
    }
"""

import re
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from conductor.config import read_json
from conductor.core.errors import ConfigParseError

DEFAULT_WORKSPACE_FILE = "workspace.json"
DEFAULT_DEV_SERVER_PORT = 4200
DEFAULT_STARTUP_TIMEOUT_S = 120

_VAR_RE = re.compile(r"\{\{(\w+)\}\}")


def render(template: str, variables: dict[str, str]) -> str:
    return _VAR_RE.sub(lambda m: variables.get(m.group(1), m.group(0)), template)


@dataclass(frozen=True)
class TargetSpec:
    project: str
    target: str
    configuration: str = ""

    @classmethod
    def parse(cls, raw: str) -> "TargetSpec":
        parts = raw.split(":")
        if len(parts) not in (2, 3) or not all(parts[:2]):
            raise ValueError(f"Invalid target {raw!r}, expected project:target[:configuration]")
        return cls(parts[0], parts[1], parts[2] if len(parts) == 3 else "")

    def __str__(self) -> str:
        base = f"{self.project}:{self.target}"
        return f"{base}:{self.configuration}" if self.configuration else base


@dataclass
class TargetDefinition:
    command: str | list[str] = ""
    options: dict[str, Any] = field(default_factory=dict)
    configurations: dict[str, dict[str, Any]] = field(default_factory=dict)


@dataclass
class Project:
    name: str
    root: Path
    targets: dict[str, TargetDefinition] = field(default_factory=dict)


@dataclass
class Workspace:
    path: Path
    projects: dict[str, Project]

    @property
    def root(self) -> Path:
        return self.path.parent

    def target(self, spec: TargetSpec) -> TargetDefinition:
        project = self.projects.get(spec.project)
        if project is None:
            raise ConfigParseError(str(self.path), f"unknown project '{spec.project}'")
        target = project.targets.get(spec.target)
        if target is None:
            raise ConfigParseError(
                str(self.path), f"project '{spec.project}' has no target '{spec.target}'",
            )
        return target

    def target_options(self, spec: TargetSpec,
                       overrides: dict[str, Any] | None = None) -> dict[str, Any]:
        """Merge target options, then the named configuration, then overrides."""
        target = self.target(spec)
        options = dict(target.options)
        if spec.configuration:
            config = target.configurations.get(spec.configuration)
            if config is None:
                raise ConfigParseError(
                    str(self.path),
                    f"target '{spec.project}:{spec.target}' has no configuration "
                    f"'{spec.configuration}'",
                )
            options.update(config)
        options.update(overrides or {})
        return options


def _object(path: Path, value: Any, what: str) -> dict:
    if not isinstance(value, dict):
        raise ConfigParseError(str(path), f"{what} must be an object")
    return value


def load_workspace(path: str | Path) -> Workspace:
    path = Path(path)
    data = read_json(str(path))
    raw_projects = _object(path, data.get("projects"), "projects")

    projects: dict[str, Project] = {}
    for name, pdata in raw_projects.items():
        pdata = _object(path, pdata, f"project '{name}'")
        root = pdata.get("root", "")
        if not isinstance(root, str):
            raise ConfigParseError(str(path), f"project '{name}' root must be a string")
        targets: dict[str, TargetDefinition] = {}
        for tname, tdata in _object(path, pdata.get("targets", {}), f"project '{name}' targets").items():
            where = f"target '{name}:{tname}'"
            tdata = _object(path, tdata, where)
            configurations = _object(path, tdata.get("configurations", {}), f"{where} configurations")
            for cname, cdata in configurations.items():
                _object(path, cdata, f"{where} configuration '{cname}'")
            targets[tname] = TargetDefinition(
                command=tdata.get("command", ""),
                options=_object(path, tdata.get("options", {}), f"{where} options"),
                configurations=configurations,
            )
        projects[name] = Project(
            name=name,
            root=path.parent / root,
            targets=targets,
        )
    return Workspace(path=path, projects=projects)


@dataclass
class DevServerConfig:
    """Validated serving options of a dev-server target."""

    target: TargetSpec
    command: list[str]
    cwd: Path
    host: str = "localhost"
    port: int = DEFAULT_DEV_SERVER_PORT
    ssl: bool = False
    public_host: str = ""
    serve_path: str = ""
    watch: bool = False
    startup_timeout: float = DEFAULT_STARTUP_TIMEOUT_S


def validate_dev_server_options(workspace: Workspace, spec: TargetSpec,
                                options: dict[str, Any]) -> DevServerConfig:
    where = f"{workspace.path} ({spec})"
    target = workspace.target(spec)

    port = options.get("port", DEFAULT_DEV_SERVER_PORT)
    if not isinstance(port, int) or isinstance(port, bool) or not 0 < port < 65536:
        raise ConfigParseError(where, f"port must be between 1 and 65535, got {port!r}")
    host = options.get("host", "localhost")
    if not isinstance(host, str) or not host:
        raise ConfigParseError(where, "host must be a non-empty string")
    serve_path = options.get("servePath", "") or ""
    if serve_path and not serve_path.startswith("/"):
        serve_path = "/" + serve_path
    timeout = options.get("startupTimeout", DEFAULT_STARTUP_TIMEOUT_S)
    if not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ConfigParseError(where, f"startupTimeout must be positive, got {timeout!r}")

    watch = bool(options.get("watch", False))
    variables = {
        "HOST": host,
        "PORT": str(port),
        "SERVE_PATH": serve_path,
        "WATCH": "true" if watch else "false",
    }
    raw_command = target.command
    if isinstance(raw_command, str):
        command = [render(tok, variables) for tok in shlex.split(raw_command)]
    elif isinstance(raw_command, list) and all(isinstance(t, str) for t in raw_command):
        command = [render(tok, variables) for tok in raw_command]
    else:
        raise ConfigParseError(where, "command must be a string or a list of strings")
    if not command:
        raise ConfigParseError(where, "command is required for a dev-server target")

    project = workspace.projects[spec.project]
    return DevServerConfig(
        target=spec,
        command=command,
        cwd=project.root,
        host=host,
        port=port,
        ssl=bool(options.get("ssl", False)),
        public_host=options.get("publicHost", "") or "",
        serve_path=serve_path,
        watch=watch,
        startup_timeout=float(timeout),
    )
