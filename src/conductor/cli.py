# Copyright 2026. Command-line entry point for the e2e pipeline.

import argparse
import signal
import sys
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

from conductor.config import PipelineOptions, Settings
from conductor.core.errors import ConductorError, ConfigParseError
from conductor.core.logging import (
    GREEN, RED, RESET, YELLOW, log_headline, safe_print, set_activity_log,
)
from conductor.pipeline import build_pipeline
from conductor.stages.devserver import resolve_base_url
from conductor.workspace import (
    DEFAULT_WORKSPACE_FILE, TargetSpec, Workspace, load_workspace,
    validate_dev_server_options,
)


def _workspace_path(args, settings: Settings) -> Path:
    if getattr(args, "workspace", None):
        return Path(args.workspace)
    return settings.workspace_root / DEFAULT_WORKSPACE_FILE


def _parse_target(raw: str) -> TargetSpec:
    try:
        return TargetSpec.parse(raw)
    except ValueError as e:
        raise ConfigParseError(raw, str(e))


def _relative_to(root: Path, value: str) -> str:
    if not value:
        return ""
    path = Path(value)
    return str(path if path.is_absolute() else root / path)


def options_from_args(args, workspace: Workspace | None) -> PipelineOptions:
    """Build PipelineOptions from a workspace e2e target, with explicit flags taking precedence."""
    target_opts: dict = {}
    if args.target:
        if workspace is None:
            raise ConfigParseError(args.target, "a workspace file is required for --target")
        target_opts = workspace.target_options(_parse_target(args.target))
        target_opts["tsConfig"] = _relative_to(workspace.root, target_opts.get("tsConfig", ""))
        target_opts["runnerConfig"] = _relative_to(
            workspace.root, target_opts.get("runnerConfig", ""),
        )

    ts_config = args.ts_config or target_opts.get("tsConfig", "")
    runner_config = args.runner_config or target_opts.get("runnerConfig", "")
    if not ts_config:
        raise ConfigParseError("--ts-config", "a compiler config is required")
    if not runner_config:
        raise ConfigParseError("--runner-config", "a test-runner config is required")
    return PipelineOptions(
        ts_config=ts_config,
        runner_config=runner_config,
        dev_server_target=args.dev_server_target or target_opts.get("devServerTarget", ""),
        watch=args.watch or bool(target_opts.get("watch", False)),
    )


def cmd_run(args) -> int:
    settings = Settings.from_env()
    if args.events_dir:
        settings.events_dir = args.events_dir
    set_activity_log(settings.activity_log)

    workspace_file = _workspace_path(args, settings)
    workspace = None
    if args.target or args.dev_server_target or workspace_file.is_file():
        workspace = load_workspace(workspace_file)
    options = options_from_args(args, workspace)

    pipeline = build_pipeline(
        options, settings=settings, workspace=workspace,
        terminate_host_on_completion=not options.watch,
    )

    def _handle_signal(sig, frame):
        reason = "SIGTERM" if sig == signal.SIGTERM else "SIGINT"
        pipeline.shutdown()
        safe_print(f"\n{YELLOW}{reason}. Child processes stopped.{RESET}")
        sys.exit(130 if sig == signal.SIGINT else 143)

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    mode = "watch" if options.watch else "one-shot"
    log_headline(f"Pipeline: {mode} | {options.ts_config} | {options.runner_config}")

    for event in pipeline.run():
        if event.success:
            log_headline(f"{GREEN}✓ e2e run passed{RESET}")
        else:
            log_headline(f"{RED}✗ e2e run failed: {event.error}{RESET}")
    return 0


def cmd_base_url(args) -> int:
    settings = Settings.from_env()
    workspace = load_workspace(_workspace_path(args, settings))
    spec = _parse_target(args.target)
    config = validate_dev_server_options(workspace, spec, workspace.target_options(spec))
    print(resolve_base_url(config))
    return 0


def main(argv: list[str] | None = None) -> int:
    load_dotenv(find_dotenv(usecwd=True))

    parser = argparse.ArgumentParser(
        prog="conductor",
        description="Compile, serve, drive and test: one e2e pipeline.",
    )
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Run the e2e pipeline")
    run_parser.add_argument("--ts-config", default="", help="Path to the tsconfig for the e2e sources")
    run_parser.add_argument("--runner-config", default="", help="Path to the test-runner config (JSON)")
    run_parser.add_argument("--dev-server-target", default="",
                            help="Dev-server target, project:target[:configuration]")
    run_parser.add_argument("--watch", action="store_true", help="Recompile and rerun on changes")
    run_parser.add_argument("--target", default="",
                            help="Read options from a workspace e2e target, project:target[:configuration]")
    run_parser.add_argument("--workspace", default="", help=f"Workspace file (default: {DEFAULT_WORKSPACE_FILE})")
    run_parser.add_argument("--events-dir", default="", help="Write events.jsonl into this directory")

    url_parser = subparsers.add_parser("base-url", help="Print the base URL a dev-server target serves on")
    url_parser.add_argument("target", help="Dev-server target, project:target[:configuration]")
    url_parser.add_argument("--workspace", default="", help=f"Workspace file (default: {DEFAULT_WORKSPACE_FILE})")

    args = parser.parse_args(argv)

    try:
        if args.command == "run":
            return cmd_run(args)
        if args.command == "base-url":
            return cmd_base_url(args)
    except ConductorError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
