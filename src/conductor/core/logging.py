# Copyright 2026. Terminal logging and activity log mirroring.

import os
import re
from datetime import datetime, timezone

RESET = "\033[0m"
BOLD = "\033[1m"
DIM = "\033[2m"
GREEN = "\033[32m"
RED = "\033[31m"
YELLOW = "\033[33m"
CYAN = "\033[36m"

_ANSI_RE = re.compile(r"\033\[[0-9;]*m")

_activity_log_path: str = os.environ.get("CONDUCTOR_ACTIVITY_LOG", "")


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%H:%M:%S")


def set_activity_log(path: str) -> None:
    global _activity_log_path
    _activity_log_path = path


def log_activity(log_path: str, source: str, message: str) -> None:
    if not log_path:
        return
    ts = utc_timestamp()
    line = f"[{ts}] {source}  {message}\n" if source else f"[{ts}] {message}\n"
    try:
        with open(log_path, "a") as f:
            f.write(line)
    except OSError:
        pass


def safe_print(*args, **kwargs):
    """Print to stdout, silently ignoring BrokenPipeError."""
    try:
        print(*args, **kwargs)
    except BrokenPipeError:
        pass


def log(stage: str, msg: str, style: str = "") -> None:
    ts = utc_timestamp()
    safe_print(f"{DIM}[{ts}]{RESET} {stage:<10s} {style}{msg}{RESET}", flush=True)
    log_activity(_activity_log_path, stage, _ANSI_RE.sub("", msg))


def log_ok(stage: str, msg: str, duration_s: float | None = None) -> None:
    dur = f"  {DIM}{duration_s:.0f}s{RESET}" if duration_s else ""
    log(stage, f"{GREEN}✓{RESET} {msg}{dur}")


def log_fail(stage: str, msg: str) -> None:
    log(stage, f"{RED}✗{RESET} {msg}")


def log_info(stage: str, msg: str) -> None:
    log(stage, f"⣾ {msg}", style=CYAN)


def log_warn(stage: str, msg: str) -> None:
    log(stage, f"! {msg}", style=YELLOW)


def log_headline(msg: str) -> None:
    safe_print(f"\n{BOLD}{msg}{RESET}\n")
