from __future__ import annotations

import shutil
import subprocess
from typing import Sequence


class CommandTimeout(RuntimeError):
    def __init__(self, cmd: Sequence[str], timeout: float) -> None:
        super().__init__(f"Command timed out after {timeout}s: {' '.join(cmd)}")
        self.cmd = list(cmd)
        self.timeout = timeout


def resolve_bin(preferred: str, fallbacks: Sequence[str] = ()) -> str:
    for candidate in (preferred, *fallbacks):
        if not candidate:
            continue
        found = shutil.which(candidate)
        if found:
            return found
    raise RuntimeError(f"Cannot find `{preferred}` in PATH.")


def with_sudo(cmd: list[str], use_sudo: bool) -> list[str]:
    if use_sudo:
        return ["sudo", *cmd]
    return cmd


def run_command(
    cmd: list[str],
    *,
    timeout: float | None = None,
    input_text: str | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run cmd, capturing stdout and stderr separately. Never raises on exit code."""
    try:
        return subprocess.run(
            cmd,
            check=False,
            text=True,
            input=input_text,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as exc:
        raise CommandTimeout(cmd, float(timeout or 0)) from exc
