"""Command execution for the provisioning adapters."""
from __future__ import annotations

import shlex
import subprocess
import time
from typing import Optional, Sequence

from macpool.errors import CommandExecutionError
from macpool.logger import get_logger
from macpool.provisioning.ports import CommandResult, CommandRunner

log = get_logger("MacPool.Commands")


class SubprocessRunner(CommandRunner):
    """Runs commands with subprocess, capturing stdout and stderr as text."""

    def run(self, command: Sequence[str], check: bool = False, cwd: Optional[str] = None) -> CommandResult:
        if not command:
            raise ValueError("Command cannot be empty")

        cmd_str = " ".join(shlex.quote(str(arg)) for arg in command)
        log.debug(f"Running command: {cmd_str}")
        start = time.perf_counter()
        try:
            completed = subprocess.run(
                [str(arg) for arg in command],
                capture_output=True,
                text=True,
                check=False,
                cwd=cwd,
            )
        except (FileNotFoundError, PermissionError) as exc:
            # missing or non-executable tools look like any other failure to callers
            log.debug(f"Command could not be started: {cmd_str}: {exc}")
            result = CommandResult(stdout="", stderr=str(exc), returncode=127, command=list(command))
        else:
            result = CommandResult(
                stdout=completed.stdout.strip(),
                stderr=completed.stderr.strip(),
                returncode=completed.returncode,
                command=list(command),
            )

        elapsed = time.perf_counter() - start
        if elapsed > 5:
            log.info(f"Slow command ({elapsed:.1f}s): {command[0]}")

        if check and not result.ok:
            log.warning(f"Command exited with non-zero code {result.returncode}: {cmd_str}")
            raise CommandExecutionError(command, result.output, result.returncode)
        return result
