"""Shell command execution for terminal-command turns."""

from __future__ import annotations

import asyncio
import contextlib
import os
from typing import Protocol

from lumen.config import Config
from lumen.logging_utils import log_deterministic, log_error
from lumen.schemas import CommandResult

TIMEOUT_EXIT_CODE = 124
MAX_OUTPUT_CHARS = 10000


class CommandExecutor(Protocol):
    """Runs one command. Non-zero exits are reported, never raised."""

    async def execute(self, command: str) -> CommandResult:
        ...


class ShellCommandExecutor:
    """Run commands through the system shell with a timeout.

    stdout and stderr are combined into ``output`` (stderr under a
    ``STDERR:`` marker). A timeout kills the process and reports exit code
    124. Output beyond ``max_output_chars`` is cut.
    """

    def __init__(
        self,
        timeout: float | None = None,
        working_dir: str | None = None,
        *,
        max_output_chars: int = MAX_OUTPUT_CHARS,
    ) -> None:
        self.timeout = timeout if timeout is not None else Config.COMMAND_TIMEOUT
        self.working_dir = working_dir
        self.max_output_chars = max_output_chars

    async def execute(self, command: str) -> CommandResult:
        command = command.strip()
        if not command:
            return CommandResult(output="", exit_code=1, error="Empty command")

        log_deterministic(f"[Exec] $ {command[:100]}{'...' if len(command) > 100 else ''}")
        cwd = self.working_dir or os.getcwd()

        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
            )
        except OSError as exc:
            log_error(f"[Exec] Could not start command: {exc}")
            return CommandResult(output="", exit_code=127, error=str(exc))

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            message = f"Command timed out after {self.timeout:g} seconds"
            log_error(f"[Exec] {message}")
            return CommandResult(output="", exit_code=TIMEOUT_EXIT_CODE, error=message)
        except BaseException:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
            raise

        output_parts = []
        if stdout:
            output_parts.append(stdout.decode("utf-8", errors="replace"))
        if stderr:
            stderr_text = stderr.decode("utf-8", errors="replace")
            if stderr_text.strip():
                output_parts.append(f"STDERR:\n{stderr_text}")

        output = "\n".join(output_parts)
        if len(output) > self.max_output_chars:
            extra = len(output) - self.max_output_chars
            output = output[: self.max_output_chars] + f"\n... (truncated, {extra} more chars)"

        exit_code = process.returncode if process.returncode is not None else 0
        error = None
        if exit_code != 0:
            error = f"Exit code: {exit_code}"
        log_deterministic(f"[Exec] exit {exit_code} ({len(output)} chars)")
        return CommandResult(output=output, exit_code=exit_code, error=error)


__all__ = ["CommandExecutor", "ShellCommandExecutor", "TIMEOUT_EXIT_CODE"]
