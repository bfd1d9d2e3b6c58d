from __future__ import annotations

import asyncio
import enum
import time
from dataclasses import dataclass
from typing import Optional, Sequence

from photocloud.core.logging import get_logger

OUTPUT_LOG_LIMIT = 4000


class CommandStatus(str, enum.Enum):
    succeeded = "succeeded"
    failed = "failed"
    timed_out = "timed_out"
    interrupted = "interrupted"
    not_found = "not_found"


@dataclass(slots=True)
class CommandResult:
    command: list[str]
    status: CommandStatus
    returncode: Optional[int]
    output: str
    duration_s: float

    @property
    def ok(self) -> bool:
        return self.status is CommandStatus.succeeded

    @property
    def output_tail(self) -> str:
        return self.output[-OUTPUT_LOG_LIMIT:]

    def describe(self) -> str:
        if self.status is CommandStatus.failed:
            return f"{self.command[0]} exited with code {self.returncode}"
        return f"{self.command[0]} {self.status.value}"


class CommandRunner:
    """Runs one external process per call under a bounded wait.

    stdout and stderr are merged and captured for diagnostics. A timeout kills
    the process; cancelling the awaiting task kills it too and re-raises the
    cancellation so callers' cleanup runs.
    """

    def __init__(self, default_timeout_s: float = 300.0):
        self.default_timeout_s = default_timeout_s
        self.logger = get_logger(component="command_runner")

    async def run(self, command: Sequence[str], *, timeout_s: Optional[float] = None) -> CommandResult:
        argv = [str(part) for part in command]
        timeout = timeout_s if timeout_s is not None else self.default_timeout_s
        started = time.monotonic()
        self.logger.debug("command_started", command=argv, timeout_s=timeout)

        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except FileNotFoundError:
            self.logger.error("command_binary_missing", binary=argv[0])
            return CommandResult(argv, CommandStatus.not_found, None, "", time.monotonic() - started)

        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            await _kill(proc)
            result = CommandResult(argv, CommandStatus.timed_out, proc.returncode, "", time.monotonic() - started)
            self.logger.error("command_timed_out", command=argv, timeout_s=timeout)
            return result
        except asyncio.CancelledError:
            await _kill(proc)
            self.logger.warning("command_cancelled", command=argv)
            raise

        output = stdout.decode("utf-8", errors="replace") if stdout else ""
        returncode = proc.returncode
        if returncode == 0:
            status = CommandStatus.succeeded
        elif returncode is not None and returncode < 0:
            # Terminated by a signal from outside this process.
            status = CommandStatus.interrupted
        else:
            status = CommandStatus.failed

        result = CommandResult(argv, status, returncode, output, time.monotonic() - started)
        if result.ok:
            self.logger.debug("command_succeeded", command=argv[0], duration_s=round(result.duration_s, 3))
        else:
            self.logger.error(
                "command_failed",
                command=argv,
                status=status.value,
                returncode=returncode,
                output=result.output_tail,
            )
        return result


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    await proc.wait()


__all__ = ["CommandRunner", "CommandResult", "CommandStatus"]
