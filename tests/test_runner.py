from __future__ import annotations

import asyncio
import sys
import time

import pytest

from photocloud.media.runner import CommandRunner, CommandStatus


def test_successful_command_captures_merged_output():
    runner = CommandRunner(default_timeout_s=30)
    script = "import sys; print('out'); print('err', file=sys.stderr)"

    result = asyncio.run(runner.run([sys.executable, "-c", script]))

    assert result.ok
    assert result.status is CommandStatus.succeeded
    assert result.returncode == 0
    assert "out" in result.output
    assert "err" in result.output


def test_nonzero_exit_is_failure():
    runner = CommandRunner(default_timeout_s=30)

    result = asyncio.run(runner.run([sys.executable, "-c", "import sys; sys.exit(3)"]))

    assert not result.ok
    assert result.status is CommandStatus.failed
    assert result.returncode == 3
    assert "exited with code 3" in result.describe()


def test_timeout_kills_process():
    runner = CommandRunner(default_timeout_s=30)
    started = time.monotonic()

    result = asyncio.run(runner.run([sys.executable, "-c", "import time; time.sleep(30)"], timeout_s=0.5))

    assert result.status is CommandStatus.timed_out
    assert time.monotonic() - started < 10


def test_missing_binary_is_reported():
    runner = CommandRunner()

    result = asyncio.run(runner.run(["photocloud-no-such-binary-xyz", "--help"]))

    assert result.status is CommandStatus.not_found
    assert result.returncode is None


def test_cancellation_propagates():
    runner = CommandRunner(default_timeout_s=30)

    async def scenario() -> None:
        task = asyncio.create_task(runner.run([sys.executable, "-c", "import time; time.sleep(30)"]))
        await asyncio.sleep(0.3)
        task.cancel()
        await task

    started = time.monotonic()
    with pytest.raises(asyncio.CancelledError):
        asyncio.run(scenario())
    assert time.monotonic() - started < 10
