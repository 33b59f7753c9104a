from __future__ import annotations

import asyncio
import logging
import shutil
from collections.abc import Sequence
from dataclasses import dataclass

from phonepro.errors import ExternalToolUnavailable

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    argv: list[str]
    returncode: int | None
    raw_stdout: bytes
    raw_stderr: bytes
    timed_out: bool = False

    @property
    def stdout(self) -> str:
        return self.raw_stdout.decode("utf-8", errors="replace")

    @property
    def stderr(self) -> str:
        return self.raw_stderr.decode("utf-8", errors="replace")

    @property
    def ok(self) -> bool:
        return not self.timed_out and self.returncode == 0


def tool_available(name: str) -> bool:
    return shutil.which(name) is not None


async def run_command(argv: Sequence[str], timeout: float) -> CommandResult:
    """Run ``argv`` without a shell, killing it once ``timeout`` expires.

    Output produced before the kill is kept so callers can parse partial
    results. A missing binary raises ``ExternalToolUnavailable``.
    """
    args = [str(arg) for arg in argv]
    if not tool_available(args[0]):
        raise ExternalToolUnavailable(f"{args[0]} is not installed")

    logger.debug("Running %s (timeout=%.1fs)", " ".join(args), timeout)
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            stdin=asyncio.subprocess.DEVNULL,
        )
    except FileNotFoundError as exc:
        raise ExternalToolUnavailable(f"{args[0]} is not installed") from exc

    assert proc.stdout is not None and proc.stderr is not None
    stdout_chunks: list[bytes] = []
    stderr_chunks: list[bytes] = []

    async def _drain(stream: asyncio.StreamReader, sink: list[bytes]) -> None:
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                return
            sink.append(chunk)

    timed_out = False
    try:
        await asyncio.wait_for(
            asyncio.gather(
                _drain(proc.stdout, stdout_chunks),
                _drain(proc.stderr, stderr_chunks),
                proc.wait(),
            ),
            timeout=timeout,
        )
    except (asyncio.TimeoutError, TimeoutError):
        timed_out = True
        logger.debug("%s exceeded %.1fs, killing", args[0], timeout)
    finally:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()

    return CommandResult(
        argv=args,
        returncode=None if timed_out else proc.returncode,
        raw_stdout=b"".join(stdout_chunks),
        raw_stderr=b"".join(stderr_chunks),
        timed_out=timed_out,
    )
