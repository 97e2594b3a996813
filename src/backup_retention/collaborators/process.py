"""
Bounded execution of external tools and blocking filesystem calls.

Nothing here retries: a call that times out is reported as failed.
"""
import asyncio
import functools
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from ..errors import CommandFailed, CommandTimeout

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    args: List[str]
    returncode: int
    stdout: str
    stderr: str


async def run_command(args: Sequence[str], timeout: float, check: bool = True,
                      cwd: Optional[str] = None) -> CommandResult:
    """Run an external command with a hard time limit.

    Raises:
        CommandTimeout: the command did not finish within ``timeout`` seconds
        CommandFailed: ``check`` is set and the command exited non-zero
    """
    args = [str(arg) for arg in args]
    logger.debug(f"Running {' '.join(args)}")
    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE
        )
    except OSError as e:
        raise CommandFailed(args[0], -1, str(e)) from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise CommandTimeout(args[0], timeout) from None

    result = CommandResult(
        args=args,
        returncode=process.returncode,
        stdout=stdout.decode('utf-8', errors='replace') if stdout else "",
        stderr=stderr.decode('utf-8', errors='replace') if stderr else "",
    )
    if check and result.returncode != 0:
        raise CommandFailed(args[0], result.returncode, result.stderr)
    return result


async def run_blocking(func: Callable, *args, timeout: float, operation: str = None, **kwargs):
    """Run a blocking call in the default executor with a time limit.

    On timeout the worker thread is abandoned and CommandTimeout is raised.
    """
    loop = asyncio.get_event_loop()
    call = functools.partial(func, *args, **kwargs)
    try:
        return await asyncio.wait_for(loop.run_in_executor(None, call), timeout)
    except asyncio.TimeoutError:
        raise CommandTimeout(operation or getattr(func, '__name__', 'operation'), timeout) from None
