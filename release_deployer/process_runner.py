"""
Shell command execution for install and post-deploy hooks.

Commands run through the host shell with a chosen working directory. Output
is captured to an anonymous temp file and forwarded line by line to the
"release_deployer.hooks" logger once the shell exits. Completion is the
shell's exit: a background child that keeps the output open does not hold
up the deployment.
"""

import asyncio
import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Optional, Union

logger = logging.getLogger(__name__)
hook_logger = logging.getLogger("release_deployer.hooks")


@dataclass
class CommandResult:
    """Outcome of a shell command."""

    command: str
    returncode: Optional[int]
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return not self.timed_out and self.returncode == 0

    def describe(self) -> str:
        if self.timed_out:
            return f"'{self.command}' timed out"
        return f"'{self.command}' exited with code {self.returncode}"


def _forward_output(output: IO[bytes], command: str) -> None:
    output.flush()
    output.seek(0)
    for line in output:
        hook_logger.info(f"[{command}] {line.decode(errors='replace').rstrip()}")


async def run_command(
    working_dir: Union[str, Path], command: str, timeout: Optional[float] = None
) -> CommandResult:
    """
    Run a shell command and wait for the shell to exit.

    Args:
        working_dir: Directory the command runs in
        command: Command line passed to the shell
        timeout: Seconds before the process is killed (no limit when None)

    Returns:
        CommandResult describing the exit status

    Raises:
        OSError: If the shell cannot be started (e.g., missing working directory)
    """
    logger.debug(f"Running '{command}' in {working_dir}")
    with tempfile.TemporaryFile() as output:
        process = await asyncio.create_subprocess_shell(
            command,
            cwd=str(working_dir),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=output,
            stderr=asyncio.subprocess.STDOUT,
        )

        try:
            returncode = await asyncio.wait_for(process.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(f"Command '{command}' exceeded {timeout}s, killing it")
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
            _forward_output(output, command)
            return CommandResult(command=command, returncode=process.returncode, timed_out=True)

        _forward_output(output, command)
    return CommandResult(command=command, returncode=returncode)
