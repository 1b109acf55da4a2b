"""
Subprocess execution for install steps.
"""

import asyncio
import logging
import shlex
from pathlib import Path
from typing import Mapping, Optional, Sequence


class SubprocessRunner:
    """Runs install commands as child processes with an explicit environment."""

    def __init__(self, output_tail_lines: int = 20):
        """
        Initialize the runner.

        Args:
            output_tail_lines: Lines of output logged when a command fails
        """
        self.logger = logging.getLogger(__name__)
        self.output_tail_lines = output_tail_lines

    async def run(self,
                  argv: Sequence[str],
                  env: Mapping[str, str],
                  cwd: Path,
                  timeout: Optional[float] = None) -> int:
        """
        Run a command and return its exit code.

        Raises:
            asyncio.TimeoutError: the command exceeded timeout (it is killed first)
            OSError: the executable could not be started
        """
        self.logger.info(f"CMD {shlex.join(argv)} (cwd={cwd})")
        process = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(cwd),
            env=dict(env),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except (asyncio.TimeoutError, asyncio.CancelledError):
            await self._kill(process)
            raise

        output = stdout.decode(errors="replace") if stdout else ""
        if output:
            self.logger.debug(f"OUTPUT {output.strip()}")
        if process.returncode != 0:
            tail = "\n".join(output.strip().splitlines()[-self.output_tail_lines:])
            self.logger.warning(f"Command exited with {process.returncode}: {shlex.join(argv)}\n{tail}")
        return process.returncode

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        try:
            process.kill()
        except ProcessLookupError:
            return
        await process.wait()
