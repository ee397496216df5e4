"""
Subprocess Build Runner

Architectural Intent:
- Infrastructure adapter implementing BuildRunnerPort
- Runs install/build commands without a shell (shlex-split argv)
- Blocking subprocess calls run in the default executor
"""

import asyncio
import logging
import os
import shlex
import subprocess
from pathlib import Path
from typing import Optional

from skiff.domain.ports.build_runner_port import BuildRunnerPort, CommandResult

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
NOT_FOUND_EXIT_CODE = 127


class SubprocessBuildRunner(BuildRunnerPort):
    def __init__(self, default_timeout: Optional[float] = 900.0):
        self.default_timeout = default_timeout

    async def run(
        self,
        command: str,
        cwd: Path,
        env: Optional[dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        argv = shlex.split(command)
        if not argv:
            return CommandResult(NOT_FOUND_EXIT_CODE, "Empty command")
        limit = timeout if timeout is not None else self.default_timeout
        merged_env = {**os.environ, **(env or {})}

        def _run() -> CommandResult:
            logger.debug("Running %s in %s", argv, cwd)
            try:
                result = subprocess.run(
                    argv,
                    cwd=cwd,
                    env=merged_env,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    text=True,
                    timeout=limit,
                )
            except FileNotFoundError:
                return CommandResult(NOT_FOUND_EXIT_CODE, f"Command not found: {argv[0]}")
            except subprocess.TimeoutExpired as e:
                output = e.output or ""
                if isinstance(output, bytes):
                    output = output.decode("utf-8", errors="replace")
                return CommandResult(
                    TIMEOUT_EXIT_CODE,
                    f"{output}\nCommand timed out after {limit:g} seconds",
                )
            return CommandResult(result.returncode, result.stdout or "")

        return await asyncio.get_event_loop().run_in_executor(None, _run)
