"""
Build Runner Port

Architectural Intent:
- Port interface for running install/build commands as an opaque subprocess
- Implementations must not block the event loop
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class CommandResult:
    exit_code: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def tail(self, lines: int = 20) -> str:
        return "\n".join(self.output.strip().splitlines()[-lines:])


class BuildRunnerPort(ABC):
    """
    Port interface for subprocess execution inside a workspace.
    """

    @abstractmethod
    async def run(
        self,
        command: str,
        cwd: Path,
        env: Optional[dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """
        Runs command in cwd and returns its exit code and combined output.
        """
        pass
