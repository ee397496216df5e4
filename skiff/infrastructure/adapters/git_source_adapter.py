"""
Git Source Adapter

Architectural Intent:
- Infrastructure adapter implementing SourceFetchPort
- Shells out to the git CLI, wrapped in an executor so the loop never blocks
- "owner/repo" references resolve against the configured base URL

Security:
- The access token is embedded in the clone URL only for the subprocess;
  it is redacted from every message that can reach a log or a client
"""

import asyncio
import logging
import os
import subprocess
from pathlib import Path
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

from skiff.domain.ports.source_fetch_port import SourceFetchPort

logger = logging.getLogger(__name__)


class GitSourceAdapter(SourceFetchPort):
    def __init__(
        self,
        base_url: str = "https://github.com",
        access_token: str = "",
        timeout: Optional[float] = 600.0,
    ):
        self.base_url = base_url.rstrip("/")
        self._access_token = access_token
        self.timeout = timeout

    def clone_url(self, source_ref: str) -> str:
        if "://" in source_ref or source_ref.startswith("git@"):
            url = source_ref
        else:
            url = f"{self.base_url}/{source_ref}.git"
        if self._access_token and url.startswith("https://"):
            parts = urlsplit(url)
            netloc = f"x-access-token:{self._access_token}@{parts.hostname}"
            if parts.port:
                netloc += f":{parts.port}"
            url = urlunsplit(parts._replace(netloc=netloc))
        return url

    def _redact(self, text: str) -> str:
        if self._access_token:
            return text.replace(self._access_token, "***")
        return text

    def _git(self, args: list[str], cwd: Optional[Path] = None) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(
                ["git", *args],
                capture_output=True,
                text=True,
                cwd=cwd,
                timeout=self.timeout,
                env={**os.environ, "GIT_TERMINAL_PROMPT": "0"},
            )
        except FileNotFoundError:
            raise RuntimeError("git executable not found on PATH")
        except subprocess.TimeoutExpired:
            raise RuntimeError(f"git {args[0]} timed out after {self.timeout:g} seconds")

    async def verify(self, source_ref: str, branch: str) -> bool:
        def _verify() -> bool:
            result = self._git(
                ["ls-remote", "--heads", self.clone_url(source_ref), branch]
            )
            if result.returncode != 0:
                logger.info(
                    "ls-remote failed for %s: %s",
                    source_ref,
                    self._redact(result.stderr.strip()),
                )
                return False
            return bool(result.stdout.strip())

        try:
            return await asyncio.get_event_loop().run_in_executor(None, _verify)
        except RuntimeError as e:
            logger.warning("Could not verify %s@%s: %s", source_ref, branch, e)
            return False

    async def fetch(self, source_ref: str, branch: str, destination: Path) -> None:
        def _fetch() -> None:
            result = self._git(
                [
                    "clone",
                    "--depth",
                    "1",
                    "--single-branch",
                    "--branch",
                    branch,
                    self.clone_url(source_ref),
                    str(destination),
                ]
            )
            if result.returncode != 0:
                raise RuntimeError(
                    f"Failed to clone repository: {self._redact(result.stderr.strip())}"
                )

        await asyncio.get_event_loop().run_in_executor(None, _fetch)
