"""
Source Fetch Port

Architectural Intent:
- Port interface for retrieving a repository branch into a workspace
- verify() is cheap and used synchronously at submission time
- Implemented by GitSourceAdapter
"""

from abc import ABC, abstractmethod
from pathlib import Path


class SourceFetchPort(ABC):
    """
    Port interface for source-code retrieval.
    """

    @abstractmethod
    async def verify(self, source_ref: str, branch: str) -> bool:
        """
        Returns True if the branch of the source reference is reachable.
        """
        pass

    @abstractmethod
    async def fetch(self, source_ref: str, branch: str, destination: Path) -> None:
        """
        Clones the branch into destination. Raises on failure.
        """
        pass
