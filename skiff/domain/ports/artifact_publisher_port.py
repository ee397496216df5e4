"""
Artifact Publisher Port

Architectural Intent:
- Port interface for content-addressed upload of a build output directory
- Implemented by LocalArtifactPublisher and HTTPArtifactPublisher
"""

from abc import ABC, abstractmethod
from pathlib import Path
from skiff.domain.value_objects.artifact import PublishedArtifact


class ArtifactPublisherPort(ABC):
    """
    Port interface for publishing artifacts.
    """

    @abstractmethod
    async def publish(self, directory: Path) -> PublishedArtifact:
        """
        Uploads the directory and returns its content id and public URL.
        """
        pass
