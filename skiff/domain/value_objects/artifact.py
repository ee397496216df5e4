from __future__ import annotations
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class PublishedArtifact:
    """
    Value Object for a content-addressed build output after upload.
    """
    content_id: str
    url: str
    size_mb: Optional[float] = None

    def __post_init__(self):
        if not self.content_id:
            raise ValueError("Artifact content id cannot be empty")
        if not self.url:
            raise ValueError("Artifact URL cannot be empty")

    def __str__(self):
        return self.content_id
