"""
Domain Services Package

Architectural Intent:
- Contains domain services implementing deployment business logic
- Pure filesystem inspection; no network or subprocess access
"""

from skiff.domain.services.project_detection import ProjectInspector, Detection
from skiff.domain.services.static_site import (
    StaticSitePreparer,
    directory_size_mb,
)

__all__ = [
    "ProjectInspector",
    "Detection",
    "StaticSitePreparer",
    "directory_size_mb",
]
