"""
Local Artifact Publisher

Architectural Intent:
- Infrastructure adapter implementing ArtifactPublisherPort without a network
- Content id is the sha256 of a deterministic tar of the output directory,
  so identical builds always publish to the same id
- The directory is copied to <output_root>/<cid>, which a static file
  server or gateway can serve directly
"""

import asyncio
import hashlib
import io
import logging
import shutil
import tarfile
from pathlib import Path

from skiff.domain.ports.artifact_publisher_port import ArtifactPublisherPort
from skiff.domain.services.static_site import directory_size_mb
from skiff.domain.value_objects.artifact import PublishedArtifact

logger = logging.getLogger(__name__)


def deterministic_tar(directory: Path, gzip: bool = False) -> bytes:
    """Archive a directory with sorted entries and zeroed metadata."""
    buffer = io.BytesIO()
    mode = "w:gz" if gzip else "w"

    def _normalize(info: tarfile.TarInfo) -> tarfile.TarInfo:
        info.mtime = 0
        info.uid = info.gid = 0
        info.uname = info.gname = ""
        return info

    with tarfile.open(fileobj=buffer, mode=mode) as tar:
        for path in sorted(p for p in directory.rglob("*") if not p.is_symlink()):
            tar.add(path, arcname=str(path.relative_to(directory)), recursive=False, filter=_normalize)
    return buffer.getvalue()


def content_id_for(directory: Path) -> str:
    return "sk" + hashlib.sha256(deterministic_tar(directory)).hexdigest()[:46]


class LocalArtifactPublisher(ArtifactPublisherPort):
    def __init__(self, output_root: str = "artifacts", gateway_url: str = ""):
        self.output_root = Path(output_root)
        self.gateway_url = gateway_url

    def _url_for(self, cid: str) -> str:
        if self.gateway_url:
            return f"{self.gateway_url.rstrip('/')}/{cid}"
        return (self.output_root / cid).resolve().as_uri()

    async def publish(self, directory: Path) -> PublishedArtifact:
        def _publish() -> PublishedArtifact:
            if not directory.is_dir():
                raise FileNotFoundError(f"Output directory not found: {directory}")
            cid = content_id_for(directory)
            target = self.output_root / cid
            if target.exists():
                logger.info("Artifact %s already published", cid)
            else:
                self.output_root.mkdir(parents=True, exist_ok=True)
                shutil.copytree(directory, target, symlinks=False)
                logger.info("Published %s to %s", directory, target)
            return PublishedArtifact(
                content_id=cid,
                url=self._url_for(cid),
                size_mb=round(directory_size_mb(directory), 2),
            )

        return await asyncio.get_event_loop().run_in_executor(None, _publish)
