"""
HTTP Artifact Publisher

Architectural Intent:
- Infrastructure adapter implementing ArtifactPublisherPort for a remote
  pinning/upload service
- Uses stdlib urllib for the HTTP layer (no external dependencies)
- Uploads one gzipped tar of the output directory; the service answers
  with the content id, and the public URL is built from the gateway
"""

import asyncio
import json
import logging
import urllib.error
import urllib.request
from pathlib import Path

from skiff.domain.ports.artifact_publisher_port import ArtifactPublisherPort
from skiff.domain.services.static_site import directory_size_mb
from skiff.domain.value_objects.artifact import PublishedArtifact
from skiff.infrastructure.adapters.local_artifact_publisher import deterministic_tar

logger = logging.getLogger(__name__)

# Response keys used by common pinning services for the content id
_CID_KEYS = ("cid", "IpfsHash", "Hash")


class HTTPArtifactPublisher(ArtifactPublisherPort):
    def __init__(
        self,
        api_url: str,
        api_key: str = "",
        gateway_url: str = "https://ipfs.io/ipfs/",
        timeout: float = 900.0,
    ):
        if not api_url:
            raise ValueError("HTTP publisher requires an api_url")
        self.api_url = api_url
        self._api_key = api_key
        self.gateway_url = gateway_url
        self.timeout = timeout

    def _request(self, body: bytes, name: str) -> dict:
        request = urllib.request.Request(self.api_url, data=body, method="POST")
        request.add_header("Content-Type", "application/gzip")
        request.add_header("X-Artifact-Name", name)
        if self._api_key:
            request.add_header("Authorization", f"Bearer {self._api_key}")
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                return json.loads(response.read().decode("utf-8") or "{}")
        except urllib.error.HTTPError as e:
            detail = e.read().decode("utf-8", errors="replace")[:500]
            raise RuntimeError(f"Upload rejected (HTTP {e.code}): {detail}")
        except urllib.error.URLError as e:
            raise RuntimeError(f"Upload service unreachable: {e.reason}")

    async def publish(self, directory: Path) -> PublishedArtifact:
        def _publish() -> PublishedArtifact:
            if not directory.is_dir():
                raise FileNotFoundError(f"Output directory not found: {directory}")
            body = deterministic_tar(directory, gzip=True)
            logger.info("Uploading %s (%d bytes) to %s", directory, len(body), self.api_url)
            payload = self._request(body, directory.name)
            cid = next((payload[k] for k in _CID_KEYS if payload.get(k)), None)
            if not cid:
                raise RuntimeError(f"Upload response did not include a content id: {payload}")
            return PublishedArtifact(
                content_id=cid,
                url=f"{self.gateway_url.rstrip('/')}/{cid}",
                size_mb=round(directory_size_mb(directory), 2),
            )

        return await asyncio.get_event_loop().run_in_executor(None, _publish)
