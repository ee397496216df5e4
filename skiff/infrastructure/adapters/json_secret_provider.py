"""
JSON Secret Provider

Architectural Intent:
- Infrastructure adapter implementing SecretProviderPort
- Reads provisioned variables from a JSON file keyed by "owner/repo"
- A missing file means no secrets are provisioned
"""

import asyncio
import json
import logging
from pathlib import Path

from skiff.domain.ports.secret_provider_port import SecretProviderPort

logger = logging.getLogger(__name__)


class JSONFileSecretProvider(SecretProviderPort):
    def __init__(self, path: str = "secrets.json"):
        self.path = Path(path)

    def _load(self) -> dict:
        try:
            with open(self.path) as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        if not isinstance(data, dict):
            raise ValueError(f"Secrets file {self.path} must contain a JSON object")
        return data

    async def get_variables(self, owner: str, repo: str) -> dict[str, str]:
        data = await asyncio.get_event_loop().run_in_executor(None, self._load)
        variables = data.get(f"{owner}/{repo}", {})
        if not isinstance(variables, dict):
            raise ValueError(f"Secrets for {owner}/{repo} must be a JSON object")
        return {str(k): str(v) for k, v in variables.items()}
