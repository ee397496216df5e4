"""
Secret Provider Port

Architectural Intent:
- Port interface for decrypted, per-repository environment variables
- Implemented by JSONFileSecretProvider
"""

from abc import ABC, abstractmethod


class SecretProviderPort(ABC):
    """
    Port interface for provisioned secrets.
    """

    @abstractmethod
    async def get_variables(self, owner: str, repo: str) -> dict[str, str]:
        """
        Returns the key/value map provisioned for owner/repo (may be empty).
        """
        pass
