"""
Credential sources consumed by the gateway.

The gateway only ever reads credentials. Persistence belongs to the
application embedding the gateway; it plugs in by subclassing
``CredentialStore``.
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterable

from switchboard.core.models import Credential
from switchboard.exceptions import CredentialNotFoundError
from switchboard.logging_config import get_logger

logger = get_logger(__name__)


class CredentialStore(ABC):
    """Read-only source of provider credentials."""

    @abstractmethod
    async def get_credential(self, provider_id: str) -> Credential:
        """
        Return a fresh snapshot of the credential for ``provider_id``.

        Raises:
            CredentialNotFoundError: If no record exists
        """


class InMemoryCredentialStore(CredentialStore):
    """
    Credential store backed by a dictionary.

    Used by the CLI (populated from the ``integrations`` section of the
    configuration file) and by tests. ``set_credential`` replaces a record
    atomically, which is how rotation is simulated.
    """

    def __init__(self, credentials: Iterable[Credential] = ()):
        self._credentials: Dict[str, Credential] = {}
        for credential in credentials:
            self.set_credential(credential)

    def set_credential(self, credential: Credential) -> None:
        self._credentials[credential.provider_id] = credential
        logger.debug(f"Stored credential for provider {credential.provider_id}")

    def remove_credential(self, provider_id: str) -> None:
        self._credentials.pop(provider_id, None)

    async def get_credential(self, provider_id: str) -> Credential:
        try:
            return self._credentials[provider_id]
        except KeyError:
            raise CredentialNotFoundError(provider_id) from None
