"""
Remote Definition Builder

Combines a Cloud Sync task and its credential into a RemoteDefinition.
"""

import logging
from typing import Optional

from ..main import Credential, SyncTask
from .definition import CryptSection, RemoteDefinition
from .providers import Obscure, get_provider

logger = logging.getLogger(__name__)


class RemoteDefinitionBuilder:
    """
    Builds the two-layer remote for one task.

    obscure is the engine's reversible secret encoding (rclone obscure in
    production). It is applied to every secret before it enters the
    definition.
    """

    def __init__(self, obscure: Obscure):
        self.obscure = obscure

    def build(self, task: SyncTask, credential: Credential) -> RemoteDefinition:
        provider = get_provider(credential.provider)
        # Raises UnsupportedProviderError before any secret is touched
        transport = provider.transport_section(credential, self.obscure)

        crypt = CryptSection(
            remote=f"{transport.name}:{task.remote_folder}",
            filename_encryption="standard" if task.filename_encryption else "off",
            password=self.obscure(task.encryption_password),
            password2=self._obscure_optional(task.encryption_salt),
        )

        definition = RemoteDefinition(transport, crypt, label=task.description or f"task {task.id}")
        logger.info(f"Remote for task {task.id}: {provider.describe(credential)}:{task.remote_folder}")
        return definition

    def _obscure_optional(self, secret: Optional[str]) -> Optional[str]:
        if not secret:
            return None
        return self.obscure(secret)
