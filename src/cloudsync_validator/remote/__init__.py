"""
Remote Definitions

Transport + crypt layers handed to the verification engine.
"""

from .builder import RemoteDefinitionBuilder
from .definition import CRYPT_NAME, TRANSPORT_NAME, CryptSection, RemoteDefinition, TransportSection
from .providers import (
    SFTPProvider,
    TransportProvider,
    UnsupportedProvider,
    get_provider,
    register_provider,
    supported_providers,
)

__all__ = [
    "RemoteDefinitionBuilder",
    "RemoteDefinition",
    "TransportSection",
    "CryptSection",
    "TRANSPORT_NAME",
    "CRYPT_NAME",
    "TransportProvider",
    "SFTPProvider",
    "UnsupportedProvider",
    "get_provider",
    "register_provider",
    "supported_providers",
]
