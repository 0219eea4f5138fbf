"""
Transport Providers

Each provider turns a TrueNAS credential into the transport section of a
remote definition. Support for a new provider is added by writing a
TransportProvider subclass and registering it; nothing else changes.
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from ..errors import UnsupportedProviderError
from ..main import Credential
from .definition import TransportSection

Obscure = Callable[[str], str]


class TransportProvider(ABC):
    """Produces a transport section from credential attributes"""

    #: TrueNAS provider tag, e.g. "SFTP"
    tag: str = ""

    @abstractmethod
    def transport_section(self, credential: Credential, obscure: Obscure) -> TransportSection:
        pass

    def describe(self, credential: Credential) -> str:
        """Where the data lives, for log lines (never includes secrets)"""
        return self.tag


class SFTPProvider(TransportProvider):
    """SFTP, e.g. a Hetzner Storage Box"""

    tag = "SFTP"
    DEFAULT_PORT = 22

    def transport_section(self, credential: Credential, obscure: Obscure) -> TransportSection:
        attrs = credential.attributes
        options = {
            "host": str(attrs.get("host") or ""),
            "port": str(attrs.get("port") or self.DEFAULT_PORT),
            "user": str(attrs.get("user") or ""),
        }
        password = attrs.get("pass")
        if password:
            options["pass"] = obscure(str(password))
        return TransportSection(type="sftp", options=options)

    def describe(self, credential: Credential) -> str:
        attrs = credential.attributes
        return f"sftp://{attrs.get('user', '')}@{attrs.get('host', '')}:{attrs.get('port') or self.DEFAULT_PORT}"


class UnsupportedProvider(TransportProvider):
    """Fallback for provider tags without a transport mapping"""

    def __init__(self, supported: List[str]):
        self.supported = supported

    def transport_section(self, credential: Credential, obscure: Obscure) -> TransportSection:
        raise UnsupportedProviderError(credential.provider, self.supported)


_PROVIDERS: Dict[str, TransportProvider] = {}


def register_provider(provider: TransportProvider) -> None:
    """Register a provider under its tag (case-insensitive)"""
    _PROVIDERS[provider.tag.upper()] = provider


def get_provider(tag: Optional[str]) -> TransportProvider:
    provider = _PROVIDERS.get((tag or "").upper())
    if provider is None:
        return UnsupportedProvider(supported_providers())
    return provider


def supported_providers() -> List[str]:
    return sorted(_PROVIDERS)


register_provider(SFTPProvider())
