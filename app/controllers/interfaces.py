"""
Boundary contracts consumed by the coordination core.

Concrete provider SDK integrations and notification transports live outside this package and only need to
satisfy these protocols.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from app.models import TokenRecord


@dataclass
class TokenGrant:
    access_token: str
    expires_in: int | None = None
    refresh_token: str | None = None


@dataclass
class ProbeResult:
    success: bool
    latency_ms: float | None = None
    details: dict[str, Any] = field(default_factory=dict)
    error: BaseException | None = None


@runtime_checkable
class StorageProvider(Protocol):
    def get_provider_name(self) -> str: ...

    async def refresh_token(self, token: TokenRecord) -> TokenGrant | None:
        """Exchange the refresh token for new credentials. A falsy return means the refresh did not happen."""
        ...

    async def probe_connectivity(self, user_id: int) -> ProbeResult: ...


@runtime_checkable
class NotificationSink(Protocol):
    async def send(self, user_id: int, template_type: str, payload: dict[str, Any]) -> None: ...


class ProviderRegistry:
    """Looks up the StorageProvider implementation for a provider name."""

    def __init__(self, providers: list[StorageProvider] | None = None) -> None:
        self._providers: dict[str, StorageProvider] = {}
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: StorageProvider) -> None:
        self._providers[provider.get_provider_name()] = provider

    def get(self, provider_name: str) -> StorageProvider | None:
        return self._providers.get(provider_name)

    @property
    def provider_names(self) -> list[str]:
        return list(self._providers)
