"""
Assistant External Adapters
===========================

Wiring between the assistant and outside configuration: resolves Z-API
credentials from the `messaging_providers` table first, then from the
environment.
"""

from typing import Any, Dict, Optional, Sequence

from ragdesk.config import Settings
from ragdesk.config.resolution import (
    GATEWAY_CREDENTIAL_KEYS,
    gateway_credential_policy,
    resolve_first_populated,
)
from ragdesk.infrastructure.messaging import CredentialsLoader, ZAPICredentials

from .repositories import MessagingProviderRepository


def env_gateway_values(settings: Settings) -> Dict[str, Any]:
    return {
        "instance_id": settings.zapi_instance_id,
        "token": settings.zapi_token,
        "client_token": settings.zapi_client_token,
        "base_url": settings.zapi_base_url,
    }


def gateway_credentials_loader(
    settings: Settings,
    providers: Optional[MessagingProviderRepository],
    provider_names: Optional[Sequence[str]] = None,
) -> CredentialsLoader:
    """
    Build the loader the Z-API client calls on first send.

    Without a provider repository (in-memory storage) only the environment
    is consulted.
    """
    names = list(provider_names if provider_names is not None else settings.gateway_provider_names)

    async def load_row(name: str) -> Optional[Dict[str, Any]]:
        if providers is None:
            return None
        return await providers.get_active(name)

    async def load() -> ZAPICredentials:
        sources = gateway_credential_policy(
            provider_rows=load_row,
            provider_names=names if providers is not None else [],
            env_values=env_gateway_values(settings),
        )
        resolved = await resolve_first_populated(sources, GATEWAY_CREDENTIAL_KEYS)
        values = resolved.values
        return ZAPICredentials(
            instance_id=values["instance_id"],
            token=values["token"],
            client_token=values["client_token"],
            base_url=values.get("base_url") or settings.zapi_base_url,
            source=resolved.source,
        )

    return load
