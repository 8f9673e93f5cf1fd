"""
Configuration Resolution
========================

Prioritized resolution of multi-source configuration.

A resolution policy is an ordered list of named sources. Each source is an
async callable returning a mapping (or None). The first source whose result
has every required key populated wins.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from ragdesk.core.exceptions import ConfigurationException
from ragdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


ConfigLoader = Callable[[], Awaitable[Optional[Dict[str, Any]]]]


@dataclass
class ConfigSource:
    """A named configuration source."""
    name: str
    load: ConfigLoader


@dataclass
class ResolvedConfig:
    """Values resolved from the first populated source."""
    source: str
    values: Dict[str, Any] = field(default_factory=dict)


def is_populated(values: Optional[Dict[str, Any]], required: Sequence[str]) -> bool:
    """True when every required key carries a non-blank value."""
    if not values:
        return False
    for key in required:
        value = values.get(key)
        if value is None:
            return False
        if isinstance(value, str) and not value.strip():
            return False
    return True


async def resolve_first_populated(
    sources: Sequence[ConfigSource],
    required: Sequence[str],
) -> ResolvedConfig:
    """
    Return the first source whose values populate every required key.

    A source that raises is logged and skipped; the next source is tried.

    Raises:
        ConfigurationException: No source was populated
    """
    tried: List[str] = []
    for source in sources:
        tried.append(source.name)
        try:
            values = await source.load()
        except Exception as e:
            logger.warning(
                "Configuration source failed",
                extra={"source": source.name, "error": str(e)}
            )
            continue
        if is_populated(values, required):
            logger.debug("Configuration resolved", extra={"source": source.name})
            return ResolvedConfig(source=source.name, values=dict(values))

    raise ConfigurationException(
        "No configuration source is populated",
        details={"tried": tried, "required": list(required)}
    )


GATEWAY_CREDENTIAL_KEYS = ("instance_id", "token", "client_token")


def gateway_credential_policy(
    provider_rows: Callable[[str], Awaitable[Optional[Dict[str, Any]]]],
    provider_names: Sequence[str],
    env_values: Dict[str, Any],
) -> List[ConfigSource]:
    """
    Resolution order for messaging-gateway credentials.

    One source per `messaging_providers` row name, in the given order, then
    the environment settings.
    """
    sources: List[ConfigSource] = []
    for name in provider_names:
        sources.append(ConfigSource(name=f"db:{name}", load=_bind_row(provider_rows, name)))

    async def load_env() -> Dict[str, Any]:
        return dict(env_values)

    sources.append(ConfigSource(name="env", load=load_env))
    return sources


def _bind_row(
    provider_rows: Callable[[str], Awaitable[Optional[Dict[str, Any]]]],
    name: str,
) -> ConfigLoader:
    async def load() -> Optional[Dict[str, Any]]:
        return await provider_rows(name)
    return load


# Named default policy, in the order the sources are consulted
GATEWAY_CREDENTIAL_POLICY = ("db:zapi_whatsapp", "db:zapi", "env")
