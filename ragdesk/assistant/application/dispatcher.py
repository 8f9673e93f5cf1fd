"""
Channel Dispatcher
==================

Delivers reply text to the channel an inbound message came from.

Direct-channel replies travel in the HTTP response, so dispatch only
records them. Gateway replies go through the messaging gateway; when a
message with buttons is rejected, one plain-text send follows with a hint
telling the user to reply directly.
"""

import asyncio
from dataclasses import dataclass
from typing import List, Optional

from ragdesk.assistant.domain import DirectInbound, GatewayInbound, Inbound
from ragdesk.core import DispatchFailure, MessagingGatewayException
from ragdesk.infrastructure.messaging import GatewayAction, IMessagingGateway
from ragdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


DEFAULT_ANSWER_ACTIONS = [
    GatewayAction(id="resolved", label="Resolved"),
    GatewayAction(id="talk_to_agent", label="Talk to an agent"),
]


@dataclass
class DispatchResult:
    """Outcome of one delivery."""
    delivered: bool
    channel: str
    used_plain_text_fallback: bool = False
    error: Optional[str] = None


class ChannelDispatcher:
    """Sends final text to the originating channel."""

    def __init__(
        self,
        gateway: Optional[IMessagingGateway],
        plain_text_hint: str = "Reply directly to this message to respond.",
        timeout: float = 10.0,
    ):
        self._gateway = gateway
        self.plain_text_hint = plain_text_hint
        self.timeout = timeout

    async def dispatch(
        self,
        inbound: Inbound,
        text: str,
        actions: Optional[List[GatewayAction]] = None,
    ) -> DispatchResult:
        if isinstance(inbound, DirectInbound):
            return DispatchResult(delivered=True, channel="direct")
        if isinstance(inbound, GatewayInbound):
            return await self._dispatch_gateway(inbound.phone, text, actions)
        raise TypeError(f"Unsupported inbound type: {type(inbound).__name__}")

    async def _dispatch_gateway(
        self,
        destination: str,
        text: str,
        actions: Optional[List[GatewayAction]],
    ) -> DispatchResult:
        if self._gateway is None:
            failure = DispatchFailure("No messaging gateway configured")
            logger.error(failure.message, extra=failure.details)
            return DispatchResult(delivered=False, channel="gateway", error=failure.message)

        if await self._send(destination, text, actions):
            return DispatchResult(delivered=True, channel="gateway")

        if actions:
            logger.info("Rich message rejected, sending plain text", extra={"destination": destination})
            fallback_text = f"{text}\n\n{self.plain_text_hint}"
            if await self._send(destination, fallback_text, None):
                return DispatchResult(delivered=True, channel="gateway", used_plain_text_fallback=True)

        failure = DispatchFailure("Gateway rejected the message", details={"destination": destination})
        logger.error(failure.message, extra=failure.details)
        return DispatchResult(
            delivered=False,
            channel="gateway",
            used_plain_text_fallback=bool(actions),
            error=failure.message,
        )

    async def _send(
        self,
        destination: str,
        text: str,
        actions: Optional[List[GatewayAction]],
    ) -> bool:
        try:
            return await asyncio.wait_for(
                self._gateway.send(destination, text, actions),
                timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.warning("Gateway send timed out", extra={"timeout": self.timeout})
            return False
        except MessagingGatewayException as e:
            logger.error("Gateway send failed", extra={"error": e.message})
            return False
