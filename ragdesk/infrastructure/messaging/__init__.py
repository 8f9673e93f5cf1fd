"""
Messaging Gateway Infrastructure
================================

Z-API WhatsApp gateway client with circuit breaker.

Credentials are resolved lazily on first send (see
`ragdesk.config.resolution`) and cached for the client's lifetime.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from ragdesk.core import ConfigurationException, MessagingGatewayException
from ragdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ZAPICredentials:
    """Credentials for one Z-API instance."""
    instance_id: str
    token: str
    client_token: str
    base_url: str = "https://api.z-api.io"
    source: str = "env"


@dataclass
class GatewayAction:
    """A reply button attached to a gateway message."""
    id: str
    label: str


class IMessagingGateway(ABC):
    """Interface for outbound gateway delivery."""

    @abstractmethod
    async def send(
        self,
        destination: str,
        text: str,
        actions: Optional[List[GatewayAction]] = None,
    ) -> bool:
        """Deliver `text` (with optional buttons). True when accepted."""

    async def close(self) -> None:
        """Release network resources."""


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        """Get current circuit state."""
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if self._clock() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = self._clock()

        if self._failure_count >= self.failure_threshold or self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


CredentialsLoader = Callable[[], Awaitable[ZAPICredentials]]


class ZAPIClient(IMessagingGateway):
    """
    Z-API HTTP client.

    Endpoints:
    - POST /instances/{id}/token/{token}/send-text
    - POST /instances/{id}/token/{token}/send-button-list

    Each send is one HTTP attempt; a rejection is reported as False and
    counted by the circuit breaker.
    """

    def __init__(
        self,
        credentials_loader: CredentialsLoader,
        timeout_seconds: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self._credentials_loader = credentials_loader
        self._credentials: Optional[ZAPICredentials] = None
        self._timeout_seconds = timeout_seconds
        self._http_client = http_client
        self._circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=60
        )

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout_seconds)
        return self._http_client

    async def credentials(self) -> ZAPICredentials:
        """Resolve credentials once; later calls reuse them."""
        if self._credentials is None:
            self._credentials = await self._credentials_loader()
            logger.info("Z-API credentials resolved", extra={"source": self._credentials.source})
        return self._credentials

    @staticmethod
    def build_url(credentials: ZAPICredentials, endpoint: str) -> str:
        base = credentials.base_url.rstrip("/")
        return f"{base}/instances/{credentials.instance_id}/token/{credentials.token}/{endpoint}"

    @staticmethod
    def build_payload(
        destination: str,
        text: str,
        actions: Optional[List[GatewayAction]] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"phone": destination, "message": text}
        if actions:
            payload["buttonList"] = {
                "buttons": [{"id": action.id, "label": action.label} for action in actions]
            }
        return payload

    async def send(
        self,
        destination: str,
        text: str,
        actions: Optional[List[GatewayAction]] = None,
    ) -> bool:
        """
        Send one message.

        Raises:
            MessagingGatewayException: Credentials cannot be resolved
        """
        try:
            credentials = await self.credentials()
        except ConfigurationException as e:
            raise MessagingGatewayException("Z-API credentials not configured", details=e.details)

        if not self._circuit_breaker.allow_request():
            logger.warning(
                "Circuit breaker open, skipping gateway send",
                extra={"destination": destination}
            )
            return False

        endpoint = "send-button-list" if actions else "send-text"
        url = self.build_url(credentials, endpoint)
        payload = self.build_payload(destination, text, actions)

        try:
            client = await self._get_client()
            response = await client.post(
                url,
                json=payload,
                headers={"Client-Token": credentials.client_token}
            )
        except httpx.HTTPError as e:
            self._circuit_breaker.record_failure()
            logger.error(
                "Gateway request failed",
                extra={"endpoint": endpoint, "error": str(e)}
            )
            return False

        if response.is_success:
            self._circuit_breaker.record_success()
            logger.info(
                "Gateway message sent",
                extra={"endpoint": endpoint, "destination": destination}
            )
            return True

        self._circuit_breaker.record_failure()
        logger.warning(
            "Gateway rejected message",
            extra={
                "endpoint": endpoint,
                "status_code": response.status_code,
                "body": response.text[:500]
            }
        )
        return False

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
