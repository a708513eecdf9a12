"""
APNS (Apple Push Notification Service) transport.

Sends one HTTP/2 request per device token and classifies the response.

Features:
- HTTP/2 connection with persistent connection pooling
- Bearer provider token authentication
- Classification of every APNS response code into a DeliveryResult
- No retries: the dispatcher decides what to retry
"""

import asyncio
import logging
import time
from typing import Optional

import httpx

from barkpush.core.logging_config import redact_token
from barkpush.services.push.codec import EncodedPayload
from barkpush.services.push.constants import (
    APNS_AUTH_ERROR_STATUS_CODES,
    APNS_DEVICE_PATH,
    APNS_ERROR_CODES,
    APNS_INVALID_DEVICE_REASONS,
    APNS_PRODUCTION_HOST,
    APNS_PROVIDER_TOKEN_REASONS,
    APNS_SANDBOX_HOST,
    APNS_TOKEN_INVALID_STATUS_CODES,
    DEFAULT_CONNECT_TIMEOUT_SECONDS,
    DEFAULT_TIMEOUT_SECONDS,
)
from barkpush.services.push.models import DeliveryResult, DeliveryStatus
from barkpush.services.push.signer import SignedToken

logger = logging.getLogger(__name__)


def classify_failure(status_code: int, reason: str) -> DeliveryStatus:
    """Map a non-2xx APNS response onto a DeliveryStatus."""
    if reason in APNS_INVALID_DEVICE_REASONS or status_code in APNS_TOKEN_INVALID_STATUS_CODES:
        return DeliveryStatus.INVALID_TOKEN
    if reason in APNS_PROVIDER_TOKEN_REASONS or status_code in APNS_AUTH_ERROR_STATUS_CODES:
        return DeliveryStatus.AUTH_ERROR
    if status_code >= 500:
        return DeliveryStatus.SERVER_ERROR
    return DeliveryStatus.FAILED


class APNSProvider:
    """
    APNS transport for sending push notifications to Apple devices.

    Uses HTTP/2 for efficient connection handling. The client is created
    lazily and recreated when it was closed or belongs to another event loop,
    so callers never manage the connection.

    Usage:
        provider = APNSProvider(use_sandbox=False)
        result = await provider.push(token, device_token, payload, "me.fin.bark")

    Attributes:
        _client: httpx AsyncClient with HTTP/2 enabled
        _client_loop: Event loop the client was created on
    """

    def __init__(
        self,
        use_sandbox: bool = False,
        host: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_connections: int = 100,
    ):
        """
        Initialize APNS transport.

        Args:
            use_sandbox: Use the development environment
            host: Override the APNS host (takes precedence over use_sandbox)
            timeout: Request timeout in seconds
            max_connections: Connection pool size
        """
        self._host = host or (APNS_SANDBOX_HOST if use_sandbox else APNS_PRODUCTION_HOST)
        self._base_url = f"https://{self._host}"
        self._timeout = timeout
        self._max_connections = max_connections

        # HTTP/2 client (lazy initialized)
        self._client: Optional[httpx.AsyncClient] = None
        self._client_loop: Optional[asyncio.AbstractEventLoop] = None

        logger.info(
            "APNS provider initialized",
            extra={"host": self._host, "sandbox": use_sandbox},
        )

    @property
    def host(self) -> str:
        return self._host

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP/2 client with connection pooling."""
        loop = asyncio.get_running_loop()
        if self._client is not None and not self._client.is_closed and self._client_loop is not loop:
            # Connections are bound to the loop they were opened on
            logger.debug("Event loop changed, opening a new APNS connection")
            await self._close_client(self._client, self._client_loop)
            self._client = None

        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                http2=True,
                timeout=httpx.Timeout(self._timeout, connect=min(DEFAULT_CONNECT_TIMEOUT_SECONDS, self._timeout)),
                limits=httpx.Limits(
                    max_connections=self._max_connections,
                    max_keepalive_connections=20,
                ),
            )
            self._client_loop = loop
        return self._client

    async def _close_client(
        self,
        client: httpx.AsyncClient,
        client_loop: Optional[asyncio.AbstractEventLoop],
    ) -> None:
        """Close a client, on its own loop when that loop is running elsewhere."""
        if client_loop is not None and client_loop.is_running() and client_loop is not asyncio.get_running_loop():
            future = asyncio.run_coroutine_threadsafe(client.aclose(), client_loop)
            await asyncio.wrap_future(future)
            return

        try:
            await client.aclose()
        except RuntimeError as e:
            # The owning loop is closed; its sockets can no longer be shut down cleanly
            logger.warning(f"APNS client closed after its event loop ended: {e}")

    def _build_headers(self, token: SignedToken, topic: str) -> dict:
        """Build request headers for APNS."""
        return {
            "authorization": f"bearer {token.value}",
            "apns-topic": topic,
            "apns-push-type": "alert",
            "content-type": "application/json",
        }

    async def push(
        self,
        token: SignedToken,
        device_token: str,
        payload: EncodedPayload,
        topic: str,
    ) -> DeliveryResult:
        """
        Send a push notification to a single device.

        Args:
            token: Provider token for the authorization header
            device_token: APNS device token (hex string)
            payload: Encoded notification body
            topic: App bundle identifier

        Returns:
            DeliveryResult with success status and details
        """
        url = f"{self._base_url}{APNS_DEVICE_PATH.format(device_token=device_token)}"
        headers = self._build_headers(token, topic)
        start_time = time.time()

        try:
            client = await self._get_client()
            response = await client.post(url, content=payload.body, headers=headers)
        except httpx.HTTPError as e:
            logger.warning(
                f"APNS request failed: {e}",
                extra={"device_token": redact_token(device_token)},
            )
            return DeliveryResult(
                device_token=device_token,
                success=False,
                status=DeliveryStatus.TRANSPORT_ERROR,
                error=f"HTTP error: {e}",
            )

        status_code = response.status_code
        apns_id = response.headers.get("apns-id")

        if 200 <= status_code < 300:
            logger.info(
                "APNS notification sent successfully",
                extra={
                    "device_token": redact_token(device_token),
                    "apns_id": apns_id,
                    "duration_ms": int((time.time() - start_time) * 1000),
                },
            )
            return DeliveryResult(
                device_token=device_token,
                success=True,
                status=DeliveryStatus.SUCCESS,
                status_code=status_code,
                apns_id=apns_id,
            )

        # Parse error response
        try:
            error_body = response.json() if response.content else {}
        except ValueError:
            error_body = {}
        reason = error_body.get("reason", "Unknown") if isinstance(error_body, dict) else "Unknown"
        status = classify_failure(status_code, reason)
        description = APNS_ERROR_CODES.get(reason)
        error = f"APNS error: {reason}: {description}" if description else f"APNS error: {reason}"

        log = logger.error if status == DeliveryStatus.AUTH_ERROR else logger.warning
        log(
            f"APNS rejected notification: {reason}",
            extra={
                "device_token": redact_token(device_token),
                "status_code": status_code,
                "reason": reason,
                "apns_id": apns_id,
            },
        )

        return DeliveryResult(
            device_token=device_token,
            success=False,
            status=status,
            status_code=status_code,
            error=error,
            error_reason=reason,
            apns_id=apns_id,
        )

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client and not self._client.is_closed:
            await self._close_client(self._client, self._client_loop)
        self._client = None
        self._client_loop = None
        logger.debug("APNS provider closed")

    async def __aenter__(self) -> "APNSProvider":
        """Context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        await self.close()
