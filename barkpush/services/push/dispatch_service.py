"""
Push Dispatch Service.

Fans one notification out to many Bark devices.

Features:
- Payload encoded once and shared by every device of the call
- Provider token fetched once per call from the shared signer
- Parallel, semaphore-bounded delivery
- One retry with a refreshed token on ExpiredProviderToken/InvalidProviderToken
- Aggregated dispatch results keyed by device token
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from barkpush.core.logging_config import (
    clear_dispatch_id,
    redact_token,
    set_dispatch_id,
)
from barkpush.services.push import codec
from barkpush.services.push.apns_provider import APNSProvider
from barkpush.services.push.codec import EncodedPayload
from barkpush.services.push.constants import (
    APNS_PROVIDER_TOKEN_REASONS,
    BARK_TOPIC,
    DEFAULT_CONCURRENCY,
)
from barkpush.services.push.exceptions import CredentialError
from barkpush.services.push.models import (
    DeliveryResult,
    DeliveryStatus,
    Message,
)
from barkpush.services.push.signer import ProviderTokenSigner, SignedToken

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    """Aggregated result of dispatching to multiple devices.

    Attributes:
        dispatch_id: Correlation ID shared by the logs of this dispatch
        total_devices: Number of distinct devices targeted
        success_count: Number of successful deliveries
        failure_count: Number of failed deliveries
        results: Per-device DeliveryResult list, in input order
        duration_ms: Total dispatch duration in milliseconds
        timestamp: When dispatch occurred
    """

    dispatch_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    total_devices: int = 0
    success_count: int = 0
    failure_count: int = 0
    results: List[DeliveryResult] = field(default_factory=list)
    duration_ms: float = 0.0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def failed_devices(self) -> List[str]:
        """Device tokens whose push did not succeed, in input order."""
        return [r.device_token for r in self.results if not r.success]

    @property
    def all_succeeded(self) -> bool:
        """True if no delivery failed. Vacuously true for zero devices."""
        return self.failure_count == 0

    @property
    def any_succeeded(self) -> bool:
        """True if at least one delivery succeeded."""
        return self.success_count > 0

    def result_for(self, device_token: str) -> Optional[DeliveryResult]:
        for result in self.results:
            if result.device_token == device_token:
                return result
        return None


def unique_devices(devices: Iterable[str]) -> List[str]:
    """Drop duplicate and blank device tokens, keeping first-seen order.

    Tokens are kept exactly as given so failures map back to the caller's input.
    """
    seen = set()
    ordered = []
    for device in devices:
        if device and device.strip() and device not in seen:
            seen.add(device)
            ordered.append(device)
    return ordered


class PushDispatchService:
    """
    Push dispatch service.

    Owns no state of its own besides its collaborators: the token cache lives
    in the injected ProviderTokenSigner and the connection in the injected
    APNSProvider, so several dispatches can run concurrently.

    Usage:
        service = PushDispatchService(signer, APNSProvider())
        result = await service.dispatch(
            PlainMessage("Deploy", "Build 42 is live"),
            ["device-token-a", "device-token-b"],
        )
        if not result.all_succeeded:
            print(result.failed_devices)
    """

    def __init__(
        self,
        signer: ProviderTokenSigner,
        transport: APNSProvider,
        topic: str = BARK_TOPIC,
        concurrency: int = DEFAULT_CONCURRENCY,
    ):
        """
        Initialize dispatch service.

        Args:
            signer: Provider token signer (shared token cache)
            transport: APNS transport
            topic: App bundle ID sent as apns-topic
            concurrency: Max concurrent per-device requests per dispatch
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        self._signer = signer
        self._transport = transport
        self.topic = topic
        self.concurrency = concurrency

        logger.info(
            "PushDispatchService initialized",
            extra={"topic": topic, "concurrency": concurrency},
        )

    async def _dispatch_to_device(
        self,
        device_token: str,
        payload: EncodedPayload,
        token: SignedToken,
    ) -> DeliveryResult:
        """
        Deliver to one device, retrying once if APNs rejected the provider token.

        Args:
            device_token: Device to send to
            payload: Encoded notification, shared across devices
            token: Provider token obtained for this dispatch

        Returns:
            DeliveryResult with success status
        """
        try:
            result = await self._transport.push(token, device_token, payload, self.topic)

            if result.status != DeliveryStatus.AUTH_ERROR or result.error_reason not in APNS_PROVIDER_TOKEN_REASONS:
                return result

            logger.warning(
                f"Provider token rejected ({result.error_reason}), refreshing and retrying once",
                extra={"device_token": redact_token(device_token)},
            )
            try:
                fresh = self._signer.force_refresh(stale=token)
            except CredentialError as e:
                logger.error(f"Provider token refresh failed: {e}")
                result.error = f"{result.error}; token refresh failed: {e}"
                return result

            retried = await self._transport.push(fresh, device_token, payload, self.topic)
            retried.retries = 1
            return retried

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                f"Error dispatching to device {redact_token(device_token)}: {e}",
                exc_info=True,
            )
            return DeliveryResult(
                device_token=device_token,
                success=False,
                status=DeliveryStatus.FAILED,
                error=str(e),
            )

    async def dispatch(
        self,
        message: Message,
        devices: Iterable[str],
    ) -> DispatchResult:
        """
        Dispatch a notification to every device.

        Encryption and credential problems are raised before any request is
        made. Per-device failures never raise; they are reported in the
        result.

        Args:
            message: Notification content
            devices: Device tokens to send to

        Returns:
            DispatchResult with aggregated status

        Raises:
            ConfigurationError: Encryption parameters are inconsistent
            CredentialError: No provider token could be produced
        """
        start_time = time.time()
        result = DispatchResult()
        ctx_token = set_dispatch_id(result.dispatch_id)

        try:
            targets = unique_devices(devices)
            if not targets:
                logger.debug("No devices to dispatch to")
                result.duration_ms = (time.time() - start_time) * 1000
                return result

            payload = codec.encode(message)
            token = self._signer.get_token()

            semaphore = asyncio.Semaphore(self.concurrency)

            async def dispatch_with_semaphore(device_token: str) -> DeliveryResult:
                async with semaphore:
                    return await self._dispatch_to_device(device_token, payload, token)

            results = await asyncio.gather(
                *[dispatch_with_semaphore(d) for d in targets],
            )

            result.results = list(results)
            result.total_devices = len(targets)
            result.success_count = sum(1 for r in results if r.success)
            result.failure_count = result.total_devices - result.success_count
            invalid_tokens = sum(
                1 for r in results if r.status == DeliveryStatus.INVALID_TOKEN
            )
            result.duration_ms = (time.time() - start_time) * 1000

            logger.info(
                "Dispatch complete",
                extra={
                    "total_devices": result.total_devices,
                    "success": result.success_count,
                    "failed": result.failure_count,
                    "invalid_tokens": invalid_tokens,
                    "encrypted": payload.encrypted,
                    "duration_ms": round(result.duration_ms, 2),
                },
            )
            return result
        finally:
            clear_dispatch_id(ctx_token)

    async def dispatch_one(self, message: Message, device_token: str) -> DeliveryResult:
        """
        Dispatch to a single device and return its DeliveryResult.

        Raises:
            ConfigurationError: Encryption parameters are inconsistent
            CredentialError: No provider token could be produced
            ValueError: The device token is empty
        """
        result = await self.dispatch(message, [device_token])
        if not result.results:
            raise ValueError("device_token must not be empty")
        return result.results[0]

    async def close(self) -> None:
        """Close the transport and release resources."""
        await self._transport.close()
        logger.debug("PushDispatchService closed")

    async def __aenter__(self) -> "PushDispatchService":
        """Context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        await self.close()
