"""
Bark sender: the public entry point.

Wires the provider token signer, the APNS transport and the dispatch service
together and exposes blocking and non-blocking sends over the same async
fan-out.
"""

import asyncio
import concurrent.futures
import logging
import threading
import time
from typing import Callable, Iterable, List, Optional, Tuple

from barkpush.core.config import Settings
from barkpush.services.push.apns_provider import APNSProvider
from barkpush.services.push.constants import (
    BARK_TOPIC,
    DEFAULT_CONCURRENCY,
    DEFAULT_TIMEOUT_SECONDS,
    TOKEN_STALE_AFTER_SECONDS,
)
from barkpush.services.push.dispatch_service import DispatchResult, PushDispatchService
from barkpush.services.push.exceptions import CredentialError
from barkpush.services.push.models import DeliveryResult, Message, ProviderCredential
from barkpush.services.push.signer import ProviderTokenSigner

logger = logging.getLogger(__name__)


class BarkSender:
    """
    Sends Bark notifications straight to APNS.

    Usage:
        sender = BarkSender(ProviderCredential(
            key_id="LH4T9V5U4R", team_id="5U8LBRXG3A", key_file="AuthKey.p8",
        ))
        failed = sender.send(PlainMessage("notify", "hello world"), devices)
        if failed:
            print(f"send failed: {failed}")

    The provider token is cached in memory and refreshed automatically. A
    process that runs once per notification can persist ``sender.token()``
    and pass it back as ``token=``/``issued_at=`` to skip signing.
    """

    def __init__(
        self,
        credential: ProviderCredential,
        topic: str = BARK_TOPIC,
        use_sandbox: bool = False,
        stale_after: float = TOKEN_STALE_AFTER_SECONDS,
        concurrency: int = DEFAULT_CONCURRENCY,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        token: Optional[str] = None,
        issued_at: Optional[int] = None,
        transport: Optional[APNSProvider] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.signer = ProviderTokenSigner(credential, stale_after=stale_after, clock=clock)
        if token is not None:
            if issued_at is None:
                raise ValueError("issued_at is required when seeding a token")
            self.signer.seed(token, issued_at)

        self.transport = transport or APNSProvider(use_sandbox=use_sandbox, timeout=timeout)
        self.dispatcher = PushDispatchService(
            self.signer,
            self.transport,
            topic=topic,
            concurrency=concurrency,
        )

        # Private loop on its own thread; every send runs there so one HTTP/2
        # connection serves blocking and async callers alike
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._loop_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **overrides) -> "BarkSender":
        """Build a sender from environment configuration."""
        if settings is None:
            from barkpush.core.config import settings

        if not settings.apns_ready:
            raise CredentialError(
                "APNS is not configured: set APNS_KEY_FILE, APNS_KEY_ID and APNS_TEAM_ID"
            )

        credential = ProviderCredential(
            key_id=settings.APNS_KEY_ID,
            team_id=settings.APNS_TEAM_ID,
            key_file=settings.APNS_KEY_FILE,
        )
        options = {
            "topic": settings.APNS_TOPIC,
            "use_sandbox": settings.APNS_USE_SANDBOX,
            "stale_after": settings.APNS_TOKEN_STALE_SECONDS,
            "concurrency": settings.DISPATCH_CONCURRENCY,
            "timeout": settings.APNS_TIMEOUT_SECONDS,
        }
        options.update(overrides)
        return cls(credential, **options)

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        with self._loop_lock:
            if self._loop is None:
                self._loop = asyncio.new_event_loop()
                self._thread = threading.Thread(
                    target=self._loop.run_forever,
                    name="barkpush-sender",
                    daemon=True,
                )
                self._thread.start()
                logger.debug("Sender event loop started")
            return self._loop

    def _schedule(self, coro) -> concurrent.futures.Future:
        return asyncio.run_coroutine_threadsafe(coro, self._ensure_loop())

    def _run(self, coro):
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            pass
        else:
            coro.close()
            raise RuntimeError("Blocking send called from a running event loop, use async_send")

        return self._schedule(coro).result()

    async def _run_async(self, coro):
        # Cancelling the caller cancels the task on the sender loop
        return await asyncio.wrap_future(self._schedule(coro))

    async def dispatch(self, message: Message, devices: Iterable[str]) -> DispatchResult:
        """Send to every device and return the detailed DispatchResult."""
        return await self._run_async(self.dispatcher.dispatch(message, list(devices)))

    async def async_send(self, message: Message, devices: Iterable[str]) -> Optional[List[str]]:
        """
        Send to devices without blocking the event loop.

        Returns:
            None if every device succeeded, else the failed device tokens
        """
        result = await self.dispatch(message, devices)
        return result.failed_devices or None

    def submit(self, message: Message, devices: Iterable[str]) -> "asyncio.Task[Optional[List[str]]]":
        """
        Schedule a send on the running loop and return its task.

        The task resolves like async_send and may be cancelled.
        """
        return asyncio.create_task(self.async_send(message, list(devices)))

    def send(self, message: Message, devices: Iterable[str]) -> Optional[List[str]]:
        """
        Send to devices, blocking until every push completed.

        Returns:
            None if every device succeeded, else the failed device tokens
        """
        result = self._run(self.dispatcher.dispatch(message, list(devices)))
        return result.failed_devices or None

    async def async_send_one(self, message: Message, device_token: str) -> DeliveryResult:
        """Send to a single device and return its DeliveryResult."""
        return await self._run_async(self.dispatcher.dispatch_one(message, device_token))

    def send_one(self, message: Message, device_token: str) -> DeliveryResult:
        """Blocking single-device send."""
        return self._run(self.dispatcher.dispatch_one(message, device_token))

    def token(self) -> Tuple[int, str]:
        """
        Current provider token, signing one if needed.

        Returns:
            (issued_at, token)
        """
        signed = self.signer.get_token()
        return signed.issued_at, signed.value

    def force_refresh_token(self) -> Tuple[int, str]:
        """Sign a new provider token regardless of the cached one."""
        signed = self.signer.force_refresh()
        return signed.issued_at, signed.value

    def _detach_loop(self) -> Tuple[asyncio.AbstractEventLoop, threading.Thread]:
        loop = self._ensure_loop()
        with self._loop_lock:
            thread = self._thread
            self._loop = None
            self._thread = None
        return loop, thread

    @staticmethod
    def _stop_loop(loop: asyncio.AbstractEventLoop, thread: threading.Thread) -> None:
        loop.call_soon_threadsafe(loop.stop)
        thread.join()
        loop.close()
        logger.debug("Sender event loop stopped")

    async def aclose(self) -> None:
        """Close the transport and stop the sender loop from async code."""
        loop, thread = self._detach_loop()
        try:
            await asyncio.wrap_future(asyncio.run_coroutine_threadsafe(self.dispatcher.close(), loop))
        finally:
            await asyncio.to_thread(self._stop_loop, loop, thread)

    def close(self) -> None:
        """Close the transport and stop the sender loop."""
        loop, thread = self._detach_loop()
        try:
            asyncio.run_coroutine_threadsafe(self.dispatcher.close(), loop).result()
        finally:
            self._stop_loop(loop, thread)

    def __enter__(self) -> "BarkSender":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    async def __aenter__(self) -> "BarkSender":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
