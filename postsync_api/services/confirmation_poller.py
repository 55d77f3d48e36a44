"""
Payment confirmation polling.

Asynchronous payment flows (UPI and similar) return to the client before the
payment settles. The poller re-reads the stored payment record on a fixed
interval until it turns SUCCESS or FAILED, or gives up after a bounded number
of reads. Nothing is held between reads, and `cancel()` stops the loop without
waiting out the current interval.
"""
import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

import pydantic
import requests

from postsync_api import schemas
from postsync_api.exceptions import PersistenceError
from postsync_api.services.document_store import DocumentStore

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_MAX_ATTEMPTS = 60

RecordReader = Callable[
    [str],
    Union[Optional[schemas.PaymentRecord], Awaitable[Optional[schemas.PaymentRecord]]],
]


class ConfirmationState(str, Enum):
    WAITING = "WAITING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"


@dataclass(frozen=True)
class ConfirmationResult:
    state: ConfirmationState
    order_id: str
    attempts: int
    transaction_id: Optional[str] = None
    record: Optional[schemas.PaymentRecord] = None


class PaymentConfirmationPoller:
    """Single-use poller for one order."""

    def __init__(
        self,
        reader: RecordReader,
        interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        if max_attempts <= 0:
            raise ValueError("max_attempts must be positive")
        self._reader = reader
        self.interval = max(float(interval), 0.0)
        self.max_attempts = max_attempts
        self.state = ConfirmationState.WAITING
        self.attempts = 0
        self._cancel_requested = False
        self._wakeup: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def cancelled(self) -> bool:
        return self._cancel_requested

    def cancel(self) -> None:
        """Stop polling; safe to call from any thread, before or during `poll`."""
        self._cancel_requested = True
        loop, wakeup = self._loop, self._wakeup
        if loop is None or wakeup is None or loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            wakeup.set()
        else:
            loop.call_soon_threadsafe(wakeup.set)

    def start(self, order_id: str) -> "asyncio.Task[ConfirmationResult]":
        return asyncio.ensure_future(self.poll(order_id))

    async def _wait_interval(self) -> None:
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=self.interval)
        except asyncio.TimeoutError:
            pass

    async def _read(self, order_id: str) -> Optional[schemas.PaymentRecord]:
        if inspect.iscoroutinefunction(self._reader):
            return await self._reader(order_id)
        result = await asyncio.to_thread(self._reader, order_id)
        if inspect.isawaitable(result):
            result = await result
        return result

    def _finish(
        self,
        state: ConfirmationState,
        order_id: str,
        record: Optional[schemas.PaymentRecord] = None,
    ) -> ConfirmationResult:
        self.state = state
        logger.info("Payment confirmation for %s finished as %s after %d reads", order_id, state.value, self.attempts)
        return ConfirmationResult(
            state=state,
            order_id=order_id,
            attempts=self.attempts,
            transaction_id=record.transaction_id if record else None,
            record=record,
        )

    async def poll(self, order_id: str) -> ConfirmationResult:
        if self.state is not ConfirmationState.WAITING or self.attempts:
            raise RuntimeError("PaymentConfirmationPoller instances are single-use")

        self._loop = asyncio.get_running_loop()
        self._wakeup = asyncio.Event()
        try:
            while True:
                if self._cancel_requested:
                    return self._finish(ConfirmationState.CANCELLED, order_id)
                await self._wait_interval()
                if self._cancel_requested:
                    return self._finish(ConfirmationState.CANCELLED, order_id)

                record: Optional[schemas.PaymentRecord] = None
                try:
                    record = await self._read(order_id)
                except (requests.RequestException, OSError, PersistenceError, pydantic.ValidationError) as exc:
                    # Failed reads use up an attempt so the poll stays bounded.
                    logger.warning("Payment status read for %s failed: %s", order_id, exc)
                self.attempts += 1

                status = record.status if record else None
                if status == schemas.PaymentStatus.SUCCESS:
                    return self._finish(ConfirmationState.SUCCESS, order_id, record)
                if status == schemas.PaymentStatus.FAILED:
                    return self._finish(ConfirmationState.FAILED, order_id, record)
                if self.attempts >= self.max_attempts:
                    return self._finish(ConfirmationState.TIMEOUT, order_id, record)
        finally:
            self._loop = None
            self._wakeup = None


class StorePaymentStatusReader:
    """Reads payment records straight from the document store."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    def __call__(self, order_id: str) -> Optional[schemas.PaymentRecord]:
        return self._store.get_payment_record(order_id)


class HttpPaymentStatusReader:
    """Reads payment records through a running API's payment-status endpoint."""

    def __init__(self, base_url: str, timeout: float = 10.0, session: Any = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http = session or requests

    def __call__(self, order_id: str) -> Optional[schemas.PaymentRecord]:
        response = self._http.get(f"{self.base_url}/api/payment-status/{order_id}", timeout=self.timeout)
        if response.status_code == 404:
            return None
        response.raise_for_status()
        body = response.json()
        return schemas.PaymentRecord.model_validate(body.get("data") or {})


async def wait_for_payment(
    reader: RecordReader,
    order_id: str,
    interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> ConfirmationResult:
    return await PaymentConfirmationPoller(reader, interval=interval, max_attempts=max_attempts).poll(order_id)
