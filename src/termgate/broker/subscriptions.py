"""Polling-based output streaming.

One poll task per session label captures the pane at a fixed interval
and hands the text to every subscriber of that label. A subscriber only
hears about a capture that differs from the last text it was given, so
it never receives the same payload twice in a row.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Awaitable, Callable

from termgate.multiplexer.base import Multiplexer, MultiplexerError
from termgate.utils.locks import KeyedLocks

logger = logging.getLogger(__name__)

OutputCallback = Callable[[str], Awaitable[None]]
ErrorCallback = Callable[[Exception], Awaitable[None]]


class Subscription:
    """Handle for one subscriber. ``unsubscribe()`` may be called any number of times."""

    def __init__(
        self,
        hub: SubscriptionHub,
        label: str,
        on_output: OutputCallback,
        on_error: ErrorCallback | None = None,
        last_payload: str | None = None,
    ) -> None:
        self._hub = hub
        self._active = True
        self.label = label
        self.on_output = on_output
        self.on_error = on_error
        self.last_payload = last_payload

    @property
    def active(self) -> bool:
        return self._active

    async def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        await self._hub._remove(self)


class SubscriptionHub:
    """Reference-counted poll tasks keyed by session label.

    Starting and stopping a label's poll task is serialized under that
    label's lock, so a subscribe racing the last unsubscribe can never
    leave a label with subscribers but no poller, or the reverse.
    """

    def __init__(
        self,
        multiplexer: Multiplexer,
        poll_interval: float = 0.5,
        line_count: int = 50,
    ) -> None:
        self._multiplexer = multiplexer
        self._interval = poll_interval
        self._line_count = line_count
        self._subscribers: dict[str, list[Subscription]] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._locks = KeyedLocks()

    def is_polling(self, label: str) -> bool:
        return label in self._tasks

    def subscriber_count(self, label: str) -> int:
        return len(self._subscribers.get(label, ()))

    async def subscribe(
        self,
        label: str,
        on_output: OutputCallback,
        on_error: ErrorCallback | None = None,
        last_payload: str | None = None,
    ) -> Subscription:
        """Add a subscriber, starting the label's poll task if needed.

        Args:
            label: Session to watch.
            on_output: Awaited with each new capture.
            on_error: Awaited once if polling fails; the subscription is
                      ended at that point.
            last_payload: Text the caller has already shown, so an
                          unchanged first capture is not delivered again.
        """
        subscription = Subscription(self, label, on_output, on_error, last_payload)
        async with self._locks(label):
            self._subscribers.setdefault(label, []).append(subscription)
            if label not in self._tasks:
                self._tasks[label] = asyncio.create_task(self._poll(label))
                logger.debug("Started output polling for %s", label)
        return subscription

    async def _remove(self, subscription: Subscription) -> None:
        label = subscription.label
        async with self._locks(label):
            subscribers = self._subscribers.get(label, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if subscribers:
                return
            self._subscribers.pop(label, None)
            task = self._tasks.pop(label, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            logger.debug("Stopped output polling for %s", label)

    async def _poll(self, label: str) -> None:
        # Ends once this task is no longer the label's registered poller
        while self._tasks.get(label) is asyncio.current_task():
            try:
                output = await self._multiplexer.capture_output(label, self._line_count)
            except MultiplexerError as e:
                logger.warning("Output stream for %s stopped: %s", label, e)
                await self._fail(label, e)
                return

            for subscription in list(self._subscribers.get(label, ())):
                if not subscription.active or output == subscription.last_payload:
                    continue
                subscription.last_payload = output
                try:
                    await subscription.on_output(output)
                except Exception as e:
                    logger.warning("Output subscriber for %s failed: %s", label, e)

            await asyncio.sleep(self._interval)

    async def _fail(self, label: str, error: MultiplexerError) -> None:
        async with self._locks(label):
            subscribers = self._subscribers.pop(label, [])
            self._tasks.pop(label, None)
        for subscription in subscribers:
            subscription._active = False
            if subscription.on_error is None:
                continue
            try:
                await subscription.on_error(error)
            except Exception as e:
                logger.warning("Error callback for %s failed: %s", label, e)

    async def close(self) -> None:
        """Stop every poll task and drop all subscribers."""
        tasks = list(self._tasks.values())
        for subscriptions in self._subscribers.values():
            for subscription in subscriptions:
                subscription._active = False
        self._subscribers.clear()
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
