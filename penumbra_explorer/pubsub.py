"""In-process broadcast channels that fan out explorer updates to subscribers."""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections import deque
from typing import Any, AsyncIterator, Generic, TypeVar

from .triggers import start

log = logging.getLogger(__name__)

T = TypeVar("T")

CHANNEL_CAPACITY = 1000


class Lagged(Exception):
    """The receiver fell behind and the oldest messages were overwritten."""

    def __init__(self, skipped: int) -> None:
        super().__init__(f"receiver lagged behind by {skipped} messages")
        self.skipped = skipped


class BroadcastChannel(Generic[T]):
    """A bounded multi-consumer channel in which every receiver sees every message.

    The channel keeps the last ``capacity`` messages. A receiver that falls
    further behind gets a :class:`Lagged` error and resumes at the oldest
    message still kept.
    """

    def __init__(self, capacity: int = CHANNEL_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._buffer: deque[tuple[int, T]] = deque(maxlen=capacity)
        self._next_seq = 0
        self._receivers: weakref.WeakSet[BroadcastReceiver[T]] = weakref.WeakSet()
        self._waiters: list[asyncio.Future[None]] = []

    def send(self, value: T) -> int:
        """Broadcast a value and return how many receivers it reached.

        Raises LookupError when there are no receivers; the value is dropped.
        """
        count = len(self._receivers)
        if count == 0:
            raise LookupError("channel has no active receivers")
        self._buffer.append((self._next_seq, value))
        self._next_seq += 1
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)
        return count

    def subscribe(self) -> BroadcastReceiver[T]:
        """Create a receiver that sees every message sent from now on."""
        return BroadcastReceiver(self)

    def receiver_count(self) -> int:
        """Return the number of open receivers."""
        return len(self._receivers)


class BroadcastReceiver(Generic[T]):
    """The receiving end of a :class:`BroadcastChannel`."""

    def __init__(self, channel: BroadcastChannel[T]) -> None:
        self._channel = channel
        self._position = channel._next_seq
        self._closed = False
        channel._receivers.add(self)

    async def recv(self) -> T:
        """Wait for and return the next message.

        Raises :class:`Lagged` if messages were overwritten before being read.
        """
        if self._closed:
            raise RuntimeError("receiver is closed")
        channel = self._channel
        while True:
            if self._position < channel._next_seq:
                oldest = channel._buffer[0][0]
                if self._position < oldest:
                    skipped = oldest - self._position
                    self._position = oldest
                    raise Lagged(skipped)
                value = channel._buffer[self._position - oldest][1]
                self._position += 1
                return value
            waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
            channel._waiters.append(waiter)
            await waiter

    def close(self) -> None:
        """Stop receiving; the channel no longer counts this receiver."""
        self._closed = True
        self._channel._receivers.discard(self)

    def __enter__(self) -> BroadcastReceiver[T]:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    async def __aiter__(self) -> AsyncIterator[T]:
        while True:
            try:
                yield await self.recv()
            except Lagged:
                continue


class PubSub:
    """Channels for block, transaction and transaction-count updates."""

    def __init__(self, capacity: int = CHANNEL_CAPACITY) -> None:
        self._blocks: BroadcastChannel[int] = BroadcastChannel(capacity)
        self._transactions: BroadcastChannel[int] = BroadcastChannel(capacity)
        self._transaction_count: BroadcastChannel[int] = BroadcastChannel(capacity)

    def blocks_subscribe(self) -> BroadcastReceiver[int]:
        """Subscribe to new block heights."""
        return self._blocks.subscribe()

    def transactions_subscribe(self) -> BroadcastReceiver[int]:
        """Subscribe to block heights of new transactions."""
        return self._transactions.subscribe()

    def transaction_count_subscribe(self) -> BroadcastReceiver[int]:
        """Subscribe to changes of the total transaction count."""
        return self._transaction_count.subscribe()

    @staticmethod
    def _publish(channel: BroadcastChannel[int], value: int, what: str) -> None:
        try:
            channel.send(value)
        except LookupError:
            log.debug("No receivers for %s", what)
        else:
            log.debug("Published %s: %s", what, value)

    def publish_block(self, height: int) -> None:
        """Announce a new block height."""
        self._publish(self._blocks, height, "block update")

    def publish_transaction(self, tx_id: int) -> None:
        """Announce a new transaction, identified by its block height."""
        self._publish(self._transactions, tx_id, "transaction update")

    def publish_transaction_count(self, count: int) -> None:
        """Announce a new total transaction count."""
        self._publish(self._transaction_count, count, "transaction count update")

    def start_subscriptions(self, pool: Any) -> asyncio.Task[None]:
        """Start the database triggers and polling that feed these channels."""
        log.info("Starting subscription triggers")
        return asyncio.get_running_loop().create_task(start(self, pool))