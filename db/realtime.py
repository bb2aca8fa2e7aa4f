"""
Realtime change feed over Supabase postgres_changes channels.

    async with await feed.subscribe(EventFilter(table="appointments")) as events:
        async for event in events:
            ...

Each subscription owns one channel; unsubscribing removes the channel,
ends iteration and drops the subscription from its feed.
"""

import asyncio
import itertools
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from supabase import AsyncClient, acreate_client

from config import settings
from models.events import ChangeEvent, EventFilter
from utils.exceptions import DatabaseError

logger = logging.getLogger(__name__)

_CLOSED = object()
_channel_ids = itertools.count(1)


class Subscription:
    """Async iterator of ChangeEvent for one EventFilter."""

    def __init__(
        self,
        event_filter: EventFilter,
        remove_channel: Callable[[Any], Awaitable[Any]],
        max_pending: int = 1000,
        on_close: Optional[Callable[["Subscription"], None]] = None,
    ):
        self.event_filter = event_filter
        self.channel: Any = None
        self._remove_channel = remove_channel
        self._on_close = on_close
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _on_change(self, payload: Dict[str, Any]) -> None:
        """Channel callback; runs on the realtime client's receive loop."""
        if self._closed:
            return
        try:
            event = ChangeEvent.from_payload(payload)
        except ValueError as e:
            logger.warning(f"Dropping undecodable change payload: {e}")
            return

        if self._queue.full():
            dropped = self._queue.get_nowait()
            logger.warning(
                f"Subscriber too slow on {self.event_filter.topic}, dropped {dropped}"
            )
        self._queue.put_nowait(event)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ChangeEvent:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    async def unsubscribe(self) -> None:
        """Remove the channel and end iteration. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)
        if self._on_close is not None:
            self._on_close(self)

        if self.channel is not None:
            try:
                await self._remove_channel(self.channel)
            except Exception as e:
                raise DatabaseError(f"Failed to remove realtime channel: {e}") from e
        logger.info(f"Unsubscribed from {self.event_filter.topic}")

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.unsubscribe()


class RealtimeFeed:
    """Creates subscriptions on a shared async Supabase client."""

    def __init__(self, client: Optional[AsyncClient] = None):
        self._client = client
        self._subscriptions: Set[Subscription] = set()

    async def _get_client(self) -> AsyncClient:
        if self._client is None:
            self._client = await acreate_client(settings.supabase_url, settings.supabase_key)
        return self._client

    async def subscribe(self, event_filter: EventFilter) -> Subscription:
        """
        Start receiving changes matching ``event_filter``.

        Raises:
            DatabaseError: if the channel cannot be joined
        """
        try:
            client = await self._get_client()
            subscription = Subscription(
                event_filter,
                client.remove_channel,
                on_close=self._subscriptions.discard,
            )

            channel = client.channel(f"{event_filter.topic}#{next(_channel_ids)}")
            options = {"table": event_filter.table, "schema": event_filter.schema_name}
            if event_filter.postgres_filter:
                options["filter"] = event_filter.postgres_filter

            channel.on_postgres_changes(
                event_filter.event.value, callback=subscription._on_change, **options
            )
            await channel.subscribe()
        except Exception as e:
            raise DatabaseError(f"Failed to subscribe to {event_filter.topic}: {e}") from e

        subscription.channel = channel
        self._subscriptions.add(subscription)
        logger.info(f"Subscribed to {event_filter.topic}")
        return subscription

    async def close(self) -> None:
        """Unsubscribe everything still open."""
        for subscription in list(self._subscriptions):
            await subscription.unsubscribe()
        self._subscriptions.clear()
