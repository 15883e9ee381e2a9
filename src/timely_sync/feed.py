"""Change-feed subscription for one topic (one table + one scope filter)."""
from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from timely_sync.models import ChangeEvent, SubscriptionClosedError
from timely_sync.source import FeedFilter, RecordSource

logger = logging.getLogger("timely_sync.feed")

EventCallback = Callable[[ChangeEvent], None]
InvalidCallback = Callable[[Mapping[str, Any], Exception], None]


class ChangeFeedSubscription:
    """Typed, idempotently closable wrapper around a source's change feed.

    Delivery is at-least-once while connected with no ordering guarantee
    across topics. Once :meth:`close` has run, nothing further reaches
    ``on_event`` even if the transport delivers late.
    """

    def __init__(
        self,
        source: RecordSource,
        table: str,
        feed_filter: FeedFilter,
        on_event: EventCallback,
        *,
        on_lost: Optional[Callable[[], None]] = None,
        on_invalid: Optional[InvalidCallback] = None,
    ) -> None:
        self._source = source
        self.table = table
        self.feed_filter = feed_filter
        self._on_event = on_event
        self._on_lost = on_lost
        self._on_invalid = on_invalid
        self._handle: Optional[object] = None
        self._closed = False

    @property
    def is_open(self) -> bool:
        return self._handle is not None and not self._closed

    @property
    def closed(self) -> bool:
        return self._closed

    def open(self) -> "ChangeFeedSubscription":
        """Start delivery. Opening an already-open subscription is a no-op.

        Raises:
            SubscriptionClosedError: If the subscription was closed.
        """
        if self._closed:
            raise SubscriptionClosedError(
                f"Subscription to {self.table} ({self.feed_filter.to_expr()}) is closed"
            )
        if self._handle is None:
            self._handle = self._source.subscribe(
                self.table, self.feed_filter, self._dispatch, self._lost
            )
            logger.info("Subscribed to %s (%s)", self.table, self.feed_filter.to_expr())
        return self

    def close(self) -> None:
        """Stop delivery. Safe to call repeatedly; never raises."""
        if self._closed:
            return
        self._closed = True
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            self._source.unsubscribe(handle)
        except Exception:
            logger.warning(
                "Unsubscribe from %s failed; channel abandoned", self.table, exc_info=True
            )
        else:
            logger.info("Unsubscribed from %s (%s)", self.table, self.feed_filter.to_expr())

    def _dispatch(self, payload: Mapping[str, Any]) -> None:
        if not self.is_open:
            return
        try:
            event = ChangeEvent.from_payload({"table": self.table, **payload})
        except PydanticValidationError as exc:
            logger.warning("Ignoring unparseable %s change payload: %s", self.table, exc)
            if self._on_invalid is not None:
                self._on_invalid(payload, exc)
            return
        self._on_event(event)

    def _lost(self) -> None:
        if not self.is_open:
            return
        # The transport has already dropped the channel.
        self._handle = None
        logger.warning("Change feed for %s (%s) was lost", self.table, self.feed_filter.to_expr())
        if self._on_lost is not None:
            self._on_lost()
