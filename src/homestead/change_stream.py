"""In-process change stream for database rows.

Committed inserts, updates and deletes of captured tables are turned into
``ChangeEvent`` records and queued. A worker delivers them to subscribed
handlers in batches; a handler that raises or runs past its time budget is
re-invoked with the same batch up to ``max_retries`` more times before the
batch is dropped. Delivery is at-least-once and carries no idempotency key.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Optional

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from .config import settings

logger = logging.getLogger(__name__)

INSERT = "INSERT"
MODIFY = "MODIFY"
REMOVE = "REMOVE"

# Tables whose committed changes are streamed
CAPTURED_TABLES = frozenset({"ammo_details"})

_PENDING_KEY = "homestead_pending_changes"


@dataclass(frozen=True)
class ChangeEvent:
    """A single committed row change."""

    event_name: str
    table: str
    keys: dict[str, Any]
    new_image: dict[str, Any] = field(default_factory=dict)


Handler = Callable[[list[ChangeEvent]], Awaitable[Any]]


@dataclass
class Subscription:
    """A handler bound to one table and a set of event names."""

    name: str
    table: str
    handler: Handler
    event_names: frozenset[str]
    batch_size: int
    max_retries: int
    timeout: Optional[float]

    def matches(self, change: ChangeEvent) -> bool:
        return change.table == self.table and change.event_name in self.event_names


class ChangeStream:
    """Queue of change events with batched, retried delivery."""

    def __init__(self, poll_interval: float = 0.5) -> None:
        self.poll_interval = poll_interval
        self._pending: deque[ChangeEvent] = deque()
        self._subscriptions: list[Subscription] = []
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    @property
    def subscriptions(self) -> list[Subscription]:
        return list(self._subscriptions)

    def subscribe(
        self,
        table: str,
        handler: Handler,
        event_names: Iterable[str] = (INSERT, MODIFY, REMOVE),
        batch_size: Optional[int] = None,
        max_retries: Optional[int] = None,
        timeout: Optional[float] = None,
        name: Optional[str] = None,
    ) -> Subscription:
        """Register a handler for changes to ``table``."""
        subscription = Subscription(
            name=name or getattr(handler, "__name__", "handler"),
            table=table,
            handler=handler,
            event_names=frozenset(event_names),
            batch_size=batch_size or settings.threshold_batch_size,
            max_retries=settings.threshold_max_retries if max_retries is None else max_retries,
            timeout=timeout,
        )
        self._subscriptions.append(subscription)
        logger.info(
            "Subscribed %s to %s (events=%s, batch_size=%d, retries=%d)",
            subscription.name,
            table,
            sorted(subscription.event_names),
            subscription.batch_size,
            subscription.max_retries,
        )
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def publish(self, change: ChangeEvent) -> None:
        """Queue a change. Changes no subscription listens for are dropped."""
        if not any(sub.table == change.table for sub in self._subscriptions):
            return
        self._pending.append(change)

    def pending_count(self) -> int:
        return len(self._pending)

    def clear(self) -> None:
        self._pending.clear()

    async def process_pending(self) -> int:
        """Deliver everything queued so far. Returns the number of batches handed to handlers."""
        changes: list[ChangeEvent] = []
        while self._pending:
            changes.append(self._pending.popleft())
        if not changes:
            return 0

        delivered = 0
        for subscription in list(self._subscriptions):
            matching = [c for c in changes if subscription.matches(c)]
            for start in range(0, len(matching), subscription.batch_size):
                batch = matching[start:start + subscription.batch_size]
                await self._deliver(subscription, batch)
                delivered += 1
        return delivered

    async def _deliver(self, subscription: Subscription, batch: list[ChangeEvent]) -> bool:
        attempts = subscription.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                if subscription.timeout:
                    await asyncio.wait_for(subscription.handler(batch), timeout=subscription.timeout)
                else:
                    await subscription.handler(batch)
                return True
            except asyncio.TimeoutError:
                logger.error(
                    "%s timed out after %.0fs (attempt %d/%d)",
                    subscription.name,
                    subscription.timeout,
                    attempt,
                    attempts,
                )
            except Exception:  # Intentionally broad: any handler failure triggers redelivery
                logger.exception("%s failed (attempt %d/%d)", subscription.name, attempt, attempts)
        logger.error("Dropping batch of %d change(s) for %s after %d attempts", len(batch), subscription.name, attempts)
        return False

    async def run(self) -> None:
        """Poll the queue until stopped. A batch being delivered is always finished."""
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
            await self.process_pending()

    def start(self) -> None:
        if self._task is None or self._task.done():
            # Fresh per run; an Event binds to the loop that first waits on it
            self._stopping = asyncio.Event()
            self._task = asyncio.create_task(self.run())
            logger.info("Change stream worker started")

    async def stop(self) -> None:
        if self._task is not None:
            self._stopping.set()
            await self._task
            self._task = None
        await self.process_pending()
        logger.info("Change stream worker stopped")


change_stream = ChangeStream()


# ===== Capture from SQLAlchemy sessions =====


def _row_image(obj: Any) -> dict[str, Any]:
    mapper = inspect(obj).mapper
    return {attr.key: getattr(obj, attr.key) for attr in mapper.column_attrs}


def _row_keys(obj: Any) -> dict[str, Any]:
    mapper = inspect(obj).mapper
    return {col.key: getattr(obj, col.key) for col in mapper.primary_key}


def _table_name(obj: Any) -> Optional[str]:
    return getattr(obj, "__tablename__", None)


@event.listens_for(Session, "after_flush")
def _capture_changes(session: Session, _flush_context: object) -> None:
    """Collect flushed changes to captured tables until the transaction commits."""
    pending = session.info.setdefault(_PENDING_KEY, [])
    for obj in session.new:
        table = _table_name(obj)
        if table in CAPTURED_TABLES:
            pending.append(ChangeEvent(INSERT, table, _row_keys(obj), _row_image(obj)))
    for obj in session.dirty:
        table = _table_name(obj)
        if table in CAPTURED_TABLES and session.is_modified(obj, include_collections=False):
            pending.append(ChangeEvent(MODIFY, table, _row_keys(obj), _row_image(obj)))
    for obj in session.deleted:
        table = _table_name(obj)
        if table in CAPTURED_TABLES:
            pending.append(ChangeEvent(REMOVE, table, _row_keys(obj), {}))


@event.listens_for(Session, "after_commit")
def _publish_changes(session: Session) -> None:
    for change in session.info.pop(_PENDING_KEY, []):
        change_stream.publish(change)


@event.listens_for(Session, "after_rollback")
def _discard_changes(session: Session) -> None:
    session.info.pop(_PENDING_KEY, None)
