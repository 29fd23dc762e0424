"""Real-time dispatcher.

Fans the single upstream change feed (the process :data:`event_bus`) out to
per-user subscriptions.  Each subscription owns a bounded queue and a writer
task, so a slow or broken consumer only ever loses *its own* events: the bus
callback never awaits a subscriber.

The stream is a liveness optimisation, not a source of truth.  Nothing is
replayed after a reconnect; clients re-fetch state (see the ``sync`` frame in
:mod:`rendezvous.websocket.handlers`).
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from dataclasses import dataclass
from dataclasses import field
from typing import Any
from typing import Awaitable
from typing import Callable
from typing import Dict
from typing import Optional
from typing import Set

from fastapi.encoders import jsonable_encoder

from rendezvous.config import get_settings
from rendezvous.events import EventBus
from rendezvous.events import EventType
from rendezvous.events import event_bus
from rendezvous.schemas.ws_messages import ChangeData
from rendezvous.schemas.ws_messages import Envelope
from rendezvous.schemas.ws_messages import conversation_topic
from rendezvous.schemas.ws_messages import user_topic
from rendezvous.utils.log import get_logger

logger = logging.getLogger(__name__)
slog = get_logger(component="dispatcher")

# EventType -> (entity, op) as seen by clients.
EVENT_SHAPES: Dict[EventType, tuple] = {
    EventType.CONVERSATION_CREATED: ("conversation", "insert"),
    EventType.CONVERSATION_UPDATED: ("conversation", "update"),
    EventType.PARTICIPANT_ADDED: ("participant", "insert"),
    EventType.PARTICIPANT_REMOVED: ("participant", "delete"),
    EventType.PARTICIPANT_UPDATED: ("participant", "update"),
    EventType.MESSAGE_CREATED: ("message", "insert"),
    EventType.MESSAGE_UPDATED: ("message", "update"),
    EventType.MESSAGE_DELETED: ("message", "delete"),
    EventType.MESSAGES_READ: ("read", "insert"),
    EventType.NOTIFICATION_CREATED: ("notification", "insert"),
    EventType.NOTIFICATION_UPDATED: ("notification", "update"),
    EventType.NOTIFICATION_DELETED: ("notification", "delete"),
}


@dataclass(frozen=True)
class ChangeEvent:
    """One insert/update/delete delivered to a subscription."""

    event_type: EventType
    entity: str
    op: str
    entity_id: Any
    conversation_id: Optional[int] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_bus(cls, payload: Dict[str, Any]) -> "ChangeEvent":
        event_type = EventType(payload["event_type"])
        entity, op = EVENT_SHAPES[event_type]
        return cls(
            event_type=event_type,
            entity=entity,
            op=op,
            entity_id=payload.get("entity_id"),
            conversation_id=payload.get("conversation_id"),
            data=payload.get("data") or {},
        )

    def to_envelope(self, user_id: int) -> Envelope:
        topic = conversation_topic(self.conversation_id) if self.conversation_id else user_topic(user_id)
        change = ChangeData(
            entity=self.entity,
            op=self.op,
            entity_id=self.entity_id,
            conversation_id=self.conversation_id,
            row=self.data,
        )
        return Envelope.create(
            message_type=self.event_type.value,
            topic=topic,
            data=jsonable_encoder(change.model_dump()),
        )


OnEvent = Callable[[ChangeEvent], Awaitable[None]]
OnClose = Callable[[str], Any]

# Queued by Subscription._close() to release a parked writer.
_CLOSED = object()


class Subscription:
    """Cancellable handle returned by :meth:`RealtimeDispatcher.subscribe`."""

    def __init__(
        self,
        dispatcher: "RealtimeDispatcher",
        user_id: int,
        on_event: OnEvent,
        on_close: Optional[OnClose],
        queue_size: int,
    ):
        self.id = uuid.uuid4().hex
        self.user_id = user_id
        self._dispatcher = dispatcher
        self._on_event = on_event
        self._on_close = on_close
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def cancel(self) -> None:
        """Release the subscription.  Safe to call repeatedly, from anywhere."""
        self._dispatcher.unsubscribe(self)

    # Internal ----------------------------------------------------------

    def _offer(self, event: ChangeEvent) -> bool:
        """Enqueue without waiting; ``False`` means the queue is full."""
        if self._closed:
            return True
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            return False
        return True

    def _close(self) -> None:
        self._closed = True
        task = self._task
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is current:
            return

        # Wake a writer parked on get(); a cancel landing as wait_for()
        # completes can be swallowed, the sentinel cannot.
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
        self._queue.put_nowait(_CLOSED)
        task.cancel()

    async def _writer(self, send_timeout: float) -> None:
        try:
            while not self._closed:
                event = await self._queue.get()
                if event is _CLOSED or self._closed:
                    # Sentinel, or a late event queued before the handle was cancelled.
                    self._queue.task_done()
                    return
                try:
                    await asyncio.wait_for(self._on_event(event), timeout=send_timeout)
                except asyncio.TimeoutError:
                    self._dispatcher._drop(self, "send_timeout")
                    return
                except Exception as e:
                    logger.warning("Delivery to subscription %s failed: %s", self.id, e)
                    self._dispatcher._drop(self, "callback_error")
                    return
                finally:
                    self._queue.task_done()
        except asyncio.CancelledError:
            logger.debug("Writer task for subscription %s cancelled", self.id)


class RealtimeDispatcher:
    """Relays change events from the event bus to per-user subscriptions."""

    def __init__(
        self,
        bus: Optional[EventBus] = None,
        *,
        queue_size: Optional[int] = None,
        send_timeout: Optional[float] = None,
    ):
        settings = get_settings()
        self._bus = bus or event_bus
        self.queue_size = queue_size if queue_size is not None else settings.realtime_queue_size
        self.send_timeout = send_timeout if send_timeout is not None else settings.realtime_send_timeout
        # user_id -> {subscription_id: Subscription}
        self._subscriptions: Dict[int, Dict[str, Subscription]] = {}
        # Async on_close callbacks still running.
        self._close_tasks: Set[asyncio.Future] = set()

        self._setup_event_handlers()

    def _setup_event_handlers(self) -> None:
        """Attach once to every change event type on the bus."""
        for event_type in EVENT_SHAPES:
            self._bus.subscribe(event_type, self._handle_change)

    def detach(self) -> None:
        """Stop listening to the bus (used by tests building private dispatchers)."""
        for event_type in EVENT_SHAPES:
            self._bus.unsubscribe(event_type, self._handle_change)

    # ------------------------------------------------------------------
    # Subscription lifecycle
    # ------------------------------------------------------------------

    async def subscribe(self, user_id: int, on_event: OnEvent, on_close: Optional[OnClose] = None) -> Subscription:
        """Open a scoped feed for *user_id*.

        *on_event* is awaited for every :class:`ChangeEvent` the user may
        see, in arrival order.  *on_close* (sync or async) receives a reason
        string when the dispatcher drops the subscription on its own (queue
        overflow, failing or slow callback, shutdown); it is not called for an
        explicit :meth:`unsubscribe`.
        """

        subscription = Subscription(self, user_id, on_event, on_close, self.queue_size)
        subscription._task = asyncio.create_task(subscription._writer(self.send_timeout))
        self._subscriptions.setdefault(user_id, {})[subscription.id] = subscription
        logger.info("Subscription %s opened for user %s", subscription.id, user_id)
        return subscription

    def unsubscribe(self, handle: Subscription) -> None:
        """Cancel *handle*.  Idempotent."""

        if handle.closed:
            return
        handle._close()
        user_subs = self._subscriptions.get(handle.user_id)
        if user_subs is not None:
            user_subs.pop(handle.id, None)
            if not user_subs:
                del self._subscriptions[handle.user_id]
        logger.info("Subscription %s closed for user %s", handle.id, handle.user_id)

    def _drop(self, handle: Subscription, reason: str) -> None:
        if handle.closed:
            return
        self.unsubscribe(handle)
        slog.warning("subscription_dropped", subscription_id=handle.id, user_id=handle.user_id, reason=reason)

        if handle._on_close is None:
            return
        try:
            result = handle._on_close(reason)
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._close_tasks.add(task)
                task.add_done_callback(self._on_close_done)
        except Exception:
            logger.exception("on_close callback of subscription %s failed", handle.id)

    def _on_close_done(self, task: asyncio.Future) -> None:
        self._close_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Async on_close callback failed: %s", exc, exc_info=exc)

    def subscription_count(self, user_id: Optional[int] = None) -> int:
        if user_id is not None:
            return len(self._subscriptions.get(user_id, {}))
        return sum(len(subs) for subs in self._subscriptions.values())

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    async def _handle_change(self, payload: Dict[str, Any]) -> None:
        """Bus callback: route one change to every entitled subscription."""

        if not self._subscriptions:
            return

        event = ChangeEvent.from_bus(payload)
        for user_id in payload.get("audience", ()):
            for subscription in list(self._subscriptions.get(user_id, {}).values()):
                if not subscription._offer(event):
                    self._drop(subscription, "queue_full")

    async def shutdown(self) -> None:
        """Drop every subscription and wait for writer tasks to finish."""

        tasks = []
        for user_subs in list(self._subscriptions.values()):
            for subscription in list(user_subs.values()):
                if subscription._task is not None:
                    tasks.append(subscription._task)
                self._drop(subscription, "shutdown")
        tasks.extend(self._close_tasks)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


# Global dispatcher instance bound to the process event bus
dispatcher = RealtimeDispatcher()
