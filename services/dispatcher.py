"""
Broadcast dispatcher: the single consumer that pushes frames to channels.

Publishers (the lifecycle engine, the gateway) only enqueue. One asyncio
task drains the queue in FIFO order, so frames about the same order reach
each subscriber in the order they were published. Recipients are resolved
against the registry when a frame is delivered, not when it is published:
a channel removed in between is never written to.

A failed, closed or slow channel is skipped and logged. Nothing raised
while pushing ever reaches the publisher.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from core.config import settings
from core.metrics import broadcast_messages_dropped_total, broadcast_messages_sent_total
from models.orders import Order
from models.users import ROLE_ADMIN
from services.locations import Location
from services.subscriptions import SubscriptionRegistry
from utils.logger import get_logger, log_broadcast

logger = get_logger(__name__)

ORDER_UPDATE = "ORDER_UPDATE"
LOCATION_UPDATE = "LOCATION_UPDATE"
NEW_ORDER = "NEW_ORDER"

Delivery = list[tuple[str, dict]]


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def order_update_message(order: Order, location: Optional[Location] = None) -> dict:
    payload = {
        "orderId": order.id,
        "status": order.status,
        "eta": order.estimated_delivery_time,
        "paymentStatus": order.payment_status,
        "version": order.version,
        "updatedAt": _iso(order.updated_at),
    }
    if order.delivery_partner_id is not None:
        payload["deliveryPartnerId"] = order.delivery_partner_id
    if location is not None:
        payload["location"] = location.to_payload()
    return {"type": ORDER_UPDATE, "payload": payload}


def location_update_message(location: Location, order_id: Optional[int] = None) -> dict:
    payload = {
        "deliveryPartnerId": location.delivery_partner_id,
        "location": location.to_payload(),
        "capturedAt": _iso(location.captured_at),
    }
    if order_id is not None:
        payload["orderId"] = order_id
    return {"type": LOCATION_UPDATE, "payload": payload}


def new_order_message(order: Order) -> dict:
    return {
        "type": NEW_ORDER,
        "payload": {
            "orderId": order.id,
            "userId": order.user_id,
            "status": order.status,
            "total": order.total,
            "itemCount": len(order.items),
            "createdAt": _iso(order.created_at),
        },
    }


@dataclass
class Envelope:
    message_type: str
    resolve: Callable[[], Delivery]
    context: dict = field(default_factory=dict)


class BroadcastDispatcher:

    def __init__(self, registry: SubscriptionRegistry,
                 send_timeout: float = settings.BROADCAST_SEND_TIMEOUT_SECONDS,
                 notify_admins: bool = settings.BROADCAST_ORDER_UPDATES_TO_ADMINS):
        self.registry = registry
        self.send_timeout = send_timeout
        self.notify_admins = notify_admins
        self._queue: asyncio.Queue = asyncio.Queue()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._task: Optional[asyncio.Task] = None

    # -------------------- lifecycle --------------------

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return

        # Fresh queue bound to this loop; keep anything published before start
        pending = []
        while not self._queue.empty():
            pending.append(self._queue.get_nowait())
        self._queue = asyncio.Queue()
        for envelope in pending:
            self._queue.put_nowait(envelope)

        self._loop = asyncio.get_running_loop()
        self._task = asyncio.create_task(self._run(), name="broadcast-dispatcher")
        logger.info("Broadcast dispatcher started", extra={"pending": len(pending)})

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self._loop = None
        logger.info("Broadcast dispatcher stopped")

    async def drain(self) -> None:
        """Wait until everything published so far has been delivered."""
        if self._loop is not None:
            # Let publishes still sitting in the loop's ready queue land first
            barrier = self._loop.create_future()
            self._loop.call_soon_threadsafe(barrier.set_result, None)
            await barrier
        await self._queue.join()

    def pending(self) -> int:
        return self._queue.qsize()

    # -------------------- publishing --------------------

    def broadcast_order_update(self, order: Order, previous_partner_id: Optional[int] = None,
                               location: Optional[Location] = None) -> None:
        """
        Push the order's current state to its subscribers, to the channels of
        the assigned courier (and of the courier it was taken from, on
        reassignment) and, when enabled, to every admin channel.
        """
        message = order_update_message(order, location)
        order_id = order.id
        partner_ids = {pid for pid in (order.delivery_partner_id, previous_partner_id) if pid is not None}

        def resolve() -> Delivery:
            targets = set(self.registry.order_subscribers(order_id))
            for partner_id in partner_ids:
                targets |= self.registry.channels_for_user(partner_id)
            if self.notify_admins:
                targets |= self.registry.channels_for_role(ROLE_ADMIN)
            return [(channel_id, message) for channel_id in sorted(targets)]

        self._publish(Envelope(ORDER_UPDATE, resolve, {"order_id": order_id}))

    def broadcast_location_update(self, partner_id: int, location: Location,
                                  order_ids: Iterable[int] = ()) -> None:
        """
        Push a courier position to channels tracking the courier and to the
        subscribers of each given order. A channel reached both ways gets
        one frame.
        """
        order_ids = list(order_ids)

        def resolve() -> Delivery:
            deliveries: Delivery = []
            seen: set[str] = set()

            partner_message = location_update_message(location)
            for channel_id in sorted(self.registry.partner_subscribers(partner_id)):
                seen.add(channel_id)
                deliveries.append((channel_id, partner_message))

            for order_id in order_ids:
                order_message = location_update_message(location, order_id)
                for channel_id in sorted(self.registry.order_subscribers(order_id)):
                    if channel_id in seen:
                        continue
                    seen.add(channel_id)
                    deliveries.append((channel_id, order_message))
            return deliveries

        self._publish(Envelope(LOCATION_UPDATE, resolve, {"delivery_partner_id": partner_id}))

    def broadcast_to_role(self, role: str, message: dict) -> None:
        def resolve() -> Delivery:
            return [(channel_id, message) for channel_id in sorted(self.registry.channels_for_role(role))]

        self._publish(Envelope(message.get("type", "MESSAGE"), resolve))

    def send_to_channel(self, channel_id: str, message: dict) -> None:
        """Direct reply, queued behind any broadcast already published."""
        self._publish(Envelope(message.get("type", "MESSAGE"), lambda: [(channel_id, message)]))

    def _publish(self, envelope: Envelope) -> None:
        loop = self._loop
        if loop is not None and loop.is_running():
            # One FIFO for every publisher, loop thread included
            loop.call_soon_threadsafe(self._queue.put_nowait, envelope)
            return
        self._queue.put_nowait(envelope)

    # -------------------- delivery --------------------

    async def _run(self) -> None:
        while True:
            envelope = await self._queue.get()
            try:
                await self._deliver(envelope)
            except Exception:
                logger.error(
                    "Broadcast delivery failed",
                    extra={"message_type": envelope.message_type, **envelope.context},
                    exc_info=True
                )
            finally:
                self._queue.task_done()

    async def _deliver(self, envelope: Envelope) -> None:
        delivered = dropped = 0

        for channel_id, message in envelope.resolve():
            channel = self.registry.get_channel(channel_id)
            if channel is None or not channel.is_open:
                dropped += 1
                broadcast_messages_dropped_total.labels(message_type=envelope.message_type).inc()
                continue

            try:
                await asyncio.wait_for(channel.send_json(message), timeout=self.send_timeout)
            except asyncio.TimeoutError:
                dropped += 1
                broadcast_messages_dropped_total.labels(message_type=envelope.message_type).inc()
                logger.warning(
                    "Push timed out",
                    extra={"target_channel": channel_id, "message_type": envelope.message_type}
                )
                continue
            except Exception as exc:
                dropped += 1
                broadcast_messages_dropped_total.labels(message_type=envelope.message_type).inc()
                logger.debug(
                    f"Push failed: {str(exc)}",
                    extra={"target_channel": channel_id, "error_type": type(exc).__name__}
                )
                continue

            delivered += 1
            broadcast_messages_sent_total.labels(message_type=envelope.message_type).inc()

        log_broadcast(
            logger,
            envelope.message_type,
            delivered=delivered,
            dropped=dropped,
            order_id=envelope.context.get("order_id"),
            delivery_partner_id=envelope.context.get("delivery_partner_id"),
        )
