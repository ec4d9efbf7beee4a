"""
Connection gateway for the real-time channel.

Turns inbound JSON frames into registry changes and engine calls. Every
reply goes out through the dispatcher queue, behind any broadcast already
published, so a client never sees an older snapshot after a newer push.

Requests a client is not entitled to (subscribing to someone else's order,
asking for its status) are dropped without a reply, so the socket cannot be
used to probe which orders exist. Frames that cannot be understood get an
ERROR frame back.
"""
import json
from typing import Callable

from jose import JWTError
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from core.config import settings
from core.exceptions import Forbidden, NotFound, OrderServiceError, StoreUnavailable
from core.logging_config import channel_id_var
from models.users import ROLE_CUSTOMER
from schemas.realtime_schemas import AuthFrame, LocationFrame, OrderRefFrame, PartnerRefFrame
from services import authorization as guard
from services.dispatcher import BroadcastDispatcher, location_update_message, order_update_message
from services.locations import LocationStore
from services.order_service import OrderService
from services.order_store import SqlOrderStore
from services.subscriptions import Channel, ChannelSession, SubscriptionRegistry
from services.token_service import TokenService
from services.user_directory import UserDirectory
from utils.locks import order_locks
from utils.logger import get_logger, sanitize_log_data

logger = get_logger(__name__)

CONNECTION_ESTABLISHED = "CONNECTION_ESTABLISHED"
AUTHENTICATED = "AUTHENTICATED"
DASHBOARD_UPDATE = "DASHBOARD_UPDATE"
ERROR = "ERROR"
PONG = "PONG"


def error_frame(message: str) -> dict:
    return {"type": ERROR, "payload": {"message": message}}


class ConnectionGateway:

    def __init__(self, registry: SubscriptionRegistry, dispatcher: BroadcastDispatcher,
                 locations: LocationStore, session_factory: Callable[[], Session]):
        self.registry = registry
        self.dispatcher = dispatcher
        self.locations = locations
        self.session_factory = session_factory

        self._handlers = {
            "auth": self._on_auth,
            "AUTH": self._on_auth,
            "SUBSCRIBE_TO_ORDER": self._on_subscribe,
            "UNSUBSCRIBE_FROM_ORDER": self._on_unsubscribe,
            "SUBSCRIBE_TO_PARTNER": self._on_subscribe_partner,
            "UNSUBSCRIBE_FROM_PARTNER": self._on_unsubscribe_partner,
            "LOCATION_UPDATE": self._on_location,
            "GET_ORDER_STATUS": self._on_get_status,
            "GET_DASHBOARD_DATA": self._on_dashboard,
            "PING": self._on_ping,
        }

    # -------------------- connection lifecycle --------------------

    def connect(self, channel: Channel) -> ChannelSession:
        session = self.registry.add_channel(channel)
        self.dispatcher.send_to_channel(
            channel.channel_id,
            {"type": CONNECTION_ESTABLISHED, "payload": {"clientId": channel.channel_id}},
        )
        logger.info("Client connected", extra={"channel_id": channel.channel_id})
        return session

    def disconnect(self, channel_id: str) -> None:
        session = self.registry.remove_channel(channel_id)
        if session is not None:
            logger.info(
                "Client disconnected",
                extra={"channel_id": channel_id, "user_id": session.user_id}
            )

    # -------------------- inbound frames --------------------

    def handle_message(self, channel_id: str, raw: str) -> None:
        token = channel_id_var.set(channel_id)
        try:
            self._handle(channel_id, raw)
        finally:
            channel_id_var.reset(token)

    def _handle(self, channel_id: str, raw: str) -> None:
        session = self.registry.session(channel_id)
        if session is None:
            return

        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            self._reply(channel_id, error_frame("Malformed JSON"))
            return

        if not isinstance(message, dict) or not isinstance(message.get("type"), str):
            self._reply(channel_id, error_frame("Message must be an object with a 'type'"))
            return

        handler = self._handlers.get(message["type"])
        if handler is None:
            logger.warning(
                "Unknown message type",
                extra={"message_type": message["type"], "frame": sanitize_log_data(message)}
            )
            self._reply(channel_id, error_frame(f"Unknown message type: {message['type']}"))
            return

        payload = message.get("payload")
        if payload is None:
            payload = {k: v for k, v in message.items() if k != "type"}
        if not isinstance(payload, dict):
            self._reply(channel_id, error_frame("payload must be an object"))
            return

        try:
            handler(session, payload)
        except PydanticValidationError as exc:
            self._reply(channel_id, error_frame(f"Invalid {message['type']} payload: {exc.errors()[0]['msg']}"))
        except StoreUnavailable:
            self._reply(channel_id, error_frame("Service temporarily unavailable"))
        except OrderServiceError as exc:
            self._reply(channel_id, error_frame(exc.detail))
        except Exception as exc:
            logger.error(
                f"Unhandled exception in {message['type']}: {str(exc)}",
                extra={
                    "message_type": message["type"],
                    "error_type": type(exc).__name__,
                    "frame": sanitize_log_data(payload),
                },
                exc_info=True
            )
            self._reply(channel_id, error_frame("Internal server error"))

    # -------------------- handlers --------------------

    def _on_auth(self, session: ChannelSession, payload: dict) -> None:
        frame = AuthFrame.model_validate(payload)

        if frame.token:
            try:
                claims = TokenService.decode_access_token(frame.token)
            except JWTError:
                self._reply(session.channel_id, error_frame("Could not validate credentials."))
                return
            user_id = claims["user_id"]
        elif settings.WS_ALLOW_USER_ID_AUTH:
            user_id = frame.user_id
        else:
            self._reply(session.channel_id, error_frame("Token authentication required"))
            return

        with self.session_factory() as db:
            user = UserDirectory.get_active_user_by_id(db, user_id)
            if user is None:
                logger.warning("Channel auth failed - user not found", extra={"user_id": user_id})
                self._reply(session.channel_id, error_frame("User not found"))
                return
            user_id, role = user.id, user.role

        self.registry.bind_identity(session.channel_id, user_id, role)
        self._reply(session.channel_id, {"type": AUTHENTICATED, "payload": {"userId": user_id, "role": role}})
        logger.info("Channel authenticated", extra={"user_id": user_id, "role": role})

    def _on_subscribe(self, session: ChannelSession, payload: dict) -> None:
        order_id = OrderRefFrame.model_validate(payload).order_id

        with self.session_factory() as db:
            order = SqlOrderStore(db).get(order_id)
            if order is None or not guard.can_view(session.role, session.user_id, order):
                logger.debug("Subscribe ignored", extra={"order_id": order_id, "user_id": session.user_id})
                return

        self.registry.subscribe(session.channel_id, order_id)
        logger.debug("Subscribed to order", extra={"order_id": order_id, "user_id": session.user_id})

    def _on_unsubscribe(self, session: ChannelSession, payload: dict) -> None:
        order_id = OrderRefFrame.model_validate(payload).order_id
        self.registry.unsubscribe(session.channel_id, order_id)

    def _on_get_status(self, session: ChannelSession, payload: dict) -> None:
        """
        Snapshot + subscribe. Clients send this after every (re)connect to
        resync before relying on pushes.
        """
        order_id = OrderRefFrame.model_validate(payload).order_id

        with self.session_factory() as db:
            service = self._service(db)
            # Same lock as writers: no update for this order can be enqueued
            # between reading the snapshot and enqueueing it
            with order_locks.hold(order_id):
                try:
                    order = service.get_order(order_id, session.actor)
                except (NotFound, Forbidden):
                    logger.debug("Status request ignored", extra={"order_id": order_id, "user_id": session.user_id})
                    return

                location = None
                if order.delivery_partner_id is not None:
                    location = self.locations.get(order.delivery_partner_id)

                self.registry.subscribe(session.channel_id, order_id)
                self._reply(session.channel_id, order_update_message(order, location))

    def _on_subscribe_partner(self, session: ChannelSession, payload: dict) -> None:
        partner_id = PartnerRefFrame.model_validate(payload).delivery_partner_id

        assigned: set[int] = set()
        if session.role == ROLE_CUSTOMER and session.user_id is not None:
            with self.session_factory() as db:
                assigned = self._service(db).assigned_partner_ids(session.user_id)

        if not guard.can_track_partner(session.role, session.user_id, partner_id, assigned):
            logger.debug("Partner subscribe ignored", extra={"delivery_partner_id": partner_id})
            return

        self.registry.subscribe_to_partner(session.channel_id, partner_id)

        location = self.locations.get(partner_id)
        if location is not None:
            self._reply(session.channel_id, location_update_message(location))

    def _on_unsubscribe_partner(self, session: ChannelSession, payload: dict) -> None:
        partner_id = PartnerRefFrame.model_validate(payload).delivery_partner_id
        self.registry.unsubscribe_from_partner(session.channel_id, partner_id)

    def _on_location(self, session: ChannelSession, payload: dict) -> None:
        frame = LocationFrame.model_validate(payload)

        if not guard.can_report_location(session.role, session.user_id, frame.delivery_partner_id):
            logger.debug(
                "Location report ignored",
                extra={"delivery_partner_id": frame.delivery_partner_id, "user_id": session.user_id}
            )
            return

        with self.session_factory() as db:
            self._service(db).report_location(
                session.actor,
                frame.delivery_partner_id,
                frame.location.lat,
                frame.location.lng,
                order_id=frame.order_id,
            )

    def _on_dashboard(self, session: ChannelSession, payload: dict) -> None:
        with self.session_factory() as db:
            try:
                data = self._service(db).dashboard(session.actor)
            except Forbidden:
                logger.debug("Dashboard request ignored", extra={"user_id": session.user_id})
                return
        self._reply(session.channel_id, {"type": DASHBOARD_UPDATE, "payload": data})

    def _on_ping(self, session: ChannelSession, payload: dict) -> None:
        self._reply(session.channel_id, {"type": PONG, "payload": {}})

    # -------------------- helpers --------------------

    def _service(self, db: Session) -> OrderService:
        return OrderService(db, self.dispatcher, self.locations)

    def _reply(self, channel_id: str, message: dict) -> None:
        self.dispatcher.send_to_channel(channel_id, message)
