"""
In-memory subscription registry for real-time channels.

Maps order ids and delivery partner ids to the channels listening for
them, and channels to the identity they authenticated as. Every operation
is a short set mutation under a lock; nothing is shared across
processes.
"""
import threading
from dataclasses import dataclass, field
from typing import Optional, Protocol

from core.metrics import connected_channels
from services.authorization import Actor
from utils.logger import get_logger

logger = get_logger(__name__)


class Channel(Protocol):
    """A connected client the dispatcher can push JSON frames to."""

    channel_id: str

    @property
    def is_open(self) -> bool:
        ...

    async def send_json(self, message: dict) -> None:
        ...


@dataclass
class ChannelSession:
    channel: Channel
    user_id: Optional[int] = None
    role: Optional[str] = None
    order_ids: set[int] = field(default_factory=set)
    partner_ids: set[int] = field(default_factory=set)

    @property
    def channel_id(self) -> str:
        return self.channel.channel_id

    @property
    def actor(self) -> Actor:
        return Actor(user_id=self.user_id, role=self.role)


def _discard(index: dict, key, channel_id: str) -> None:
    members = index.get(key)
    if members is None:
        return
    members.discard(channel_id)
    if not members:
        del index[key]


class SubscriptionRegistry:
    """
    Frames are handled on worker threads while the dispatcher reads on the
    event loop, so every operation runs under one re-entrant lock. Lookups
    return frozen copies.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._sessions: dict[str, ChannelSession] = {}
        self._order_subscribers: dict[int, set[str]] = {}
        self._partner_subscribers: dict[int, set[str]] = {}
        self._user_channels: dict[int, set[str]] = {}
        self._role_channels: dict[str, set[str]] = {}

    # -------------------- channels --------------------

    def add_channel(self, channel: Channel) -> ChannelSession:
        with self._lock:
            if channel.channel_id in self._sessions:
                raise ValueError(f"Channel {channel.channel_id} already registered")

            session = ChannelSession(channel=channel)
            self._sessions[channel.channel_id] = session
            connected_channels.set(len(self._sessions))
        return session

    def remove_channel(self, channel_id: str) -> Optional[ChannelSession]:
        """
        Forget a channel and every subscription it holds.

        Only the channel's own subscriptions are visited, not the whole
        registry.
        """
        with self._lock:
            session = self._sessions.pop(channel_id, None)
            if session is None:
                return None

            for order_id in session.order_ids:
                _discard(self._order_subscribers, order_id, channel_id)
            for partner_id in session.partner_ids:
                _discard(self._partner_subscribers, partner_id, channel_id)
            if session.user_id is not None:
                _discard(self._user_channels, session.user_id, channel_id)
            if session.role is not None:
                _discard(self._role_channels, session.role, channel_id)

            logger.debug(
                "Channel removed",
                extra={"target_channel": channel_id, "orders": len(session.order_ids)}
            )
            session.order_ids.clear()
            session.partner_ids.clear()
            connected_channels.set(len(self._sessions))
        return session

    def get_channel(self, channel_id: str) -> Optional[Channel]:
        with self._lock:
            session = self._sessions.get(channel_id)
        return session.channel if session else None

    def session(self, channel_id: str) -> Optional[ChannelSession]:
        with self._lock:
            return self._sessions.get(channel_id)

    def bind_identity(self, channel_id: str, user_id: int, role: str) -> bool:
        """
        Attach an authenticated identity to a channel.

        Re-authenticating as someone else drops the channel's existing
        subscriptions, since they were granted to the previous identity.
        """
        with self._lock:
            session = self._sessions.get(channel_id)
            if session is None:
                return False

            if session.user_id is not None and (session.user_id, session.role) != (user_id, role):
                for order_id in list(session.order_ids):
                    self.unsubscribe(channel_id, order_id)
                for partner_id in list(session.partner_ids):
                    self.unsubscribe_from_partner(channel_id, partner_id)
                _discard(self._user_channels, session.user_id, channel_id)
                _discard(self._role_channels, session.role, channel_id)

            session.user_id = user_id
            session.role = role
            self._user_channels.setdefault(user_id, set()).add(channel_id)
            self._role_channels.setdefault(role, set()).add(channel_id)
        return True

    # -------------------- subscriptions --------------------

    def subscribe(self, channel_id: str, order_id: int) -> bool:
        with self._lock:
            session = self._sessions.get(channel_id)
            if session is None:
                return False
            session.order_ids.add(order_id)
            self._order_subscribers.setdefault(order_id, set()).add(channel_id)
        return True

    def unsubscribe(self, channel_id: str, order_id: int) -> bool:
        with self._lock:
            session = self._sessions.get(channel_id)
            if session is None or order_id not in session.order_ids:
                return False
            session.order_ids.discard(order_id)
            _discard(self._order_subscribers, order_id, channel_id)
        return True

    def subscribe_to_partner(self, channel_id: str, partner_id: int) -> bool:
        with self._lock:
            session = self._sessions.get(channel_id)
            if session is None:
                return False
            session.partner_ids.add(partner_id)
            self._partner_subscribers.setdefault(partner_id, set()).add(channel_id)
        return True

    def unsubscribe_from_partner(self, channel_id: str, partner_id: int) -> bool:
        with self._lock:
            session = self._sessions.get(channel_id)
            if session is None or partner_id not in session.partner_ids:
                return False
            session.partner_ids.discard(partner_id)
            _discard(self._partner_subscribers, partner_id, channel_id)
        return True

    # -------------------- lookups --------------------

    def order_subscribers(self, order_id: int) -> frozenset[str]:
        with self._lock:
            return frozenset(self._order_subscribers.get(order_id, ()))

    def partner_subscribers(self, partner_id: int) -> frozenset[str]:
        with self._lock:
            return frozenset(self._partner_subscribers.get(partner_id, ()))

    def channels_for_user(self, user_id: int) -> frozenset[str]:
        with self._lock:
            return frozenset(self._user_channels.get(user_id, ()))

    def channels_for_role(self, role: str) -> frozenset[str]:
        with self._lock:
            return frozenset(self._role_channels.get(role, ()))

    def stats(self) -> dict:
        with self._lock:
            return {
                "channels": len(self._sessions),
                "authenticated": sum(1 for s in self._sessions.values() if s.user_id is not None),
                "order_subscriptions": sum(len(c) for c in self._order_subscribers.values()),
                "partner_subscriptions": sum(len(c) for c in self._partner_subscribers.values()),
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, channel_id: str) -> bool:
        with self._lock:
            return channel_id in self._sessions
