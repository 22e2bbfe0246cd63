"""In-process real-time fan-out for task board events.

Connections register with a :class:`SubscriberRegistry`, opt into channels
(``user:<id>`` for personal notifications, ``project:<id>`` for project
activity) and receive every event published to those channels while they are
connected. Delivery is fire-and-forget: nothing is persisted for subscribers
that are offline when an event is published.
"""

from __future__ import annotations

import abc
import asyncio
import logging
import secrets
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Set

logger = logging.getLogger("taskboard.realtime")

NEW_TASK_ASSIGNED = "newTaskAssigned"
TASK_UPDATED = "taskUpdated"
ROLE_UPDATED = "roleUpdated"
PROJECT_DELETED = "projectDeleted"
MANAGER_ASSIGNED = "managerAssigned"
USER_LIST = "userList"


def user_channel(user_id: int) -> str:
    return f"user:{user_id}"


def project_channel(project_id: int) -> str:
    return f"project:{project_id}"


@dataclass(frozen=True)
class Event:
    """A named notification; ``channel`` is ``None`` for global broadcasts."""

    name: str
    data: Dict[str, Any] = field(default_factory=dict)
    channel: Optional[str] = None

    def to_message(self) -> Dict[str, Any]:
        return {"event": self.name, "channel": self.channel, "data": self.data}


class Subscriber(Protocol):
    id: str
    user_id: int
    username: str
    role: str

    def deliver(self, event: Event) -> None:
        ...


class QueueSubscriber:
    """A live connection whose events are drained by its own consumer task."""

    def __init__(
        self,
        *,
        user_id: int,
        username: str,
        role: str,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.id = secrets.token_urlsafe(12)
        self.user_id = user_id
        self.username = username
        self.role = role
        self._loop = loop or asyncio.get_running_loop()
        self._queue: asyncio.Queue[Event] = asyncio.Queue()

    def deliver(self, event: Event) -> None:
        # Publishers may run outside the connection's loop.
        self._loop.call_soon_threadsafe(self._queue.put_nowait, event)

    async def next_event(self) -> Event:
        return await self._queue.get()


class SubscriberRegistry(abc.ABC):
    """Session table of connected subscribers and their channel memberships.

    Implementations only need to be consistent within one process; a shared
    backend can replace :class:`InMemorySubscriberRegistry` when the service
    runs on several hosts.
    """

    @abc.abstractmethod
    def register(self, subscriber: Subscriber) -> None:
        ...

    @abc.abstractmethod
    def unregister(self, subscriber_id: str) -> Set[str]:
        """Drop the subscriber and return the channels it was joined to."""

    @abc.abstractmethod
    def subscribe(self, subscriber_id: str, channel: str) -> bool:
        """Join ``channel``; return ``False`` if already joined."""

    @abc.abstractmethod
    def unsubscribe(self, subscriber_id: str, channel: str) -> bool:
        ...

    @abc.abstractmethod
    def subscribers_for(self, channel: str) -> List[Subscriber]:
        ...

    @abc.abstractmethod
    def all_subscribers(self) -> List[Subscriber]:
        ...

    @abc.abstractmethod
    def channels_for(self, subscriber_id: str) -> Set[str]:
        ...


class InMemorySubscriberRegistry(SubscriberRegistry):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: Dict[str, Subscriber] = {}
        self._memberships: Dict[str, Set[str]] = {}
        self._channels: Dict[str, Set[str]] = {}

    def register(self, subscriber: Subscriber) -> None:
        with self._lock:
            self._subscribers[subscriber.id] = subscriber
            self._memberships.setdefault(subscriber.id, set())

    def unregister(self, subscriber_id: str) -> Set[str]:
        with self._lock:
            self._subscribers.pop(subscriber_id, None)
            channels = self._memberships.pop(subscriber_id, set())
            for channel in channels:
                members = self._channels.get(channel)
                if members is None:
                    continue
                members.discard(subscriber_id)
                if not members:
                    self._channels.pop(channel, None)
            return channels

    def subscribe(self, subscriber_id: str, channel: str) -> bool:
        with self._lock:
            if subscriber_id not in self._subscribers:
                raise KeyError(f"Unknown subscriber '{subscriber_id}'")
            memberships = self._memberships[subscriber_id]
            if channel in memberships:
                return False
            memberships.add(channel)
            self._channels.setdefault(channel, set()).add(subscriber_id)
            return True

    def unsubscribe(self, subscriber_id: str, channel: str) -> bool:
        with self._lock:
            memberships = self._memberships.get(subscriber_id)
            if not memberships or channel not in memberships:
                return False
            memberships.discard(channel)
            members = self._channels.get(channel, set())
            members.discard(subscriber_id)
            if not members:
                self._channels.pop(channel, None)
            return True

    def subscribers_for(self, channel: str) -> List[Subscriber]:
        with self._lock:
            ids = list(self._channels.get(channel, ()))
            return [self._subscribers[item] for item in ids if item in self._subscribers]

    def all_subscribers(self) -> List[Subscriber]:
        with self._lock:
            return list(self._subscribers.values())

    def channels_for(self, subscriber_id: str) -> Set[str]:
        with self._lock:
            return set(self._memberships.get(subscriber_id, ()))


class Broadcaster:
    """Publishes events to channel members or to every connected subscriber."""

    def __init__(self, registry: SubscriberRegistry | None = None) -> None:
        self._registry = registry or InMemorySubscriberRegistry()

    def publish(self, channel: str, name: str, data: Dict[str, Any]) -> int:
        """Deliver to the current members of ``channel``; return how many were reached."""

        event = Event(name=name, data=data, channel=channel)
        return self._deliver(self._registry.subscribers_for(channel), event)

    def publish_global(self, name: str, data: Dict[str, Any]) -> int:
        event = Event(name=name, data=data)
        return self._deliver(self._registry.all_subscribers(), event)

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------
    def connect(self, subscriber: Subscriber) -> None:
        self._registry.register(subscriber)
        logger.info("Subscriber %s connected for user %s", subscriber.id, subscriber.user_id)

    def disconnect(self, subscriber: Subscriber) -> None:
        channels = self._registry.unregister(subscriber.id)
        logger.info("Subscriber %s for user %s disconnected", subscriber.id, subscriber.user_id)
        personal = user_channel(subscriber.user_id)
        if personal in channels and not self._registry.subscribers_for(personal):
            self._publish_presence()

    def join(self, subscriber: Subscriber, channel: str) -> bool:
        personal = user_channel(subscriber.user_id)
        was_online = bool(self._registry.subscribers_for(personal))
        joined = self._registry.subscribe(subscriber.id, channel)
        if joined:
            subscriber.deliver(Event(name="joined", channel=channel))
        if joined and channel == personal and not was_online:
            self._publish_presence()
        return joined

    def leave(self, subscriber: Subscriber, channel: str) -> bool:
        left = self._registry.unsubscribe(subscriber.id, channel)
        if left:
            subscriber.deliver(Event(name="left", channel=channel))
        if left and channel == user_channel(subscriber.user_id):
            if not self._registry.subscribers_for(channel):
                self._publish_presence()
        return left

    def online_users(self) -> List[Dict[str, Any]]:
        """Users with at least one connection joined to their personal channel."""

        seen: Dict[int, Dict[str, Any]] = {}
        for subscriber in self._registry.all_subscribers():
            if user_channel(subscriber.user_id) not in self._registry.channels_for(subscriber.id):
                continue
            seen.setdefault(
                subscriber.user_id,
                {"id": subscriber.user_id, "username": subscriber.username, "role": subscriber.role},
            )
        return [seen[key] for key in sorted(seen)]

    def _publish_presence(self) -> None:
        users = self.online_users()
        self.publish_global(USER_LIST, {"users": users})
        logger.info("Online users: %d", len(users))

    def _deliver(self, subscribers: List[Subscriber], event: Event) -> int:
        delivered = 0
        for subscriber in subscribers:
            try:
                subscriber.deliver(event)
            except RuntimeError:
                # The connection's loop has already shut down.
                logger.debug("Dropping %s for closed subscriber %s", event.name, subscriber.id)
                continue
            delivered += 1
        return delivered


__all__ = [
    "Broadcaster",
    "Event",
    "InMemorySubscriberRegistry",
    "MANAGER_ASSIGNED",
    "NEW_TASK_ASSIGNED",
    "PROJECT_DELETED",
    "QueueSubscriber",
    "ROLE_UPDATED",
    "Subscriber",
    "SubscriberRegistry",
    "TASK_UPDATED",
    "USER_LIST",
    "project_channel",
    "user_channel",
]
