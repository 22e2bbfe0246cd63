from __future__ import annotations

import asyncio

import pytest

from taskboard.realtime import (
    Broadcaster,
    Event,
    InMemorySubscriberRegistry,
    QueueSubscriber,
    USER_LIST,
    project_channel,
    user_channel,
)

from conftest import RecordingSubscriber


def test_registry_tracks_memberships() -> None:
    registry = InMemorySubscriberRegistry()
    first = RecordingSubscriber(1)
    second = RecordingSubscriber(2)
    registry.register(first)
    registry.register(second)

    assert registry.subscribe(first.id, "project:1") is True
    assert registry.subscribe(first.id, "project:1") is False
    assert registry.subscribe(second.id, "project:1") is True

    assert {item.id for item in registry.subscribers_for("project:1")} == {first.id, second.id}
    assert registry.channels_for(first.id) == {"project:1"}

    assert registry.unsubscribe(second.id, "project:1") is True
    assert registry.unsubscribe(second.id, "project:1") is False
    assert [item.id for item in registry.subscribers_for("project:1")] == [first.id]

    assert registry.unregister(first.id) == {"project:1"}
    assert registry.subscribers_for("project:1") == []
    assert [item.id for item in registry.all_subscribers()] == [second.id]


def test_registry_rejects_unknown_subscriber() -> None:
    registry = InMemorySubscriberRegistry()
    with pytest.raises(KeyError):
        registry.subscribe("missing", "user:1")


def test_user_and_project_channels_do_not_collide() -> None:
    assert user_channel(5) != project_channel(5)


def test_publish_reaches_channel_members_only() -> None:
    broadcaster = Broadcaster()
    listener = RecordingSubscriber(1)
    bystander = RecordingSubscriber(2)
    broadcaster.connect(listener)
    broadcaster.connect(bystander)
    broadcaster.join(listener, project_channel(3))

    delivered = broadcaster.publish(project_channel(3), "taskUpdated", {"taskId": 9})

    assert delivered == 1
    assert listener.named("taskUpdated") == [
        Event(name="taskUpdated", data={"taskId": 9}, channel="project:3")
    ]
    assert bystander.events == []


def test_publish_global_reaches_every_connection() -> None:
    broadcaster = Broadcaster()
    first = RecordingSubscriber(1)
    second = RecordingSubscriber(2)
    broadcaster.connect(first)
    broadcaster.connect(second)

    assert broadcaster.publish_global("projectDeleted", {"projectId": 4}) == 2
    assert first.named("projectDeleted")[0].channel is None
    assert second.named("projectDeleted")[0].data == {"projectId": 4}


def test_publish_without_listeners_is_dropped() -> None:
    broadcaster = Broadcaster()
    assert broadcaster.publish(user_channel(1), "roleUpdated", {"userId": 1}) == 0


def test_disconnected_subscriber_receives_nothing() -> None:
    broadcaster = Broadcaster()
    subscriber = RecordingSubscriber(1)
    broadcaster.connect(subscriber)
    broadcaster.join(subscriber, user_channel(1))
    broadcaster.disconnect(subscriber)
    subscriber.events.clear()

    broadcaster.publish(user_channel(1), "roleUpdated", {"userId": 1})
    broadcaster.publish_global("projectDeleted", {"projectId": 1})

    assert subscriber.events == []


def test_join_acknowledges_once() -> None:
    broadcaster = Broadcaster()
    subscriber = RecordingSubscriber(1)
    broadcaster.connect(subscriber)

    assert broadcaster.join(subscriber, project_channel(2)) is True
    assert broadcaster.join(subscriber, project_channel(2)) is False
    assert [event.name for event in subscriber.events] == ["joined"]

    assert broadcaster.leave(subscriber, project_channel(2)) is True
    assert subscriber.events[-1] == Event(name="left", channel="project:2")


def test_presence_is_published_when_users_come_and_go() -> None:
    broadcaster = Broadcaster()
    watcher = RecordingSubscriber(1, username="watcher", role="Admin")
    broadcaster.connect(watcher)
    broadcaster.join(watcher, user_channel(1))

    newcomer = RecordingSubscriber(2, username="newcomer", role="Member")
    broadcaster.connect(newcomer)
    broadcaster.join(newcomer, user_channel(2))

    latest = watcher.named(USER_LIST)[-1]
    assert latest.data == {
        "users": [
            {"id": 1, "username": "watcher", "role": "Admin"},
            {"id": 2, "username": "newcomer", "role": "Member"},
        ]
    }

    second_tab = RecordingSubscriber(2, username="newcomer", role="Member")
    broadcaster.connect(second_tab)
    broadcaster.join(second_tab, user_channel(2))
    assert len(watcher.named(USER_LIST)) == 2

    broadcaster.disconnect(newcomer)
    assert len(watcher.named(USER_LIST)) == 2

    broadcaster.disconnect(second_tab)
    assert watcher.named(USER_LIST)[-1].data == {
        "users": [{"id": 1, "username": "watcher", "role": "Admin"}]
    }


def test_project_channels_do_not_count_towards_presence() -> None:
    broadcaster = Broadcaster()
    subscriber = RecordingSubscriber(1)
    broadcaster.connect(subscriber)
    broadcaster.join(subscriber, project_channel(1))

    assert broadcaster.online_users() == []
    assert subscriber.named(USER_LIST) == []


def test_queue_subscriber_delivers_in_order() -> None:
    async def scenario():
        subscriber = QueueSubscriber(user_id=1, username="jane", role="Member")
        broadcaster = Broadcaster()
        broadcaster.connect(subscriber)
        broadcaster.join(subscriber, project_channel(1))
        broadcaster.publish(project_channel(1), "taskUpdated", {"taskId": 1})
        return [await subscriber.next_event(), await subscriber.next_event()]

    joined, update = asyncio.run(scenario())

    assert joined.name == "joined"
    assert update.to_message() == {
        "event": "taskUpdated",
        "channel": "project:1",
        "data": {"taskId": 1},
    }


def test_closed_loop_is_skipped() -> None:
    loop = asyncio.new_event_loop()
    subscriber = QueueSubscriber(user_id=1, username="jane", role="Member", loop=loop)
    loop.close()

    broadcaster = Broadcaster()
    broadcaster.connect(subscriber)

    assert broadcaster.publish_global("projectDeleted", {"projectId": 1}) == 0
