"""Utilities for serving real-time events over WebSockets."""
from __future__ import annotations

import json
import logging
from contextlib import suppress
from typing import Any, Callable, Optional

import anyio
from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect, WebSocketState

from .realtime import Broadcaster, Event, QueueSubscriber, user_channel

logger = logging.getLogger("taskboard.streams")

ChannelGuard = Callable[[str], bool]


def _error(message: str) -> Event:
    return Event(name="error", data={"message": message})


async def stream_events(
    websocket: WebSocket,
    subscriber: QueueSubscriber,
    broadcaster: Broadcaster,
    *,
    can_join: ChannelGuard,
) -> None:
    """Bridge a subscriber's event queue and the client's control frames.

    Clients send ``{"type": "join"}`` for their personal channel or
    ``{"type": "join", "channel": "project:<id>"}``; ``leave`` mirrors join
    and ``ping`` is answered with ``pong``.
    """

    cancel_exc = anyio.get_cancelled_exc_class()

    async def pump_events_to_websocket(task_group) -> None:
        try:
            while True:
                event = await subscriber.next_event()
                try:
                    await websocket.send_json(event.to_message())
                except Exception:
                    break
        except cancel_exc:
            pass
        finally:
            task_group.cancel_scope.cancel()

    def handle_command(payload: dict[str, Any]) -> bool:
        message_type = payload.get("type")
        if message_type == "ping":
            subscriber.deliver(Event(name="pong"))
            return True
        if message_type == "close":
            return False
        if message_type not in {"join", "leave"}:
            logger.debug("Ignoring unknown message type %r from %s", message_type, subscriber.id)
            subscriber.deliver(_error("Unknown message type"))
            return True

        channel: Optional[str] = payload.get("channel") or user_channel(subscriber.user_id)
        if not isinstance(channel, str):
            subscriber.deliver(_error("Channel must be a string"))
            return True

        if message_type == "leave":
            broadcaster.leave(subscriber, channel)
            return True

        if not can_join(channel):
            subscriber.deliver(_error(f"Not allowed to join {channel}"))
            return True
        broadcaster.join(subscriber, channel)
        return True

    async def pump_websocket_commands(task_group) -> None:
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                text = message.get("text")
                if text is None:
                    continue
                try:
                    payload = json.loads(text)
                except json.JSONDecodeError:
                    subscriber.deliver(_error("Messages must be JSON objects"))
                    continue
                if not isinstance(payload, dict):
                    subscriber.deliver(_error("Messages must be JSON objects"))
                    continue
                if not handle_command(payload):
                    break
        except (WebSocketDisconnect, cancel_exc):
            pass
        finally:
            task_group.cancel_scope.cancel()

    broadcaster.connect(subscriber)
    try:
        async with anyio.create_task_group() as task_group:
            task_group.start_soon(pump_events_to_websocket, task_group)
            task_group.start_soon(pump_websocket_commands, task_group)
    finally:
        broadcaster.disconnect(subscriber)
        if websocket.application_state != WebSocketState.DISCONNECTED:
            with suppress(Exception):
                await websocket.close()


__all__ = ["stream_events"]
