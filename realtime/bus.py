"""Room event bus over Flask-SocketIO rooms.

Channel names are ``room:<id>`` so a room id can never collide with a
connection id (Socket.IO puts every sid in a room named after itself).
Delivery is fire-and-forget: emit errors are logged, never raised.
"""

from __future__ import annotations

import logging


def channel_for(room_id) -> str:
    return f"room:{room_id}"


class RoomEventBus:
    def __init__(self, socketio, namespace: str = "/"):
        self.socketio = socketio
        self.namespace = namespace

    def join(self, connection_id: str, room_id) -> None:
        self.socketio.server.enter_room(connection_id, channel_for(room_id), namespace=self.namespace)

    def leave(self, connection_id: str, room_id) -> None:
        try:
            self.socketio.server.leave_room(connection_id, channel_for(room_id), namespace=self.namespace)
        except (KeyError, ValueError):
            # Already gone.
            pass

    def publish(self, room_id, event: str, payload, skip: str | None = None) -> None:
        try:
            self.socketio.emit(event, payload, to=channel_for(room_id), skip_sid=skip, namespace=self.namespace)
        except Exception:
            logging.exception("publish %s to room %s failed", event, room_id)

    def publish_to_all(self, event: str, payload) -> None:
        try:
            self.socketio.emit(event, payload, namespace=self.namespace)
        except Exception:
            logging.exception("broadcast %s failed", event)

    def send(self, connection_id: str, event: str, payload) -> None:
        try:
            self.socketio.emit(event, payload, to=connection_id, namespace=self.namespace)
        except Exception:
            logging.exception("send %s to %s failed", event, connection_id)

    def disconnect(self, connection_id: str) -> None:
        try:
            self.socketio.server.disconnect(connection_id, namespace=self.namespace)
        except Exception:
            logging.exception("forced disconnect of %s failed", connection_id)
