from typing import Any, Dict, Optional


def room_channel(room_id) -> str:
    return f"room:{room_id}"


class RoomBroadcaster:
    """Fire-and-forget delivery to every connection subscribed to a room.

    Delivery goes through the Socket.IO server's group primitive. A
    connection that drops mid-publish simply misses the event.
    """

    def __init__(self, socketio, namespace: str = '/ws', logger=None):
        self.socketio = socketio
        self.namespace = namespace
        self.logger = logger

    def subscribe(self, sid: str, room_id) -> None:
        self.socketio.server.enter_room(sid, room_channel(room_id), namespace=self.namespace)

    def unsubscribe(self, sid: str, room_id) -> None:
        self.socketio.server.leave_room(sid, room_channel(room_id), namespace=self.namespace)

    def publish(self, room_id, event: str, payload: Dict[str, Any]) -> None:
        if self.logger:
            self.logger.debug(f"[broadcast] room={room_id} event={event}")
        self.socketio.emit(event, payload, to=room_channel(room_id), namespace=self.namespace)

    def publish_except(self, room_id, exclude_sid: Optional[str], event: str, payload: Dict[str, Any]) -> None:
        self.socketio.emit(event, payload, to=room_channel(room_id), skip_sid=exclude_sid,
                           namespace=self.namespace)

    def send(self, sid: str, event: str, payload: Dict[str, Any]) -> None:
        self.socketio.emit(event, payload, to=sid, namespace=self.namespace)
