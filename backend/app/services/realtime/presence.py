import threading
from typing import Dict, List, Optional, Set

from app.errors import AuthenticationError
from app.models import isoformat, utcnow


class Identity:
    def __init__(self, user_id: int, display_name: Optional[str] = None):
        self.user_id = user_id
        self.display_name = display_name or f"user-{user_id}"

    def __eq__(self, other):
        return isinstance(other, Identity) and (self.user_id, self.display_name) == (other.user_id, other.display_name)

    def __hash__(self):
        return hash((self.user_id, self.display_name))

    def to_dict(self):
        return {'user_id': self.user_id, 'display_name': self.display_name}


class Connection:
    def __init__(self, sid: str):
        self.sid = sid
        self.identity: Optional[Identity] = None
        self.rooms: Set[int] = set()
        self.connected_at = utcnow()


class PresenceRegistry:
    """Maps live connections to identities and rooms to present identities.

    Presence is per identity: a user stays online in a room while at least
    one of their connections is subscribed to it. Every mutation and the
    broadcast it triggers happen under one lock, so no observer sees the
    set updated without the matching roster event queued.
    """

    def __init__(self, broadcaster, logger):
        self.broadcaster = broadcaster
        self.logger = logger
        self._lock = threading.RLock()
        self._connections: Dict[str, Connection] = {}
        # room_id -> user_id -> sids of that user subscribed to the room
        self._rooms: Dict[int, Dict[int, Set[str]]] = {}

    # ---- connection lifecycle ----

    def connect(self, sid: str) -> None:
        with self._lock:
            self._connections.setdefault(sid, Connection(sid))

    def authenticate(self, sid: str, identity: Optional[Identity]) -> bool:
        if identity is None or identity.user_id is None:
            self.logger.info(f"[presence-auth-skip] sid={sid} no identity supplied")
            return False
        with self._lock:
            conn = self._connections.setdefault(sid, Connection(sid))
            previous = conn.identity
            if previous is not None and previous.user_id != identity.user_id and conn.rooms:
                # Rebinding moves this connection's presence to the new identity
                rooms = sorted(conn.rooms)
                for room_id in rooms:
                    self._leave(conn, room_id, 'user_left', unsubscribe=False)
                conn.identity = identity
                for room_id in rooms:
                    self._join(conn, room_id, subscribe=False)
            else:
                conn.identity = identity
        self.logger.info(f"[presence-auth] sid={sid} user={identity.user_id}")
        return True

    def disconnect(self, sid: str) -> List[int]:
        with self._lock:
            conn = self._connections.pop(sid, None)
            if conn is None:
                return []
            affected = sorted(conn.rooms)
            for room_id in affected:
                # The transport removes the sid from its groups once this handler returns
                self._leave(conn, room_id, 'user_disconnected', unsubscribe=False)
        self.logger.info(f"[presence-disconnect] sid={sid} rooms={affected}")
        return affected

    # ---- rooms ----

    def join_room(self, sid: str, room_id: int) -> List[dict]:
        with self._lock:
            conn = self._connections.get(sid)
            if conn is None or conn.identity is None:
                raise AuthenticationError('Authenticate before joining a room')
            if room_id not in conn.rooms:
                self._join(conn, room_id, subscribe=True)
            roster = self._roster(room_id)
            self.broadcaster.send(sid, 'room_users', {'room_id': room_id, 'users': roster})
            return roster

    def leave_room(self, sid: str, room_id: int) -> bool:
        with self._lock:
            conn = self._connections.get(sid)
            if conn is None or room_id not in conn.rooms:
                return False
            self._leave(conn, room_id, 'user_left', unsubscribe=True)
            return True

    # ---- queries ----

    def identity_for(self, sid: str) -> Optional[Identity]:
        with self._lock:
            conn = self._connections.get(sid)
            return conn.identity if conn else None

    def rooms_for(self, sid: str) -> Set[int]:
        with self._lock:
            conn = self._connections.get(sid)
            return set(conn.rooms) if conn else set()

    def online_users(self, room_id: int) -> Set[int]:
        with self._lock:
            return set(self._rooms.get(room_id, {}))

    def is_online(self, room_id: int, user_id: int) -> bool:
        with self._lock:
            return bool(self._rooms.get(room_id, {}).get(user_id))

    def connection_count(self) -> int:
        with self._lock:
            return len(self._connections)

    # ---- internals (caller holds the lock) ----

    def _join(self, conn: Connection, room_id: int, subscribe: bool) -> None:
        identity = conn.identity
        if subscribe:
            self.broadcaster.subscribe(conn.sid, room_id)
        conn.rooms.add(room_id)
        users = self._rooms.setdefault(room_id, {})
        newly_online = not users.get(identity.user_id)
        users.setdefault(identity.user_id, set()).add(conn.sid)
        if not newly_online:
            return
        self.logger.info(f"[presence-join] room={room_id} user={identity.user_id}")
        self.broadcaster.publish_except(room_id, conn.sid, 'user_joined', {
            'room_id': room_id,
            'user_id': identity.user_id,
            'display_name': identity.display_name,
            'timestamp': isoformat(utcnow()),
        })
        self._publish_roster(room_id)

    def _leave(self, conn: Connection, room_id: int, event: str, unsubscribe: bool) -> None:
        identity = conn.identity
        conn.rooms.discard(room_id)
        if unsubscribe:
            self.broadcaster.unsubscribe(conn.sid, room_id)
        users = self._rooms.get(room_id, {})
        sids = users.get(identity.user_id, set())
        sids.discard(conn.sid)
        if sids:
            return
        users.pop(identity.user_id, None)
        if not users:
            self._rooms.pop(room_id, None)
        self.logger.info(f"[presence-leave] room={room_id} user={identity.user_id} reason={event}")
        self.broadcaster.publish_except(room_id, conn.sid, event, {
            'room_id': room_id,
            'user_id': identity.user_id,
            'display_name': identity.display_name,
            'timestamp': isoformat(utcnow()),
        })
        self._publish_roster(room_id)

    def _roster(self, room_id: int) -> List[dict]:
        roster = []
        for user_id, sids in sorted(self._rooms.get(room_id, {}).items()):
            name = None
            for sid in sids:
                conn = self._connections.get(sid)
                if conn and conn.identity:
                    name = conn.identity.display_name
                    break
            roster.append({'user_id': user_id, 'display_name': name})
        return roster

    def _publish_roster(self, room_id: int) -> None:
        roster = self._roster(room_id)
        self.broadcaster.publish(room_id, 'online_users', {
            'room_id': room_id,
            'count': len(roster),
            'users': roster,
        })
