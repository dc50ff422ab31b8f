import threading
from contextlib import ExitStack
from datetime import timedelta
from typing import Dict, List, Optional, Set

from app.errors import ConflictError, NotFoundError
from app.models import utcnow
from .machine import WAITING, GameSessionMachine


class SessionDirectory:
    """Tracks live game sessions and keeps at most one active per room.

    A room is reserved before the session row is written, so a racing
    create for the same room fails with ``ConflictError`` instead of
    producing a second active session.
    """

    def __init__(self, storage, question_source, presence, broadcaster, logger,
                 min_players: int = 2, questions_per_game: int = 10, stale_after_hours: int = 24):
        self.storage = storage
        self.question_source = question_source
        self.presence = presence
        self.broadcaster = broadcaster
        self.logger = logger
        self.min_players = min_players
        self.questions_per_game = questions_per_game
        self.stale_after = timedelta(hours=stale_after_hours)
        self._lock = threading.RLock()
        self._sessions: Dict[int, GameSessionMachine] = {}
        self._active_by_room: Dict[int, int] = {}
        self._reserved: Set[int] = set()
        self._loaded = False

    # ---- construction helpers ----

    def _build(self, snapshot) -> GameSessionMachine:
        return GameSessionMachine(
            snapshot, self.storage, self.question_source, self.presence, self.broadcaster, self.logger,
            min_players=self.min_players, questions_per_game=self.questions_per_game,
            on_close=self.unregister,
        )

    def load(self) -> int:
        """Rehydrate non-terminal sessions from storage after a restart."""
        with self._lock:
            if self._loaded:
                return 0
            count = 0
            for snapshot in self.storage.active_sessions():
                if snapshot['room_id'] in self._active_by_room:
                    # Keep the newest; older duplicates stay visible through list_active
                    self.logger.warning(
                        f"[directory-load] room={snapshot['room_id']} duplicate active session={snapshot['id']}"
                    )
                    continue
                self.register(self._build(snapshot))
                count += 1
            self._loaded = True
        self.logger.info(f"[directory-load] sessions={count}")
        return count

    # ---- registry ----

    def register(self, machine: GameSessionMachine) -> None:
        with self._lock:
            current = self._active_by_room.get(machine.room_id)
            if current is not None and current != machine.id:
                raise ConflictError()
            self._sessions[machine.id] = machine
            self._active_by_room[machine.room_id] = machine.id

    def unregister(self, machine: GameSessionMachine) -> None:
        with self._lock:
            self._sessions.pop(machine.id, None)
            if self._active_by_room.get(machine.room_id) == machine.id:
                self._active_by_room.pop(machine.room_id, None)

    def active_session_for(self, room_id: int) -> Optional[GameSessionMachine]:
        with self._lock:
            session_id = self._active_by_room.get(room_id)
            return self._sessions.get(session_id) if session_id is not None else None

    def list_active(self, room_id: int) -> List[dict]:
        """All non-terminal sessions for a room, as stored; does not assume at most one."""
        sessions = []
        seen = set()
        live = self.active_session_for(room_id)
        if live is not None and live.is_active:
            sessions.append(live.to_dict())
            seen.add(live.id)
        for snapshot in self.storage.active_sessions(room_id):
            if snapshot['id'] not in seen:
                sessions.append(self._build(snapshot).to_dict())
        return sessions

    # ---- operations ----

    def create_session(self, room_id: int, creator_id: int, game_type: str = 'balance',
                       display_name: Optional[str] = None) -> GameSessionMachine:
        if not self.storage.room_exists(room_id):
            raise NotFoundError('Room not found')
        with self._lock:
            if room_id in self._active_by_room or room_id in self._reserved:
                raise ConflictError('Game already in progress')
            self._reserved.add(room_id)
        try:
            machine = GameSessionMachine.create(
                room_id, creator_id, self.storage, self.question_source, self.presence,
                self.broadcaster, self.logger, game_type=game_type, display_name=display_name,
                min_players=self.min_players, questions_per_game=self.questions_per_game,
                on_close=self.unregister,
            )
        finally:
            with self._lock:
                self._reserved.discard(room_id)
        self.register(machine)
        self.logger.info(f"[game-create] session={machine.id} room={room_id} creator={creator_id}")
        self.broadcaster.publish(room_id, 'game_created', {
            'session_id': machine.id,
            'game_type': machine.game_type,
            'created_by': creator_id,
        })
        return machine

    def get(self, session_id: int) -> GameSessionMachine:
        with self._lock:
            machine = self._sessions.get(session_id)
        if machine is not None:
            return machine
        # Finished sessions are served read-only from storage
        snapshot = self.storage.load_session(session_id)
        if snapshot is None:
            raise NotFoundError('Game session not found')
        return self._build(snapshot)

    def sweep(self, now=None, room_id: Optional[int] = None) -> int:
        """Silently drop waiting sessions older than the retention window."""
        cutoff = (now or utcnow()) - self.stale_after
        with self._lock:
            loaded = [m for m in self._sessions.values() if room_id is None or m.room_id == room_id]
        candidates = [m for m in loaded if m.is_stale(cutoff)]
        with ExitStack() as held:
            # Session locks are taken before the directory lock, as transitions do
            for machine in candidates:
                held.enter_context(machine.lock)
            stale = [m for m in candidates if m.is_stale(cutoff)]
            busy = {m.id for m in loaded} - {m.id for m in stale}
            stale_ids = {m.id for m in stale}
            stale_ids.update(
                sid for sid in self.storage.stale_waiting_session_ids(cutoff, room_id) if sid not in busy
            )
            if not stale_ids:
                return 0
            removed = set(self.storage.delete_sessions(sorted(stale_ids), status=WAITING))
            for machine in stale:
                if machine.id in removed:
                    machine.expire()
        for machine in stale:
            if machine.id in removed:
                self.unregister(machine)
        self.logger.info(f"[directory-sweep] removed={len(removed)} cutoff={cutoff.isoformat()}")
        return len(removed)
