import threading
from typing import Any, Callable, Dict, List, Optional

from app.errors import (
    ForbiddenError, InsufficientPlayersError, InvalidStateError, NoContentError, NotFoundError,
)
from app.models import isoformat, utcnow

WAITING = 'waiting'
PLAYING = 'playing'
FINISHED = 'finished'
ACTIVE_STATUSES = (WAITING, PLAYING)


def round_summary(answers: List[Dict[str, Any]]) -> Dict[str, List[int]]:
    """Group user ids by the option they picked."""
    summary: Dict[str, List[int]] = {}
    for entry in answers:
        summary.setdefault(entry['answer'], []).append(entry['user_id'])
    return summary


class GameSessionMachine:
    """One balance-game session: lobby, rounds, completion.

    All operations for a session serialize on the session's own lock. State
    is written to storage first and only then mirrored in memory and
    broadcast, so a storage failure leaves both untouched.
    """

    def __init__(self, snapshot: Dict[str, Any], storage, question_source, presence, broadcaster, logger,
                 min_players: int = 2, questions_per_game: int = 10,
                 on_close: Optional[Callable[['GameSessionMachine'], None]] = None):
        self.storage = storage
        self.question_source = question_source
        self.presence = presence
        self.broadcaster = broadcaster
        self.logger = logger
        self.min_players = min_players
        self.questions_per_game = questions_per_game
        self._on_close = on_close
        self._lock = threading.RLock()

        self.id = snapshot['id']
        self.room_id = snapshot['room_id']
        self.game_type = snapshot.get('game_type') or 'balance'
        self.creator_id = snapshot['created_by']
        self.status = snapshot['status']
        self.round_index = snapshot.get('current_round') or 0
        self.questions: List[Dict[str, Any]] = list(snapshot.get('questions') or [])
        self.created_at = snapshot['created_at']
        self.started_at = snapshot.get('started_at')
        self.ended_at = snapshot.get('ended_at')
        self.deleted = False
        # user_id -> {'display_name', 'answers': {round_index: answer}}, join order preserved
        self._participants: Dict[int, Dict[str, Any]] = {}
        for p in snapshot.get('participants') or []:
            self._participants[p['user_id']] = {
                'display_name': p.get('display_name'),
                'answers': dict(p.get('answers') or {}),
            }
        self._round_roster: List[int] = list(self._participants)
        self._completed_rounds = set()
        if self.status == PLAYING and self._everyone_answered(self.round_index):
            self._completed_rounds.add(self.round_index)

    @classmethod
    def create(cls, room_id: int, creator_id: int, storage, *args, game_type: str = 'balance',
               display_name: Optional[str] = None, **kwargs) -> 'GameSessionMachine':
        snapshot = storage.create_session(room_id, creator_id, game_type, display_name)
        return cls(snapshot, storage, *args, **kwargs)

    # ---- queries ----

    @property
    def lock(self):
        """The lock every transition of this session holds."""
        return self._lock

    @property
    def is_active(self) -> bool:
        return not self.deleted and self.status in ACTIVE_STATUSES

    def is_stale(self, cutoff) -> bool:
        return not self.deleted and self.status == WAITING and self.created_at < cutoff

    def participant_ids(self) -> List[int]:
        with self._lock:
            return list(self._participants)

    def roster(self, include_answers: bool = False) -> List[Dict[str, Any]]:
        with self._lock:
            roster = []
            for user_id, p in self._participants.items():
                entry = {
                    'user_id': user_id,
                    'display_name': p['display_name'],
                    'online': self.presence.is_online(self.room_id, user_id),
                }
                if include_answers:
                    entry['answers'] = {str(k): v for k, v in sorted(p['answers'].items())}
                roster.append(entry)
            return roster

    def current_question(self) -> Optional[Dict[str, Any]]:
        if 0 <= self.round_index < len(self.questions):
            return self.questions[self.round_index]
        return None

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'id': self.id,
                'room_id': self.room_id,
                'game_type': self.game_type,
                'status': self.status,
                'created_by': self.creator_id,
                'current_question_index': self.round_index,
                'total_questions': len(self.questions),
                'current_question': self.current_question() if self.status == PLAYING else None,
                'participants': self.roster(),
                'created_at': isoformat(self.created_at),
                'started_at': isoformat(self.started_at),
                'ended_at': isoformat(self.ended_at),
            }

    # ---- transitions ----

    def join(self, user_id: int, display_name: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            self._ensure_exists()
            if self.status != WAITING:
                raise InvalidStateError('Game already started')
            if user_id in self._participants:
                self.logger.info(f"[game-join] session={self.id} user={user_id} already joined")
                return self.roster()
            self.storage.add_participant(self.id, user_id, display_name)
            self._participants[user_id] = {'display_name': display_name, 'answers': {}}
            self._round_roster = list(self._participants)
            roster = self.roster()
            self.logger.info(f"[game-join] session={self.id} user={user_id} players={len(roster)}")
            self.broadcaster.publish(self.room_id, 'player_joined', {
                'session_id': self.id,
                'user_id': user_id,
                'participants': roster,
                'player_count': len(roster),
            })
            return roster

    def start(self, requester_id: int) -> Dict[str, Any]:
        with self._lock:
            self._ensure_exists()
            self._ensure_creator(requester_id, 'Only the creator can start the game')
            if self.status != WAITING:
                raise InvalidStateError('Game already started')
            if len(self._participants) < self.min_players:
                raise InsufficientPlayersError(f'Need at least {self.min_players} players')
            questions = self.question_source.fetch(self.questions_per_game)
            if not questions:
                raise NoContentError('No questions available')
            started_at = utcnow()
            self.storage.start_session(self.id, questions, started_at)

            self.status = PLAYING
            self.round_index = 0
            self.questions = questions
            self.started_at = started_at
            self._round_roster = list(self._participants)
            self._completed_rounds = set()
            payload = {
                'session_id': self.id,
                'question': questions[0],
                'question_index': 0,
                'total_questions': len(questions),
                'participants': self.roster(),
            }
            self.logger.info(f"[game-start] session={self.id} players={len(self._participants)} questions={len(questions)}")
            self.broadcaster.publish(self.room_id, 'game_started', payload)
            return payload

    def submit_answer(self, user_id: int, round_index: int, answer: str) -> Dict[str, Any]:
        with self._lock:
            self._ensure_exists()
            participant = self._participants.get(user_id)
            if participant is None:
                raise ForbiddenError('Not a participant')
            if self.status != PLAYING:
                raise InvalidStateError('Game is not in progress')
            if round_index != self.round_index:
                raise InvalidStateError(f'Round {round_index} is not the current round')

            # Resubmission overwrites the same slot
            answers = dict(participant['answers'])
            answers[round_index] = answer
            self.storage.save_answers(self.id, user_id, answers)
            participant['answers'] = answers

            all_answered = self._everyone_answered(round_index)
            self.broadcaster.publish(self.room_id, 'answer_submitted', {
                'session_id': self.id,
                'user_id': user_id,
                'question_index': round_index,
                'all_answered': all_answered,
            })
            completed_now = all_answered and round_index not in self._completed_rounds
            if completed_now:
                self._completed_rounds.add(round_index)
                answers = self._round_answers(round_index)
                self.logger.info(f"[game-round-complete] session={self.id} round={round_index}")
                self.broadcaster.publish(self.room_id, 'round_complete', {
                    'session_id': self.id,
                    'question_index': round_index,
                    'answers': answers,
                    'summary': round_summary(answers),
                })
            return {'all_answered': all_answered, 'round_complete': completed_now}

    def advance(self, requester_id: int) -> Dict[str, Any]:
        with self._lock:
            self._ensure_exists()
            self._ensure_creator(requester_id, 'Only the creator can advance the game')
            if self.status != PLAYING:
                raise InvalidStateError('Game is not in progress')

            next_index = self.round_index + 1
            if next_index >= len(self.questions):
                ended_at = utcnow()
                self.storage.finish_session(self.id, ended_at)
                self.status = FINISHED
                self.ended_at = ended_at
                roster = self.roster(include_answers=True)
                self.logger.info(f"[game-finish] session={self.id} rounds={len(self.questions)}")
                self.broadcaster.publish(self.room_id, 'game_finished', {
                    'session_id': self.id,
                    'participants': roster,
                })
                self._close()
                return {'finished': True, 'participants': roster}

            self.storage.set_round(self.id, next_index)
            self.round_index = next_index
            self._round_roster = list(self._participants)
            question = self.questions[next_index]
            self.logger.info(f"[game-next] session={self.id} round={next_index}")
            self.broadcaster.publish(self.room_id, 'next_question', {
                'session_id': self.id,
                'question_index': next_index,
                'question': question,
                'total_questions': len(self.questions),
            })
            return {'finished': False, 'question': question, 'question_index': next_index}

    def delete(self, requester_id: int) -> None:
        with self._lock:
            self._ensure_exists()
            self._ensure_creator(requester_id, 'Only the creator can delete the game')
            self.storage.delete_sessions([self.id])
            self.deleted = True
            self.logger.info(f"[game-delete] session={self.id} by={requester_id}")
            self.broadcaster.publish(self.room_id, 'game_cancelled', {
                'session_id': self.id,
                'message': 'The game was cancelled.',
            })
            self._close()

    def expire(self) -> None:
        """Mark removed by the staleness sweep; storage is handled by the caller."""
        with self._lock:
            self.deleted = True

    # ---- internals ----

    def _ensure_exists(self) -> None:
        if self.deleted:
            raise NotFoundError('Game session not found')

    def _ensure_creator(self, requester_id: int, message: str) -> None:
        if requester_id != self.creator_id:
            raise ForbiddenError(message)

    def _everyone_answered(self, round_index: int) -> bool:
        roster = self._round_roster or list(self._participants)
        return bool(roster) and all(
            round_index in self._participants[uid]['answers'] for uid in roster if uid in self._participants
        )

    def _round_answers(self, round_index: int) -> List[Dict[str, Any]]:
        return [
            {'user_id': uid, 'answer': self._participants[uid]['answers'][round_index]}
            for uid in self._round_roster if round_index in self._participants[uid]['answers']
        ]

    def _close(self) -> None:
        if self._on_close:
            self._on_close(self)
