from datetime import timedelta

import pytest

from app.errors import (
    ConflictError, ForbiddenError, InsufficientPlayersError, InvalidStateError, NoContentError,
    NotFoundError, PersistenceError,
)
from app.models import GameParticipant, GameSession, utcnow
from app.services.games import SessionDirectory, round_summary
from app.services.realtime.presence import PresenceRegistry
from app.storage import QuestionSource, Storage

ROOM = 1
ALICE, BOB, CARA = 1, 2, 3


@pytest.fixture(autouse=True)
def rooms(make_room):
    make_room(ROOM, 2)


@pytest.fixture()
def storage(flask_app, logger):
    return Storage(logger)


@pytest.fixture()
def directory(storage, recorder, logger):
    presence = PresenceRegistry(recorder, logger)
    return SessionDirectory(storage, QuestionSource(logger), presence, recorder, logger,
                            min_players=2, questions_per_game=10, stale_after_hours=24)


@pytest.fixture()
def lobby(directory):
    machine = directory.create_session(ROOM, ALICE, display_name='Alice')
    machine.join(BOB, 'Bob')
    return machine


def test_create_auto_joins_creator_and_announces(directory, recorder):
    machine = directory.create_session(ROOM, ALICE, display_name='Alice')
    assert machine.status == 'waiting'
    assert machine.participant_ids() == [ALICE]
    assert directory.active_session_for(ROOM) is machine
    created = recorder.named('game_created')[0][4]
    assert created == {'session_id': machine.id, 'game_type': 'balance', 'created_by': ALICE}


def test_second_active_session_in_room_conflicts(directory):
    first = directory.create_session(ROOM, ALICE)
    with pytest.raises(ConflictError):
        directory.create_session(ROOM, BOB)

    first.delete(ALICE)
    second = directory.create_session(ROOM, BOB)
    assert directory.active_session_for(ROOM) is second


def test_failed_create_releases_room(directory, storage, monkeypatch):
    def _boom(*args, **kwargs):
        raise PersistenceError('create_session failed')
    monkeypatch.setattr(storage, 'create_session', _boom)
    with pytest.raises(PersistenceError):
        directory.create_session(ROOM, ALICE)
    monkeypatch.undo()
    assert directory.create_session(ROOM, ALICE).room_id == ROOM


def test_create_in_unknown_room_is_not_found(directory, recorder):
    with pytest.raises(NotFoundError):
        directory.create_session(999, ALICE)
    assert GameSession.query.filter_by(room_id=999).count() == 0
    assert directory.active_session_for(999) is None
    assert recorder.named('game_created') == []


def test_join_is_idempotent(directory, recorder):
    machine = directory.create_session(ROOM, ALICE)
    machine.join(BOB, 'Bob')
    roster = machine.join(BOB, 'Bob')

    assert [p['user_id'] for p in roster] == [ALICE, BOB]
    assert len(recorder.named('player_joined')) == 1
    assert GameParticipant.query.filter_by(session_id=machine.id, user_id=BOB).count() == 1


def test_join_unknown_session_is_not_found(directory):
    with pytest.raises(NotFoundError):
        directory.get(999)


def test_start_requires_creator_and_two_players(directory, seed_questions):
    seed_questions(3)
    machine = directory.create_session(ROOM, ALICE)
    with pytest.raises(InsufficientPlayersError):
        machine.start(ALICE)
    machine.join(BOB)
    with pytest.raises(ForbiddenError):
        machine.start(BOB)


def test_start_without_questions_has_no_content(lobby):
    with pytest.raises(NoContentError):
        lobby.start(ALICE)
    assert lobby.status == 'waiting'


def test_start_broadcasts_first_question(lobby, recorder, seed_questions):
    seed_questions(3)
    lobby.start(ALICE)

    assert lobby.status == 'playing'
    assert lobby.round_index == 0
    started = recorder.named('game_started')[0][4]
    assert started['question']['question'] == 'Question 0'
    assert started['total_questions'] == 3
    assert [p['user_id'] for p in started['participants']] == [ALICE, BOB]
    assert GameSession.query.filter_by(id=lobby.id).first().status == 'playing'


def test_join_after_start_is_invalid(lobby, seed_questions):
    seed_questions(1)
    lobby.start(ALICE)
    with pytest.raises(InvalidStateError):
        lobby.join(CARA)


def test_round_completes_exactly_once(lobby, recorder, seed_questions):
    seed_questions(2)
    lobby.start(ALICE)

    first = lobby.submit_answer(ALICE, 0, 'A')
    assert first == {'all_answered': False, 'round_complete': False}
    assert recorder.named('round_complete') == []

    second = lobby.submit_answer(BOB, 0, 'B')
    assert second == {'all_answered': True, 'round_complete': True}

    # Resubmission overwrites but does not complete the round again
    again = lobby.submit_answer(BOB, 0, 'A')
    assert again == {'all_answered': True, 'round_complete': False}

    completes = recorder.named('round_complete')
    assert len(completes) == 1
    assert completes[0][4]['answers'] == [{'user_id': ALICE, 'answer': 'A'}, {'user_id': BOB, 'answer': 'B'}]
    assert [e[4]['all_answered'] for e in recorder.named('answer_submitted')] == [False, True, True]
    stored = GameParticipant.query.filter_by(session_id=lobby.id, user_id=BOB).first()
    assert stored.answer_map() == {0: 'A'}


def test_non_participant_cannot_answer(lobby, seed_questions):
    seed_questions(1)
    lobby.start(ALICE)
    with pytest.raises(ForbiddenError):
        lobby.submit_answer(CARA, 0, 'A')


def test_answer_for_other_round_is_invalid(lobby, seed_questions):
    seed_questions(2)
    lobby.start(ALICE)
    with pytest.raises(InvalidStateError):
        lobby.submit_answer(ALICE, 1, 'A')


def test_advance_then_finish(directory, lobby, recorder, seed_questions):
    seed_questions(2)
    lobby.start(ALICE)

    with pytest.raises(ForbiddenError):
        lobby.advance(BOB)

    result = lobby.advance(ALICE)
    assert result['question_index'] == 1
    assert recorder.named('next_question')[0][4]['question']['question'] == 'Question 1'

    result = lobby.advance(ALICE)
    assert result['finished'] is True
    assert lobby.status == 'finished'
    assert recorder.named('game_finished')[0][4]['session_id'] == lobby.id
    assert directory.active_session_for(ROOM) is None

    with pytest.raises(InvalidStateError):
        directory.get(lobby.id).advance(ALICE)

    # A finished session frees the room
    assert directory.create_session(ROOM, BOB).room_id == ROOM


def test_delete_is_creator_only_and_cancels(directory, lobby, recorder):
    with pytest.raises(ForbiddenError):
        lobby.delete(BOB)
    lobby.delete(ALICE)

    assert recorder.named('game_cancelled')[0][4]['session_id'] == lobby.id
    assert GameSession.query.filter_by(id=lobby.id).first() is None
    assert GameParticipant.query.filter_by(session_id=lobby.id).count() == 0
    with pytest.raises(NotFoundError):
        directory.get(lobby.id)


def test_sweep_removes_stale_waiting_sessions_silently(directory, lobby, recorder, flask_app):
    from app import db
    fresh_room_machine = directory.create_session(2, CARA)
    row = db.session.get(GameSession, lobby.id)
    row.created_at = utcnow() - timedelta(hours=25)
    db.session.commit()
    lobby.created_at = row.created_at

    assert directory.sweep() == 1
    assert directory.active_session_for(ROOM) is None
    assert directory.list_active(ROOM) == []
    assert directory.active_session_for(2) is fresh_room_machine
    assert recorder.named('game_cancelled') == []


def test_list_active_reports_every_stored_active_session(directory, lobby):
    sessions = directory.list_active(ROOM)
    assert [s['id'] for s in sessions] == [lobby.id]


def test_directory_rehydrates_active_sessions(storage, recorder, logger, lobby):
    fresh = SessionDirectory(storage, QuestionSource(logger), PresenceRegistry(recorder, logger), recorder, logger)
    assert fresh.load() == 1
    restored = fresh.active_session_for(ROOM)
    assert restored.id == lobby.id
    assert restored.participant_ids() == [ALICE, BOB]
    with pytest.raises(ConflictError):
        fresh.create_session(ROOM, CARA)


def test_round_summary_groups_by_option():
    answers = [{'user_id': 1, 'answer': 'A'}, {'user_id': 2, 'answer': 'B'}, {'user_id': 3, 'answer': 'A'}]
    assert round_summary(answers) == {'A': [1, 3], 'B': [2]}


@pytest.mark.parametrize('method, questions, started, action, event', [
    ('start_session', 2, False, lambda m: m.start(ALICE), 'game_started'),
    ('save_answers', 2, True, lambda m: m.submit_answer(BOB, 0, 'A'), 'answer_submitted'),
    ('set_round', 2, True, lambda m: m.advance(ALICE), 'next_question'),
    ('finish_session', 1, True, lambda m: m.advance(ALICE), 'game_finished'),
    ('delete_sessions', 0, False, lambda m: m.delete(ALICE), 'game_cancelled'),
])
def test_storage_failure_leaves_session_untouched(directory, lobby, storage, recorder, seed_questions,
                                                  monkeypatch, method, questions, started, action, event):
    seed_questions(questions)
    if started:
        lobby.start(ALICE)
    before = lobby.to_dict()
    roster_before = lobby.roster(include_answers=True)
    stored_before = GameSession.query.filter_by(id=lobby.id).first().status

    def _boom(*args, **kwargs):
        raise PersistenceError(f'{method} failed')
    monkeypatch.setattr(storage, method, _boom)

    with pytest.raises(PersistenceError):
        action(lobby)

    assert lobby.to_dict() == before
    assert lobby.roster(include_answers=True) == roster_before
    assert recorder.named(event) == []
    assert directory.active_session_for(ROOM) is lobby
    assert GameSession.query.filter_by(id=lobby.id).first().status == stored_before


def _age(machine, hours=25):
    from app import db
    row = db.session.get(GameSession, machine.id)
    row.created_at = utcnow() - timedelta(hours=hours)
    db.session.commit()
    machine.created_at = row.created_at


def test_sweep_spares_session_started_after_it_looked_stale(directory, lobby, recorder, seed_questions,
                                                             monkeypatch):
    seed_questions(2)
    _age(lobby)
    real_is_stale = lobby.is_stale
    calls = []

    def _started_meanwhile(cutoff):
        if not calls:
            calls.append(cutoff)
            lobby.start(ALICE)
            return True
        return real_is_stale(cutoff)
    monkeypatch.setattr(lobby, 'is_stale', _started_meanwhile)

    assert directory.sweep() == 0
    assert lobby.status == 'playing'
    assert not lobby.deleted
    assert directory.active_session_for(ROOM) is lobby
    assert GameSession.query.filter_by(id=lobby.id).first().status == 'playing'
    assert GameParticipant.query.filter_by(session_id=lobby.id).count() == 2


def test_status_conditional_delete_keeps_started_rows(storage, lobby, seed_questions):
    seed_questions(1)
    lobby.start(ALICE)
    assert storage.delete_sessions([lobby.id], status='waiting') == []
    assert GameSession.query.filter_by(id=lobby.id).first() is not None
    assert GameParticipant.query.filter_by(session_id=lobby.id).count() == 2
