import pytest

from app import db
from app.api.questions import daily_index
from app.models import Question, utcnow
from app.services.stats import intimacy_score


def _user(flask_app, username):
    http = flask_app.test_client()
    res = http.post('/api/auth/register', json={'username': username, 'password': 'pw', 'display_name': username.title()})
    assert res.status_code == 201
    return http, res.get_json()['user']


def _room_with(owner, *members):
    room = owner.post('/api/rooms', json={'room_name': 'Friends'}).get_json()['room']
    for member in members:
        assert member.post('/api/rooms/join', json={'room_code': room['room_code']}).status_code == 200
    return room


@pytest.fixture()
def prompts(flask_app):
    rows = [
        Question(question_text='What made you smile today?', category='daily', level=1),
        Question(question_text='Favorite song lately?', category='favorites', level=1),
        Question(question_text='When did you feel understood?', category='deep', level=3),
    ]
    db.session.add_all(rows)
    db.session.commit()
    return [q.to_dict() for q in rows]


def test_question_routes_require_login(client):
    assert client.get('/api/questions').status_code == 401
    assert client.get('/api/stats/user/1').status_code == 401


def test_list_filters_and_limits(flask_app, prompts):
    alice, _ = _user(flask_app, 'alice')

    listed = alice.get('/api/questions').get_json()['questions']
    assert [q['id'] for q in listed] == [q['id'] for q in prompts]

    deep = alice.get('/api/questions?category=deep').get_json()['questions']
    assert [q['question_text'] for q in deep] == ['When did you feel understood?']
    assert len(alice.get('/api/questions?level=1').get_json()['questions']) == 2
    assert len(alice.get('/api/questions?limit=1&random=true').get_json()['questions']) == 1


def test_random_honours_exclusions_until_nothing_is_left(flask_app, prompts):
    alice, _ = _user(flask_app, 'alice')
    first, second, third = (q['id'] for q in prompts)

    picked = alice.get(f'/api/questions/random?exclude_ids={first},{second}').get_json()
    assert picked['question']['id'] == third

    fallback = alice.get(f'/api/questions/random?exclude_ids={first},{second},{third}').get_json()
    assert fallback['success'] is True
    assert fallback['question']['id'] in {first, second, third}


def test_random_without_questions(flask_app):
    alice, _ = _user(flask_app, 'alice')
    data = alice.get('/api/questions/random').get_json()
    assert data == {'success': False, 'message': 'No questions available'}


def test_daily_question_is_stable_and_tracks_answers(flask_app, prompts):
    alice, _ = _user(flask_app, 'alice')
    bob, _ = _user(flask_app, 'bob')
    room = _room_with(alice, bob)

    first = alice.get(f"/api/questions/daily/{room['id']}").get_json()
    assert first['answered'] is False
    expected = prompts[daily_index(room['id'], utcnow().date(), len(prompts))]
    assert first['question']['id'] == expected['id']
    assert bob.get(f"/api/questions/daily/{room['id']}").get_json()['question'] == first['question']

    res = alice.post(f"/api/questions/{expected['id']}/answer",
                     json={'room_id': room['id'], 'answer_text': 'Sunshine'})
    assert res.status_code == 201
    assert alice.get(f"/api/questions/daily/{room['id']}").get_json()['answered'] is True
    assert bob.get(f"/api/questions/daily/{room['id']}").get_json()['answered'] is False


def test_daily_question_without_questions_or_membership(flask_app):
    alice, _ = _user(flask_app, 'alice')
    mallory, _ = _user(flask_app, 'mallory')
    room = _room_with(alice)

    data = alice.get(f"/api/questions/daily/{room['id']}").get_json()
    assert data['question'] is None
    assert data['answered'] is False
    assert mallory.get(f"/api/questions/daily/{room['id']}").status_code == 403


def test_answer_upserts_per_member(flask_app, prompts):
    alice, alice_user = _user(flask_app, 'alice')
    room = _room_with(alice)
    question_id = prompts[0]['id']
    url = f'/api/questions/{question_id}/answer'

    res = alice.post(url, json={'room_id': room['id'], 'answer_text': 'Coffee', 'answer_data': {'mood': 'good'}})
    assert res.status_code == 201
    created = res.get_json()
    assert created['updated'] is False
    assert created['answer']['answer_data'] == {'mood': 'good'}

    res = alice.post(url, json={'room_id': room['id'], 'answer_text': 'Tea'})
    assert res.status_code == 200
    updated = res.get_json()
    assert updated['updated'] is True
    assert updated['answer']['id'] == created['answer']['id']

    answers = alice.get(f"/api/questions/room/{room['id']}/answers").get_json()['answers']
    assert len(answers) == 1
    assert answers[0]['answer_text'] == 'Tea'
    assert answers[0]['question']['id'] == question_id
    assert answers[0]['user']['id'] == alice_user['id']


def test_answer_rejections(flask_app, prompts):
    alice, _ = _user(flask_app, 'alice')
    mallory, _ = _user(flask_app, 'mallory')
    room = _room_with(alice)
    url = f"/api/questions/{prompts[0]['id']}/answer"

    assert alice.post('/api/questions/999/answer',
                      json={'room_id': room['id'], 'answer_text': 'x'}).status_code == 404
    assert mallory.post(url, json={'room_id': room['id'], 'answer_text': 'x'}).status_code == 403
    bad = alice.post(url, json={'room_id': room['id'], 'answer_text': 42})
    assert bad.status_code == 400
    assert bad.get_json()['code'] == 'invalid_payload'
    assert mallory.get(f"/api/questions/room/{room['id']}/answers").status_code == 403


def test_room_answers_page_newest_first(flask_app, prompts):
    alice, _ = _user(flask_app, 'alice')
    room = _room_with(alice)
    for q in prompts:
        alice.post(f"/api/questions/{q['id']}/answer", json={'room_id': room['id'], 'answer_text': q['category']})

    page = alice.get(f"/api/questions/room/{room['id']}/answers?limit=2").get_json()['answers']
    assert [a['answer_text'] for a in page] == ['deep', 'favorites']
    rest = alice.get(f"/api/questions/room/{room['id']}/answers?limit=2&offset=2").get_json()['answers']
    assert [a['answer_text'] for a in rest] == ['daily']


def test_room_stats_for_members(flask_app, prompts):
    alice, _ = _user(flask_app, 'alice')
    bob, _ = _user(flask_app, 'bob')
    mallory, _ = _user(flask_app, 'mallory')
    room = _room_with(alice, bob)
    alice.post(f"/api/questions/{prompts[0]['id']}/answer", json={'room_id': room['id'], 'answer_text': 'Hi'})
    alice.post('/api/chat/send', json={'room_id': room['id'], 'message': 'hello'})

    stats = bob.get(f"/api/stats/room/{room['id']}").get_json()['stats']
    assert stats['total_answers'] == 1
    assert stats['recent_activity'] == 1
    assert stats['total_games'] == 0
    assert stats['message_count'] == 1
    assert stats['days_active'] == 0
    assert len(stats['members']) == 2
    assert stats['intimacy_score'] == intimacy_score(total_answers=1, message_count=1)
    assert mallory.get(f"/api/stats/room/{room['id']}").status_code == 403


def test_user_stats_are_private(flask_app, prompts):
    alice, alice_user = _user(flask_app, 'alice')
    _, bob_user = _user(flask_app, 'bob')
    room = _room_with(alice)
    alice.post(f"/api/questions/{prompts[0]['id']}/answer", json={'room_id': room['id'], 'answer_text': 'Hi'})

    stats = alice.get(f"/api/stats/user/{alice_user['id']}").get_json()['stats']
    assert stats == {
        'user_id': alice_user['id'],
        'total_rooms': 1,
        'total_answers': 1,
        'total_games': 0,
        'completed_games': 0,
    }
    assert alice.get(f"/api/stats/user/{bob_user['id']}").status_code == 403


def test_intimacy_score_weights_and_caps():
    assert intimacy_score() == {
        'total': 0, 'empathy': 0, 'activity': 0, 'communication': 0, 'consistency': 0, 'level': 1,
    }
    assert intimacy_score(total_answers=10, matching_answers=5, total_games=2, game_wins=1,
                          message_count=80, days_active=30) == {
        'total': 455, 'empathy': 50, 'activity': 26, 'communication': 100, 'consistency': 100, 'level': 5,
    }
