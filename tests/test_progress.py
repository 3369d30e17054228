#!/usr/bin/env python3
"""
Tests for challenge verification, the quiz state machine and group aggregation
"""

import itertools
import pytest
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from models.storage import create_storage
from models.challenges import (
    PASSWORD_TABLE, Secret, resolve_secret, secret_matches, verify_challenge_answer,
    check_challenge_order
)
from models.quizzes import (
    QUIZ_BANK, answer_quiz_question, reset_quiz_progress, check_quiz_slot, validate_quiz_fields
)
from models.groups import (
    MAX_COMPLETION_TIME, get_group_progress, get_all_groups_progress, get_group_members,
    mark_group_complete, save_group_photo, parse_completion_time
)


@pytest.fixture
def storage():
    return create_storage('memory')


@pytest.fixture
def make_user(storage):
    names = itertools.count(1)

    def factory(group_code='1'):
        return storage.create_user(f'user{next(names)}', 'hash', group_code)

    return factory


def challenge_by_order(storage, order):
    return next(c for c in storage.list_challenges() if c['order'] == order)


def solve(storage, user_id, order, answer=None):
    user = storage.get_user(user_id)
    challenge = challenge_by_order(storage, order)
    if answer is None:
        answer = PASSWORD_TABLE[user['group_code']][order]
    return verify_challenge_answer(storage, user, challenge, answer)


def answer(storage, user_id, quiz_index, option):
    user = storage.get_user(user_id)
    quiz = storage.get_quiz_by_group_and_index(user['group_code'], quiz_index)
    return answer_quiz_question(storage, user, quiz, option)


# Challenge verification

def test_password_table_is_case_sensitive(storage):
    secret = resolve_secret('1', challenge_by_order(storage, 1))
    assert secret == Secret('Alpha123', True)
    assert secret_matches(secret, 'Alpha123')
    assert not secret_matches(secret, 'alpha123')


def test_final_challenge_uses_group_keyword(storage):
    final = challenge_by_order(storage, 5)
    assert resolve_secret('2', final) == Secret('database', True)
    assert resolve_secret('4', final) == Secret('networks', True)


def test_fallback_answer_is_case_insensitive(storage):
    bonus = storage.create_challenge({
        'order': 6, 'title': 'BONUS', 'code_name': 'Challenge 06: BONUS',
        'description': 'Extra', 'answer': 'OpenSesame'
    })
    secret = resolve_secret('1', bonus)
    assert secret == Secret('OpenSesame', False)
    assert secret_matches(secret, 'OPENSESAME')

    # Without a table entry for the admin group the legacy answer applies
    assert resolve_secret('admin', challenge_by_order(storage, 1)) == Secret('cyberstart', False)


def test_first_solve_advances_progress(storage, make_user):
    user = make_user('1')
    result = solve(storage, user['id'], 1)
    assert result == {'correct': True, 'message': 'Correct answer!', 'progress': 20, 'nextChallenge': 2}

    stored = storage.get_user(user['id'])
    assert stored['completed_challenges'] == [1]
    assert stored['progress'] == 20
    assert stored['current_challenge'] == 2
    assert stored['started_at'] is not None


def test_repeat_solve_is_idempotent(storage, make_user):
    user = make_user('2')
    solve(storage, user['id'], 1)
    result = solve(storage, user['id'], 1)
    assert result['alreadyCompleted'] is True
    assert result['correct'] is True

    stored = storage.get_user(user['id'])
    assert stored['completed_challenges'] == [1]
    assert stored['progress'] == 20


def test_duplicate_submission_from_stale_record_adds_once(storage, make_user):
    user = make_user('1')
    challenge = challenge_by_order(storage, 1)
    # Two requests that both loaded the user before either wrote
    verify_challenge_answer(storage, user, challenge, 'Alpha123')
    verify_challenge_answer(storage, user, challenge, 'Alpha123')

    stored = storage.get_user(user['id'])
    assert stored['completed_challenges'] == [1]
    assert stored['progress'] == 20


def test_wrong_answer_never_mutates(storage, make_user):
    user = make_user('3')
    before = storage.get_user(user['id'])
    result = solve(storage, user['id'], 1, 'Alpha123')
    assert result == {'correct': False, 'message': 'Incorrect answer. Try again!'}
    assert storage.get_user(user['id']) == before


def test_answer_is_trimmed(storage, make_user):
    user = make_user('3')
    assert solve(storage, user['id'], 1, '  Gamma789 \n')['correct'] is True


@pytest.mark.parametrize('orders', list(itertools.permutations([1, 2, 3, 4, 5], 3)))
def test_progress_tracks_completed_count(storage, make_user, orders):
    user = make_user('4')
    for solved, order in enumerate(orders, start=1):
        solve(storage, user['id'], order)
        stored = storage.get_user(user['id'])
        assert stored['progress'] == min(100, len(stored['completed_challenges']) * 20)
        assert len(stored['completed_challenges']) == solved


def test_current_challenge_never_moves_backward(storage, make_user):
    user = make_user('1')
    solve(storage, user['id'], 3)
    solve(storage, user['id'], 1)
    assert storage.get_user(user['id'])['current_challenge'] == 4

    solve(storage, user['id'], 5)
    assert storage.get_user(user['id'])['current_challenge'] == 5


def test_challenge_orders_are_unique(storage):
    for order in range(1, 6):
        with pytest.raises(ValueError):
            check_challenge_order(storage, order)
    check_challenge_order(storage, 6)

    first = challenge_by_order(storage, 1)
    check_challenge_order(storage, 1, first['id'])


# Quiz state machine

@pytest.mark.parametrize('group_code', sorted(QUIZ_BANK))
def test_correct_answers_complete_quiz(storage, make_user, group_code):
    user = make_user(group_code)
    results = [answer(storage, user['id'], index, correct)
               for index, (_, _, correct) in enumerate(QUIZ_BANK[group_code], start=1)]

    assert [r['nextIndex'] for r in results] == [2, 3, 3]
    assert [r['completed'] for r in results] == [False, False, True]
    assert [r['just_completed'] for r in results] == [False, False, True]

    stored = storage.get_user(user['id'])
    assert stored['completed_quiz'] is True
    assert stored['last_quiz_question'] == 3


def test_wrong_first_answer_stays_on_question_one(storage, make_user):
    user = make_user('1')
    result = answer(storage, user['id'], 1, 0)
    assert result['correct'] is False
    assert result['nextIndex'] == 1

    stored = storage.get_user(user['id'])
    assert stored['last_quiz_question'] == 1
    assert stored['completed_quiz'] is False


def test_invalid_option_raises_without_mutation(storage, make_user):
    user = make_user('1')
    before = storage.get_user(user['id'])
    for option in (4, -1, None, '1', True):
        with pytest.raises(ValueError):
            answer(storage, user['id'], 1, option)
    assert storage.get_user(user['id']) == before


def test_completion_is_absorbing(storage, make_user):
    user = make_user('2')
    for index in (1, 2, 3):
        answer(storage, user['id'], index, 2)

    again = answer(storage, user['id'], 3, 2)
    assert again['completed'] is True
    assert again['just_completed'] is False

    wrong = answer(storage, user['id'], 1, 0)
    assert wrong['completed'] is True

    answer(storage, user['id'], 1, 2)
    stored = storage.get_user(user['id'])
    assert stored['completed_quiz'] is True
    assert stored['last_quiz_question'] == 3


def test_reset_quiz_progress(storage, make_user):
    user = make_user('3')
    answer(storage, user['id'], 1, 3)
    assert storage.get_user(user['id'])['last_quiz_question'] == 2

    reset = reset_quiz_progress(storage, storage.get_user(user['id']))
    assert reset['last_quiz_question'] == 1

    for index, option in ((1, 3), (2, 0), (3, 3)):
        answer(storage, user['id'], index, option)
    done = reset_quiz_progress(storage, storage.get_user(user['id']))
    assert done['completed_quiz'] is True
    assert done['last_quiz_question'] == 3


@pytest.mark.parametrize('quiz_index', [2, 3])
def test_cannot_answer_past_the_pointer(storage, make_user, quiz_index):
    user = make_user('1')
    before = storage.get_user(user['id'])
    correct = QUIZ_BANK['1'][quiz_index - 1][2]
    with pytest.raises(ValueError):
        answer(storage, user['id'], quiz_index, correct)
    assert storage.get_user(user['id']) == before


def test_earlier_questions_stay_answerable(storage, make_user):
    user = make_user('1')
    answer(storage, user['id'], 1, 1)
    answer(storage, user['id'], 2, 1)

    result = answer(storage, user['id'], 1, 1)
    assert result['correct'] is True
    assert storage.get_user(user['id'])['last_quiz_question'] == 3

    reset_quiz_progress(storage, storage.get_user(user['id']))
    with pytest.raises(ValueError):
        answer(storage, user['id'], 3, 2)
    assert storage.get_user(user['id'])['completed_quiz'] is False


def test_quiz_slots_are_unique(storage):
    with pytest.raises(ValueError):
        check_quiz_slot(storage, '2', 1)
    existing = storage.get_quiz_by_group_and_index('2', 1)
    check_quiz_slot(storage, '2', 1, existing['id'])


@pytest.mark.parametrize('group_code', ['admin', '9', ''])
def test_quiz_fields_need_a_team_group(group_code):
    with pytest.raises(ValueError):
        validate_quiz_fields({
            'groupCode': group_code, 'quizIndex': 1, 'question': 'Q?',
            'options': ['a', 'b', 'c', 'd'], 'correctOption': 0
        })


def test_parse_completion_time():
    assert parse_completion_time(None) is None
    assert parse_completion_time(0) == 0
    assert parse_completion_time(754000) == 754000
    assert parse_completion_time(1234.9) == 1234
    assert parse_completion_time(MAX_COMPLETION_TIME - 1) == MAX_COMPLETION_TIME - 1


@pytest.mark.parametrize('value', [
    float('nan'), float('inf'), float('-inf'), 1e30, 10 ** 400, MAX_COMPLETION_TIME, -1, True, '5000'
])
def test_parse_completion_time_rejects(value):
    with pytest.raises(ValueError):
        parse_completion_time(value)


# Group aggregation

def test_empty_group_is_never_complete(storage):
    snapshot = get_group_progress(storage, '3')
    assert snapshot['totalMembers'] == 0
    assert snapshot['allMembersCompleted'] is False
    assert snapshot['completedQuiz'] is False
    assert snapshot['completionTime'] == 0
    assert snapshot['hasPhoto'] is False


def test_all_members_completed_needs_everyone(storage, make_user):
    first = make_user('1')
    second = make_user('1')
    make_user('admin')

    storage.update_user(first['id'], completed_quiz=True)
    snapshot = get_group_progress(storage, '1')
    assert snapshot['totalMembers'] == 2
    assert snapshot['completedMembers'] == 1
    assert snapshot['allMembersCompleted'] is False

    storage.update_user(second['id'], completed_quiz=True)
    assert get_group_progress(storage, '1')['allMembersCompleted'] is True


def test_admin_group_is_excluded(storage, make_user):
    make_user('admin')
    snapshot = get_group_progress(storage, 'admin')
    assert snapshot['totalMembers'] == 0
    assert get_group_members(storage, 'admin') == []
    assert 'admin' not in get_all_groups_progress(storage)


def test_deleted_member_is_recomputed(storage, make_user):
    done = make_user('4')
    pending = make_user('4')
    storage.update_user(done['id'], completed_quiz=True)
    mark_group_complete(storage, '4', 5000)

    assert get_group_progress(storage, '4')['allMembersCompleted'] is False
    storage.delete_user(pending['id'])
    assert get_group_progress(storage, '4')['allMembersCompleted'] is True

    storage.delete_user(done['id'])
    snapshot = get_group_progress(storage, '4')
    assert snapshot['allMembersCompleted'] is False
    assert snapshot['completedQuiz'] is True


def test_completion_time_is_last_write_wins(storage):
    mark_group_complete(storage, '2', 90000)
    mark_group_complete(storage, '2', 120000)
    assert get_group_progress(storage, '2')['completionTime'] == 120000

    mark_group_complete(storage, '2', 30000)
    assert get_group_progress(storage, '2')['completionTime'] == 30000


def test_photo_and_completion_share_a_record(storage):
    save_group_photo(storage, '1', 'data:image/jpeg;base64,AAAA')
    mark_group_complete(storage, '1', 1000)

    snapshot = get_group_progress(storage, '1', include_photo=True)
    assert snapshot['hasPhoto'] is True
    assert snapshot['groupPhoto'] == 'data:image/jpeg;base64,AAAA'
    assert snapshot['completedQuiz'] is True
    assert snapshot['completionTime'] == 1000


def test_group_members_only_lists_the_group(storage, make_user):
    make_user('1')
    make_user('2')
    members = get_group_members(storage, '1')
    assert [m['username'] for m in members] == ['user1']
    assert 'password_hash' not in members[0]
