#!/usr/bin/env python3
"""
Tests for the SQLite storage backend and the roster loader
"""

import pytest
import sqlite3
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import load_data
from models.storage import MemoryStorage, SQLiteStorage, create_storage
from models.challenges import verify_challenge_answer
from models.quizzes import answer_quiz_question
from models.users import authenticate_user


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / 'data' / 'cyberhunt.db')


@pytest.fixture
def storage(db_path):
    return create_storage('sqlite', db_path)


def test_database_tables_created(storage, db_path):
    conn = sqlite3.connect(db_path)
    try:
        tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    finally:
        conn.close()
    assert {'users', 'challenges', 'quizzes', 'group_progress'} <= tables


def test_seeding_is_idempotent(storage, db_path):
    assert storage.counts()['challenges'] == 5
    assert storage.counts()['quizzes'] == 12

    again = create_storage('sqlite', db_path)
    assert again.counts()['challenges'] == 5
    assert again.counts()['quizzes'] == 12


def test_challenges_round_trip(storage):
    challenges = storage.list_challenges()
    assert [c['order'] for c in challenges] == [1, 2, 3, 4, 5]
    first = challenges[0]
    assert first['builtin'] is True
    assert first['hints']['2'].startswith('Search for clues')

    bonus = storage.create_challenge({
        'order': 6, 'title': 'BONUS', 'code_name': 'Challenge 06: BONUS',
        'description': 'Extra', 'answer': 'flag'
    })
    assert bonus['builtin'] is False
    assert bonus['hints'] == {}
    assert storage.update_challenge(bonus['id'], title='BONUS_2')['title'] == 'BONUS_2'
    assert storage.delete_challenge(bonus['id']) is True
    assert storage.get_challenge(bonus['id']) is None


def test_user_round_trip(storage):
    user = storage.create_user('neo', 'hash', '1')
    assert user['completed_challenges'] == []
    assert user['completed_quiz'] is False
    assert user['current_challenge'] == 1
    assert user['last_quiz_question'] == 1

    with pytest.raises(ValueError):
        storage.create_user('neo', 'hash', '2')

    updated = storage.update_user(user['id'], completed_challenges=[1, 2], progress=40, completed_quiz=True)
    assert updated['completed_challenges'] == [1, 2]
    assert updated['completed_quiz'] is True
    assert storage.get_user_by_username('neo')['progress'] == 40

    with pytest.raises(ValueError):
        storage.update_user(user['id'], is_admin=True)

    assert [u['username'] for u in storage.list_users('1')] == ['neo']
    assert storage.list_users('2') == []
    assert storage.delete_user(user['id']) is True
    assert storage.get_user(user['id']) is None
    assert storage.update_user(user['id'], progress=20) is None


def test_quiz_round_trip(storage):
    quiz = storage.get_quiz_by_group_and_index('3', 2)
    assert quiz['options'][0] == 'Atomicity, Consistency, Isolation, Durability'
    assert quiz['correct_option'] == 0

    updated = storage.update_quiz(quiz['id'], options=['a', 'b', 'c', 'd'])
    assert updated['options'] == ['a', 'b', 'c', 'd']
    assert len(storage.list_quizzes('3')) == 3
    assert storage.delete_quiz(quiz['id']) is True
    assert storage.get_quiz_by_group_and_index('3', 2) is None


def test_group_progress_upsert_merges(storage):
    assert storage.get_group_progress('1') is None

    storage.upsert_group_progress('1', group_photo='data:image/png;base64,AA')
    record = storage.upsert_group_progress('1', completed_quiz=True, completion_time=4200)
    assert record['group_photo'] == 'data:image/png;base64,AA'
    assert record['completed_quiz'] is True

    stored = storage.get_group_progress('1')
    assert stored['completion_time'] == 4200
    assert stored['group_photo'] == 'data:image/png;base64,AA'
    assert [r['group_code'] for r in storage.list_group_progress()] == ['1']


def test_group_progress_upsert_only_writes_given_columns(storage, db_path):
    record = storage.upsert_group_progress('3', group_photo='data:image/png;base64,BB')
    assert record['completed_quiz'] is False
    assert record['completion_time'] == 0

    # A completion written through another connection survives a later photo save
    conn = sqlite3.connect(db_path)
    try:
        conn.execute("UPDATE group_progress SET completed_quiz = 1, completion_time = 9000 WHERE group_code = '3'")
        conn.commit()
    finally:
        conn.close()

    record = SQLiteStorage(db_path).upsert_group_progress('3', group_photo='data:image/png;base64,CC')
    assert record['completed_quiz'] is True
    assert record['completion_time'] == 9000
    assert record['group_photo'] == 'data:image/png;base64,CC'


def test_game_flow_on_sqlite(storage):
    user = storage.create_user('trinity', 'hash', '1')
    challenge = storage.list_challenges()[0]
    result = verify_challenge_answer(storage, user, challenge, 'Alpha123')
    assert result['progress'] == 20

    user = storage.get_user(user['id'])
    quiz = storage.get_quiz_by_group_and_index('1', 1)
    assert answer_quiz_question(storage, user, quiz, 1)['nextIndex'] == 2
    assert storage.get_user(user['id'])['last_quiz_question'] == 2


def test_memory_storage_returns_copies():
    storage = MemoryStorage()
    user = storage.create_user('neo', 'hash', '1')
    user['completed_challenges'].append(3)
    assert storage.get_user(user['id'])['completed_challenges'] == []


def test_unknown_backend():
    with pytest.raises(ValueError):
        create_storage('redis')


def test_sqlite_storage_creates_directory(tmp_path):
    path = tmp_path / 'nested' / 'dir' / 'hunt.db'
    SQLiteStorage(str(path))
    assert path.exists()


def test_roster_loader(tmp_path, db_path):
    roster = tmp_path / 'roster.csv'
    roster.write_text(
        'username,password,group_code\n'
        'alice,alicepw,1\n'
        'bob,bobpw,2\n'
        ',,\n'
        'mallory,malpw,admin\n'
        'alice,otherpw,3\n',
        encoding='utf-8'
    )

    assert load_data.main([str(roster), '--database', db_path]) == 0

    storage = SQLiteStorage(db_path)
    assert sorted(u['username'] for u in storage.list_users()) == ['alice', 'bob']
    assert storage.get_user_by_username('alice')['group_code'] == '1'
    assert authenticate_user(storage, 'bob', 'bobpw') is not None


def test_roster_loader_missing_columns(tmp_path, db_path):
    roster = tmp_path / 'roster.csv'
    roster.write_text('username,password\nalice,alicepw\n', encoding='utf-8')
    assert load_data.main([str(roster), '--database', db_path]) == 1


def test_roster_loader_missing_file(tmp_path, db_path):
    assert load_data.main([str(tmp_path / 'nope.csv'), '--database', db_path]) == 1
