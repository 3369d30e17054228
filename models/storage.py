"""
Storage backends for users, challenges, quizzes and group progress.

Both backends expose the same read/upsert operations and hand out plain
dicts, so the game logic never touches a connection or a shared map directly.
Records returned are copies: mutating them has no effect until they are
written back through an update call.
"""

import copy
import itertools
import json
import os
from models.database import DATABASE, get_db_connection, init_database
from models.challenges import seed_challenges
from models.quizzes import seed_quizzes
from utils.logger import hunt_logger
from utils.timezone import format_utc_for_db

USER_FIELDS = (
    'username', 'password_hash', 'email', 'group_code', 'progress',
    'current_challenge', 'completed_challenges', 'completed_quiz',
    'last_quiz_question', 'started_at', 'created_at', 'updated_at'
)
CHALLENGE_FIELDS = ('order', 'title', 'code_name', 'description', 'answer', 'hints', 'builtin')
QUIZ_FIELDS = ('group_code', 'quiz_index', 'question', 'options', 'correct_option')
GROUP_FIELDS = ('completed_quiz', 'completion_time', 'group_photo', 'updated_at')


def new_user_record(username, password_hash, group_code, email=None):
    """User record with every progress field at its default"""
    now = format_utc_for_db()
    return {
        'username': username,
        'password_hash': password_hash,
        'email': email,
        'group_code': group_code,
        'progress': 0,
        'current_challenge': 1,
        'completed_challenges': [],
        'completed_quiz': False,
        'last_quiz_question': 1,
        'started_at': None,
        'created_at': now,
        'updated_at': now,
    }


def new_group_record(group_code):
    return {
        'group_code': group_code,
        'completed_quiz': False,
        'completion_time': 0,
        'group_photo': None,
        'updated_at': None,
    }


def _pick(fields, allowed):
    unknown = set(fields) - set(allowed)
    if unknown:
        raise ValueError(f"Unknown fields: {sorted(unknown)}")
    return dict(fields)


class MemoryStorage:
    """Process-local storage kept in dicts, used by tests and single-process demos"""

    backend = 'memory'

    def __init__(self):
        self.users = {}
        self.challenges = {}
        self.quizzes = {}
        self.group_progress = {}
        self._user_ids = itertools.count(1)
        self._challenge_ids = itertools.count(1)
        self._quiz_ids = itertools.count(1)

    # Users

    def get_user(self, user_id):
        user = self.users.get(user_id)
        return copy.deepcopy(user) if user else None

    def get_user_by_username(self, username):
        for user in self.users.values():
            if user['username'] == username:
                return copy.deepcopy(user)
        return None

    def get_user_by_email(self, email):
        for user in self.users.values():
            if user['email'] and user['email'].lower() == email.lower():
                return copy.deepcopy(user)
        return None

    def create_user(self, username, password_hash, group_code, email=None):
        if self.get_user_by_username(username):
            raise ValueError(f"Username already exists: {username}")
        user = new_user_record(username, password_hash, group_code, email)
        user['id'] = next(self._user_ids)
        self.users[user['id']] = user
        return copy.deepcopy(user)

    def update_user(self, user_id, **fields):
        fields = _pick(fields, USER_FIELDS)
        user = self.users.get(user_id)
        if not user:
            return None
        fields.setdefault('updated_at', format_utc_for_db())
        user.update(copy.deepcopy(fields))
        return copy.deepcopy(user)

    def delete_user(self, user_id):
        return self.users.pop(user_id, None) is not None

    def list_users(self, group_code=None):
        users = sorted(self.users.values(), key=lambda u: u['id'])
        if group_code is not None:
            users = [u for u in users if u['group_code'] == group_code]
        return copy.deepcopy(users)

    # Challenges

    def get_challenge(self, challenge_id):
        challenge = self.challenges.get(challenge_id)
        return copy.deepcopy(challenge) if challenge else None

    def list_challenges(self):
        challenges = sorted(self.challenges.values(), key=lambda c: (c['order'], c['id']))
        return copy.deepcopy(challenges)

    def create_challenge(self, data):
        challenge = {'hints': {}, 'builtin': False}
        challenge.update(_pick(data, CHALLENGE_FIELDS))
        challenge['id'] = next(self._challenge_ids)
        self.challenges[challenge['id']] = copy.deepcopy(challenge)
        return challenge

    def update_challenge(self, challenge_id, **fields):
        fields = _pick(fields, CHALLENGE_FIELDS)
        challenge = self.challenges.get(challenge_id)
        if not challenge:
            return None
        challenge.update(copy.deepcopy(fields))
        return copy.deepcopy(challenge)

    def delete_challenge(self, challenge_id):
        return self.challenges.pop(challenge_id, None) is not None

    # Quizzes

    def get_quiz(self, quiz_id):
        quiz = self.quizzes.get(quiz_id)
        return copy.deepcopy(quiz) if quiz else None

    def list_quizzes(self, group_code=None):
        quizzes = sorted(self.quizzes.values(), key=lambda q: (q['group_code'], q['quiz_index'], q['id']))
        if group_code is not None:
            quizzes = [q for q in quizzes if q['group_code'] == group_code]
        return copy.deepcopy(quizzes)

    def get_quiz_by_group_and_index(self, group_code, quiz_index):
        for quiz in self.list_quizzes(group_code):
            if quiz['quiz_index'] == quiz_index:
                return quiz
        return None

    def create_quiz(self, data):
        quiz = _pick(data, QUIZ_FIELDS)
        quiz['id'] = next(self._quiz_ids)
        self.quizzes[quiz['id']] = copy.deepcopy(quiz)
        return quiz

    def update_quiz(self, quiz_id, **fields):
        fields = _pick(fields, QUIZ_FIELDS)
        quiz = self.quizzes.get(quiz_id)
        if not quiz:
            return None
        quiz.update(copy.deepcopy(fields))
        return copy.deepcopy(quiz)

    def delete_quiz(self, quiz_id):
        return self.quizzes.pop(quiz_id, None) is not None

    # Group progress

    def get_group_progress(self, group_code):
        record = self.group_progress.get(group_code)
        return copy.deepcopy(record) if record else None

    def upsert_group_progress(self, group_code, **fields):
        fields = _pick(fields, GROUP_FIELDS)
        record = self.group_progress.get(group_code) or new_group_record(group_code)
        record.update(fields)
        record['updated_at'] = fields.get('updated_at') or format_utc_for_db()
        self.group_progress[group_code] = record
        return copy.deepcopy(record)

    def list_group_progress(self):
        return [copy.deepcopy(self.group_progress[code]) for code in sorted(self.group_progress)]

    def counts(self):
        return {
            'users': len(self.users),
            'challenges': len(self.challenges),
            'quizzes': len(self.quizzes),
            'group_progress': len(self.group_progress),
        }


class SQLiteStorage:
    """SQLite-backed storage; every write is a single committed statement"""

    backend = 'sqlite'

    def __init__(self, database=None):
        self.database = database or DATABASE
        init_database(self.database)

    def _connect(self):
        return get_db_connection(self.database)

    # Row conversion

    @staticmethod
    def _user_from_row(row):
        if row is None:
            return None
        user = dict(row)
        user['completed_challenges'] = json.loads(user['completed_challenges'] or '[]')
        user['completed_quiz'] = bool(user['completed_quiz'])
        return user

    @staticmethod
    def _challenge_from_row(row):
        if row is None:
            return None
        challenge = dict(row)
        challenge['hints'] = json.loads(challenge['hints'] or '{}')
        challenge['builtin'] = bool(challenge['builtin'])
        return challenge

    @staticmethod
    def _quiz_from_row(row):
        if row is None:
            return None
        quiz = dict(row)
        quiz['options'] = json.loads(quiz['options'])
        return quiz

    @staticmethod
    def _group_from_row(row):
        if row is None:
            return None
        record = dict(row)
        record['completed_quiz'] = bool(record['completed_quiz'])
        return record

    @staticmethod
    def _encode(fields):
        encoded = {}
        for key, value in fields.items():
            if key in ('completed_challenges', 'options', 'hints'):
                value = json.dumps(value)
            elif key in ('completed_quiz', 'builtin'):
                value = 1 if value else 0
            encoded[key] = value
        return encoded

    def _update(self, table, record_id, fields):
        if not fields:
            return
        fields = self._encode(fields)
        assignments = ', '.join(f'"{column}" = ?' for column in fields)
        conn = self._connect()
        try:
            conn.execute(f'UPDATE {table} SET {assignments} WHERE id = ?',
                         (*fields.values(), record_id))
            conn.commit()
        finally:
            conn.close()

    def _insert(self, table, fields):
        fields = self._encode(fields)
        columns = ', '.join(f'"{column}"' for column in fields)
        placeholders = ', '.join('?' for _ in fields)
        conn = self._connect()
        try:
            cursor = conn.execute(f'INSERT INTO {table} ({columns}) VALUES ({placeholders})',
                                  tuple(fields.values()))
            conn.commit()
            return cursor.lastrowid
        finally:
            conn.close()

    def _delete(self, table, record_id):
        conn = self._connect()
        try:
            cursor = conn.execute(f'DELETE FROM {table} WHERE id = ?', (record_id,))
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    def _fetch_one(self, query, params=()):
        conn = self._connect()
        try:
            return conn.execute(query, params).fetchone()
        finally:
            conn.close()

    def _fetch_all(self, query, params=()):
        conn = self._connect()
        try:
            return conn.execute(query, params).fetchall()
        finally:
            conn.close()

    # Users

    def get_user(self, user_id):
        return self._user_from_row(self._fetch_one('SELECT * FROM users WHERE id = ?', (user_id,)))

    def get_user_by_username(self, username):
        return self._user_from_row(self._fetch_one('SELECT * FROM users WHERE username = ?', (username,)))

    def get_user_by_email(self, email):
        row = self._fetch_one('SELECT * FROM users WHERE lower(email) = ?', (email.lower(),))
        return self._user_from_row(row)

    def create_user(self, username, password_hash, group_code, email=None):
        if self.get_user_by_username(username):
            raise ValueError(f"Username already exists: {username}")
        user_id = self._insert('users', new_user_record(username, password_hash, group_code, email))
        return self.get_user(user_id)

    def update_user(self, user_id, **fields):
        fields = _pick(fields, USER_FIELDS)
        fields.setdefault('updated_at', format_utc_for_db())
        self._update('users', user_id, fields)
        return self.get_user(user_id)

    def delete_user(self, user_id):
        return self._delete('users', user_id)

    def list_users(self, group_code=None):
        if group_code is None:
            rows = self._fetch_all('SELECT * FROM users ORDER BY id')
        else:
            rows = self._fetch_all('SELECT * FROM users WHERE group_code = ? ORDER BY id', (group_code,))
        return [self._user_from_row(row) for row in rows]

    # Challenges

    def get_challenge(self, challenge_id):
        row = self._fetch_one('SELECT * FROM challenges WHERE id = ?', (challenge_id,))
        return self._challenge_from_row(row)

    def list_challenges(self):
        rows = self._fetch_all('SELECT * FROM challenges ORDER BY "order", id')
        return [self._challenge_from_row(row) for row in rows]

    def create_challenge(self, data):
        challenge = {'hints': {}, 'builtin': False}
        challenge.update(_pick(data, CHALLENGE_FIELDS))
        challenge_id = self._insert('challenges', challenge)
        return self.get_challenge(challenge_id)

    def update_challenge(self, challenge_id, **fields):
        self._update('challenges', challenge_id, _pick(fields, CHALLENGE_FIELDS))
        return self.get_challenge(challenge_id)

    def delete_challenge(self, challenge_id):
        return self._delete('challenges', challenge_id)

    # Quizzes

    def get_quiz(self, quiz_id):
        return self._quiz_from_row(self._fetch_one('SELECT * FROM quizzes WHERE id = ?', (quiz_id,)))

    def list_quizzes(self, group_code=None):
        if group_code is None:
            rows = self._fetch_all('SELECT * FROM quizzes ORDER BY group_code, quiz_index, id')
        else:
            rows = self._fetch_all('SELECT * FROM quizzes WHERE group_code = ? ORDER BY quiz_index, id',
                                   (group_code,))
        return [self._quiz_from_row(row) for row in rows]

    def get_quiz_by_group_and_index(self, group_code, quiz_index):
        row = self._fetch_one('''
            SELECT * FROM quizzes WHERE group_code = ? AND quiz_index = ?
            ORDER BY id LIMIT 1
        ''', (group_code, quiz_index))
        return self._quiz_from_row(row)

    def create_quiz(self, data):
        quiz_id = self._insert('quizzes', _pick(data, QUIZ_FIELDS))
        return self.get_quiz(quiz_id)

    def update_quiz(self, quiz_id, **fields):
        self._update('quizzes', quiz_id, _pick(fields, QUIZ_FIELDS))
        return self.get_quiz(quiz_id)

    def delete_quiz(self, quiz_id):
        return self._delete('quizzes', quiz_id)

    # Group progress

    def get_group_progress(self, group_code):
        row = self._fetch_one('SELECT * FROM group_progress WHERE group_code = ?', (group_code,))
        return self._group_from_row(row)

    def upsert_group_progress(self, group_code, **fields):
        fields = _pick(fields, GROUP_FIELDS)
        fields['updated_at'] = fields.get('updated_at') or format_utc_for_db()
        record = new_group_record(group_code)
        record.update(fields)
        record = self._encode(record)
        # An existing row only has the given columns rewritten
        columns = ', '.join(f'"{column}"' for column in record)
        placeholders = ', '.join('?' for _ in record)
        assignments = ', '.join(f'"{column}" = excluded."{column}"' for column in fields)
        conn = self._connect()
        try:
            conn.execute(f'''
                INSERT INTO group_progress ({columns}) VALUES ({placeholders})
                ON CONFLICT(group_code) DO UPDATE SET {assignments}
            ''', tuple(record.values()))
            conn.commit()
            row = conn.execute('SELECT * FROM group_progress WHERE group_code = ?', (group_code,)).fetchone()
            return self._group_from_row(row)
        finally:
            conn.close()

    def list_group_progress(self):
        rows = self._fetch_all('SELECT * FROM group_progress ORDER BY group_code')
        return [self._group_from_row(row) for row in rows]

    def counts(self):
        conn = self._connect()
        try:
            return {
                table: conn.execute(f'SELECT COUNT(*) FROM {table}').fetchone()[0]
                for table in ('users', 'challenges', 'quizzes', 'group_progress')
            }
        finally:
            conn.close()


def create_storage(backend=None, database=None):
    """Build the configured storage backend and seed the built-in catalog"""
    backend = (backend or os.getenv('HUNT_STORAGE', 'sqlite')).lower()
    if backend == 'memory':
        storage = MemoryStorage()
    elif backend == 'sqlite':
        storage = SQLiteStorage(database)
    else:
        raise ValueError(f"Unknown storage backend: {backend}")

    hunt_logger.info(f"Using {storage.backend} storage")
    seed_challenges(storage)
    seed_quizzes(storage)
    return storage
