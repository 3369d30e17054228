"""
Group progress aggregation.

Membership statistics are recomputed from the live user records on every
read and merged with the persisted per-group record (completion flag,
completion time, photo). Nothing derived is ever written back.
"""

import math

from utils.logger import hunt_logger

GROUP_CODES = ('1', '2', '3', '4')
ADMIN_GROUP = 'admin'
# Largest integer a JSON client can send without losing precision
MAX_COMPLETION_TIME = 2 ** 53

GROUP_NAMES = {
    '1': 'ALPHA',
    '2': 'BETA',
    '3': 'GAMMA',
    '4': 'DELTA',
}


def is_team_group(group_code):
    return group_code in GROUP_CODES


def parse_completion_time(value):
    """
    Validate a client-reported completion time in milliseconds.

    Returns an int, or None when no time was sent.
    """
    if value is None:
        return None
    if (isinstance(value, bool) or not isinstance(value, (int, float))
            or (isinstance(value, float) and not math.isfinite(value))
            or not 0 <= value < MAX_COMPLETION_TIME):
        raise ValueError(f"completionTime must be a number of milliseconds between 0 and {MAX_COMPLETION_TIME}")
    return int(value)


def get_group_progress(storage, group_code, include_photo=False):
    """Snapshot of one group's progress"""
    members = [] if group_code == ADMIN_GROUP else storage.list_users(group_code)
    total_members = len(members)
    completed_members = sum(1 for member in members if member['completed_quiz'])

    record = storage.get_group_progress(group_code) or {}
    snapshot = {
        'groupCode': group_code,
        'groupName': GROUP_NAMES.get(group_code, f'Group {group_code}'),
        'completedQuiz': bool(record.get('completed_quiz', False)),
        'completionTime': record.get('completion_time') or 0,
        'hasPhoto': bool(record.get('group_photo')),
        'totalMembers': total_members,
        'completedMembers': completed_members,
        'allMembersCompleted': total_members > 0 and completed_members == total_members,
    }
    if include_photo:
        snapshot['groupPhoto'] = record.get('group_photo')
    return snapshot


def get_all_groups_progress(storage, include_photo=False):
    return {code: get_group_progress(storage, code, include_photo) for code in GROUP_CODES}


def mark_group_complete(storage, group_code, completion_time):
    """Record a quiz finish for the group. The last call wins."""
    record = storage.upsert_group_progress(group_code, completed_quiz=True,
                                           completion_time=int(completion_time))
    hunt_logger.info(f"Group {group_code} marked complete with time {record['completion_time']} ms")
    return record


def save_group_photo(storage, group_code, photo_data):
    record = storage.upsert_group_progress(group_code, group_photo=photo_data)
    hunt_logger.info(f"Saved group photo for group {group_code} ({len(photo_data)} bytes)")
    return record


def get_group_photo(storage, group_code):
    record = storage.get_group_progress(group_code)
    return record.get('group_photo') if record else None


def get_group_members(storage, group_code):
    """Sanitized progress of everyone in the group"""
    if group_code == ADMIN_GROUP:
        return []
    return [
        {
            'id': member['id'],
            'username': member['username'],
            'progress': member['progress'],
            'completedChallenges': member['completed_challenges'],
            'completedQuiz': member['completed_quiz'],
            'lastQuizQuestion': member['last_quiz_question'],
        }
        for member in storage.list_users(group_code)
    ]
