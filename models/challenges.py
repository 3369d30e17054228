"""
Challenge catalog, per-group password table and answer verification.
Handles challenge seeding, secret resolution and user progress on a solve.
"""

from collections import namedtuple
from utils.logger import hunt_logger
from utils.timezone import utc_timestamp_ms

MAX_CHALLENGE_ORDER = 5
PROGRESS_PER_CHALLENGE = 20

DEFAULT_HINT = ("Use the decoder tools below to help solve this challenge. "
                "Each challenge may require different tools.")

# Exact-match, case-sensitive secrets keyed by group code then challenge order.
# The order 5 row is the group's final keyword and the only source for that challenge.
PASSWORD_TABLE = {
    '1': {1: 'Alpha123', 2: 'FIREWALL-A', 3: 'NET0101', 4: 'QR-ALPHA-4', 5: 'mainframe'},
    '2': {1: 'Beta456', 2: 'FIREWALL-B', 3: 'NET0110', 4: 'QR-BETA-4', 5: 'database'},
    '3': {1: 'Gamma789', 2: 'FIREWALL-G', 3: 'NET0111', 4: 'QR-GAMMA-4', 5: 'security'},
    '4': {1: 'Delta012', 2: 'FIREWALL-D', 3: 'NET1000', 4: 'QR-DELTA-4', 5: 'networks'},
}

BUILTIN_CHALLENGES = [
    {
        'order': 1,
        'title': 'INIT_SEQUENCE',
        'code_name': 'Challenge 01: INIT_SEQUENCE',
        'description': ('The first challenge requires decoding the initial access sequence. '
                        'Group members, coordinate to find the hidden message in your assigned '
                        'area and enter the access code below.'),
        'answer': 'cyberstart',
        'hints': {
            '1': 'Look for hidden QR codes in blue marked areas. Binary might be useful.',
            '2': 'Search for clues in purple marked zones. Morse code could be helpful.',
            '3': 'Green areas contain your clues. Check for patterns in the text.',
            '4': 'Yellow markers show where to search. Numbers may have significance.',
        },
    },
    {
        'order': 2,
        'title': 'CIPHER_BREAK',
        'code_name': 'Challenge 02: CIPHER_BREAK',
        'description': ('Decrypt the encoded message using Caesar Cipher to find the hidden '
                        'password. Each group should focus on their assigned encryption key.'),
        'answer': 'firewall',
        'hints': {
            '1': 'The Caesar Cipher key for your group is 3. Shift letters forward.',
            '2': "Your group's Caesar Cipher key is 5. Count forward in the alphabet.",
            '3': 'Group 3 uses Caesar Cipher key 7. Count seven letters ahead.',
            '4': 'Your Caesar Cipher key is 9. Shift nine positions forward.',
        },
    },
    {
        'order': 3,
        'title': 'BINARY_DECODE',
        'code_name': 'Challenge 03: BINARY_DECODE',
        'description': ('Convert the binary code to find the hidden password. Group-specific '
                        'binary sequences have been distributed around the area.'),
        'answer': 'network',
        'hints': {
            '1': 'Your binary sequence is hidden in the network diagram. Convert to ASCII.',
            '2': 'Binary sequences for Group 2 are hidden on the bulletin board.',
            '3': 'Binary code is hidden in the classroom projector screen.',
            '4': 'Look for binary sequences posted near the canteen.',
        },
    },
    {
        'order': 4,
        'title': 'NETWORK_BREACH',
        'code_name': 'Challenge 04: NETWORK_BREACH',
        'description': ('Analyze the QR code to find the access credentials. Each group has a '
                        'unique QR code in their designated area.'),
        'answer': 'protocol',
        'hints': {
            '1': 'Check near the computer lab entrance for your QR code.',
            '2': 'Your QR code is near the faculty room.',
            '3': 'Your QR code can be found near the library entrance.',
            '4': 'Find your QR code around the student lounge area.',
        },
    },
    {
        'order': 5,
        'title': 'FINAL_QUIZ',
        'code_name': 'Challenge 05: FINAL_QUIZ',
        'description': ('Complete the IT quiz to finalize your mission. Each group will receive '
                        'questions specific to their assigned BSIT topics.'),
        'answer': 'mainframe',
        'hints': {
            '1': 'Focus on networking and infrastructure questions in your quiz.',
            '2': 'Database and storage questions will be prominent in your quiz.',
            '3': 'Security and encryption topics will be your focus.',
            '4': 'Artificial Intelligence and programming questions await your group.',
        },
    },
]


Secret = namedtuple('Secret', ['value', 'case_sensitive'])


def seed_challenges(storage):
    """Seed the built-in challenge catalog once"""
    existing = storage.list_challenges()
    if any(challenge['builtin'] for challenge in existing):
        hunt_logger.info(f"Challenges already seeded ({len(existing)} challenges exist)")
        return

    for challenge in BUILTIN_CHALLENGES:
        storage.create_challenge(dict(challenge, builtin=True))
    hunt_logger.info(f"Seeded {len(BUILTIN_CHALLENGES)} built-in challenges")


def sanitize_challenge(challenge, group_code=None):
    """Public view of a challenge: no answer, no hint table"""
    public = {
        'id': challenge['id'],
        'order': challenge['order'],
        'title': challenge['title'],
        'codeName': challenge['code_name'],
        'description': challenge['description'],
    }
    if group_code is not None:
        public['hint'] = get_group_hint(challenge, group_code)
    return public


def serialize_challenge(challenge):
    """Admin view of a challenge, answer included"""
    return {
        'id': challenge['id'],
        'order': challenge['order'],
        'title': challenge['title'],
        'codeName': challenge['code_name'],
        'description': challenge['description'],
        'answer': challenge['answer'],
        'hints': challenge['hints'],
        'builtin': challenge['builtin'],
    }


def validate_challenge_fields(data, partial=False):
    """Validate admin challenge input; returns the storage fields"""
    fields = {}
    for key in ('title', 'description', 'answer'):
        if key in data or not partial:
            value = data.get(key)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"{key} is required")
            fields[key] = value.strip()
    if 'order' in data or not partial:
        order = data.get('order')
        if isinstance(order, bool) or not isinstance(order, int) or order < 1:
            raise ValueError("order must be a positive integer")
        fields['order'] = order
    if 'codeName' in data:
        if not isinstance(data['codeName'], str) or not data['codeName'].strip():
            raise ValueError("codeName must be a non-empty string")
        fields['code_name'] = data['codeName'].strip()
    elif not partial:
        fields['code_name'] = f"Challenge {fields['order']:02d}: {fields['title']}"
    if 'hints' in data:
        hints = data['hints']
        if not isinstance(hints, dict) or not all(isinstance(v, str) for v in hints.values()):
            raise ValueError("hints must map group codes to strings")
        fields['hints'] = {str(k): v for k, v in hints.items()}
    return fields


def check_challenge_order(storage, order, challenge_id=None):
    """Orders key the completed set, so no two challenges may share one"""
    for challenge in storage.list_challenges():
        if challenge['order'] == order and challenge['id'] != challenge_id:
            raise ValueError(f"order {order} is already used by {challenge['code_name']}")


def get_group_hint(challenge, group_code):
    return (challenge.get('hints') or {}).get(str(group_code)) or DEFAULT_HINT


def resolve_secret(group_code, challenge):
    """
    Resolve the secret a submission is compared against.

    The password table wins and compares exactly. Without a table entry the
    challenge's stored answer is used, compared case-insensitively. Returns
    None when there is nothing to compare against.
    """
    table_entry = PASSWORD_TABLE.get(str(group_code), {}).get(challenge['order'])
    if table_entry is not None:
        return Secret(table_entry, True)
    if challenge.get('answer'):
        return Secret(challenge['answer'], False)
    return None


def secret_matches(secret, submitted):
    if secret is None or not submitted:
        return False
    if secret.case_sensitive:
        return submitted == secret.value
    return submitted.lower() == secret.value.lower()


def calculate_progress(completed_challenges):
    return min(100, len(completed_challenges) * PROGRESS_PER_CHALLENGE)


def verify_challenge_answer(storage, user, challenge, answer):
    """
    Check a submitted answer and record the solve on first success.

    Returns a result dict; wrong answers are a normal result, not an error.
    Returns None only if the user disappeared while the request was running.
    """
    order = challenge['order']
    if order in user['completed_challenges']:
        return {
            'correct': True,
            'message': 'Challenge already completed',
            'alreadyCompleted': True
        }

    submitted = answer.strip()
    if not secret_matches(resolve_secret(user['group_code'], challenge), submitted):
        hunt_logger.info(f"Wrong answer from {user['username']} for challenge {order}")
        return {
            'correct': False,
            'message': 'Incorrect answer. Try again!'
        }

    completed = list(user['completed_challenges'])
    if order not in completed:
        completed.append(order)

    fields = {
        'completed_challenges': completed,
        'progress': calculate_progress(completed),
        'current_challenge': max(user['current_challenge'], min(MAX_CHALLENGE_ORDER, order + 1)),
    }
    if user.get('started_at') is None:
        fields['started_at'] = utc_timestamp_ms()

    updated = storage.update_user(user['id'], **fields)
    if not updated:
        return None

    hunt_logger.info(f"User {user['username']} (group {user['group_code']}) solved challenge {order}, "
                     f"progress {updated['progress']}%")
    return {
        'correct': True,
        'message': 'Correct answer!',
        'progress': updated['progress'],
        'nextChallenge': updated['current_challenge']
    }
