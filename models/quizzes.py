"""
Quiz bank and the per-user quiz state machine.
"""

from utils.logger import hunt_logger
from models.groups import GROUP_CODES

FIRST_QUESTION = 1
LAST_QUESTION = 3
OPTION_COUNT = 4

QUIZ_BANK = {
    # Group 1: programming
    '1': [
        ("Which programming paradigm uses objects to model data and behavior?",
         ["Procedural Programming", "Object-Oriented Programming", "Functional Programming",
          "Event-Driven Programming"], 1),
        ("Which data structure follows the Last In, First Out (LIFO) principle?",
         ["Queue", "Stack", "Linked List", "Binary Tree"], 1),
        ("Which sorting algorithm has the best average-case time complexity?",
         ["Bubble Sort", "Insertion Sort", "Merge Sort", "Selection Sort"], 2),
    ],
    # Group 2: networking
    '2': [
        ("Which protocol is used for secure web browsing?",
         ["HTTP", "FTP", "HTTPS", "SMTP"], 2),
        ("Which layer of the OSI model is responsible for routing?",
         ["Physical Layer", "Data Link Layer", "Network Layer", "Transport Layer"], 2),
        ("What device connects different networks together?",
         ["Hub", "Switch", "Router", "Modem"], 2),
    ],
    # Group 3: databases
    '3': [
        ("Which SQL statement is used to retrieve data from a database?",
         ["INSERT", "UPDATE", "DELETE", "SELECT"], 3),
        ("What does ACID stand for in database transactions?",
         ["Atomicity, Consistency, Isolation, Durability",
          "Authorization, Consistency, Integrity, Dependability",
          "Adaptability, Consistency, Integration, Data",
          "Atomicity, Control, Isolation, Dependability"], 0),
        ("Which is not a type of database relationship?",
         ["One-to-One", "One-to-Many", "Many-to-Many", "All-to-All"], 3),
    ],
    # Group 4: cybersecurity
    '4': [
        ("Which attack aims to gain unauthorized access by impersonating a trusted entity?",
         ["DoS Attack", "SQL Injection", "Phishing", "Brute Force"], 2),
        ("Which encryption method uses the same key for encryption and decryption?",
         ["Symmetric Encryption", "Asymmetric Encryption", "Public Key Infrastructure",
          "Quantum Encryption"], 0),
        ("What is the purpose of a firewall in network security?",
         ["To encrypt data transmissions", "To monitor system performance",
          "To filter network traffic", "To backup important data"], 2),
    ],
}


def seed_quizzes(storage):
    """Seed the quiz bank once"""
    existing = storage.list_quizzes()
    if existing:
        hunt_logger.info(f"Quizzes already seeded ({len(existing)} questions exist)")
        return

    for group_code, questions in QUIZ_BANK.items():
        for quiz_index, (question, options, correct_option) in enumerate(questions, start=1):
            storage.create_quiz({
                'group_code': group_code,
                'quiz_index': quiz_index,
                'question': question,
                'options': list(options),
                'correct_option': correct_option,
            })
    hunt_logger.info(f"Seeded {sum(len(q) for q in QUIZ_BANK.values())} quiz questions")


def sanitize_quiz(quiz):
    """Public view of a question, correct option removed"""
    return {
        'id': quiz['id'],
        'groupCode': quiz['group_code'],
        'quizIndex': quiz['quiz_index'],
        'question': quiz['question'],
        'options': quiz['options'],
    }


def serialize_quiz(quiz):
    public = sanitize_quiz(quiz)
    public['correctOption'] = quiz['correct_option']
    return public


def validate_quiz_index(quiz_index):
    if isinstance(quiz_index, bool) or not isinstance(quiz_index, int):
        raise ValueError("Question index must be an integer")
    if not FIRST_QUESTION <= quiz_index <= LAST_QUESTION:
        raise ValueError(f"Question index must be between {FIRST_QUESTION} and {LAST_QUESTION}")


def validate_quiz_fields(data, partial=False):
    """Validate admin quiz input; returns the storage fields"""
    fields = {}
    if 'groupCode' in data or not partial:
        group_code = data.get('groupCode')
        if not isinstance(group_code, str) or group_code.strip() not in GROUP_CODES:
            raise ValueError(f"groupCode must be one of {', '.join(GROUP_CODES)}")
        fields['group_code'] = group_code.strip()
    if 'quizIndex' in data or not partial:
        validate_quiz_index(data.get('quizIndex'))
        fields['quiz_index'] = data['quizIndex']
    if 'question' in data or not partial:
        question = data.get('question')
        if not isinstance(question, str) or not question.strip():
            raise ValueError("question is required")
        fields['question'] = question.strip()
    if 'options' in data or not partial:
        options = data.get('options')
        if (not isinstance(options, list) or len(options) != OPTION_COUNT
                or not all(isinstance(option, str) and option.strip() for option in options)):
            raise ValueError(f"options must be a list of {OPTION_COUNT} non-empty strings")
        fields['options'] = [option.strip() for option in options]
    if 'correctOption' in data or not partial:
        correct = data.get('correctOption')
        if isinstance(correct, bool) or not isinstance(correct, int) or not 0 <= correct < OPTION_COUNT:
            raise ValueError(f"correctOption must be between 0 and {OPTION_COUNT - 1}")
        fields['correct_option'] = correct
    return fields


def check_quiz_slot(storage, group_code, quiz_index, quiz_id=None):
    """Each group holds at most one question per index"""
    existing = storage.get_quiz_by_group_and_index(group_code, quiz_index)
    if existing and existing['id'] != quiz_id:
        raise ValueError(f"Group {group_code} already has a question {quiz_index}")


def answer_quiz_question(storage, user, quiz, selected_option):
    """
    Apply one answer to the user's quiz state.

    The pointer only moves forward and completion is absorbing. Until the quiz
    is finished, questions past the pointer cannot be answered. Returns the
    response payload plus 'just_completed', which is True only on the answer
    that finished the quiz.
    """
    quiz_index = quiz['quiz_index']
    validate_quiz_index(quiz_index)
    if (isinstance(selected_option, bool) or not isinstance(selected_option, int)
            or not 0 <= selected_option < len(quiz['options'])):
        raise ValueError(f"Selected option must be between 0 and {len(quiz['options']) - 1}")

    was_completed = bool(user['completed_quiz'])
    if not was_completed and quiz_index > user['last_quiz_question']:
        raise ValueError(f"Answer question {user['last_quiz_question']} before question {quiz_index}")

    correct = selected_option == quiz['correct_option']

    if not correct:
        return {
            'correct': False,
            'message': 'Incorrect answer. You lost a coin! Try again.',
            'completed': was_completed,
            'nextIndex': quiz_index,
            'just_completed': False
        }

    if quiz_index == LAST_QUESTION:
        fields = {'completed_quiz': True, 'last_quiz_question': LAST_QUESTION}
        next_index = LAST_QUESTION
    else:
        next_index = quiz_index + 1
        fields = {'last_quiz_question': max(user['last_quiz_question'], next_index)}

    updated = storage.update_user(user['id'], **fields)
    if not updated:
        return None

    just_completed = updated['completed_quiz'] and not was_completed
    if just_completed:
        hunt_logger.info(f"User {user['username']} completed the group {user['group_code']} quiz")

    return {
        'correct': True,
        'message': 'Quiz completed!' if quiz_index == LAST_QUESTION else 'Correct answer!',
        'completed': updated['completed_quiz'],
        'nextIndex': next_index,
        'just_completed': just_completed
    }


def reset_quiz_progress(storage, user):
    """Move the quiz pointer back to the first question unless the quiz is finished"""
    if user['completed_quiz']:
        return user
    updated = storage.update_user(user['id'], last_quiz_question=FIRST_QUESTION)
    if updated:
        hunt_logger.info(f"User {user['username']} reset their quiz to question {FIRST_QUESTION}")
    return updated
