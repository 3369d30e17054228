"""
CyberHunt - Main Flask Application
A group scavenger hunt: password challenges, a per-group quiz and a shared
completion board, served as a JSON API polled by the browser client.
"""

import os
import time
from flask import Flask, request, jsonify, redirect, url_for
from werkzeug.exceptions import HTTPException

from models.auth import (
    init_oauth, get_storage, get_current_user, login_user, logout_user,
    require_login, require_admin, is_admin_email, log_admin_action
)
from models.database import get_version_info, health_check
from models.users import (
    register_user, authenticate_user, get_or_create_sso_admin, sanitize_user,
    serialize_user_admin, get_user_progress, delete_user
)
from models.challenges import (
    sanitize_challenge, serialize_challenge, validate_challenge_fields, check_challenge_order,
    verify_challenge_answer
)
from models.quizzes import (
    sanitize_quiz, serialize_quiz, validate_quiz_fields, validate_quiz_index,
    check_quiz_slot, answer_quiz_question, reset_quiz_progress
)
from models.groups import (
    get_group_progress, get_all_groups_progress, get_group_members,
    mark_group_complete, save_group_photo, get_group_photo, is_team_group,
    parse_completion_time
)
from utils.logger import hunt_logger
from utils.timezone import elapsed_ms_since


# Flask app initialization
app = Flask(__name__)
app.secret_key = os.getenv('FLASK_SECRET_KEY', 'your-secret-key-change-in-production')
app.config['STORAGE'] = None

# Initialize OAuth
oauth, oauth_client = init_oauth(app)

# Track app start time for health checks
app.start_time = time.time()


def get_json_body():
    """Request JSON as a dict; anything else counts as an empty body"""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def parse_int(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


# Authentication routes
@app.route('/api/register', methods=['POST'])
def api_register():
    """Register a new user and log them in"""
    data = get_json_body()
    try:
        user = register_user(
            get_storage(),
            data.get('username'),
            data.get('password'),
            data.get('groupCode'),
            data.get('adminCode')
        )
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    login_user(user)
    return jsonify(sanitize_user(user)), 201


@app.route('/api/login', methods=['POST'])
def api_login():
    """Username/password login"""
    data = get_json_body()
    user = authenticate_user(get_storage(), data.get('username'), data.get('password'))
    if not user:
        return jsonify({'error': 'Invalid username or password'}), 401

    login_user(user)
    hunt_logger.info(f"User {user['username']} logged in")
    return jsonify(sanitize_user(user))


@app.route('/api/logout', methods=['POST'])
def api_logout():
    """Logout and clear session"""
    logout_user()
    return jsonify({'success': True})


@app.route('/api/user')
@require_login
def api_user():
    """Current user"""
    return jsonify(sanitize_user(get_current_user()))


@app.route('/api/admin/auth')
def admin_auth():
    """Initiate OAuth authentication for admin"""
    if not oauth_client:
        return jsonify({'error': 'OAuth not configured. Please contact administrator.'}), 503

    redirect_uri = url_for('admin_auth_callback', _external=True)
    return oauth_client.authorize_redirect(redirect_uri)


@app.route('/api/admin/auth/callback')
def admin_auth_callback():
    """Handle OAuth callback for admin authentication"""
    if not oauth_client:
        return jsonify({'error': 'OAuth not configured. Please contact administrator.'}), 503

    token = oauth_client.authorize_access_token()
    user_info = token.get('userinfo') or oauth_client.userinfo()
    email = user_info.get('email')
    if not email:
        return jsonify({'error': 'Email not provided by OAuth provider'}), 400

    # Check if email is in admin whitelist
    if not is_admin_email(email):
        hunt_logger.warning(f"Unauthorized admin SSO attempt: {email}")
        return jsonify({'error': 'Access denied. You are not authorized as an admin.'}), 403

    user = get_or_create_sso_admin(get_storage(), email, user_info.get('name'))
    login_user(user)
    log_admin_action(user, 'admin_sso_login', email)
    return redirect('/')


# Challenge routes
@app.route('/api/challenges')
@require_login
def api_challenges():
    """All challenges, answers stripped"""
    return jsonify([sanitize_challenge(c) for c in get_storage().list_challenges()])


@app.route('/api/challenges/<challenge_id>')
@require_login
def api_challenge_detail(challenge_id):
    """One challenge with the caller's group hint, answer stripped"""
    challenge_id = parse_int(challenge_id)
    if challenge_id is None:
        return jsonify({'error': 'Invalid challenge ID'}), 400

    challenge = get_storage().get_challenge(challenge_id)
    if not challenge:
        return jsonify({'error': 'Challenge not found'}), 404

    return jsonify(sanitize_challenge(challenge, get_current_user()['group_code']))


@app.route('/api/challenges/<challenge_id>/verify', methods=['POST'])
@require_login
def api_verify_challenge(challenge_id):
    """Check a submitted password and record the solve"""
    challenge_id = parse_int(challenge_id)
    if challenge_id is None:
        return jsonify({'error': 'Invalid challenge ID'}), 400

    answer = get_json_body().get('answer')
    if not isinstance(answer, str) or not answer.strip():
        return jsonify({'error': 'Invalid answer format'}), 400

    storage = get_storage()
    challenge = storage.get_challenge(challenge_id)
    if not challenge:
        return jsonify({'error': 'Challenge not found'}), 404

    result = verify_challenge_answer(storage, get_current_user(), challenge, answer)
    if result is None:
        return jsonify({'error': 'Failed to update progress'}), 500
    return jsonify(result)


@app.route('/api/progress')
@require_login
def api_progress():
    """Current user's progress and their group's snapshot"""
    return jsonify(get_user_progress(get_storage(), get_current_user()))


# Quiz routes
@app.route('/api/quiz')
@require_login
def api_quiz():
    """The caller's group quiz, correct options stripped"""
    user = get_current_user()
    return jsonify([sanitize_quiz(q) for q in get_storage().list_quizzes(user['group_code'])])


@app.route('/api/quiz/<quiz_index>')
@require_login
def api_quiz_question(quiz_index):
    """One question of the caller's group quiz"""
    quiz_index = parse_int(quiz_index)
    try:
        validate_quiz_index(quiz_index)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    quiz = get_storage().get_quiz_by_group_and_index(get_current_user()['group_code'], quiz_index)
    if not quiz:
        return jsonify({'error': 'Quiz question not found'}), 404
    return jsonify(sanitize_quiz(quiz))


@app.route('/api/quiz/<quiz_index>/answer', methods=['POST'])
@require_login
def api_quiz_answer(quiz_index):
    """Answer a quiz question; the last correct answer completes the quiz"""
    quiz_index = parse_int(quiz_index)
    try:
        validate_quiz_index(quiz_index)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    data = get_json_body()
    try:
        completion_time = parse_completion_time(data.get('completionTime'))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    storage = get_storage()
    user = get_current_user()
    quiz = storage.get_quiz_by_group_and_index(user['group_code'], quiz_index)
    if not quiz:
        return jsonify({'error': 'Quiz question not found'}), 404

    try:
        result = answer_quiz_question(storage, user, quiz, data.get('selectedOption'))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    if result is None:
        return jsonify({'error': 'Failed to update quiz progress'}), 500

    if result.pop('just_completed'):
        if completion_time is None:
            completion_time = elapsed_ms_since(user['started_at'], user['created_at'])
        mark_group_complete(storage, user['group_code'], completion_time)

    return jsonify(result)


@app.route('/api/quiz/reset', methods=['POST'])
@require_login
def api_quiz_reset():
    """Send an unfinished quiz back to the first question"""
    user = reset_quiz_progress(get_storage(), get_current_user())
    if user is None:
        return jsonify({'error': 'Failed to reset quiz progress'}), 500
    return jsonify({
        'success': True,
        'lastQuizQuestion': user['last_quiz_question'],
        'completed': user['completed_quiz']
    })


# Group routes
@app.route('/api/group-photo', methods=['POST'])
@require_login
def api_save_group_photo():
    """Store the caller's group photo"""
    user = get_current_user()
    if not is_team_group(user['group_code']):
        return jsonify({'error': 'Only team members can save a group photo'}), 400

    photo_data = get_json_body().get('photoData')
    if not isinstance(photo_data, str) or not photo_data:
        return jsonify({'error': 'photoData is required'}), 400

    save_group_photo(get_storage(), user['group_code'], photo_data)
    return jsonify({'success': True, 'message': 'Group photo saved successfully'})


@app.route('/api/group-photo')
@require_login
def api_get_group_photo():
    """The caller's group photo"""
    group_code = get_current_user()['group_code']
    photo_data = get_group_photo(get_storage(), group_code)
    if not photo_data:
        return jsonify({'error': 'No group photo saved yet'}), 404
    return jsonify({'groupCode': group_code, 'photoData': photo_data})


@app.route('/api/group-progress')
@require_login
def api_group_progress():
    """Snapshot of the caller's group"""
    return jsonify(get_group_progress(get_storage(), get_current_user()['group_code']))


@app.route('/api/group-members')
@require_login
def api_group_members():
    """Public progress of the caller's teammates"""
    return jsonify(get_group_members(get_storage(), get_current_user()['group_code']))


@app.route('/api/all-groups-progress')
@require_login
def api_all_groups_progress():
    """Snapshots of every team"""
    return jsonify(get_all_groups_progress(get_storage()))


# Admin API routes
@app.route('/api/admin/challenges', methods=['GET'])
@require_admin
def api_admin_challenges():
    """All challenges with answers (ADMIN ONLY)"""
    return jsonify([serialize_challenge(c) for c in get_storage().list_challenges()])


@app.route('/api/admin/challenges', methods=['POST'])
@require_admin
def api_admin_create_challenge():
    """Create a challenge (ADMIN ONLY)"""
    try:
        fields = validate_challenge_fields(get_json_body())
        check_challenge_order(get_storage(), fields['order'])
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    challenge = get_storage().create_challenge(fields)
    log_admin_action(get_current_user(), 'create_challenge', f"Challenge {challenge['id']}: {challenge['title']}")
    return jsonify(serialize_challenge(challenge)), 201


@app.route('/api/admin/challenges/<int:challenge_id>', methods=['PUT'])
@require_admin
def api_admin_update_challenge(challenge_id):
    """Edit an admin-created challenge (ADMIN ONLY)"""
    storage = get_storage()
    challenge = storage.get_challenge(challenge_id)
    if not challenge:
        return jsonify({'error': 'Challenge not found'}), 404
    if challenge['builtin']:
        return jsonify({'error': 'Built-in challenges are password protected and cannot be modified'}), 403

    try:
        fields = validate_challenge_fields(get_json_body(), partial=True)
        if 'order' in fields:
            check_challenge_order(storage, fields['order'], challenge_id)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    challenge = storage.update_challenge(challenge_id, **fields)
    log_admin_action(get_current_user(), 'update_challenge', f"Challenge {challenge_id}")
    return jsonify(serialize_challenge(challenge))


@app.route('/api/admin/challenges/<int:challenge_id>', methods=['DELETE'])
@require_admin
def api_admin_delete_challenge(challenge_id):
    """Delete an admin-created challenge (ADMIN ONLY)"""
    storage = get_storage()
    challenge = storage.get_challenge(challenge_id)
    if not challenge:
        return jsonify({'error': 'Challenge not found'}), 404
    if challenge['builtin']:
        return jsonify({'error': 'Built-in challenges are password protected and cannot be deleted'}), 403

    storage.delete_challenge(challenge_id)
    log_admin_action(get_current_user(), 'delete_challenge', f"Challenge {challenge_id}")
    return jsonify({'success': True})


@app.route('/api/admin/quizzes', methods=['GET'])
@require_admin
def api_admin_quizzes():
    """All quiz questions with correct options (ADMIN ONLY)"""
    group_code = request.args.get('groupCode')
    return jsonify([serialize_quiz(q) for q in get_storage().list_quizzes(group_code)])


@app.route('/api/admin/quizzes', methods=['POST'])
@require_admin
def api_admin_create_quiz():
    """Create a quiz question (ADMIN ONLY)"""
    try:
        fields = validate_quiz_fields(get_json_body())
        check_quiz_slot(get_storage(), fields['group_code'], fields['quiz_index'])
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    quiz = get_storage().create_quiz(fields)
    log_admin_action(get_current_user(), 'create_quiz', f"Quiz {quiz['id']} for group {quiz['group_code']}")
    return jsonify(serialize_quiz(quiz)), 201


@app.route('/api/admin/quizzes/<int:quiz_id>', methods=['PUT'])
@require_admin
def api_admin_update_quiz(quiz_id):
    """Edit a quiz question (ADMIN ONLY)"""
    storage = get_storage()
    quiz = storage.get_quiz(quiz_id)
    if not quiz:
        return jsonify({'error': 'Quiz question not found'}), 404

    try:
        fields = validate_quiz_fields(get_json_body(), partial=True)
        if 'group_code' in fields or 'quiz_index' in fields:
            check_quiz_slot(storage, fields.get('group_code', quiz['group_code']),
                            fields.get('quiz_index', quiz['quiz_index']), quiz_id)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    quiz = storage.update_quiz(quiz_id, **fields)
    log_admin_action(get_current_user(), 'update_quiz', f"Quiz {quiz_id}")
    return jsonify(serialize_quiz(quiz))


@app.route('/api/admin/quizzes/<int:quiz_id>', methods=['DELETE'])
@require_admin
def api_admin_delete_quiz(quiz_id):
    """Delete a quiz question (ADMIN ONLY)"""
    if not get_storage().delete_quiz(quiz_id):
        return jsonify({'error': 'Quiz question not found'}), 404

    log_admin_action(get_current_user(), 'delete_quiz', f"Quiz {quiz_id}")
    return jsonify({'success': True})


@app.route('/api/admin/users', methods=['GET'])
@require_admin
def api_admin_users():
    """All users with progress (ADMIN ONLY)"""
    return jsonify([serialize_user_admin(u) for u in get_storage().list_users()])


@app.route('/api/admin/users/<int:user_id>', methods=['DELETE'])
@require_admin
def api_admin_delete_user(user_id):
    """Delete a user (ADMIN ONLY)"""
    admin_user = get_current_user()
    if admin_user['id'] == user_id:
        return jsonify({'error': 'You cannot delete your own account'}), 400

    if not delete_user(get_storage(), user_id):
        return jsonify({'error': 'User not found'}), 404

    log_admin_action(admin_user, 'delete_user', f"User {user_id}")
    return jsonify({'success': True})


@app.route('/api/admin/group-progress')
@require_admin
def api_admin_group_progress():
    """Every group's snapshot including photos (ADMIN ONLY)"""
    return jsonify(get_all_groups_progress(get_storage(), include_photo=True))


# Health check endpoint
@app.route('/health')
def health():
    """Health check endpoint"""
    version_info = get_version_info()
    health_status = health_check(get_storage())

    # Add version and uptime info
    health_status.update({
        'version': version_info['version'],
        'commit': version_info['git_commit'],
        'build_date': version_info['build_date'],
        'uptime': int(time.time() - app.start_time),
        'environment': version_info['environment']
    })

    status_code = 200 if health_status['status'] == 'healthy' else 503
    return jsonify(health_status), status_code


# Error handlers
@app.errorhandler(404)
def not_found(error):
    """Handle 404 errors"""
    return jsonify({'error': 'Endpoint not found'}), 404


@app.errorhandler(405)
def method_not_allowed(error):
    """Handle 405 errors"""
    return jsonify({'error': 'Method not allowed'}), 405


@app.errorhandler(Exception)
def internal_error(error):
    """Log unexpected failures and answer with a generic message"""
    if isinstance(error, HTTPException):
        return jsonify({'error': error.description}), error.code

    hunt_logger.exception(f"Unhandled error on {request.method} {request.path}")
    return jsonify({'error': 'Internal server error. Please try again.'}), 500


if __name__ == '__main__':
    hunt_logger.info("=== CyberHunt ===")
    with app.app_context():
        get_storage()
    app.run(debug=os.getenv('FLASK_ENV') == 'development', host='0.0.0.0', port=int(os.getenv('PORT', 5000)))
