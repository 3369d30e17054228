"""
Database connection and initialization module.
Handles SQLite setup, schema creation, version info and health checks.
"""

import sqlite3
import os
from utils.logger import hunt_logger

# Database configuration
if os.path.exists('/app/data'):
    DEFAULT_DATABASE = '/app/data/cyberhunt.db'
else:
    DEFAULT_DATABASE = 'cyberhunt.db'

DATABASE = os.getenv('HUNT_DATABASE', DEFAULT_DATABASE)


def get_db_connection(database=None):
    """Get connection to the game database"""
    conn = sqlite3.connect(database or DATABASE)
    conn.row_factory = sqlite3.Row
    return conn


def init_database(database=None):
    """Create the database directory and tables if they do not exist yet"""
    database = database or DATABASE
    hunt_logger.info(f"Initializing game database: {database}")

    db_dir = os.path.dirname(database)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)

    conn = get_db_connection(database)
    try:
        create_tables(conn)
        conn.commit()
        tables = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
        hunt_logger.info(f"Game database ready with tables: {[table['name'] for table in tables]}")
    except sqlite3.Error:
        hunt_logger.exception(f"Error initializing game database {database}")
        raise
    finally:
        conn.close()


def create_tables(conn):
    """Create the four game tables"""
    conn.execute('''
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            username TEXT UNIQUE NOT NULL,
            password_hash TEXT,
            email TEXT,
            group_code TEXT NOT NULL,
            progress INTEGER NOT NULL DEFAULT 0,
            current_challenge INTEGER NOT NULL DEFAULT 1,
            completed_challenges TEXT NOT NULL DEFAULT '[]', -- JSON array of challenge orders
            completed_quiz BOOLEAN NOT NULL DEFAULT 0,
            last_quiz_question INTEGER NOT NULL DEFAULT 1,
            started_at INTEGER, -- epoch ms of the first solved challenge
            created_at TEXT,
            updated_at TEXT
        )
    ''')

    conn.execute('''
        CREATE TABLE IF NOT EXISTS challenges (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            "order" INTEGER NOT NULL,
            title TEXT NOT NULL,
            code_name TEXT NOT NULL,
            description TEXT NOT NULL,
            answer TEXT NOT NULL,
            hints TEXT NOT NULL DEFAULT '{}', -- JSON object keyed by group code
            builtin BOOLEAN NOT NULL DEFAULT 0
        )
    ''')

    conn.execute('''
        CREATE TABLE IF NOT EXISTS quizzes (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            group_code TEXT NOT NULL,
            quiz_index INTEGER NOT NULL,
            question TEXT NOT NULL,
            options TEXT NOT NULL, -- JSON array of four strings
            correct_option INTEGER NOT NULL
        )
    ''')

    conn.execute('''
        CREATE TABLE IF NOT EXISTS group_progress (
            group_code TEXT PRIMARY KEY,
            completed_quiz BOOLEAN NOT NULL DEFAULT 0,
            completion_time INTEGER NOT NULL DEFAULT 0,
            group_photo TEXT,
            updated_at TEXT
        )
    ''')


def get_version_info():
    """Get version info from build files or environment variables"""
    git_commit = 'unknown'
    build_date = 'unknown'
    version = '1.0.0'
    try:
        with open('/app/BUILD_INFO', 'r') as f:
            for line in f.read().strip().split('\n'):
                if line.startswith('GIT_COMMIT='):
                    git_commit = line.split('=', 1)[1][:7]
                elif line.startswith('BUILD_DATE='):
                    build_date = line.split('=', 1)[1]
                elif line.startswith('VERSION='):
                    version = line.split('=', 1)[1]
    except FileNotFoundError:
        # Fallback to environment variable
        git_commit = os.getenv('GIT_COMMIT', 'unknown')[:7]

    return {
        'git_commit': git_commit,
        'build_date': build_date,
        'version': version,
        'environment': os.getenv('FLASK_ENV', 'development')
    }


def health_check(storage):
    """Perform storage health check"""
    health_status = {
        'status': 'healthy',
        'service': 'cyberhunt',
        'checks': {}
    }

    try:
        counts = storage.counts()
        health_status['checks']['storage'] = 'healthy'
        health_status['checks']['backend'] = storage.backend
        health_status['checks'].update(counts)
    except Exception as e:
        hunt_logger.warning(f"Storage health check failed: {e}")
        health_status['status'] = 'unhealthy'
        health_status['checks']['storage'] = 'storage issue'

    return health_status
