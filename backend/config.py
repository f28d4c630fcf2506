import os


def _env_bool(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    CORS_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            'CORS_ORIGINS',
            'http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173,http://127.0.0.1:5173',
        ).split(',')
        if origin.strip()
    ]
    SOCKETIO_NAMESPACE = os.environ.get('SOCKETIO_NAMESPACE', '/ws')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()
    # Room settings, fixed per room at creation
    MAX_PARTICIPANTS = int(os.environ.get('MAX_PARTICIPANTS', '20'))
    QUESTION_TIME_LIMIT_SEC = int(os.environ.get('QUESTION_TIME_LIMIT_SEC', '30'))
    TOTAL_QUESTIONS = int(os.environ.get('TOTAL_QUESTIONS', '10'))
    TIME_BONUS_ENABLED = _env_bool('TIME_BONUS_ENABLED', True)
    MIN_PLAYERS = int(os.environ.get('MIN_PLAYERS', '2'))
    # Auto-advance timers (seconds)
    LEAD_IN_DURATION_SEC = float(os.environ.get('LEAD_IN_DURATION_SEC', '3'))
    REVEAL_DURATION_SEC = float(os.environ.get('REVEAL_DURATION_SEC', '5'))
    # End a question as soon as every participant has answered
    END_ON_ALL_ANSWERED = _env_bool('END_ON_ALL_ANSWERED', True)
    # Reclamation sweep: interval and max room age (seconds). 0 interval disables the sweep.
    RECLAIM_INTERVAL_SEC = float(os.environ.get('RECLAIM_INTERVAL_SEC', '3600'))
    ROOM_RETENTION_SEC = float(os.environ.get('ROOM_RETENTION_SEC', '3600'))
    # A room left in 'starting' this long without a first question accepts joins again
    START_STALL_SEC = float(os.environ.get('START_STALL_SEC', '30'))
    # Optional path to a questions JSON file; defaults to the bundled bank
    QUESTIONS_FILE = os.environ.get('QUESTIONS_FILE')
    # Debug logging while timers sleep; 0 disables
    TIMER_HEARTBEAT_SEC = int(os.environ.get('TIMER_HEARTBEAT_SEC', '0'))
