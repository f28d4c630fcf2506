import itertools
import os
import random
import sys
import pytest

# Ensure the backend root (containing the `trivia` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from trivia import create_app, socketio
from trivia.models import RoomSettings
from trivia.services.games import QuestionBank, RoomRegistry, SessionOrchestrator, TimerHandle


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    CORS_ORIGINS = ['http://localhost:5173']
    SOCKETIO_NAMESPACE = '/ws'
    LOG_LEVEL = 'DEBUG'
    MAX_PARTICIPANTS = 4
    QUESTION_TIME_LIMIT_SEC = 30
    TOTAL_QUESTIONS = 3
    TIME_BONUS_ENABLED = True
    MIN_PLAYERS = 2
    LEAD_IN_DURATION_SEC = 3
    REVEAL_DURATION_SEC = 5
    END_ON_ALL_ANSWERED = True
    RECLAIM_INTERVAL_SEC = 0
    ROOM_RETENTION_SEC = 3600
    START_STALL_SEC = 30
    QUESTIONS_FILE = None


class ManualScheduler:
    """Scheduler whose clock only moves when a test calls advance()."""

    def __init__(self, start=1_700_000_000.0):
        self.now = start
        self._seq = itertools.count()
        self._entries = []

    def time(self):
        return self.now

    def call_later(self, delay, callback, *args, name='timer'):
        handle = TimerHandle(name)
        self._push(self.now + delay, handle, callback, args, None)
        return handle

    def call_every(self, interval, callback, *args, name='interval'):
        handle = TimerHandle(name, repeating=True)
        self._push(self.now + interval, handle, callback, args, interval)
        return handle

    def _push(self, due, handle, callback, args, interval):
        self._entries.append((due, next(self._seq), handle, callback, args, interval))

    def advance(self, seconds):
        target = self.now + seconds
        while True:
            self._entries = [e for e in self._entries if not e[2].cancelled]
            due = [e for e in self._entries if e[0] <= target + 1e-9]
            if not due:
                break
            entry = min(due, key=lambda e: (e[0], e[1]))
            self._entries.remove(entry)
            due_at, _, handle, callback, args, interval = entry
            self.now = max(self.now, due_at)
            handle.mark_fired()
            result = callback(*args)
            if interval is None:
                continue
            if result is False:
                handle.cancel()
            elif not handle.cancelled:
                self._push(due_at + interval, handle, callback, args, interval)
        self.now = target

    def pending(self):
        return [e[2] for e in self._entries if e[2].active]


class RecordingBroadcaster:
    """Collects outbound events instead of sending them."""

    def __init__(self):
        self.events = []
        self.attached = {}

    def attach(self, participant_id, room_code):
        self.attached[participant_id] = room_code

    def detach(self, participant_id):
        self.attached.pop(participant_id, None)

    def to_room(self, room_code, event, payload, skip=None):
        self.events.append({'target': room_code, 'event': event, 'payload': payload, 'skip': skip})

    def to_participant(self, participant_id, event, payload):
        self.events.append({'target': participant_id, 'event': event, 'payload': payload, 'skip': None})

    def named(self, event):
        return [e['payload'] for e in self.events if e['event'] == event]

    def last(self, event):
        found = self.named(event)
        return found[-1] if found else None

    def clear(self):
        self.events.clear()


def make_question_records(count, difficulty='easy'):
    return [
        {
            'id': f'q{i:03d}',
            'question': f'Question number {i}?',
            'options': ['Alpha', 'Bravo', 'Charlie', 'Delta'],
            'correctAnswer': i % 4,
            'difficulty': difficulty,
            'category': 'general',
        }
        for i in range(1, count + 1)
    ]


@pytest.fixture()
def question_bank():
    return QuestionBank.from_records(make_question_records(6))


@pytest.fixture()
def settings():
    return RoomSettings(max_participants=4, question_time_limit_seconds=30, total_questions=3, time_bonus_enabled=True)


@pytest.fixture()
def scheduler():
    return ManualScheduler()


@pytest.fixture()
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture()
def registry(question_bank, settings, scheduler):
    return RoomRegistry(
        question_bank,
        settings=settings,
        clock=scheduler.time,
        retention_seconds=3600,
        start_stall_seconds=30,
        rng=random.Random(7),
    )


@pytest.fixture()
def orchestrator(registry, broadcaster, scheduler):
    orch = SessionOrchestrator(
        registry,
        broadcaster,
        scheduler,
        min_players=2,
        lead_in_seconds=3,
        reveal_seconds=5,
    )
    yield orch
    orch.shutdown()


@pytest.fixture()
def app_scheduler():
    return ManualScheduler()


@pytest.fixture()
def flask_app(app_scheduler):
    application = create_app(TestConfig, scheduler=app_scheduler)
    with application.app_context():
        yield application
    application.extensions['trivia']['orchestrator'].shutdown()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    if test_client.is_connected('/ws'):
        test_client.disconnect(namespace='/ws')
