"""In-memory domain records shared by the room, registry and transport layers."""
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple
from uuid import uuid4
import random

# No 0/O or 1/I so codes can be read aloud
ROOM_CODE_ALPHABET = '23456789ABCDEFGHJKMNPQRSTUVWXYZ'
ROOM_CODE_LENGTH = 6

DIFFICULTIES = ('easy', 'medium', 'hard')


def generate_room_code(length=ROOM_CODE_LENGTH, rng=random):
    """Generate a short room code. Uniqueness is checked by the registry."""
    return ''.join(rng.choices(ROOM_CODE_ALPHABET, k=length))


def new_participant_id() -> str:
    return uuid4().hex


def iso_utc(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat().replace('+00:00', 'Z')


class RoomState(str, Enum):
    WAITING = 'waiting'
    STARTING = 'starting'
    QUESTION = 'question'
    RESULTS = 'results'
    FINISHED = 'finished'
    ABANDONED = 'abandoned'


@dataclass(frozen=True)
class RoomSettings:
    max_participants: int = 20
    question_time_limit_seconds: int = 30
    total_questions: int = 10
    time_bonus_enabled: bool = True

    @property
    def time_limit_millis(self) -> int:
        return int(self.question_time_limit_seconds * 1000)

    @classmethod
    def from_config(cls, config):
        return cls(
            max_participants=int(config.get('MAX_PARTICIPANTS', 20)),
            question_time_limit_seconds=int(config.get('QUESTION_TIME_LIMIT_SEC', 30)),
            total_questions=int(config.get('TOTAL_QUESTIONS', 10)),
            time_bonus_enabled=bool(config.get('TIME_BONUS_ENABLED', True)),
        )

    def to_dict(self):
        return {
            'maxParticipants': self.max_participants,
            'questionTimeLimit': self.question_time_limit_seconds,
            'totalQuestions': self.total_questions,
            'timeBonus': self.time_bonus_enabled,
        }


@dataclass(frozen=True)
class Question:
    """Multiple-choice question with exactly four options."""

    id: str
    prompt: str
    options: Tuple[str, ...]
    correct_option_index: int
    difficulty: str = 'easy'
    category: str = 'general'

    @classmethod
    def from_dict(cls, data):
        options = tuple(data.get('options') or ())
        if len(options) != 4:
            raise ValueError(f"Question {data.get('id')!r} must have exactly four options")
        correct = data.get('correctOptionIndex', data.get('correctAnswer'))
        if not isinstance(correct, int) or not 0 <= correct < len(options):
            raise ValueError(f"Question {data.get('id')!r} has an invalid correct option index")
        difficulty = data.get('difficulty', 'easy')
        if difficulty not in DIFFICULTIES:
            raise ValueError(f"Question {data.get('id')!r} has unknown difficulty {difficulty!r}")
        return cls(
            id=str(data['id']),
            prompt=data.get('prompt') or data['question'],
            options=options,
            correct_option_index=correct,
            difficulty=difficulty,
            category=data.get('category', 'general'),
        )

    def to_client_dict(self):
        """Projection sent while the question is open; no answer key."""
        return {
            'id': self.id,
            'question': self.prompt,
            'options': list(self.options),
            'difficulty': self.difficulty,
            'category': self.category,
        }

    def to_dict(self):
        payload = self.to_client_dict()
        payload['correctOptionIndex'] = self.correct_option_index
        return payload


@dataclass
class Participant:
    id: str
    display_name: str
    is_host: bool = False
    is_active: bool = True
    joined_at: float = 0.0

    def to_dict(self, score=0):
        return {
            'id': self.id,
            'displayName': self.display_name,
            'score': score,
            'isHost': self.is_host,
            'isActive': self.is_active,
            'joinedAt': iso_utc(self.joined_at),
        }


@dataclass(frozen=True)
class AnswerSubmission:
    participant_id: str
    option_index: int
    submitted_at: float
    elapsed_millis: int


@dataclass
class Removal:
    """Outcome of removing a participant from its room."""

    code: Optional[str] = None
    was_host: bool = False
    display_name: Optional[str] = None
    new_host_id: Optional[str] = None
    remaining: int = 0
