import json
import os
import random
from typing import Iterable, List, Sequence, Tuple

from trivia.models import Question

DEFAULT_QUESTIONS_FILE = os.path.join(
    os.path.dirname(os.path.dirname(os.path.dirname(__file__))), 'data', 'questions.json'
)


class QuestionBank:
    """Immutable, ordered collection of questions that rooms draw from."""

    def __init__(self, questions: Iterable[Question]):
        self._questions: Tuple[Question, ...] = tuple(questions)
        ids = [q.id for q in self._questions]
        if len(set(ids)) != len(ids):
            raise ValueError('Question ids must be unique')

    @classmethod
    def from_records(cls, records: Sequence[dict]) -> 'QuestionBank':
        return cls(Question.from_dict(record) for record in records)

    @classmethod
    def from_json(cls, path=None) -> 'QuestionBank':
        with open(path or DEFAULT_QUESTIONS_FILE, encoding='utf-8') as fh:
            data = json.load(fh)
        if isinstance(data, dict):
            data = data.get('questions', [])
        return cls.from_records(data)

    def __len__(self):
        return len(self._questions)

    def __iter__(self):
        return iter(self._questions)

    @property
    def questions(self) -> Tuple[Question, ...]:
        return self._questions

    def categories(self) -> List[str]:
        return sorted({q.category for q in self._questions})

    def draw(self, count: int, rng=random) -> List[Question]:
        """Draw up to ``count`` distinct questions in random order."""
        count = max(0, min(int(count), len(self._questions)))
        return rng.sample(self._questions, count)
