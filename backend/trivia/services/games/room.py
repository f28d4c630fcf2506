"""Room aggregate: one trivia session and its state machine.

    waiting --start_game--> starting --advance_question--> question
    question --end_question--> results --advance_question--> question
    results --(no questions left)--> finished
    any state --last participant removed--> abandoned

A Room does no locking of its own. Callers serialize every mutation of a
given room (the session orchestrator holds one lock per room).
"""
import time
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from trivia.errors import (
    AlreadyAnswered,
    AlreadyStarted,
    GameFinished,
    GameNotStarted,
    InvalidRequest,
    NameTaken,
    NoActiveQuestion,
    NoMoreQuestions,
    NotEnoughPlayers,
    NotHost,
    PlayerNotInRoom,
    RoomFull,
)
from trivia.models import (
    AnswerSubmission,
    Participant,
    Question,
    RoomSettings,
    RoomState,
    iso_utc,
    new_participant_id,
)
from .scoring import calculate_leaderboard, calculate_points, is_correct_answer

TERMINAL_STATES = (RoomState.FINISHED, RoomState.ABANDONED)


class Room:
    def __init__(
        self,
        code: str,
        questions: Sequence[Question],
        settings: RoomSettings,
        clock: Callable[[], float] = time.time,
    ):
        self.code = code
        self.questions: Tuple[Question, ...] = tuple(questions)
        self.settings = settings
        self._clock = clock
        self.state = RoomState.WAITING
        self.host_id: Optional[str] = None
        self.participants: Dict[str, Participant] = {}
        self.scores: Dict[str, int] = {}
        self.pending_answers: Dict[str, AnswerSubmission] = {}
        self.question_cursor = -1
        self.question_started_at: Optional[float] = None
        self.created_at = clock()
        self.started_at: Optional[float] = None
        self.finished_at: Optional[float] = None
        # One entry per ended question
        self.history: List[dict] = []

    def __repr__(self):
        return f'<Room {self.code} state={self.state.value} players={len(self.participants)}>'

    # ---- Participants ----

    def add_participant(self, display_name: str, is_host: bool = False) -> Participant:
        if len(self.participants) >= self.settings.max_participants:
            raise RoomFull()
        if self.has_name(display_name):
            raise NameTaken()
        participant = Participant(
            id=new_participant_id(),
            display_name=display_name,
            is_host=is_host or not self.participants,
            joined_at=self._clock(),
        )
        if participant.is_host:
            for other in self.participants.values():
                other.is_host = False
            self.host_id = participant.id
        self.participants[participant.id] = participant
        self.scores[participant.id] = 0
        return participant

    def remove_participant(self, participant_id: str) -> Tuple[Participant, Optional[str]]:
        """Remove a participant; returns it and the id of a newly promoted host, if any.

        The earliest-joined remaining participant becomes host when the host
        leaves. Removing the last participant abandons the room.
        """
        participant = self.participants.pop(participant_id, None)
        if participant is None:
            raise PlayerNotInRoom()
        self.scores.pop(participant_id, None)
        self.pending_answers.pop(participant_id, None)

        new_host_id = None
        if not self.participants:
            self.host_id = None
            self.state = RoomState.ABANDONED
        elif participant.is_host:
            successor = next(iter(self.participants.values()))
            successor.is_host = True
            self.host_id = successor.id
            new_host_id = successor.id
        return participant, new_host_id

    def has_name(self, display_name: str) -> bool:
        return any(p.display_name == display_name for p in self.participants.values())

    # ---- Lifecycle ----

    def start_game(self, caller_id: str, min_players: int = 2) -> None:
        if caller_id != self.host_id:
            raise NotHost('Only host can start the game')
        if self.state != RoomState.WAITING:
            raise AlreadyStarted()
        if len(self.participants) < min_players:
            raise NotEnoughPlayers(f'Need at least {min_players} players to start')
        self.state = RoomState.STARTING
        self.started_at = self._clock()

    def is_stalled_start(self, now: float, stall_after: Optional[float] = None) -> bool:
        """True when the room sits in 'starting' without ever reaching a question."""
        if self.state != RoomState.STARTING or self.question_cursor != -1:
            return False
        if self.started_at is None:
            return True
        return stall_after is not None and now - self.started_at > stall_after

    def revert_to_waiting(self) -> None:
        self.state = RoomState.WAITING
        self.started_at = None

    def advance_question(self) -> Tuple[dict, int]:
        """Open the next question; returns its client projection and 1-based number."""
        if self.state == RoomState.WAITING:
            raise GameNotStarted()
        if self.state in TERMINAL_STATES:
            raise GameFinished()
        if self.question_cursor + 1 >= len(self.questions):
            self.state = RoomState.FINISHED
            self.finished_at = self._clock()
            raise NoMoreQuestions()
        self.question_cursor += 1
        self.pending_answers.clear()
        self.question_started_at = self._clock()
        self.state = RoomState.QUESTION
        return self.current_question.to_client_dict(), self.question_number

    def submit_answer(self, participant_id: str, option_index: int) -> AnswerSubmission:
        # The cutoff is the state change made by end_question, not the wall clock.
        if participant_id not in self.participants:
            raise PlayerNotInRoom()
        if self.state != RoomState.QUESTION:
            raise NoActiveQuestion()
        if not 0 <= option_index < len(self.current_question.options):
            raise InvalidRequest(f"optionIndex must be between 0 and {len(self.current_question.options) - 1}")
        if participant_id in self.pending_answers:
            raise AlreadyAnswered()
        now = self._clock()
        submission = AnswerSubmission(
            participant_id=participant_id,
            option_index=option_index,
            submitted_at=now,
            elapsed_millis=max(0, int(round((now - self.question_started_at) * 1000))),
        )
        self.pending_answers[participant_id] = submission
        return submission

    def end_question(self) -> Tuple[dict, List[dict]]:
        """Score the open question for every participant and show results.

        Calling this twice for one question is a caller error; the second call
        raises NoActiveQuestion.
        """
        if self.state != RoomState.QUESTION:
            raise NoActiveQuestion()
        question = self.current_question
        player_results = []
        for pid, participant in self.participants.items():
            submission = self.pending_answers.get(pid)
            correct = submission is not None and is_correct_answer(submission.option_index, question)
            points = calculate_points(submission, question, self.settings)
            self.scores[pid] = self.scores.get(pid, 0) + points
            player_results.append({
                'participantId': pid,
                'displayName': participant.display_name,
                'optionIndex': submission.option_index if submission else -1,
                'isCorrect': correct,
                'pointsEarned': points,
                'elapsedMillis': submission.elapsed_millis if submission else self.settings.time_limit_millis,
            })
        results = {
            'questionId': question.id,
            'questionNumber': self.question_number,
            'correctOptionIndex': question.correct_option_index,
            'playerResults': player_results,
            'totalAnswers': len(self.pending_answers),
        }
        leaderboard = self.leaderboard()
        self.history.append(results)
        self.state = RoomState.RESULTS
        return results, leaderboard

    def finish_game(self) -> dict:
        if self.state == RoomState.WAITING:
            raise GameNotStarted()
        self.state = RoomState.FINISHED
        if self.finished_at is None:
            self.finished_at = self._clock()
        duration = int((self.finished_at - self.started_at) * 1000) if self.started_at else 0
        return {
            'finalScores': self.leaderboard(),
            'stats': {
                'totalQuestions': len(self.questions),
                'questionsPlayed': len(self.history),
                'duration': duration,
            },
        }

    # ---- Read helpers ----

    @property
    def current_question(self) -> Optional[Question]:
        if 0 <= self.question_cursor < len(self.questions):
            return self.questions[self.question_cursor]
        return None

    @property
    def question_number(self) -> int:
        return self.question_cursor + 1

    @property
    def is_last_question(self) -> bool:
        return self.question_cursor + 1 >= len(self.questions)

    @property
    def all_answered(self) -> bool:
        return bool(self.participants) and all(pid in self.pending_answers for pid in self.participants)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def leaderboard(self) -> List[dict]:
        return calculate_leaderboard(self.scores, self.participants)

    def participants_payload(self) -> List[dict]:
        return [p.to_dict(score=self.scores.get(pid, 0)) for pid, p in self.participants.items()]

    def summary(self) -> dict:
        return {
            'roomCode': self.code,
            'playerCount': len(self.participants),
            'state': self.state.value,
            'currentQuestion': self.question_number,
            'totalQuestions': len(self.questions),
            'createdAt': iso_utc(self.created_at),
            'startedAt': iso_utc(self.started_at),
        }
