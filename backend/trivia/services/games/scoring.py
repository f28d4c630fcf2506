import math
from typing import Dict, List, Mapping, Optional

from trivia.models import AnswerSubmission, Participant, Question, RoomSettings

BASE_POINTS = {'easy': 100, 'medium': 200, 'hard': 300}
TIME_BONUS_SHARE = 0.5


def base_points(difficulty: str) -> int:
    return BASE_POINTS.get(difficulty, BASE_POINTS['easy'])


def is_correct_answer(option_index: int, question: Question) -> bool:
    return option_index == question.correct_option_index


def calculate_points(
    submission: Optional[AnswerSubmission],
    question: Question,
    settings: RoomSettings,
) -> int:
    """Points earned for one question.

    Wrong or missing answers earn 0. A correct answer earns the difficulty's
    base points, plus up to 50% more the faster it arrived when the time bonus
    is enabled. Correct answers that arrive at or after the deadline keep the
    base points but earn no bonus.
    """
    if submission is None or not is_correct_answer(submission.option_index, question):
        return 0
    points = base_points(question.difficulty)
    limit_ms = settings.time_limit_millis
    if settings.time_bonus_enabled and limit_ms > 0 and submission.elapsed_millis < limit_ms:
        ratio = 1 - (max(0, submission.elapsed_millis) / limit_ms)
        points += math.floor(points * TIME_BONUS_SHARE * ratio)
    return points


def calculate_leaderboard(
    scores: Mapping[str, int],
    participants: Mapping[str, Participant],
) -> List[Dict]:
    """Rank participants by descending score.

    Ties keep the participants' join order and share a rank (1, 2, 2, 4).
    """
    order = {pid: idx for idx, pid in enumerate(participants)}
    ranked = sorted(scores.items(), key=lambda item: (-item[1], order.get(item[0], len(order))))
    leaderboard = []
    previous_score = None
    rank = 0
    for position, (pid, score) in enumerate(ranked, start=1):
        if score != previous_score:
            rank = position
            previous_score = score
        participant = participants.get(pid)
        leaderboard.append({
            'participantId': pid,
            'displayName': participant.display_name if participant else 'Unknown',
            'score': score,
            'rank': rank,
        })
    return leaderboard
