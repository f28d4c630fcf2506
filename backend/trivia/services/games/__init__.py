"""Game domain services: question bank, scoring, rooms, timers and sessions.

Socket handlers and HTTP routes go through the SessionOrchestrator; the rest
of this package has no transport concerns.
"""
from .orchestrator import SessionOrchestrator
from .question_bank import QuestionBank
from .registry import RoomRegistry
from .scheduler import SocketIOScheduler, TimerHandle

__all__ = ['QuestionBank', 'RoomRegistry', 'SessionOrchestrator', 'SocketIOScheduler', 'TimerHandle']
