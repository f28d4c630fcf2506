import logging
import random
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

from trivia.errors import (
    GameAlreadyStarted,
    PlayerNotInRoom,
    RoomCodeSpaceExhausted,
    RoomNotFound,
)
from trivia.models import Removal, RoomSettings, RoomState, generate_room_code
from .question_bank import QuestionBank
from .room import Room

MAX_CODE_ATTEMPTS = 10000


class RoomRegistry:
    """Owns every live room and the participant -> room mapping.

    The two maps are the only state shared across rooms, so they sit behind a
    lock. Mutating a room's own state is the caller's job to serialize per room.
    """

    def __init__(
        self,
        question_bank: QuestionBank,
        settings: Optional[RoomSettings] = None,
        clock: Callable[[], float] = time.time,
        retention_seconds: float = 3600,
        start_stall_seconds: Optional[float] = None,
        code_generator: Callable[[], str] = generate_room_code,
        rng=random,
        logger: Optional[logging.Logger] = None,
    ):
        self.question_bank = question_bank
        self.settings = settings or RoomSettings()
        self.retention_seconds = retention_seconds
        self.start_stall_seconds = start_stall_seconds
        self._clock = clock
        self._code_generator = code_generator
        self._rng = rng
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._rooms: Dict[str, Room] = {}
        self._participant_rooms: Dict[str, str] = {}

    def __len__(self):
        with self._lock:
            return len(self._rooms)

    def __contains__(self, code):
        with self._lock:
            return normalize_code(code) in self._rooms

    def codes(self) -> List[str]:
        with self._lock:
            return list(self._rooms)

    # ---- Creation / membership ----

    def create_room(self, host_name: str) -> Tuple[str, str]:
        questions = self.question_bank.draw(self.settings.total_questions, rng=self._rng)
        settings = self.settings
        if len(questions) < settings.total_questions:
            settings = RoomSettings(
                max_participants=settings.max_participants,
                question_time_limit_seconds=settings.question_time_limit_seconds,
                total_questions=len(questions),
                time_bonus_enabled=settings.time_bonus_enabled,
            )
        with self._lock:
            code = self._allocate_code()
            room = Room(code, questions, settings, clock=self._clock)
            host = room.add_participant(host_name, is_host=True)
            self._rooms[code] = room
            self._participant_rooms[host.id] = code
        self._logger.info(f"[room-created] room={code} host={host.id} questions={len(questions)}")
        return code, host.id

    def _allocate_code(self) -> str:
        # Caller holds self._lock
        for _ in range(MAX_CODE_ATTEMPTS):
            code = self._code_generator()
            if code not in self._rooms:
                return code
        raise RoomCodeSpaceExhausted(
            f'No free room code after {MAX_CODE_ATTEMPTS} attempts ({len(self._rooms)} live rooms)'
        )

    def join_room(self, code: str, display_name: str) -> str:
        room = self.get_room(code)
        if room is None or room.state == RoomState.ABANDONED:
            raise RoomNotFound()
        if room.state != RoomState.WAITING:
            if room.is_stalled_start(self._clock(), self.start_stall_seconds):
                self._logger.warning(
                    f"[room-reset] room={room.code} stuck in starting without a question, reverting to waiting"
                )
                room.revert_to_waiting()
            else:
                raise GameAlreadyStarted()
        participant = room.add_participant(display_name)
        with self._lock:
            self._participant_rooms[participant.id] = room.code
        self._logger.info(f"[room-joined] room={room.code} player={participant.id}")
        return participant.id

    def remove_player(self, participant_id: str) -> Removal:
        with self._lock:
            code = self._participant_rooms.pop(participant_id, None)
            room = self._rooms.get(code) if code else None
        if room is None:
            return Removal()
        try:
            participant, new_host_id = room.remove_participant(participant_id)
        except PlayerNotInRoom:
            return Removal(code=code)
        if new_host_id:
            self._logger.info(f"[host-changed] room={code} host={new_host_id}")
        return Removal(
            code=code,
            was_host=participant.is_host,
            display_name=participant.display_name,
            new_host_id=new_host_id,
            remaining=len(room.participants),
        )

    # ---- Lookups ----

    def get_room(self, code: Optional[str]) -> Optional[Room]:
        if not code:
            return None
        with self._lock:
            return self._rooms.get(normalize_code(code))

    def require_room(self, code: Optional[str]) -> Room:
        room = self.get_room(code)
        if room is None:
            raise RoomNotFound()
        return room

    def get_participant_room(self, participant_id: Optional[str]) -> Optional[str]:
        if not participant_id:
            return None
        with self._lock:
            return self._participant_rooms.get(participant_id)

    # ---- Housekeeping ----

    def reclaim(
        self,
        skip: Optional[Callable[[str], bool]] = None,
        on_reclaim: Optional[Callable[[Room], None]] = None,
    ) -> List[str]:
        """Drop finished, abandoned and expired rooms; returns the reclaimed codes.

        Rooms for which ``skip(code)`` is true are left for the next sweep.
        ``on_reclaim(room)`` runs for each dropped room after the lock is released.
        """
        now = self._clock()
        reclaimed = []
        with self._lock:
            for code, room in list(self._rooms.items()):
                expired = now - room.created_at > self.retention_seconds
                if not (room.is_terminal or expired):
                    continue
                if skip is not None and skip(code):
                    continue
                for pid in list(room.participants):
                    if self._participant_rooms.get(pid) == code:
                        del self._participant_rooms[pid]
                reclaimed.append(self._rooms.pop(code))
        for room in reclaimed:
            self._logger.info(f"[reclaim] room={room.code}")
            if on_reclaim is not None:
                on_reclaim(room)
        return [room.code for room in reclaimed]

    def stats(self) -> dict:
        with self._lock:
            rooms = list(self._rooms.values())
        return {
            'totalRooms': len(rooms),
            'activeSessions': sum(1 for r in rooms if r.state in (RoomState.QUESTION, RoomState.RESULTS)),
            'totalParticipants': sum(len(r.participants) for r in rooms),
        }


def normalize_code(code: str) -> str:
    return (code or '').strip().upper()
