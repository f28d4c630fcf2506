"""Session orchestrator: drives rooms from participant events and timers.

Inbound operations (create_room, join_room, start_game, submit_answer,
next_question, disconnect) return one acknowledgement dict each and never
raise GameError. Outbound events go through the broadcaster, which must
provide:

    attach(participant_id, room_code)
    detach(participant_id)
    to_room(room_code, event, payload, skip=None)
    to_participant(participant_id, event, payload)

Every mutation of a room, inbound or timer driven, runs under that room's
lock. Timers belong to an epoch; cancelling a room's timers bumps the epoch,
and a callback that wakes up under an old epoch does nothing.
"""
import logging
import math
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional, Tuple

from trivia.errors import (
    GameError,
    GameFinished,
    GameNotStarted,
    InvalidRequest,
    NoMoreQuestions,
    NotHost,
    PlayerNotInRoom,
)
from trivia.models import Removal, RoomState
from .registry import RoomRegistry, normalize_code
from .room import Room
from .scheduler import TimerHandle


class RoomTimers:
    """Timers armed for one room, plus the lock serializing that room."""

    def __init__(self):
        self.lock = threading.RLock()
        self.epoch = 0
        self.handles: Dict[str, TimerHandle] = {}

    @property
    def armed(self) -> bool:
        return any(h.active for h in self.handles.values())

    def cancel_all(self) -> int:
        for handle in self.handles.values():
            handle.cancel()
        self.handles.clear()
        self.epoch += 1
        return self.epoch

    def is_current(self, epoch: int) -> bool:
        return epoch == self.epoch


class SessionOrchestrator:
    def __init__(
        self,
        registry: RoomRegistry,
        broadcaster,
        scheduler,
        logger: Optional[logging.Logger] = None,
        min_players: int = 2,
        lead_in_seconds: float = 3.0,
        reveal_seconds: float = 5.0,
        countdown_interval: float = 1.0,
        end_on_all_answered: bool = True,
    ):
        self.registry = registry
        self.broadcaster = broadcaster
        self.scheduler = scheduler
        self.logger = logger or logging.getLogger(__name__)
        self.min_players = min_players
        self.lead_in_seconds = lead_in_seconds
        self.reveal_seconds = reveal_seconds
        self.countdown_interval = countdown_interval
        self.end_on_all_answered = end_on_all_answered
        self._timers: Dict[str, RoomTimers] = {}
        self._timers_lock = threading.Lock()
        self._reclaimer: Optional[TimerHandle] = None
        self._closed = False

    # ---- Acknowledgements ----

    @staticmethod
    def _ok(**payload) -> dict:
        return dict(success=True, **payload)

    @staticmethod
    def _fail(error: GameError) -> dict:
        return {'success': False, 'error': error.message, 'code': error.code}

    # ---- Inbound events ----

    def create_room(self, display_name) -> dict:
        try:
            name = _require_text(display_name, 'displayName')
            code, host_id = self.registry.create_room(name)
            with self._locked_room(code) as (room, _):
                self.broadcaster.attach(host_id, code)
                self.broadcaster.to_participant(host_id, 'room-created', {'roomCode': code, 'participantId': host_id})
                self.broadcaster.to_participant(host_id, 'players-update', {'participants': room.participants_payload()})
        except GameError as exc:
            return self._fail(exc)
        return self._ok(roomCode=code, participantId=host_id)

    def join_room(self, room_code, display_name) -> dict:
        try:
            code = normalize_code(_require_text(room_code, 'roomCode'))
            name = _require_text(display_name, 'displayName')
            with self._locked_room(code) as (room, _):
                participant_id = self.registry.join_room(code, name)
                participant = room.participants[participant_id]
                self.broadcaster.attach(participant_id, code)
                self.broadcaster.to_room(
                    code, 'player-joined',
                    {'participant': participant.to_dict(score=room.scores[participant_id])},
                    skip=participant_id,
                )
                self.broadcaster.to_participant(
                    participant_id, 'room-joined',
                    {'roomCode': code, 'participantId': participant_id, 'displayName': participant.display_name},
                )
                self.broadcaster.to_room(code, 'players-update', {'participants': room.participants_payload()})
        except GameError as exc:
            return self._fail(exc)
        return self._ok(roomCode=code, participantId=participant_id)

    def start_game(self, participant_id) -> dict:
        try:
            code = self._participant_code(participant_id)
            with self._locked_room(code) as (room, timers):
                room.start_game(participant_id, min_players=self.min_players)
                self.logger.info(f"[game-start] room={code} players={len(room.participants)} questions={len(room.questions)}")
                self.broadcaster.to_room(code, 'game-started', {
                    'totalQuestions': len(room.questions),
                    'timeLimit': room.settings.question_time_limit_seconds,
                })
                epoch = timers.cancel_all()
                self._arm(timers, 'lead-in', self.lead_in_seconds, self._on_transition,
                          code, epoch, RoomState.STARTING, room.question_cursor)
        except GameError as exc:
            return self._fail(exc)
        return self._ok()

    def submit_answer(self, participant_id, option_index) -> dict:
        try:
            index = _require_option(option_index)
            code = self._participant_code(participant_id)
            with self._locked_room(code) as (room, timers):
                room.submit_answer(participant_id, index)
                if self.end_on_all_answered and room.all_answered:
                    self._end_question(code, room, timers, reason='all-answered')
        except GameError as exc:
            return self._fail(exc)
        return self._ok()

    def next_question(self, participant_id) -> dict:
        """Host control: skip the lead-in, force-end the open question, or skip the reveal."""
        try:
            code = self._participant_code(participant_id)
            with self._locked_room(code) as (room, timers):
                if room.host_id != participant_id:
                    raise NotHost('Only host can advance questions')
                if room.state == RoomState.WAITING:
                    raise GameNotStarted()
                if room.is_terminal:
                    raise GameFinished()
                if room.state == RoomState.QUESTION:
                    self._end_question(code, room, timers, reason='host')
                else:
                    self._advance(code, room, timers)
        except GameError as exc:
            return self._fail(exc)
        return self._ok()

    def disconnect(self, participant_id) -> Removal:
        code = self.registry.get_participant_room(participant_id)
        if code is None:
            self.broadcaster.detach(participant_id)
            return Removal()
        try:
            with self._locked_room(code) as (room, timers):
                removal = self.registry.remove_player(participant_id)
                self.broadcaster.detach(participant_id)
                self.logger.info(f"[player-left] room={code} player={participant_id} remaining={removal.remaining}")
                if removal.remaining == 0:
                    timers.cancel_all()
                    return removal
                self.broadcaster.to_room(code, 'player-left', {
                    'participantId': participant_id,
                    'displayName': removal.display_name,
                    'newHostId': removal.new_host_id,
                })
                self.broadcaster.to_room(code, 'players-update', {'participants': room.participants_payload()})
                if self.end_on_all_answered and room.state == RoomState.QUESTION and room.all_answered:
                    self._end_question(code, room, timers, reason='all-answered')
        except GameError:
            # Room reclaimed between the lookup and the lock
            self.broadcaster.detach(participant_id)
            return self.registry.remove_player(participant_id)
        return removal

    # ---- Read surface ----

    def room_summary(self, room_code) -> Optional[dict]:
        room = self.registry.get_room(room_code)
        if room is None:
            return None
        with self._timers_for(room.code).lock:
            return room.summary()

    def stats(self) -> dict:
        return self.registry.stats()

    def has_live_timers(self, room_code) -> bool:
        with self._timers_lock:
            timers = self._timers.get(normalize_code(room_code))
        return bool(timers and timers.armed)

    # ---- Room transitions (room lock held) ----

    def _begin_question(self, code: str, room: Room, timers: RoomTimers) -> None:
        # Old timers go first so two question timers never overlap
        epoch = timers.cancel_all()
        try:
            question, number = room.advance_question()
        except NoMoreQuestions:
            self._finish(code, room, timers)
            return
        limit = room.settings.question_time_limit_seconds
        cursor = room.question_cursor
        self.logger.info(f"[question-start] room={code} question={number}/{len(room.questions)}")
        self.broadcaster.to_room(code, 'question-start', {
            'question': question,
            'questionNumber': number,
            'totalQuestions': len(room.questions),
            'timeLimit': limit,
        })
        self._arm(timers, 'countdown', self.countdown_interval, self._on_tick, code, epoch, cursor, repeating=True)
        self._arm(timers, 'deadline', limit, self._on_deadline, code, epoch, cursor)
        self.logger.info(f"[timer-set] room={code} question={number} duration={limit}s epoch={epoch}")

    def _end_question(self, code: str, room: Room, timers: RoomTimers, reason: str) -> None:
        # Cancel before ending: whichever of deadline, host and all-answered gets
        # the lock first ends the question, the others find a stale epoch.
        epoch = timers.cancel_all()
        results, leaderboard = room.end_question()
        self.logger.info(
            f"[question-end] room={code} question={room.question_number} reason={reason} answers={results['totalAnswers']}"
        )
        self.broadcaster.to_room(code, 'question-end', {'results': results, 'leaderboard': leaderboard})
        self._arm(timers, 'reveal', self.reveal_seconds, self._on_transition,
                  code, epoch, RoomState.RESULTS, room.question_cursor)

    def _advance(self, code: str, room: Room, timers: RoomTimers) -> None:
        if room.state == RoomState.RESULTS and room.is_last_question:
            self._finish(code, room, timers)
        else:
            self._begin_question(code, room, timers)

    def _finish(self, code: str, room: Room, timers: RoomTimers) -> None:
        timers.cancel_all()
        outcome = room.finish_game()
        self.logger.info(f"[game-over] room={code} questions={outcome['stats']['questionsPlayed']}")
        self.broadcaster.to_room(code, 'game-over', outcome)

    # ---- Timer callbacks ----

    def _on_tick(self, code: str, epoch: int, cursor: int) -> bool:
        room, timers = self._lookup(code)
        if room is None:
            return False
        with timers.lock:
            if not self._still_current(room, timers, epoch, RoomState.QUESTION, cursor):
                return False
            elapsed = self.scheduler.time() - room.question_started_at
            remaining = int(math.ceil(room.settings.question_time_limit_seconds - elapsed - 1e-6))
            if remaining <= 0:
                return False
            self.broadcaster.to_room(code, 'time-update', {'remainingSeconds': remaining})
            return True

    def _on_deadline(self, code: str, epoch: int, cursor: int) -> None:
        room, timers = self._lookup(code)
        if room is None:
            self.logger.info(f"[timer-abort] room={code} timer=deadline room gone")
            return
        with timers.lock:
            self.logger.info(
                f"[timer-fire] room={code} timer=deadline expected_question={cursor + 1} "
                f"actual_question={room.question_number} state={room.state.value}"
            )
            if not self._still_current(room, timers, epoch, RoomState.QUESTION, cursor):
                self.logger.info(f"[timer-abort] room={code} timer=deadline superseded")
                return
            try:
                self._end_question(code, room, timers, reason='deadline')
            except GameError as exc:
                self.logger.warning(f"[timer-abort] room={code} timer=deadline error={exc.code}")

    def _on_transition(self, code: str, epoch: int, expected_state: RoomState, cursor: int) -> None:
        room, timers = self._lookup(code)
        if room is None:
            self.logger.info(f"[timer-abort] room={code} timer={expected_state.value} room gone")
            return
        with timers.lock:
            self.logger.info(f"[timer-fire] room={code} timer={expected_state.value} state={room.state.value}")
            if not self._still_current(room, timers, epoch, expected_state, cursor):
                self.logger.info(f"[timer-abort] room={code} timer={expected_state.value} superseded")
                return
            try:
                self._advance(code, room, timers)
            except GameError as exc:
                self.logger.warning(f"[timer-abort] room={code} timer={expected_state.value} error={exc.code}")

    @staticmethod
    def _still_current(room: Room, timers: RoomTimers, epoch: int, state: RoomState, cursor: int) -> bool:
        return timers.is_current(epoch) and room.state == state and room.question_cursor == cursor

    def _arm(self, timers: RoomTimers, name: str, delay: float, callback, *args, repeating=False) -> Optional[TimerHandle]:
        if self._closed:
            return None
        label = f"{name}:{args[0]}"
        if repeating:
            handle = self.scheduler.call_every(delay, callback, *args, name=label)
        else:
            handle = self.scheduler.call_later(delay, callback, *args, name=label)
        timers.handles[name] = handle
        return handle

    # ---- Reclamation / shutdown ----

    def start_reclaimer(self, interval: float) -> Optional[TimerHandle]:
        if self._reclaimer is not None and self._reclaimer.active:
            return self._reclaimer
        if self._closed or not interval or interval <= 0:
            return None
        self._reclaimer = self.scheduler.call_every(interval, self._reclaim_tick, name='reclaim')
        return self._reclaimer

    def _reclaim_tick(self) -> bool:
        self.reclaim()
        return not self._closed

    def reclaim(self):
        reclaimed = self.registry.reclaim(skip=self._is_busy, on_reclaim=self._release_connections)
        with self._timers_lock:
            dropped = [self._timers.pop(code, None) for code in reclaimed]
        for timers in dropped:
            if timers is not None:
                timers.cancel_all()
        return reclaimed

    def _release_connections(self, room: Room) -> None:
        for participant_id in list(room.participants):
            self.broadcaster.detach(participant_id)

    def _is_busy(self, code: str) -> bool:
        # Called with the registry lock held: never block here
        with self._timers_lock:
            timers = self._timers.get(code)
        if timers is None:
            return False
        if timers.armed:
            return True
        if not timers.lock.acquire(blocking=False):
            return True
        timers.lock.release()
        return False

    def shutdown(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._reclaimer is not None:
            self._reclaimer.cancel()
        with self._timers_lock:
            all_timers = list(self._timers.items())
        for code, timers in all_timers:
            with timers.lock:
                timers.cancel_all()
        self.logger.info(f"[shutdown] cancelled timers for {len(all_timers)} rooms")

    # ---- Helpers ----

    def _timers_for(self, code: str) -> RoomTimers:
        with self._timers_lock:
            timers = self._timers.get(code)
            if timers is None:
                timers = self._timers[code] = RoomTimers()
            return timers

    def _lookup(self, code: str) -> Tuple[Optional[Room], Optional[RoomTimers]]:
        room = self.registry.get_room(code)
        if room is None:
            return None, None
        return room, self._timers_for(room.code)

    @contextmanager
    def _locked_room(self, code: str) -> Iterator[Tuple[Room, RoomTimers]]:
        room = self.registry.require_room(code)
        timers = self._timers_for(room.code)
        with timers.lock:
            yield room, timers

    def _participant_code(self, participant_id) -> str:
        code = self.registry.get_participant_room(participant_id)
        if code is None:
            raise PlayerNotInRoom()
        return code


def _require_text(value, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidRequest(f'{field} is required')
    return value.strip()


def _require_option(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidRequest('optionIndex must be a non-negative integer')
    return value
