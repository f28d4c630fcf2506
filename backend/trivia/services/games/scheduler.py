import itertools
import threading
import time
from typing import Callable, Optional

_timer_ids = itertools.count(1)

POLL_SEC = 0.25


class TimerHandle:
    """Cancellable reference to a scheduled callback.

    Cancelling is a no-op once the timer fired or was already cancelled. A
    callback that was already running when cancel() raced it must still
    re-check the room it was armed for.
    """

    def __init__(self, name: str = 'timer', repeating: bool = False):
        self.id = next(_timer_ids)
        self.name = name
        self.repeating = repeating
        self._cancelled = threading.Event()
        self._fired = False

    def __repr__(self):
        return f'<TimerHandle {self.name}#{self.id} active={self.active}>'

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def active(self) -> bool:
        return not self.cancelled and (self.repeating or not self._fired)

    def mark_fired(self) -> None:
        self._fired = True


class SocketIOScheduler:
    """Runs timers as Socket.IO background tasks.

    Works with whatever async mode the SocketIO instance runs in (threads,
    eventlet, gevent) because it only uses socketio.sleep and
    socketio.start_background_task.
    """

    def __init__(self, socketio, logger=None, heartbeat_sec: int = 0, poll_sec: float = POLL_SEC):
        self._socketio = socketio
        self._logger = logger
        self._heartbeat_sec = heartbeat_sec
        self._poll_sec = poll_sec

    def time(self) -> float:
        return time.time()

    def call_later(self, delay: float, callback: Callable, *args, name: str = 'timer') -> TimerHandle:
        handle = TimerHandle(name)

        def _worker():
            self._sleep(delay, handle)
            if handle.cancelled:
                return
            handle.mark_fired()
            self._run(handle, callback, *args)

        self._socketio.start_background_task(_worker)
        return handle

    def call_every(self, interval: float, callback: Callable, *args, name: str = 'interval') -> TimerHandle:
        """Run ``callback`` every ``interval`` seconds until cancelled or it returns False."""
        handle = TimerHandle(name, repeating=True)

        def _worker():
            while True:
                self._sleep(interval, handle)
                if handle.cancelled:
                    return
                handle.mark_fired()
                if self._run(handle, callback, *args) is False:
                    handle.cancel()
                    return

        self._socketio.start_background_task(_worker)
        return handle

    def _sleep(self, delay: float, handle: TimerHandle) -> None:
        # Short steps so a cancelled timer releases its task early
        slept = 0.0
        next_beat = self._heartbeat_sec if self._logger is not None else 0
        while slept < delay and not handle.cancelled:
            step = min(self._poll_sec, delay - slept)
            self._socketio.sleep(step)
            slept += step
            if next_beat and slept >= next_beat:
                self._logger.debug(f"[timer-heartbeat] {handle.name}#{handle.id} remaining={max(0.0, delay - slept):.1f}s")
                next_beat += self._heartbeat_sec

    def _run(self, handle: TimerHandle, callback: Callable, *args) -> Optional[bool]:
        try:
            return callback(*args)
        except Exception:
            if self._logger is not None:
                self._logger.exception(f"[timer-error] {handle.name}#{handle.id} callback raised")
            return False
