"""
Quiz engine core logic for the Language Quiz Bot.
Handles option ordering and the per-question countdown.
"""
import asyncio
import logging
import random
import time
from typing import Any, Callable, Optional, Protocol, Tuple

from .models import Question, OPTION_LABELS

# Set up logger for timer operations
logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    """Handle returned by a clock; cancelling it prevents the callback."""

    def cancel(self) -> None:
        ...


class Clock(Protocol):
    """One-shot delay primitive provided by the host."""

    def after(self, seconds: float, callback: Callable[[], Any]) -> TimerHandle:
        ...


class AsyncioClock:
    """Clock backed by the running asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def after(self, seconds: float, callback: Callable[[], Any]) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(seconds, callback)


class TimerLifecycleLogger:
    """Structured logging for countdown lifecycle events."""

    @staticmethod
    def log_timer_start(session_key: str, duration: int, question_index: int) -> None:
        """Log countdown start."""
        logger.info(
            f"Timer lifecycle: COUNTDOWN_START - Session {session_key}, Question {question_index + 1}, Duration {duration}s",
            extra={
                'event_type': 'timer_countdown_start',
                'session_key': session_key,
                'duration': duration,
                'question_index': question_index,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_update(session_key: str, remaining_time: int, total_duration: int) -> None:
        """Log timer update events (throttled to avoid spam)."""
        if remaining_time % 10 == 0 or remaining_time <= 5:
            progress_percent = ((total_duration - remaining_time) / total_duration) * 100 if total_duration else 100.0
            logger.debug(
                f"Timer lifecycle: UPDATE - Session {session_key}, Remaining {remaining_time}s ({progress_percent:.1f}% complete)",
                extra={
                    'event_type': 'timer_update',
                    'session_key': session_key,
                    'remaining_time': remaining_time,
                    'total_duration': total_duration,
                    'progress_percent': progress_percent,
                    'timestamp': time.time()
                }
            )

    @staticmethod
    def log_timer_extended(session_key: str, seconds: int, remaining_time: int) -> None:
        logger.info(
            f"Timer lifecycle: EXTENDED - Session {session_key}, +{seconds}s, Remaining {remaining_time}s",
            extra={
                'event_type': 'timer_extended',
                'session_key': session_key,
                'extension': seconds,
                'remaining_time': remaining_time,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_completion(session_key: str, completion_type: str, total_duration: int) -> None:
        """Log timer completion (natural expiry or cancellation)."""
        logger.info(
            f"Timer lifecycle: COMPLETED - Session {session_key}, Type {completion_type}, Duration {total_duration}s",
            extra={
                'event_type': 'timer_completed',
                'session_key': session_key,
                'completion_type': completion_type,
                'total_duration': total_duration,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_state_transition(session_key: str, from_state: str, to_state: str, reason: str = None) -> None:
        """Log timer state transitions."""
        logger.debug(
            f"Timer lifecycle: STATE_TRANSITION - Session {session_key}, {from_state} -> {to_state}" +
            (f" ({reason})" if reason else ""),
            extra={
                'event_type': 'timer_state_transition',
                'session_key': session_key,
                'from_state': from_state,
                'to_state': to_state,
                'reason': reason,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_error(session_key: str, error_type: str, error_message: str, operation: str) -> None:
        """Log timer-related errors with context."""
        logger.error(
            f"Timer lifecycle: ERROR - Session {session_key}, Operation {operation}, Type {error_type}: {error_message}",
            extra={
                'event_type': 'timer_error',
                'session_key': session_key,
                'error_type': error_type,
                'error_message': error_message,
                'operation': operation,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_race_condition_detected(session_key: str, details: str) -> None:
        """Log race condition detection."""
        logger.warning(
            f"Timer lifecycle: RACE_CONDITION - Session {session_key}: {details}",
            extra={
                'event_type': 'timer_race_condition',
                'session_key': session_key,
                'details': details,
                'timestamp': time.time()
            }
        )


class QuestionCountdown:
    """
    Per-question countdown driven by one-second clock ticks.

    Each call to start() begins a new generation; ticks scheduled by an
    earlier generation are dropped when they fire, so a stale timer from a
    previous question can never expire the current one.
    """

    def __init__(self, clock: Clock, session_key: str = None):
        self._clock = clock
        self._session_key = session_key
        self._handle: Optional[TimerHandle] = None
        self._generation = 0
        self._remaining_time = 0
        self._total_duration = 0
        self._is_cancelled = False
        self._is_expired = False
        self._on_tick: Optional[Callable[[int], Any]] = None
        self._on_expire: Optional[Callable[[], Any]] = None

    def start(
        self,
        duration: int,
        on_tick: Callable[[int], Any],
        on_expire: Callable[[], Any],
        question_index: int = 0
    ) -> None:
        """
        Start counting down from duration seconds.

        Args:
            duration: Countdown length in seconds
            on_tick: Called after each second with the remaining time
            on_expire: Called once when the countdown reaches zero
            question_index: Question the countdown belongs to, for logging
        """
        self._cancel_handle("restarted")
        self._generation += 1
        self._remaining_time = duration
        self._total_duration = duration
        self._is_cancelled = False
        self._is_expired = False
        self._on_tick = on_tick
        self._on_expire = on_expire

        TimerLifecycleLogger.log_timer_start(self._session_key, duration, question_index)
        self._arm()

    def extend(self, seconds: int) -> bool:
        """Add time to a running countdown. Returns False if not running."""
        if not self.is_running:
            return False
        self._remaining_time += seconds
        self._total_duration += seconds
        TimerLifecycleLogger.log_timer_extended(self._session_key, seconds, self._remaining_time)
        return True

    def cancel(self) -> None:
        """Stop the countdown without firing the expiry callback."""
        if self.is_running:
            TimerLifecycleLogger.log_timer_completion(self._session_key, "cancelled", self._total_duration)
        self._is_cancelled = True
        self._cancel_handle("cancel requested")

    def _arm(self) -> None:
        generation = self._generation
        self._handle = self._clock.after(1, lambda: self._tick(generation))

    def _cancel_handle(self, reason: str) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
            TimerLifecycleLogger.log_timer_state_transition(self._session_key, "running", "stopped", reason)

    def _tick(self, generation: int) -> None:
        if generation != self._generation or self._is_cancelled or self._is_expired:
            TimerLifecycleLogger.log_race_condition_detected(
                self._session_key,
                f"Dropped stale tick (generation {generation}, current {self._generation})"
            )
            return

        self._handle = None
        self._remaining_time = max(0, self._remaining_time - 1)
        TimerLifecycleLogger.log_timer_update(self._session_key, self._remaining_time, self._total_duration)

        if self._remaining_time > 0:
            self._arm()
            self._notify(self._on_tick, self._remaining_time)
            return

        self._is_expired = True
        TimerLifecycleLogger.log_timer_completion(self._session_key, "natural_expiry", self._total_duration)
        self._notify(self._on_expire)

    def _notify(self, callback: Optional[Callable[..., Any]], *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            TimerLifecycleLogger.log_timer_error(
                self._session_key,
                "callback_error",
                str(e),
                getattr(callback, '__name__', 'callback')
            )
            raise

    @property
    def is_running(self) -> bool:
        return self._handle is not None and not self._is_cancelled and not self._is_expired

    @property
    def is_cancelled(self) -> bool:
        return self._is_cancelled

    @property
    def is_expired(self) -> bool:
        return self._is_expired

    @property
    def remaining_time(self) -> int:
        """Get remaining time in seconds."""
        return self._remaining_time


def shuffle_options(question: Question, rng: Optional[random.Random] = None) -> Tuple[Tuple[str, str], ...]:
    """
    Put a question's options in a uniformly random display order.

    Args:
        question: Question whose options to shuffle
        rng: Random source; the module-level generator when None

    Returns:
        Tuple of (label, text) pairs. Labels keep their meaning, only the
        display order changes.
    """
    pairs = [(label, question.options[label]) for label in OPTION_LABELS if label in question.options]
    pairs.extend(
        (label, text) for label, text in question.options.items() if label not in OPTION_LABELS
    )
    (rng or random).shuffle(pairs)
    return tuple(pairs)
