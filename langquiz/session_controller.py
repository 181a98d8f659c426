"""
Session controller for a single quiz attempt.

Owns the NOT_STARTED -> ACTIVE -> ENDED lifecycle, the per-question
countdown, scoring and the leaderboard entry written when a session ends.
"""
import logging
import random
import time
from typing import Any, Callable, List, Optional, Tuple

from .leaderboard import Leaderboard
from .models import (
    AnswerResult,
    GameState,
    Question,
    QuizLevel,
    QuizSettings,
    SessionSnapshot,
    SessionStatus,
)
from .question_source import QuestionSource, QuestionSourceError
from .quiz_engine import Clock, QuestionCountdown, shuffle_options
from .scoring import apply_answer, is_eliminated


class QuizControllerError(Exception):
    """Base exception for quiz controller errors."""
    pass


class InvalidSessionStateError(QuizControllerError):
    """Raised when session is in an invalid state for the requested operation."""
    pass


class QuestionFetchError(QuizControllerError):
    """Raised when questions could not be fetched; the session stays startable."""
    pass


class SessionController:
    """
    Runs one quiz attempt at a time.

    Listeners (``on_question``, ``on_tick``, ``on_answer``, ``on_end``) are
    optional callables set by the presentation layer. They receive snapshots
    or results and can never break the session: their errors are logged.
    """

    def __init__(
        self,
        question_source: QuestionSource,
        clock: Clock,
        leaderboard: Optional[Leaderboard] = None,
        settings: Optional[QuizSettings] = None,
        rng: Optional[random.Random] = None,
        session_key: str = "default"
    ):
        self.logger = logging.getLogger(__name__)
        self.question_source = question_source
        self.leaderboard = leaderboard if leaderboard is not None else Leaderboard()
        self.settings = settings or QuizSettings()
        self.session_key = session_key
        self._rng = rng or random.Random()
        self._countdown = QuestionCountdown(clock, session_key)

        self._status = SessionStatus.NOT_STARTED
        self._fetch_in_flight = False
        self._language = ""
        self._level: Optional[QuizLevel] = None
        self._questions: Tuple[Question, ...] = ()
        self._answers: List[Optional[str]] = []
        self._index = 0
        self._game = GameState(lives=self.settings.initial_lives)
        self._power_ups = self.settings.initial_power_ups
        self._options: Tuple[Tuple[str, str], ...] = ()
        self._last_rank = 0

        self.on_question: Optional[Callable[[SessionSnapshot], Any]] = None
        self.on_tick: Optional[Callable[[SessionSnapshot], Any]] = None
        self.on_answer: Optional[Callable[[AnswerResult, SessionSnapshot], Any]] = None
        self.on_end: Optional[Callable[[SessionSnapshot], Any]] = None

    async def start(self, language: str, level) -> bool:
        """
        Fetch questions and begin a fresh session.

        Args:
            language: Language to be quizzed on
            level: QuizLevel or its name

        Returns:
            True if the session started, False if a fetch was already in flight

        Raises:
            ValueError: If language or level is empty or invalid
            InvalidSessionStateError: If a session is currently active
            QuestionFetchError: If questions could not be fetched
        """
        if not isinstance(language, str) or not language.strip():
            raise ValueError("Language must be a non-empty string")
        quiz_level = QuizLevel.parse(level)
        language = language.strip()

        if self._fetch_in_flight:
            self.logger.warning(
                f"Ignoring start for session {self.session_key}: question fetch already in flight",
                extra={
                    'event_type': 'session_start_ignored',
                    'session_key': self.session_key,
                    'reason': 'fetch_in_flight',
                    'timestamp': time.time()
                }
            )
            return False

        if self._status == SessionStatus.ACTIVE:
            raise InvalidSessionStateError("A quiz is already in progress")

        # A new attempt replaces whatever the previous one left behind
        self._status = SessionStatus.NOT_STARTED
        self._fetch_in_flight = True
        try:
            questions = await self.question_source.fetch_questions(language, quiz_level)
        except QuestionSourceError as e:
            self.logger.error(f"Failed to fetch questions for session {self.session_key}: {e}")
            raise QuestionFetchError(str(e)) from e
        except Exception as e:
            self.logger.error(f"Unexpected error fetching questions for session {self.session_key}: {e}", exc_info=True)
            raise QuestionFetchError(f"Unexpected error fetching questions: {e}") from e
        finally:
            self._fetch_in_flight = False

        if not questions:
            raise QuestionFetchError(f"No questions available for {language} ({quiz_level.value})")

        self._begin(language, quiz_level, list(questions))
        return True

    def _begin(self, language: str, level: QuizLevel, questions: List[Question]) -> None:
        self._language = language
        self._level = level
        self._questions = tuple(questions)
        self._answers = [None] * len(questions)
        self._index = 0
        self._game = GameState(lives=self.settings.initial_lives)
        self._power_ups = self.settings.initial_power_ups
        self._last_rank = 0
        self._status = SessionStatus.ACTIVE

        self.logger.info(
            f"Started quiz session {self.session_key}: language='{language}', level={level.value}, "
            f"questions={len(questions)}",
            extra={
                'event_type': 'session_started',
                'session_key': self.session_key,
                'language': language,
                'level': level.value,
                'question_count': len(questions),
                'timestamp': time.time()
            }
        )
        self._show_question()

    def _show_question(self) -> None:
        index = self._index
        self._options = shuffle_options(self._questions[index], self._rng)
        self._countdown.start(
            self.settings.timer_duration,
            self._handle_tick,
            lambda: self._handle_timeout(index),
            question_index=index
        )
        self._notify(self.on_question, self.snapshot())

    def _handle_tick(self, remaining_time: int) -> None:
        self._notify(self.on_tick, self.snapshot())

    def _handle_timeout(self, index: int) -> None:
        if self._status != SessionStatus.ACTIVE or index != self._index:
            self.logger.warning(f"Ignoring stale timeout for question {index + 1} in session {self.session_key}")
            return
        self.logger.info(f"Question {index + 1} timed out in session {self.session_key}")
        self._submit(None, timed_out=True)

    def submit_answer(self, label: Optional[str]) -> Optional[AnswerResult]:
        """
        Answer the current question.

        Args:
            label: Option label ("A".."D"), or None for no answer

        Returns:
            The scored AnswerResult, or None if no session is active
        """
        return self._submit(label, timed_out=False)

    def _submit(self, label: Optional[str], timed_out: bool) -> Optional[AnswerResult]:
        if self._status != SessionStatus.ACTIVE:
            self.logger.warning(
                f"Rejected answer for session {self.session_key}: session is {self._status.value}",
                extra={
                    'event_type': 'answer_rejected',
                    'session_key': self.session_key,
                    'status': self._status.value,
                    'timestamp': time.time()
                }
            )
            return None

        self._countdown.cancel()

        question = self._questions[self._index]
        if isinstance(label, str) and label.strip():
            label = label.strip().upper()
        else:
            label = None
        is_correct = question.is_correct(label)

        before = self._game
        self._game = apply_answer(before, is_correct, max_lives=self.settings.initial_lives)
        self._answers[self._index] = label

        result = AnswerResult(
            question=question,
            submitted=label,
            is_correct=is_correct,
            timed_out=timed_out,
            state=self._game,
            unlocked=sorted(self._game.achievements - before.achievements)
        )
        self.logger.info(
            f"Session {self.session_key} question {self._index + 1}: "
            f"{'correct' if is_correct else 'timeout' if timed_out else 'incorrect'}, "
            f"score={self._game.score:g}, lives={self._game.lives}, streak={self._game.streak}",
            extra={
                'event_type': 'answer_scored',
                'session_key': self.session_key,
                'question_index': self._index,
                'is_correct': is_correct,
                'timed_out': timed_out,
                'score': self._game.score,
                'lives': self._game.lives,
                'streak': self._game.streak,
                'timestamp': time.time()
            }
        )
        self._notify(self.on_answer, result, self.snapshot())

        if self._index >= len(self._questions) - 1 or is_eliminated(self._game):
            self.end()
        else:
            self._index += 1
            self._show_question()

        return result

    def use_boost(self) -> bool:
        """
        Spend a power-up to add time to the current question.

        Returns:
            True if time was added, False if inactive or out of power-ups
        """
        if self._status != SessionStatus.ACTIVE or self._power_ups <= 0:
            self.logger.debug(f"Boost unavailable for session {self.session_key}")
            return False

        self._power_ups -= 1
        self._countdown.extend(self.settings.boost_seconds)
        self.logger.info(
            f"Boost used in session {self.session_key}: +{self.settings.boost_seconds}s, "
            f"{self._power_ups} power-ups left"
        )
        return True

    def end(self) -> bool:
        """
        Finish the active session and record its score on the leaderboard.

        Returns:
            True if the session ended now, False if it was not active
        """
        if self._status != SessionStatus.ACTIVE:
            return False

        self._countdown.cancel()
        self._status = SessionStatus.ENDED
        self._last_rank = self.leaderboard.record(self.settings.player_name, self._game.score)

        self.logger.info(
            f"Ended quiz session {self.session_key}: score={self._game.score:g}, rank={self._last_rank}",
            extra={
                'event_type': 'session_ended',
                'session_key': self.session_key,
                'score': self._game.score,
                'lives': self._game.lives,
                'rank': self._last_rank,
                'timestamp': time.time()
            }
        )
        self._notify(self.on_end, self.snapshot())
        return True

    def snapshot(self) -> SessionSnapshot:
        """Read-only copy of the current session state."""
        active = self._status == SessionStatus.ACTIVE
        return SessionSnapshot(
            status=self._status,
            language=self._language,
            level=self._level,
            current_index=self._index,
            total_questions=len(self._questions),
            answers=tuple(self._answers),
            game_state=self._game,
            power_ups=self._power_ups,
            time_remaining=self._countdown.remaining_time if active else 0,
            current_question=self._questions[self._index] if active else None,
            current_options=self._options if active else ()
        )

    def _notify(self, callback: Optional[Callable[..., Any]], *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            self.logger.error(f"Listener error in session {self.session_key}: {e}", exc_info=True)

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def is_active(self) -> bool:
        return self._status == SessionStatus.ACTIVE

    @property
    def is_fetching(self) -> bool:
        return self._fetch_in_flight

    @property
    def last_rank(self) -> int:
        """Leaderboard rank of the last finished session (0 if unranked)."""
        return self._last_rank

    @property
    def questions(self) -> Tuple[Question, ...]:
        return self._questions
