"""
Quiz controller for the Language Quiz Bot.
Keeps one session controller per Discord channel, all sharing a leaderboard.
"""
import logging
import random
from typing import Any, Callable, Dict, Optional

from .config_manager import ConfigManager
from .leaderboard import Leaderboard
from .models import SessionSnapshot, SessionStatus
from .question_source import QuestionSource
from .quiz_engine import Clock
from .scoring import get_achievement
from .session_controller import (
    InvalidSessionStateError,
    QuestionFetchError,
    SessionController,
)


class QuizController:
    """
    Orchestrates quiz sessions across Discord channels.

    Each channel can have at most one running quiz. Finished sessions stay
    registered so their summary can still be shown until the next start.
    """

    def __init__(
        self,
        question_source: QuestionSource,
        config_manager: ConfigManager,
        clock: Clock,
        leaderboard: Optional[Leaderboard] = None,
        rng: Optional[random.Random] = None
    ):
        """
        Initialize the quiz controller.

        Args:
            question_source: Where sessions fetch their questions
            config_manager: Instance for managing configuration
            clock: Timer primitive used for question countdowns
            leaderboard: Shared leaderboard, created from config if None
            rng: Random source for option shuffling
        """
        self.logger = logging.getLogger(__name__)
        self.question_source = question_source
        self.config_manager = config_manager
        self.clock = clock
        if leaderboard is None:
            leaderboard = Leaderboard(config_manager.get_leaderboard_size())
        self.leaderboard = leaderboard
        self._rng = rng

        self._sessions: Dict[int, SessionController] = {}
        self.session_hook: Optional[Callable[[int, SessionController], Any]] = None

        self.logger.info("QuizController initialized")

    def get_session(self, channel_id: int) -> Optional[SessionController]:
        return self._sessions.get(channel_id)

    def has_active_session(self, channel_id: int) -> bool:
        session = self._sessions.get(channel_id)
        return session is not None and session.is_active

    def get_snapshot(self, channel_id: int) -> Optional[SessionSnapshot]:
        session = self._sessions.get(channel_id)
        return session.snapshot() if session else None

    def _get_or_create_session(self, channel_id: int) -> SessionController:
        session = self._sessions.get(channel_id)
        if session is None:
            session = SessionController(
                self.question_source,
                self.clock,
                leaderboard=self.leaderboard,
                settings=self.config_manager.get_quiz_settings(),
                rng=self._rng,
                session_key=str(channel_id)
            )
            self._sessions[channel_id] = session
            if self.session_hook is not None:
                self.session_hook(channel_id, session)
        elif not session.is_active and not session.is_fetching:
            # Pick up settings changed since the last game
            session.settings = self.config_manager.get_quiz_settings()
        return session

    async def start_quiz(
        self,
        channel_id: int,
        language: Optional[str] = None,
        level: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Start a quiz in a channel.

        Args:
            channel_id: Discord channel identifier
            language: Language to quiz on, configured default when None
            level: Difficulty level, configured default when None

        Returns:
            Dictionary with success status, message, and session information
        """
        settings = self.config_manager.get_quiz_settings()
        language = language or settings.language
        level = level or settings.level.value

        if self.has_active_session(channel_id):
            return {
                'success': False,
                'error': 'session_conflict',
                'user_message': "A quiz is already running in this channel. Use `/quiz_stop` to end it first."
            }

        session = self._get_or_create_session(channel_id)

        try:
            started = await session.start(language, level)
        except ValueError as e:
            return {
                'success': False,
                'error': 'invalid_input',
                'user_message': f"❌ {e}"
            }
        except QuestionFetchError as e:
            return {
                'success': False,
                'error': 'fetch_failed',
                'message': str(e),
                'user_message': "❌ Could not load quiz questions. Please try again in a moment."
            }
        except InvalidSessionStateError as e:
            return {
                'success': False,
                'error': 'session_conflict',
                'user_message': f"❌ {e}"
            }

        if not started:
            return {
                'success': False,
                'error': 'fetch_in_flight',
                'user_message': "⏳ Questions are already being loaded for this channel."
            }

        snapshot = session.snapshot()
        return {
            'success': True,
            'message': f"Quiz started with {snapshot.total_questions} questions",
            'session_info': {
                'language': snapshot.language,
                'level': snapshot.level.value,
                'total_questions': snapshot.total_questions,
                'timer_duration': session.settings.timer_duration
            }
        }

    def submit_answer(self, channel_id: int, label: Optional[str]) -> Dict[str, Any]:
        """
        Submit an answer for the current question in a channel.

        Returns:
            Dictionary with success status and the scored result
        """
        session = self._sessions.get(channel_id)
        if session is None or not session.is_active:
            return {
                'success': False,
                'error': 'no_active_session',
                'user_message': "There is no quiz running in this channel."
            }

        result = session.submit_answer(label)
        if result is None:
            return {
                'success': False,
                'error': 'answer_rejected',
                'user_message': "That answer could not be accepted."
            }
        return {
            'success': True,
            'result': result,
            'snapshot': session.snapshot()
        }

    def use_boost(self, channel_id: int) -> Dict[str, Any]:
        session = self._sessions.get(channel_id)
        if session is None or not session.is_active:
            return {
                'success': False,
                'error': 'no_active_session',
                'user_message': "There is no quiz running in this channel."
            }
        if not session.use_boost():
            return {
                'success': False,
                'error': 'no_power_ups',
                'user_message': "You have no power-ups left."
            }
        snapshot = session.snapshot()
        return {
            'success': True,
            'snapshot': snapshot,
            'user_message': f"⚡ +{session.settings.boost_seconds}s! {snapshot.time_remaining}s left, "
                            f"{snapshot.power_ups} power-up{'s' if snapshot.power_ups != 1 else ''} remaining."
        }

    def stop_quiz(self, channel_id: int) -> Dict[str, Any]:
        """
        End the quiz running in a channel and record its score.

        Returns:
            Dictionary with success status and the final snapshot
        """
        session = self._sessions.get(channel_id)
        if session is None or not session.end():
            return {
                'success': False,
                'error': 'no_active_session',
                'user_message': "There is no quiz running in this channel."
            }
        return {
            'success': True,
            'snapshot': session.snapshot(),
            'rank': session.last_rank
        }

    def get_session_status_summary(self, channel_id: int) -> str:
        """
        Get a formatted status summary for a channel.

        Returns:
            Human-readable string describing the session
        """
        snapshot = self.get_snapshot(channel_id)
        if snapshot is None or snapshot.status == SessionStatus.NOT_STARTED:
            return "No quiz has been started in this channel."

        status = "Active" if snapshot.is_active else "Finished"
        lines = [
            f"Quiz: {snapshot.language} ({snapshot.level.value}) | Status: {status}",
            f"Score: {snapshot.score:g} | Lives: {snapshot.lives} | Streak: {snapshot.streak} "
            f"(x{snapshot.multiplier:.1f})",
        ]
        if snapshot.is_active:
            lines.append(
                f"Progress: {snapshot.current_index + 1}/{snapshot.total_questions} | "
                f"Time left: {snapshot.time_remaining}s | Power-ups: {snapshot.power_ups}"
            )
        achievements = [get_achievement(a) for a in sorted(snapshot.achievements)]
        names = [a.name for a in achievements if a is not None]
        if names:
            lines.append(f"Achievements: {', '.join(names)}")
        return "\n".join(lines)

    def cleanup_finished_sessions(self) -> int:
        """
        Forget channels whose quizzes have finished.

        Returns:
            Number of sessions removed
        """
        finished = [
            channel_id for channel_id, session in self._sessions.items()
            if session.status == SessionStatus.ENDED
        ]
        for channel_id in finished:
            del self._sessions[channel_id]
        if finished:
            self.logger.info(f"Cleaned up {len(finished)} finished sessions")
        return len(finished)

    def stop_all(self) -> int:
        """End every running quiz, e.g. on shutdown."""
        stopped = 0
        for session in self._sessions.values():
            if session.end():
                stopped += 1
        if stopped:
            self.logger.info(f"Stopped {stopped} running quizzes")
        return stopped
