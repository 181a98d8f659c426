"""
Unit tests for the SessionController state machine.
"""
import asyncio
import random
import unittest
from unittest.mock import Mock

from langquiz.leaderboard import Leaderboard
from langquiz.models import QuizLevel, QuizSettings, SessionStatus
from langquiz.scoring import STREAK_ACHIEVEMENT_ID
from langquiz.session_controller import (
    InvalidSessionStateError,
    QuestionFetchError,
    SessionController,
)
from tests.test_fixtures import FakeClock, StaticQuestionSource, TestFixtures, fetch_error


class SessionTestCase(unittest.IsolatedAsyncioTestCase):
    """Shared setup: five questions answered A, B, C, D, A."""

    def setUp(self):
        self.clock = FakeClock()
        self.questions = TestFixtures.create_sample_questions(5)
        self.source = StaticQuestionSource(self.questions)
        self.leaderboard = Leaderboard()
        self.session = SessionController(
            self.source,
            self.clock,
            leaderboard=self.leaderboard,
            rng=random.Random(0),
            session_key="test"
        )

    def correct_label(self) -> str:
        return self.session.snapshot().current_question.correct_answer

    def wrong_label(self) -> str:
        correct = self.correct_label()
        return "A" if correct != "A" else "B"


class TestStart(SessionTestCase):
    """Test cases for starting a session."""

    async def test_start_initializes_state(self):
        self.assertEqual(self.session.status, SessionStatus.NOT_STARTED)
        started = await self.session.start("Marathi", "beginner")

        self.assertTrue(started)
        snapshot = self.session.snapshot()
        self.assertEqual(snapshot.status, SessionStatus.ACTIVE)
        self.assertEqual(snapshot.current_index, 0)
        self.assertEqual(snapshot.total_questions, 5)
        self.assertEqual(snapshot.answers, (None,) * 5)
        self.assertEqual(snapshot.lives, 3)
        self.assertEqual(snapshot.score, 0.0)
        self.assertEqual(snapshot.streak, 0)
        self.assertEqual(snapshot.multiplier, 1.0)
        self.assertEqual(snapshot.power_ups, 2)
        self.assertEqual(snapshot.time_remaining, 30)
        self.assertEqual(snapshot.level, QuizLevel.BEGINNER)
        self.assertEqual(snapshot.current_question, self.questions[0])
        self.assertEqual(len(snapshot.current_options), 4)
        self.assertEqual(self.source.calls, [("Marathi", QuizLevel.BEGINNER)])

    async def test_start_requires_language_and_level(self):
        with self.assertRaises(ValueError):
            await self.session.start("", "beginner")
        with self.assertRaises(ValueError):
            await self.session.start("Marathi", "")
        with self.assertRaises(ValueError):
            await self.session.start("Marathi", "expert")
        self.assertEqual(self.session.status, SessionStatus.NOT_STARTED)
        self.assertEqual(self.source.calls, [])

    async def test_fetch_failure_leaves_session_startable(self):
        self.source.error = fetch_error()
        with self.assertRaises(QuestionFetchError):
            await self.session.start("Marathi", "beginner")
        self.assertEqual(self.session.status, SessionStatus.NOT_STARTED)
        self.assertFalse(self.session.is_fetching)

        self.source.error = None
        self.assertTrue(await self.session.start("Marathi", "beginner"))
        self.assertEqual(self.session.status, SessionStatus.ACTIVE)

    async def test_unexpected_source_error_is_reported_as_fetch_error(self):
        self.source.error = RuntimeError("boom")
        with self.assertRaises(QuestionFetchError):
            await self.session.start("Marathi", "beginner")
        self.assertEqual(self.session.status, SessionStatus.NOT_STARTED)

    async def test_empty_question_list_is_a_fetch_error(self):
        self.source.questions = []
        with self.assertRaises(QuestionFetchError):
            await self.session.start("Marathi", "beginner")
        self.assertEqual(self.session.status, SessionStatus.NOT_STARTED)

    async def test_reentrant_start_is_ignored(self):
        release = asyncio.Event()
        questions = self.questions

        class SlowSource:
            calls = 0

            async def fetch_questions(self, language, level):
                SlowSource.calls += 1
                await release.wait()
                return questions

        session = SessionController(SlowSource(), self.clock, leaderboard=self.leaderboard)
        first = asyncio.ensure_future(session.start("Marathi", "beginner"))
        await asyncio.sleep(0)
        self.assertTrue(session.is_fetching)
        self.assertEqual(session.status, SessionStatus.NOT_STARTED)

        self.assertFalse(await session.start("Hindi", "advanced"))

        release.set()
        self.assertTrue(await first)
        self.assertEqual(SlowSource.calls, 1)
        self.assertEqual(session.snapshot().language, "Marathi")

    async def test_start_while_active_is_rejected(self):
        await self.session.start("Marathi", "beginner")
        with self.assertRaises(InvalidSessionStateError):
            await self.session.start("Marathi", "beginner")

    async def test_restart_after_end_is_fresh(self):
        await self.session.start("Marathi", "beginner")
        self.session.submit_answer(self.correct_label())
        self.session.end()

        await self.session.start("Telugu", "advanced")
        snapshot = self.session.snapshot()
        self.assertEqual(snapshot.status, SessionStatus.ACTIVE)
        self.assertEqual(snapshot.score, 0.0)
        self.assertEqual(snapshot.current_index, 0)
        self.assertEqual(snapshot.achievements, frozenset())
        self.assertEqual(len(self.leaderboard), 1)


class TestSubmitAnswer(SessionTestCase):
    """Test cases for answering questions."""

    async def test_submit_before_start_is_rejected(self):
        self.assertIsNone(self.session.submit_answer("A"))
        self.assertEqual(self.session.status, SessionStatus.NOT_STARTED)

    async def test_three_correct_answers(self):
        await self.session.start("Marathi", "beginner")
        for _ in range(3):
            self.session.submit_answer(self.correct_label())

        snapshot = self.session.snapshot()
        self.assertEqual(snapshot.streak, 3)
        self.assertAlmostEqual(snapshot.multiplier, 1.3)
        self.assertAlmostEqual(snapshot.score, 36.0)
        self.assertIn(STREAK_ACHIEVEMENT_ID, snapshot.achievements)
        self.assertEqual(snapshot.answers[:3], ("A", "B", "C"))
        self.assertEqual(snapshot.current_index, 3)

    async def test_answer_labels_are_normalized(self):
        await self.session.start("Marathi", "beginner")
        result = self.session.submit_answer(" a ")
        self.assertTrue(result.is_correct)
        self.assertEqual(self.session.snapshot().answers[0], "A")

    async def test_incorrect_answer_resets_streak(self):
        await self.session.start("Marathi", "beginner")
        self.session.submit_answer(self.correct_label())
        self.session.submit_answer(self.correct_label())
        result = self.session.submit_answer(self.wrong_label())

        self.assertFalse(result.is_correct)
        snapshot = self.session.snapshot()
        self.assertEqual(snapshot.streak, 0)
        self.assertEqual(snapshot.multiplier, 1.0)
        self.assertEqual(snapshot.lives, 2)

    async def test_three_wrong_answers_end_session(self):
        await self.session.start("Marathi", "beginner")
        for _ in range(3):
            self.session.submit_answer(self.wrong_label())

        snapshot = self.session.snapshot()
        self.assertEqual(snapshot.status, SessionStatus.ENDED)
        self.assertEqual(snapshot.lives, 0)
        self.assertEqual(snapshot.score, 0.0)
        self.assertEqual(len(self.leaderboard), 1)

        # A fourth answer is rejected and changes nothing
        self.assertIsNone(self.session.submit_answer("A"))
        self.assertEqual(self.session.snapshot(), snapshot)
        self.assertEqual(len(self.leaderboard), 1)

    async def test_last_question_ends_session(self):
        await self.session.start("Marathi", "beginner")
        for _ in range(5):
            self.session.submit_answer(self.correct_label())

        self.assertEqual(self.session.status, SessionStatus.ENDED)
        entries = self.leaderboard.entries()
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].name, "Player")
        self.assertAlmostEqual(entries[0].score, 11 + 12 + 13 + 14 + 15)
        self.assertEqual(self.session.last_rank, 1)

    async def test_unknown_label_is_incorrect(self):
        await self.session.start("Marathi", "beginner")
        result = self.session.submit_answer("Z")
        self.assertFalse(result.is_correct)
        self.assertEqual(self.session.snapshot().lives, 2)

    async def test_options_reshuffled_once_per_question(self):
        await self.session.start("Marathi", "beginner")
        first = self.session.snapshot().current_options
        self.assertEqual(self.session.snapshot().current_options, first)

        self.session.submit_answer(self.correct_label())
        second = self.session.snapshot().current_options
        self.assertEqual({label for label, _ in second}, {"A", "B", "C", "D"})
        self.assertTrue(all(text.endswith(" 2") for _, text in second))


class TestTimeout(SessionTestCase):
    """Test cases for the per-question countdown."""

    async def test_timeout_scored_as_incorrect(self):
        await self.session.start("Marathi", "beginner")
        self.session.submit_answer(self.correct_label())

        self.clock.advance(30)

        snapshot = self.session.snapshot()
        self.assertEqual(snapshot.answers[1], None)
        self.assertEqual(snapshot.current_index, 2)
        self.assertEqual(snapshot.lives, 2)
        self.assertEqual(snapshot.streak, 0)
        self.assertAlmostEqual(snapshot.score, 6.0)

    async def test_timeout_matches_explicit_wrong_answer(self):
        await self.session.start("Marathi", "beginner")
        self.clock.advance(30)
        timed_out = self.session.snapshot().game_state

        other = SessionController(StaticQuestionSource(self.questions), FakeClock())
        await other.start("Marathi", "beginner")
        other.submit_answer("D")
        self.assertEqual(other.snapshot().game_state, timed_out)

    async def test_timeout_fires_once_per_question(self):
        on_answer = Mock()
        self.session.on_answer = on_answer
        await self.session.start("Marathi", "beginner")

        self.clock.advance(29)
        on_answer.assert_not_called()
        self.clock.advance(1)
        self.assertEqual(on_answer.call_count, 1)
        self.assertTrue(on_answer.call_args[0][0].timed_out)
        self.assertEqual(self.session.snapshot().time_remaining, 30)

    async def test_answer_at_last_second_does_not_double_fire(self):
        await self.session.start("Marathi", "beginner")
        self.clock.advance(29)
        last_tick = self.clock.pending()[0]

        self.session.submit_answer(self.correct_label())
        self.clock.fire_stale(last_tick)

        snapshot = self.session.snapshot()
        self.assertEqual(snapshot.current_index, 1)
        self.assertEqual(snapshot.lives, 3)
        self.assertEqual(snapshot.answers[1], None)
        self.assertEqual(snapshot.time_remaining, 30)

    async def test_all_timeouts_end_session_after_three(self):
        await self.session.start("Marathi", "beginner")
        self.clock.advance(200)

        snapshot = self.session.snapshot()
        self.assertEqual(snapshot.status, SessionStatus.ENDED)
        self.assertEqual(snapshot.lives, 0)
        self.assertEqual(snapshot.answers, (None,) * 5)
        self.assertEqual(len(self.leaderboard), 1)
        self.assertEqual(self.clock.pending(), [])

    async def test_countdown_resets_on_new_question(self):
        await self.session.start("Marathi", "beginner")
        self.clock.advance(12)
        self.assertEqual(self.session.snapshot().time_remaining, 18)
        self.session.submit_answer(self.correct_label())
        self.assertEqual(self.session.snapshot().time_remaining, 30)


class TestBoost(SessionTestCase):
    """Test cases for the time-boost power-up."""

    async def test_boost_adds_ten_seconds(self):
        await self.session.start("Marathi", "beginner")
        self.clock.advance(20)
        self.assertTrue(self.session.use_boost())

        snapshot = self.session.snapshot()
        self.assertEqual(snapshot.time_remaining, 20)
        self.assertEqual(snapshot.power_ups, 1)

        self.clock.advance(19)
        self.assertEqual(self.session.snapshot().current_index, 0)
        self.clock.advance(1)
        self.assertEqual(self.session.snapshot().current_index, 1)

    async def test_boost_without_power_ups_is_noop(self):
        await self.session.start("Marathi", "beginner")
        self.assertTrue(self.session.use_boost())
        self.assertTrue(self.session.use_boost())
        before = self.session.snapshot()

        self.assertFalse(self.session.use_boost())
        self.assertEqual(self.session.snapshot(), before)
        self.assertEqual(before.power_ups, 0)

    async def test_boost_before_start(self):
        self.assertFalse(self.session.use_boost())

    async def test_power_ups_carry_across_questions(self):
        await self.session.start("Marathi", "beginner")
        self.session.use_boost()
        self.session.submit_answer(self.correct_label())
        snapshot = self.session.snapshot()
        self.assertEqual(snapshot.power_ups, 1)
        self.assertEqual(snapshot.time_remaining, 30)


class TestEnd(SessionTestCase):
    """Test cases for ending sessions."""

    async def test_end_records_score(self):
        await self.session.start("Marathi", "beginner")
        self.session.submit_answer(self.correct_label())
        self.assertTrue(self.session.end())

        self.assertEqual(self.session.status, SessionStatus.ENDED)
        self.assertEqual(self.leaderboard.entries()[0].score, 11.0)
        self.assertEqual(self.clock.pending(), [])

    async def test_end_twice_records_once(self):
        await self.session.start("Marathi", "beginner")
        self.assertTrue(self.session.end())
        self.assertFalse(self.session.end())
        self.assertEqual(len(self.leaderboard), 1)

    async def test_end_before_start_is_noop(self):
        self.assertFalse(self.session.end())
        self.assertEqual(len(self.leaderboard), 0)

    async def test_custom_player_name(self):
        session = SessionController(
            StaticQuestionSource(self.questions),
            FakeClock(),
            leaderboard=self.leaderboard,
            settings=QuizSettings(player_name="Asha")
        )
        await session.start("Marathi", "beginner")
        session.end()
        self.assertEqual(self.leaderboard.entries()[0].name, "Asha")


class TestListeners(SessionTestCase):
    """Test cases for presentation listeners."""

    async def test_listeners_receive_events(self):
        on_question, on_tick, on_answer, on_end = Mock(), Mock(), Mock(), Mock()
        self.session.on_question = on_question
        self.session.on_tick = on_tick
        self.session.on_answer = on_answer
        self.session.on_end = on_end

        await self.session.start("Marathi", "beginner")
        on_question.assert_called_once()
        self.clock.advance(1)
        self.assertEqual(on_tick.call_args[0][0].time_remaining, 29)

        self.session.submit_answer(self.correct_label())
        result, snapshot = on_answer.call_args[0]
        self.assertTrue(result.is_correct)
        self.assertEqual(snapshot.current_index, 0)
        self.assertEqual(on_question.call_count, 2)

        self.session.end()
        self.assertTrue(on_end.call_args[0][0].is_ended)

    async def test_listener_errors_do_not_break_session(self):
        self.session.on_question = Mock(side_effect=RuntimeError("render failed"))
        self.session.on_answer = Mock(side_effect=RuntimeError("render failed"))

        await self.session.start("Marathi", "beginner")
        result = self.session.submit_answer(self.correct_label())

        self.assertTrue(result.is_correct)
        self.assertEqual(self.session.snapshot().current_index, 1)


if __name__ == '__main__':
    unittest.main()
