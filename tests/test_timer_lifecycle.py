"""
Unit tests for countdown lifecycle logging.
Tests structured log records, stale tick detection, and callback error reporting.
"""
import unittest
from unittest.mock import Mock

from langquiz.quiz_engine import QuestionCountdown, TimerLifecycleLogger
from langquiz.session_controller import SessionController
from tests.test_fixtures import FakeClock, StaticQuestionSource


def events(logs):
    return [getattr(record, 'event_type', None) for record in logs.records]


class TestTimerLifecycleLogger(unittest.TestCase):
    """Test cases for TimerLifecycleLogger records."""

    def test_start_record_carries_context(self):
        with self.assertLogs('langquiz.quiz_engine', level='INFO') as logs:
            TimerLifecycleLogger.log_timer_start("chan", 30, 2)

        record = logs.records[0]
        self.assertEqual(record.event_type, 'timer_countdown_start')
        self.assertEqual(record.session_key, "chan")
        self.assertEqual(record.duration, 30)
        self.assertEqual(record.question_index, 2)
        self.assertIn("Question 3", record.getMessage())

    def test_updates_are_throttled(self):
        with self.assertLogs('langquiz.quiz_engine', level='DEBUG') as logs:
            for remaining in range(29, 0, -1):
                TimerLifecycleLogger.log_timer_update("chan", remaining, 30)

        remaining_logged = [record.remaining_time for record in logs.records]
        self.assertEqual(remaining_logged, [20, 10, 5, 4, 3, 2, 1])

    def test_update_with_zero_duration(self):
        with self.assertLogs('langquiz.quiz_engine', level='DEBUG') as logs:
            TimerLifecycleLogger.log_timer_update("chan", 0, 0)
        self.assertEqual(logs.records[0].progress_percent, 100.0)


class TestCountdownLifecycle(unittest.TestCase):
    """Test cases for lifecycle events emitted by QuestionCountdown."""

    def setUp(self):
        self.clock = FakeClock()
        self.countdown = QuestionCountdown(self.clock, "chan")

    def test_natural_expiry_logged(self):
        with self.assertLogs('langquiz.quiz_engine', level='INFO') as logs:
            self.countdown.start(2, Mock(), Mock())
            self.clock.advance(2)

        self.assertEqual(
            [e for e in events(logs) if e != 'timer_update'],
            ['timer_countdown_start', 'timer_completed']
        )
        self.assertEqual(logs.records[-1].completion_type, 'natural_expiry')

    def test_cancel_logged_once(self):
        self.countdown.start(10, Mock(), Mock())
        with self.assertLogs('langquiz.quiz_engine', level='INFO') as logs:
            self.countdown.cancel()
            self.countdown.cancel()

        completions = [r for r in logs.records if r.event_type == 'timer_completed']
        self.assertEqual(len(completions), 1)
        self.assertEqual(completions[0].completion_type, 'cancelled')

    def test_extension_logged(self):
        self.countdown.start(10, Mock(), Mock())
        with self.assertLogs('langquiz.quiz_engine', level='INFO') as logs:
            self.countdown.extend(10)
        self.assertEqual(logs.records[0].event_type, 'timer_extended')
        self.assertEqual(logs.records[0].remaining_time, 20)

    def test_stale_tick_reported_as_race(self):
        self.countdown.start(10, Mock(), Mock())
        stale = self.clock.pending()[0]
        self.countdown.start(10, Mock(), Mock())

        with self.assertLogs('langquiz.quiz_engine', level='WARNING') as logs:
            self.clock.fire_stale(stale)

        self.assertEqual(events(logs), ['timer_race_condition'])
        self.assertEqual(self.countdown.remaining_time, 10)

    def test_callback_error_logged_and_raised(self):
        on_tick = Mock(side_effect=RuntimeError("render failed"))
        self.countdown.start(5, on_tick, Mock())

        with self.assertLogs('langquiz.quiz_engine', level='ERROR') as logs:
            with self.assertRaises(RuntimeError):
                self.clock.advance(1)

        self.assertEqual(logs.records[0].event_type, 'timer_error')
        self.assertEqual(logs.records[0].error_message, "render failed")
        # The next tick was armed before the callback ran
        self.assertTrue(self.countdown.is_running)


class TestSessionLifecycleLogging(unittest.IsolatedAsyncioTestCase):
    """Test cases for session-level structured events."""

    async def test_session_events(self):
        session = SessionController(StaticQuestionSource(), FakeClock(), session_key="chan")

        with self.assertLogs('langquiz.session_controller', level='INFO') as logs:
            await session.start("Marathi", "beginner")
            session.submit_answer("A")
            session.end()

        logged = [e for e in events(logs) if e is not None]
        self.assertEqual(logged, ['session_started', 'answer_scored', 'session_ended'])
        ended = logs.records[-1]
        self.assertEqual(ended.rank, 1)
        self.assertEqual(ended.session_key, "chan")

    async def test_fetch_in_flight_logged(self):
        session = SessionController(StaticQuestionSource(), FakeClock(), session_key="chan")
        session._fetch_in_flight = True

        with self.assertLogs('langquiz.session_controller', level='WARNING') as logs:
            self.assertFalse(await session.start("Marathi", "beginner"))

        self.assertEqual(logs.records[0].event_type, 'session_start_ignored')
        self.assertEqual(logs.records[0].reason, 'fetch_in_flight')


if __name__ == '__main__':
    unittest.main()
