"""
Core data models for the Language Quiz Bot.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple


OPTION_LABELS = ("A", "B", "C", "D")

INITIAL_LIVES = 3
INITIAL_POWER_UPS = 2
QUESTION_TIME = 30
BOOST_SECONDS = 10
MAX_MULTIPLIER = 2.0


class QuizLevel(Enum):
    """Difficulty levels accepted by the question source."""
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"

    @classmethod
    def parse(cls, value) -> "QuizLevel":
        """Parse a level from its name, case-insensitively."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str) or not value.strip():
            raise ValueError("Level must be a non-empty string")
        try:
            return cls(value.strip().lower())
        except ValueError:
            allowed = ", ".join(level.value for level in cls)
            raise ValueError(f"Unknown level '{value}', expected one of: {allowed}")


class SessionStatus(Enum):
    """Lifecycle of a single quiz attempt."""
    NOT_STARTED = "not_started"
    ACTIVE = "active"
    ENDED = "ended"


@dataclass(frozen=True)
class Question:
    """A multiple-choice question with four labeled options."""
    question_id: str
    prompt: str
    options: Dict[str, str]
    correct_answer: str
    explanation: str = ""
    context: str = ""

    def is_correct(self, label: Optional[str]) -> bool:
        """Check a submitted option label; None (no answer) is never correct."""
        if label is None:
            return False
        return label.strip().upper() == self.correct_answer.strip().upper()

    def option_text(self, label: str) -> Optional[str]:
        return self.options.get(label)


@dataclass(frozen=True)
class Achievement:
    """An unlockable badge."""
    id: str
    name: str
    description: str


@dataclass(frozen=True)
class GameState:
    """Scoring-relevant part of a session."""
    lives: int = INITIAL_LIVES
    score: float = 0.0
    streak: int = 0
    achievements: FrozenSet[str] = frozenset()

    @property
    def multiplier(self) -> float:
        return min(MAX_MULTIPLIER, round(1.0 + self.streak * 0.1, 2))


@dataclass(frozen=True)
class LeaderboardEntry:
    """A finished session on the leaderboard."""
    name: str
    score: float


@dataclass
class QuizSettings:
    """Configuration settings for a quiz session."""
    language: str = "Marathi"
    level: QuizLevel = QuizLevel.INTERMEDIATE
    timer_duration: int = QUESTION_TIME
    initial_lives: int = INITIAL_LIVES
    initial_power_ups: int = INITIAL_POWER_UPS
    boost_seconds: int = BOOST_SECONDS
    player_name: str = "Player"


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view of a session for presentation layers."""
    status: SessionStatus
    language: str
    level: Optional[QuizLevel]
    current_index: int
    total_questions: int
    answers: Tuple[Optional[str], ...]
    game_state: GameState
    power_ups: int
    time_remaining: int
    current_question: Optional[Question] = None
    current_options: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    @property
    def lives(self) -> int:
        return self.game_state.lives

    @property
    def score(self) -> float:
        return self.game_state.score

    @property
    def streak(self) -> int:
        return self.game_state.streak

    @property
    def multiplier(self) -> float:
        return self.game_state.multiplier

    @property
    def achievements(self) -> FrozenSet[str]:
        return self.game_state.achievements

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    @property
    def is_ended(self) -> bool:
        return self.status == SessionStatus.ENDED


@dataclass
class AnswerResult:
    """Outcome of a single submission, handed to listeners."""
    question: Question
    submitted: Optional[str]
    is_correct: bool
    timed_out: bool
    state: GameState
    unlocked: List[str] = field(default_factory=list)
