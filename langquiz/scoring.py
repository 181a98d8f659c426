"""
Scoring policy for quiz answers.

Everything here is a pure function of its inputs: option shuffling and
timers live in the quiz engine so scores stay reproducible.
"""
from dataclasses import replace
from typing import Dict, Optional

from .models import Achievement, GameState, INITIAL_LIVES, MAX_MULTIPLIER


CORRECT_POINTS = 10
WRONG_PENALTY = 5
STREAK_STEP = 0.1

STREAK_ACHIEVEMENT_ID = "streak3"
STREAK_ACHIEVEMENT_LENGTH = 3

ACHIEVEMENTS: Dict[str, Achievement] = {
    STREAK_ACHIEVEMENT_ID: Achievement(
        id=STREAK_ACHIEVEMENT_ID,
        name="On Fire!",
        description="Answer 3 questions correctly in a row",
    ),
}


def get_achievement(achievement_id: str) -> Optional[Achievement]:
    """Look up an achievement; unknown ids return None."""
    return ACHIEVEMENTS.get(achievement_id)


def multiplier_for(streak: int) -> float:
    """Score multiplier for a streak length, capped at 2.0."""
    return min(MAX_MULTIPLIER, round(1.0 + max(0, streak) * STREAK_STEP, 2))


def unlock(state: GameState, achievement_id: str) -> GameState:
    """Add an achievement id; unlocking twice is a no-op."""
    if achievement_id in state.achievements:
        return state
    return replace(state, achievements=state.achievements | {achievement_id})


def apply_answer(state: GameState, is_correct: bool, max_lives: int = INITIAL_LIVES) -> GameState:
    """
    Compute the game state after one answer.

    Args:
        state: State before the answer
        is_correct: Whether the answer was right (timeouts count as wrong)
        max_lives: Upper clamp for lives

    Returns:
        New GameState; the input is left untouched
    """
    if is_correct:
        streak = state.streak + 1
        score = state.score + CORRECT_POINTS * multiplier_for(streak)
        lives = state.lives
    else:
        streak = 0
        score = state.score - WRONG_PENALTY
        lives = state.lives - 1

    new_state = replace(
        state,
        streak=streak,
        score=max(0.0, round(score, 2)),
        lives=max(0, min(max_lives, lives)),
    )

    if streak == STREAK_ACHIEVEMENT_LENGTH:
        new_state = unlock(new_state, STREAK_ACHIEVEMENT_ID)

    return new_state


def is_eliminated(state: GameState) -> bool:
    return state.lives <= 0
