"""
In-memory leaderboard shared by quiz sessions.
"""
import logging
from typing import List, Tuple

from .models import LeaderboardEntry


class Leaderboard:
    """Keeps the best scores, highest first, capped at a fixed size."""

    DEFAULT_SIZE = 10

    def __init__(self, max_entries: int = DEFAULT_SIZE):
        if max_entries < 1:
            raise ValueError("Leaderboard size must be at least 1")
        self.logger = logging.getLogger(__name__)
        self.max_entries = max_entries
        self._entries: List[LeaderboardEntry] = []

    def record(self, name: str, score: float) -> int:
        """
        Add a finished session to the leaderboard.

        Entries are sorted by score descending; equal scores keep insertion
        order. Names are not deduplicated.

        Returns:
            1-based rank of the new entry, or 0 if it fell off the board
        """
        entry = LeaderboardEntry(name=name, score=max(0.0, float(score)))
        entries = self._entries + [entry]
        # sorted() is stable, so ties stay in insertion order
        entries = sorted(entries, key=lambda e: e.score, reverse=True)
        self._entries = entries[:self.max_entries]

        rank = 0
        for index, kept in enumerate(self._entries):
            if kept is entry:
                rank = index + 1
                break

        self.logger.info(
            f"Leaderboard entry recorded: {name} scored {entry.score:g}, rank {rank or 'unranked'}",
            extra={
                'event_type': 'leaderboard_recorded',
                'player': name,
                'score': entry.score,
                'rank': rank,
            }
        )
        return rank

    def entries(self) -> Tuple[LeaderboardEntry, ...]:
        """Read-only snapshot of the current standings."""
        return tuple(self._entries)

    def clear(self) -> None:
        self._entries = []

    def __len__(self) -> int:
        return len(self._entries)
