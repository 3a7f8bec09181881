"""
Result recording: turns a finished game into a GameRecord and hands it to
storage.

Only multiplayer games and games against the Hard AI are persisted. Easy and
Medium results are classified but never written.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from .ai import Difficulty
from .core import Board, GameOutcome, PlayerSymbol
from .models import GameRecord, Room

logger = logging.getLogger(__name__)

MULTIPLAYER_MODE = "multiplayer"

# Score effect applied by the external leaderboard; totals are not computed here.
SCORE_DELTA: Dict[str, int] = {"win": 2, "draw": 1, "loss": -1}

_MIRROR = {"win": "loss", "loss": "win", "draw": "draw"}


# PUBLIC_INTERFACE
def classify(outcome: GameOutcome, player_symbol: PlayerSymbol) -> str:
    """Win, draw or loss for the player holding player_symbol."""
    if not outcome.is_over:
        raise ValueError("Cannot classify a game that is still ongoing")
    if outcome.kind == 'draw':
        return "draw"
    return "win" if outcome.winner == player_symbol else "loss"


def ai_mode(difficulty: Difficulty) -> str:
    return f"ai:{Difficulty(difficulty).value}"


def should_record_ai(difficulty: Difficulty) -> bool:
    return Difficulty(difficulty) is Difficulty.HARD


# PUBLIC_INTERFACE
def score_deltas(record: GameRecord) -> Dict[str, int]:
    """Score change for each human participant of a recorded game."""
    deltas = {record.player1_id: SCORE_DELTA[record.outcome]}
    if record.player2_id is not None:
        deltas[record.player2_id] = SCORE_DELTA[_MIRROR[record.outcome]]
    return deltas


class ResultRecorder:
    """Writes one GameRecord per completed game through the store."""

    def __init__(self, store, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def record_room(self, room: Room, outcome: GameOutcome) -> GameRecord:
        record = GameRecord(
            player1_id=room.creator_id,
            player2_id=room.player2_id,
            mode=MULTIPLAYER_MODE,
            terminal_board=list(room.board),
            outcome=classify(outcome, 'X'),
            winner_id=room.user_for(outcome.winner),
            timestamp=self.clock(),
        )
        await self.store.insert_game(record)
        logger.info("Recorded multiplayer game in room %s: %s", room.room_code, record.outcome)
        return record

    async def record_ai(self, user_id: str, difficulty: Difficulty, human_symbol: PlayerSymbol,
                        board: Board, outcome: GameOutcome) -> Optional[GameRecord]:
        result = classify(outcome, human_symbol)
        if not should_record_ai(difficulty):
            logger.debug("Not recording %s game for %s (%s)", ai_mode(difficulty), user_id, result)
            return None
        record = GameRecord(
            player1_id=user_id,
            player2_id=None,
            mode=ai_mode(difficulty),
            terminal_board=list(board),
            outcome=result,
            winner_id=user_id if result == "win" else None,
            timestamp=self.clock(),
        )
        await self.store.insert_game(record)
        logger.info("Recorded %s game for %s: %s", record.mode, user_id, result)
        return record
