"""
Single-player games against the computer.

Human and AI moves go through the same turn arbiter as room moves; there is
no room record and nothing is broadcast.
"""

import asyncio
import logging
import random
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from .ai import Difficulty, choose_move
from .arbiter import PLAYING, arbitrate
from .core import Board, GameOutcome, PlayerSymbol, empty_board, next_turn
from .errors import GameNotFound, NotYourTurn
from .models import GameRecord
from .recorder import ResultRecorder, classify, score_deltas
from .rooms import utcnow

logger = logging.getLogger(__name__)


@dataclass
class SessionStats:
    """Running tally across the games of one session."""
    human_wins: int = 0
    ai_wins: int = 0
    draws: int = 0
    current_streak: int = 0

    def add(self, result: str) -> None:
        if result == "win":
            self.human_wins += 1
            self.current_streak += 1
        elif result == "loss":
            self.ai_wins += 1
            self.current_streak = 0
        else:
            self.draws += 1
            self.current_streak = 0


class LocalGame:
    def __init__(
        self,
        difficulty: Difficulty,
        human_symbol: PlayerSymbol = 'X',
        user_id: Optional[str] = None,
        recorder: Optional[ResultRecorder] = None,
        ai_delay: float = 0.0,
        rng: Optional[random.Random] = None,
        game_id: Optional[str] = None,
    ):
        self.id = game_id or uuid.uuid4().hex
        self.difficulty = Difficulty(difficulty)
        self.human_symbol = human_symbol
        self.ai_symbol = next_turn(human_symbol)
        self.user_id = user_id
        self.recorder = recorder
        self.ai_delay = ai_delay
        self.rng = rng
        self.stats = SessionStats()
        self.last_active: Optional[datetime] = None
        self._ai_lock = asyncio.Lock()
        self._new_board()

    def _new_board(self) -> None:
        self.board: Board = empty_board()
        self.current_player: PlayerSymbol = 'X'
        self.outcome: GameOutcome = GameOutcome.ongoing()
        self.last_ai_move: Optional[int] = None
        self.record: Optional[GameRecord] = None

    @property
    def status(self) -> str:
        return 'completed' if self.outcome.is_over else PLAYING

    @property
    def ai_to_move(self) -> bool:
        return not self.outcome.is_over and self.current_player == self.ai_symbol

    async def play(self, index: int) -> GameOutcome:
        """Apply the human move; the AI reply is a separate step."""
        if self._ai_lock.locked():
            raise NotYourTurn("The computer is still thinking")
        await self._apply(self.human_symbol, index)
        return self.outcome

    async def ai_turn(self) -> Optional[int]:
        """
        Let the AI move if it is its turn. Only one AI computation runs at a
        time for a game, including the optional thinking delay.
        """
        async with self._ai_lock:
            if not self.ai_to_move:
                return None
            if self.ai_delay:
                await asyncio.sleep(self.ai_delay)
            index = choose_move(self.board, self.difficulty, self.ai_symbol, self.rng)
            await self._apply(self.ai_symbol, index)
            self.last_ai_move = index
            return index

    async def play_turn(self, index: int) -> GameOutcome:
        """Human move followed by the AI reply, if the game continues."""
        await self.play(index)
        await self.ai_turn()
        return self.outcome

    async def reset(self) -> None:
        """Start a new board in the same session; the tally is kept."""
        async with self._ai_lock:
            self._new_board()

    async def _apply(self, symbol: PlayerSymbol, index: int) -> None:
        ruling = arbitrate(self.board, self.current_player, self.status, symbol, index)
        self.board = ruling.board
        self.current_player = ruling.current_player
        self.outcome = ruling.outcome
        if ruling.outcome.is_over:
            await self._finish()

    async def _finish(self) -> None:
        result = classify(self.outcome, self.human_symbol)
        self.stats.add(result)
        logger.info("AI game %s (%s) ended: %s", self.id, self.difficulty.value, result)
        if self.recorder is not None and self.user_id is not None:
            self.record = await self.recorder.record_ai(
                self.user_id, self.difficulty, self.human_symbol, self.board, self.outcome)

    @property
    def score_deltas(self) -> Optional[Dict[str, int]]:
        return score_deltas(self.record) if self.record is not None else None


class AIGameRegistry:
    """
    Live single-player sessions, kept in process memory.

    Every start or lookup stamps the session's last_active time; sessions
    left untouched longer than the idle limit are dropped by purge_idle.
    """

    def __init__(self, recorder: Optional[ResultRecorder] = None, ai_delay: float = 0.0,
                 clock: Callable[[], datetime] = utcnow):
        self.recorder = recorder
        self.ai_delay = ai_delay
        self.clock = clock
        self.games: Dict[str, LocalGame] = {}

    async def start(self, user_id: str, difficulty: Difficulty, human_symbol: PlayerSymbol = 'X') -> LocalGame:
        game = LocalGame(difficulty, human_symbol, user_id=user_id,
                         recorder=self.recorder, ai_delay=self.ai_delay)
        game.last_active = self.clock()
        self.games[game.id] = game
        # The AI opens when the human chose O.
        await game.ai_turn()
        return game

    def get(self, game_id: str, user_id: str) -> LocalGame:
        game = self.games.get(game_id)
        if game is None or game.user_id != user_id:
            raise GameNotFound()
        game.last_active = self.clock()
        return game

    def discard(self, game_id: str) -> None:
        self.games.pop(game_id, None)

    def purge_idle(self, now: datetime, max_idle: timedelta) -> int:
        idle = [game_id for game_id, game in self.games.items()
                if game.last_active is not None and now - game.last_active >= max_idle]
        for game_id in idle:
            del self.games[game_id]
        if idle:
            logger.info("Dropped %d idle AI games", len(idle))
        return len(idle)
