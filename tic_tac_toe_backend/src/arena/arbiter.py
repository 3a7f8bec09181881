"""
Turn arbitration: the single gate every move passes before it is committed,
whether it comes from a room participant, a local player or the AI.
"""

from dataclasses import dataclass

from .core import BOARD_CELLS, Board, GameOutcome, PlayerSymbol, apply_move, evaluate, next_turn
from .errors import CellOccupied, GameNotActive, IllegalMove, NotYourTurn

PLAYING = "playing"


@dataclass(frozen=True)
class Ruling:
    """An accepted move: the resulting board, its outcome and who moves next."""
    board: Board
    outcome: GameOutcome
    current_player: PlayerSymbol


# PUBLIC_INTERFACE
def arbitrate(board: Board, current_player: PlayerSymbol, status: str,
              symbol: PlayerSymbol, index: int) -> Ruling:
    if status != PLAYING:
        raise GameNotActive()
    if symbol != current_player:
        raise NotYourTurn()
    if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < BOARD_CELLS:
        raise IllegalMove(f"Invalid position {index!r}")
    if board[index] is not None:
        raise CellOccupied()

    new_board = apply_move(board, index, symbol)
    outcome = evaluate(new_board)
    # The symbol freezes on a finished board so late duplicates fail the turn check.
    following = next_turn(symbol) if not outcome.is_over else current_player
    return Ruling(new_board, outcome, following)
