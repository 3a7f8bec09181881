"""
Computer opponent with three fixed difficulty tiers.

Every call is a pure function of the board passed in: nothing is remembered
between moves.
"""

import random
from enum import Enum
from functools import lru_cache
from typing import Callable, Dict, List, Optional

from .core import Board, PlayerSymbol, WIN_LINES, apply_move, empty_cells, evaluate, next_turn
from .errors import NoLegalMove

CENTER = 4
CORNERS = (0, 2, 6, 8)
EDGES = (1, 3, 5, 7)


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


# PUBLIC_INTERFACE
def choose_move(
    board: Board,
    difficulty: Difficulty,
    ai_symbol: PlayerSymbol,
    rng: Optional[random.Random] = None,
) -> int:
    """
    Pick the index of an empty cell for ai_symbol.

    The caller is expected to check that the game is still ongoing; a full
    board raises NoLegalMove.
    """
    board = tuple(board)
    moves = empty_cells(board)
    if not moves:
        raise NoLegalMove()
    strategy = _STRATEGIES[Difficulty(difficulty)]
    return strategy(board, ai_symbol, moves, rng or random)


def _easy(board: Board, ai_symbol: PlayerSymbol, moves: List[int], rng) -> int:
    return rng.choice(moves)


def _winning_cell(board: Board, symbol: PlayerSymbol) -> Optional[int]:
    """Lowest empty index that completes a line for symbol."""
    candidates = []
    for line in WIN_LINES:
        cells = [board[i] for i in line]
        if cells.count(symbol) == 2 and cells.count(None) == 1:
            candidates.append(line[cells.index(None)])
    return min(candidates) if candidates else None


def _medium(board: Board, ai_symbol: PlayerSymbol, moves: List[int], rng) -> int:
    win = _winning_cell(board, ai_symbol)
    if win is not None:
        return win
    block = _winning_cell(board, next_turn(ai_symbol))
    if block is not None:
        return block
    if board[CENTER] is None:
        return CENTER
    for group in (CORNERS, EDGES):
        for index in group:
            if board[index] is None:
                return index
    return moves[0]


@lru_cache(maxsize=None)
def _minimax(board: Board, to_move: PlayerSymbol, ai_symbol: PlayerSymbol) -> int:
    """
    Exact game value for ai_symbol: +1 win, -1 loss, 0 draw, not discounted
    by depth. Positions repeat heavily across the tree, so values are memoized
    on the (immutable) board.
    """
    outcome = evaluate(board)
    if outcome.kind == 'win':
        return 1 if outcome.winner == ai_symbol else -1
    if outcome.kind == 'draw':
        return 0

    scores = [_minimax(apply_move(board, index, to_move), next_turn(to_move), ai_symbol)
              for index in empty_cells(board)]
    return max(scores) if to_move == ai_symbol else min(scores)


def move_values(board: Board, ai_symbol: PlayerSymbol) -> Dict[int, int]:
    """Exact minimax value of every empty cell for ai_symbol."""
    return {
        index: _minimax(apply_move(board, index, ai_symbol), next_turn(ai_symbol), ai_symbol)
        for index in empty_cells(board)
    }


def _hard(board: Board, ai_symbol: PlayerSymbol, moves: List[int], rng) -> int:
    best_move = moves[0]
    best_score = -2
    # Ascending index with a strict comparison: the lowest index wins ties.
    for index, score in sorted(move_values(board, ai_symbol).items()):
        if score > best_score:
            best_score = score
            best_move = index
    return best_move


_STRATEGIES: Dict[Difficulty, Callable[..., int]] = {
    Difficulty.EASY: _easy,
    Difficulty.MEDIUM: _medium,
    Difficulty.HARD: _hard,
}
