from dataclasses import dataclass
from typing import Iterable, List, Literal, Optional, Sequence, Tuple

from .errors import IllegalMove, InvalidSnapshot

PlayerSymbol = Literal['X', 'O']
Cell = Optional[PlayerSymbol]
Board = Tuple[Cell, ...]

BOARD_CELLS = 9

# Rows, then columns, then diagonals. evaluate() reports the first match.
WIN_LINES: Tuple[Tuple[int, int, int], ...] = (
    (0, 1, 2), (3, 4, 5), (6, 7, 8),
    (0, 3, 6), (1, 4, 7), (2, 5, 8),
    (0, 4, 8), (2, 4, 6),
)


@dataclass(frozen=True)
class GameOutcome:
    """Result of evaluating a board: ongoing, a win on a given line, or a draw."""
    kind: Literal['ongoing', 'win', 'draw']
    winner: Optional[PlayerSymbol] = None
    line: Optional[Tuple[int, int, int]] = None

    @classmethod
    def ongoing(cls) -> "GameOutcome":
        return cls('ongoing')

    @classmethod
    def win(cls, winner: PlayerSymbol, line: Sequence[int]) -> "GameOutcome":
        return cls('win', winner, tuple(line))

    @classmethod
    def draw(cls) -> "GameOutcome":
        return cls('draw')

    @property
    def is_over(self) -> bool:
        return self.kind != 'ongoing'


# PUBLIC_INTERFACE
def empty_board() -> Board:
    return (None,) * BOARD_CELLS


# PUBLIC_INTERFACE
def is_valid_move(board: Board, index: int) -> bool:
    """Check if a move is valid (index within range and cell is empty)."""
    return (
        isinstance(index, int) and not isinstance(index, bool)
        and 0 <= index < BOARD_CELLS
        and board[index] is None
    )


# PUBLIC_INTERFACE
def apply_move(board: Board, index: int, symbol: PlayerSymbol) -> Board:
    """
    Return a new board with the move applied.

    Turn order is not checked here; the same function serves committed moves
    and hypothetical AI lookahead.
    """
    if not is_valid_move(board, index):
        raise IllegalMove(f"Invalid move at index {index!r}")
    return board[:index] + (symbol,) + board[index + 1:]


# PUBLIC_INTERFACE
def evaluate(board: Board) -> GameOutcome:
    """Check the 8 lines in order, then the draw condition."""
    for line in WIN_LINES:
        a, b, c = line
        if board[a] and board[a] == board[b] == board[c]:
            return GameOutcome.win(board[a], line)
    if all(cell is not None for cell in board):
        return GameOutcome.draw()
    return GameOutcome.ongoing()


# PUBLIC_INTERFACE
def next_turn(current_turn: PlayerSymbol) -> PlayerSymbol:
    """Toggle turn: X -> O, O -> X."""
    return 'O' if current_turn == 'X' else 'X'


def empty_cells(board: Board) -> List[int]:
    return [i for i, cell in enumerate(board) if cell is None]


# PUBLIC_INTERFACE
def validate_board(cells: Iterable) -> Board:
    """
    Turn stored or delivered cells into a Board, rejecting anything that
    could not arise from alternating play with X first.
    """
    board = tuple(None if cell in (None, '') else cell for cell in cells)
    if len(board) != BOARD_CELLS:
        raise InvalidSnapshot(f"Expected {BOARD_CELLS} cells, got {len(board)}")
    if any(cell not in (None, 'X', 'O') for cell in board):
        raise InvalidSnapshot("Cells must be 'X', 'O' or empty")
    if board.count('X') - board.count('O') not in (0, 1):
        raise InvalidSnapshot("X and O counts are out of balance")
    return board


def board_to_rows(board: Board) -> List[List[Cell]]:
    return [list(board[row * 3:row * 3 + 3]) for row in range(3)]


def board_from_rows(rows: Sequence[Sequence]) -> Board:
    return validate_board(cell for row in rows for cell in row)
