import pytest

from src.arena.core import (
    WIN_LINES, GameOutcome, apply_move, board_from_rows, board_to_rows, empty_board,
    evaluate, is_valid_move, next_turn, validate_board,
)
from src.arena.errors import IllegalMove, InvalidSnapshot


def board_of(text):
    """'XO.X.....' -> Board"""
    return tuple(None if ch == '.' else ch for ch in text)


def test_empty_board_is_ongoing():
    board = empty_board()
    assert board == (None,) * 9
    assert evaluate(board) == GameOutcome.ongoing()


@pytest.mark.parametrize("line", WIN_LINES)
@pytest.mark.parametrize("symbol", ["X", "O"])
def test_every_line_is_a_win(line, symbol):
    board = tuple(symbol if i in line else None for i in range(9))
    assert evaluate(board) == GameOutcome.win(symbol, line)


def test_full_board_without_line_is_draw():
    board = board_of("XOXXOOOXX")
    assert evaluate(board).kind == 'draw'


def test_full_board_with_line_is_win_not_draw():
    board = board_of("XXXOOXXOO")
    outcome = evaluate(board)
    assert outcome.kind == 'win'
    assert outcome.line == (0, 1, 2)


def test_first_line_in_order_is_reported():
    # Row 0 and column 0 both complete; rows are checked first.
    board = board_of("XXXXOOXOO")
    assert evaluate(board).line == (0, 1, 2)


def test_apply_move_returns_new_board():
    board = empty_board()
    after = apply_move(board, 4, 'X')
    assert after[4] == 'X'
    assert board == empty_board()


def test_apply_move_ignores_turn_order():
    board = apply_move(empty_board(), 0, 'O')
    assert board[0] == 'O'


def test_apply_move_on_occupied_cell_fails_and_board_unchanged():
    board = apply_move(empty_board(), 0, 'X')
    snapshot = tuple(board)
    with pytest.raises(IllegalMove):
        apply_move(board, 0, 'O')
    assert board == snapshot


@pytest.mark.parametrize("index", [-1, 9, 100, True, "4", 1.0])
def test_apply_move_out_of_range(index):
    with pytest.raises(IllegalMove):
        apply_move(empty_board(), index, 'X')
    assert not is_valid_move(empty_board(), index)


def test_next_turn():
    assert next_turn('X') == 'O'
    assert next_turn('O') == 'X'


def test_reachable_boards_keep_count_invariant():
    seen = set()

    def walk(board, player):
        if board in seen:
            return
        seen.add(board)
        assert board.count('X') - board.count('O') in (0, 1)
        if evaluate(board).is_over:
            return
        for i in range(9):
            if board[i] is None:
                walk(apply_move(board, i, player), next_turn(player))

    walk(empty_board(), 'X')
    assert len(seen) == 5478


def test_validate_board_accepts_empty_strings():
    assert validate_board(["", "X", None, "", "", "", "", "", ""]) == board_of(".X.......")


@pytest.mark.parametrize("cells", [
    ["X"] * 8,
    ["X", "X", None, None, None, None, None, None, None],
    ["O", None, None, None, None, None, None, None, None],
    ["Z", None, None, None, None, None, None, None, None],
])
def test_validate_board_rejects_impossible_boards(cells):
    with pytest.raises(InvalidSnapshot):
        validate_board(cells)


def test_rows_conversion():
    board = board_of("XO..X...O")
    rows = board_to_rows(board)
    assert rows == [["X", "O", None], [None, "X", None], [None, None, "O"]]
    assert board_from_rows(rows) == board
