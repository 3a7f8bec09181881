import pytest

from src.arena.arbiter import arbitrate
from src.arena.core import apply_move, empty_board
from src.arena.errors import CellOccupied, GameNotActive, IllegalMove, NotYourTurn


def board_of(text):
    return tuple(None if ch == '.' else ch for ch in text)


def test_accepts_move_and_flips_turn():
    ruling = arbitrate(empty_board(), 'X', 'playing', 'X', 4)
    assert ruling.board == apply_move(empty_board(), 4, 'X')
    assert ruling.outcome.kind == 'ongoing'
    assert ruling.current_player == 'O'


def test_rejects_wrong_turn_without_touching_state():
    board = board_of("X........")
    current = 'O'
    with pytest.raises(NotYourTurn):
        arbitrate(board, current, 'playing', 'X', 4)
    assert board == board_of("X........")
    assert current == 'O'


@pytest.mark.parametrize("status", ["waiting", "completed"])
def test_rejects_when_game_not_active(status):
    with pytest.raises(GameNotActive):
        arbitrate(empty_board(), 'X', status, 'X', 0)


def test_rejects_occupied_cell():
    with pytest.raises(CellOccupied):
        arbitrate(board_of("X........"), 'O', 'playing', 'O', 0)


def test_occupied_cell_is_an_illegal_move():
    with pytest.raises(IllegalMove):
        arbitrate(board_of("X........"), 'O', 'playing', 'O', 0)


@pytest.mark.parametrize("index", [-1, 9])
def test_rejects_out_of_range(index):
    with pytest.raises(IllegalMove):
        arbitrate(empty_board(), 'X', 'playing', 'X', index)


def test_turn_checked_before_occupancy():
    with pytest.raises(NotYourTurn):
        arbitrate(board_of("X........"), 'O', 'playing', 'X', 0)


def test_current_player_freezes_on_win():
    ruling = arbitrate(board_of("XX.OO...."), 'X', 'playing', 'X', 2)
    assert ruling.outcome.kind == 'win'
    assert ruling.outcome.line == (0, 1, 2)
    assert ruling.current_player == 'X'


def test_current_player_freezes_on_draw():
    ruling = arbitrate(board_of("XOXXOOOX."), 'X', 'playing', 'X', 8)
    assert ruling.outcome.kind == 'draw'
    assert ruling.current_player == 'X'
