"""Hard Mode: column reservation, dormant placement, and turn-based release."""

import random

import pytest

from balldrop.game import Game
from balldrop.models import Cell, CellType, Direction, GameConfig, GameMode, GameState, Player, Position


def make_hard_game(reserve_columns=False):
    config = GameConfig(
        grid_size=5,
        balls_per_player=2,
        min_boxes=0,
        max_boxes=0,
        game_mode=GameMode.HARD_MODE,
        reserve_columns=reserve_columns,
    )
    game = Game(config, rng=random.Random(7))
    game.start_new_game()
    game.grid.clear_grid()
    return game


def place_all(game, p1_cols=(0, 2), p2_cols=(1, 3)):
    for col in p1_cols:
        assert game.select_move(col) is True
    for col in p2_cols:
        assert game.select_move(col) is True


@pytest.fixture
def released_game():
    """A Hard Mode game that has just entered the release phase."""
    game = make_hard_game()
    place_all(game)
    return game


class TestPlacement:
    def test_starts_in_placement(self):
        game = make_hard_game()
        assert game.state is GameState.BALL_PLACEMENT_PHASE
        assert game.current_player is Player.PLAYER1

    def test_player1_selects_all_first(self):
        game = make_hard_game()
        game.select_move(0)
        assert game.current_player is Player.PLAYER1
        game.select_move(2)
        assert game.current_player is Player.PLAYER2
        assert game.get_selected_moves_count(Player.PLAYER1) == 2
        assert game.get_move_selection().current_selection_player is Player.PLAYER2

    def test_claimed_column_rejected(self):
        game = make_hard_game()
        game.select_move(0)
        assert game.can_select_move(0) is False
        assert game.select_move(0) is False
        assert game.get_selected_moves_count(Player.PLAYER1) == 1

    def test_full_column_rejected(self):
        game = make_hard_game()
        game.grid.set_cell(0, 4, Cell.box(Direction.LEFT))
        assert game.select_move(4) is False

    def test_selection_leaves_board_untouched(self):
        game = make_hard_game()
        game.select_move(0)
        game.select_move(2)
        game.select_move(1)
        assert game.grid.count_cells(CellType.DORMANT_BALL_P1) == 0

    def test_column_owners_follow_selection(self):
        game = make_hard_game()
        game.select_move(4)
        assert game.get_column_owners() == {4: Player.PLAYER1}

    def test_drop_ball_routes_to_selection(self):
        game = make_hard_game()
        assert game.drop_ball(3) is True
        assert game.get_move_selection().player1_moves == [3]
        assert game.can_drop_in_column(3) is False


class TestDormantPlacement:
    def test_enters_release_phase(self, released_game):
        game = released_game
        assert game.state is GameState.BALL_RELEASE_PHASE
        assert game.current_player is Player.PLAYER1
        assert game.get_move_selection().all_moves_selected is True
        assert len(game.get_dormant_balls_for_player(Player.PLAYER1)) == 2
        assert len(game.get_dormant_balls_for_player(Player.PLAYER2)) == 2
        assert game.get_balls_remaining(Player.PLAYER1) == 0
        assert game.get_balls_remaining(Player.PLAYER2) == 0

    def test_dormant_balls_do_not_score(self, released_game):
        game = released_game
        assert game.grid.get_cell(4, 0).type is CellType.DORMANT_BALL_P1
        assert game.grid.get_cell(4, 1).type is CellType.DORMANT_BALL_P2
        result = game.get_game_result()
        assert (result.player1_columns, result.player2_columns) == (0, 0)
        assert result.is_tie is True

    def test_registry_matches_board(self, released_game):
        registry = released_game.get_ball_release_selection().dormant_balls
        positions = {(ball.position.row, ball.position.col) for ball in registry.values()}
        assert positions == {(4, 0), (4, 1), (4, 2), (4, 3)}
        assert set(registry) == {"p1-0", "p1-1", "p2-0", "p2-1"}

    def test_placement_does_not_flip_boxes(self):
        game = make_hard_game()
        game.grid.set_cell(3, 0, Cell.box(Direction.LEFT))
        place_all(game)
        assert game.grid.get_cell(2, 0).type is CellType.DORMANT_BALL_P1
        assert game.grid.get_cell(3, 0).direction is Direction.LEFT


class TestRelease:
    def test_alternating_release(self, released_game):
        game = released_game
        assert game.release_ball(4, 0) is True
        assert game.grid.get_cell(4, 0).type is CellType.BALL_P1
        assert game.current_player is Player.PLAYER2
        assert game.get_released_balls_count(Player.PLAYER1) == 1
        assert game.get_current_score() == (1, 0)

    def test_cannot_release_opponent_ball(self, released_game):
        game = released_game
        assert game.can_release_ball(4, 1) is False
        assert game.release_ball(4, 1) is False
        assert game.current_player is Player.PLAYER1

    def test_cannot_release_empty_cell(self, released_game):
        assert released_game.release_ball(2, 2) is False

    def test_cannot_release_twice(self, released_game):
        game = released_game
        game.release_ball(4, 0)
        game.release_ball(4, 1)
        assert game.release_ball(4, 0) is False

    def test_full_release_finishes(self, released_game):
        game = released_game
        for row, col in ((4, 0), (4, 1), (4, 2), (4, 3)):
            assert game.release_ball(row, col) is True
        assert game.state is GameState.FINISHED
        assert game.get_ball_release_selection().all_balls_released is True
        result = game.get_game_result()
        assert (result.player1_columns, result.player2_columns) == (2, 2)
        assert result.is_tie is True

    def test_release_flips_box_below(self):
        game = make_hard_game()
        game.grid.set_cell(3, 0, Cell.box(Direction.LEFT))
        place_all(game)
        assert game.release_ball(2, 0) is True
        assert game.grid.get_cell(2, 0).type is CellType.BALL_P1
        assert game.grid.get_cell(3, 0).direction is Direction.RIGHT

    def test_release_notifies_with_settle_path(self, released_game):
        game = released_game
        paths = []
        game.on_ball_dropped(paths.append)
        game.release_ball(4, 2)
        assert len(paths) == 1
        assert paths[0].final_position == Position(row=4, col=2)
        assert [step.action for step in paths[0].steps] == ["settle"]
        game.complete_ball_release(paths[0])
        assert game.state is GameState.BALL_RELEASE_PHASE

    def test_drop_ball_releases_in_column(self, released_game):
        game = released_game
        assert game.can_drop_in_column(1) is False
        assert game.can_drop_in_column(2) is True
        assert game.drop_ball(2) is True
        assert game.grid.get_cell(4, 2).type is CellType.BALL_P1

    def test_player_without_balls_is_skipped(self):
        game = make_hard_game()
        game.select_move(0)
        game.select_move(2)
        # Column 2 fills up before placement, so player 1 ends up with one ball.
        game.grid.set_cell(0, 2, Cell.box(Direction.LEFT))
        game.select_move(1)
        game.select_move(3)

        assert len(game.get_dormant_balls_for_player(Player.PLAYER1)) == 1
        game.release_ball(4, 0)
        assert game.current_player is Player.PLAYER2
        game.release_ball(4, 1)
        assert game.current_player is Player.PLAYER2
        game.release_ball(4, 3)
        assert game.state is GameState.FINISHED

    def test_player2_opens_when_player1_has_nothing(self):
        game = make_hard_game()
        game.select_move(0)
        game.select_move(2)
        game.grid.set_cell(0, 0, Cell.box(Direction.LEFT))
        game.grid.set_cell(0, 2, Cell.box(Direction.LEFT))
        game.select_move(1)
        game.select_move(3)

        assert game.state is GameState.BALL_RELEASE_PHASE
        assert game.current_player is Player.PLAYER2


class TestColumnReservation:
    def test_starts_in_reservation(self):
        game = make_hard_game(reserve_columns=True)
        assert game.state is GameState.COLUMN_RESERVATION_PHASE

    def test_reservations_alternate(self):
        game = make_hard_game(reserve_columns=True)
        assert game.reserve_column(0) is True
        assert game.current_player is Player.PLAYER2
        assert game.reserve_column(0) is False
        assert game.reserve_column(1) is True
        assert game.get_reserved_columns_for_player(Player.PLAYER1) == [0]
        assert game.get_reserved_columns_count(Player.PLAYER2) == 1

    def test_all_reserved_opens_placement(self):
        game = make_hard_game(reserve_columns=True)
        for col in (0, 1, 2, 3):
            assert game.drop_ball(col) is True
        assert game.state is GameState.BALL_PLACEMENT_PHASE
        assert game.current_player is Player.PLAYER1
        assert game.get_column_reservation().all_columns_reserved is True

    def test_placement_limited_to_own_reservations(self):
        game = make_hard_game(reserve_columns=True)
        for col in (0, 1, 2, 3):
            game.reserve_column(col)
        assert game.can_select_move(1) is False
        assert game.can_select_move(4) is False
        assert game.select_move(0) is True
        assert game.select_move(2) is True
        assert game.select_move(1) is True
        assert game.select_move(3) is True
        assert game.state is GameState.BALL_RELEASE_PHASE

    def test_reserve_outside_phase(self):
        game = make_hard_game()
        assert game.reserve_column(0) is False
