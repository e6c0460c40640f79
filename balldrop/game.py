"""Game flow: turns, ball budgets, Normal and Hard Mode phases, and scoring."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import Callable

from balldrop.grid import Grid
from balldrop.models import (
    BallPath,
    BallPathStep,
    DormantBall,
    GameConfig,
    GameMode,
    GameResult,
    GameState,
    Player,
    Position,
)

logger = logging.getLogger(__name__)

StateChangeCallback = Callable[["Game"], None]
BallDroppedCallback = Callable[[BallPath], None]
MovesExecutedCallback = Callable[[list[BallPath]], None]


@dataclass
class MoveSelection:
    player1_moves: list[int] = field(default_factory=list)
    player2_moves: list[int] = field(default_factory=list)
    current_selection_player: Player = Player.PLAYER1
    all_moves_selected: bool = False
    column_owners: dict[int, Player] = field(default_factory=dict)

    def moves_for(self, player: Player) -> list[int]:
        return self.player1_moves if player is Player.PLAYER1 else self.player2_moves

    def copy(self) -> MoveSelection:
        return MoveSelection(
            player1_moves=list(self.player1_moves),
            player2_moves=list(self.player2_moves),
            current_selection_player=self.current_selection_player,
            all_moves_selected=self.all_moves_selected,
            column_owners=dict(self.column_owners),
        )


@dataclass
class BallReleaseSelection:
    player1_released_balls: set[str] = field(default_factory=set)
    player2_released_balls: set[str] = field(default_factory=set)
    current_release_player: Player = Player.PLAYER1
    all_balls_released: bool = False
    dormant_balls: dict[str, DormantBall] = field(default_factory=dict)

    def released_for(self, player: Player) -> set[str]:
        return self.player1_released_balls if player is Player.PLAYER1 else self.player2_released_balls

    def copy(self) -> BallReleaseSelection:
        return BallReleaseSelection(
            player1_released_balls=set(self.player1_released_balls),
            player2_released_balls=set(self.player2_released_balls),
            current_release_player=self.current_release_player,
            all_balls_released=self.all_balls_released,
            dormant_balls=dict(self.dormant_balls),
        )


@dataclass
class ColumnReservation:
    player1_reserved_columns: list[int] = field(default_factory=list)
    player2_reserved_columns: list[int] = field(default_factory=list)
    current_reservation_player: Player = Player.PLAYER1
    all_columns_reserved: bool = False
    reserved_column_owners: dict[int, Player] = field(default_factory=dict)

    def columns_for(self, player: Player) -> list[int]:
        return self.player1_reserved_columns if player is Player.PLAYER1 else self.player2_reserved_columns

    def copy(self) -> ColumnReservation:
        return ColumnReservation(
            player1_reserved_columns=list(self.player1_reserved_columns),
            player2_reserved_columns=list(self.player2_reserved_columns),
            current_reservation_player=self.current_reservation_player,
            all_columns_reserved=self.all_columns_reserved,
            reserved_column_owners=dict(self.reserved_column_owners),
        )


class Game:
    """Drives one board through a full game.

    Spatial rules live in :class:`Grid`; this class only decides who may do
    what and when. Validation failures return ``False``/``None`` rather than
    raising.
    """

    def __init__(self, config: GameConfig | None = None, rng: random.Random | None = None):
        self._config = config or GameConfig()
        self._grid = Grid(self._config.grid_size, rng=rng)
        self._state = GameState.SETUP
        self._on_state_change: StateChangeCallback | None = None
        self._on_ball_dropped: BallDroppedCallback | None = None
        self._on_moves_executed: MovesExecutedCallback | None = None
        self._reset_bookkeeping()

    def _reset_bookkeeping(self) -> None:
        self._current_player = Player.PLAYER1
        self._balls_remaining = {
            Player.PLAYER1: self._config.balls_per_player,
            Player.PLAYER2: self._config.balls_per_player,
        }
        self._move_selection = MoveSelection()
        self._ball_release_selection = BallReleaseSelection()
        self._column_reservation = ColumnReservation()
        self._used_columns: set[int] = set()
        self._column_owners: dict[int, Player] = {}
        self._batch_applied = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_new_game(self) -> None:
        if self._config.game_mode is GameMode.HARD_MODE:
            if self._config.reserve_columns:
                self._begin(GameState.COLUMN_RESERVATION_PHASE)
            else:
                self._begin(GameState.BALL_PLACEMENT_PHASE)
        else:
            self._begin(GameState.PLAYING)

    def start_move_selection(self) -> bool:
        """Start a Normal-mode game where both players queue moves before any ball falls."""
        if self._config.game_mode is not GameMode.NORMAL:
            return False
        self._begin(GameState.SELECTING_MOVES)
        return True

    def _begin(self, state: GameState) -> None:
        self._grid.place_random_boxes(self._config.min_boxes, self._config.max_boxes)
        self._reset_bookkeeping()
        self._state = state
        logger.info(
            "New %s game on %dx%d grid, entering %s",
            self._config.game_mode.value, self._config.grid_size, self._config.grid_size, state.value,
        )
        self._notify_state_change()

    def reset(self) -> None:
        self._grid.clear_grid()
        self._state = GameState.SETUP
        self._reset_bookkeeping()
        self._notify_state_change()

    def set_game_mode(self, mode: GameMode) -> None:
        self._config = self._config.model_copy(update={"game_mode": mode})
        self.reset()

    # ------------------------------------------------------------------
    # Normal mode
    # ------------------------------------------------------------------

    def validate_drop(self, col: int) -> str | None:
        """Return why a Normal-mode drop into ``col`` is not allowed, or None if it is."""
        if self._state is not GameState.PLAYING:
            return "Game is not in play"
        if not self._grid.is_valid_position(0, col):
            return "Column out of bounds"
        if col in self._used_columns:
            return "Column was already played"
        if self._grid.is_column_full(col):
            return "Column is full"
        if self._balls_remaining[self._current_player] <= 0:
            return "No balls left"
        return None

    def drop_ball(self, col: int) -> bool:
        """Compute a drop and hand the path to observers; the board changes in :meth:`complete_ball_drop`."""
        if self._config.game_mode is GameMode.HARD_MODE:
            return self._dispatch_hard_mode(col)
        if self._state is GameState.SELECTING_MOVES:
            return self.select_move(col)

        error = self.validate_drop(col)
        if error:
            logger.debug("Rejected drop in column %d: %s", col, error)
            return False

        player = self._current_player
        _, ball_path = self._grid.calculate_ball_path(col, player)
        if ball_path is None:
            return False

        self._balls_remaining[player] -= 1
        self._used_columns.add(col)
        self._column_owners[col] = player

        if self._on_ball_dropped:
            self._on_ball_dropped(ball_path)
        self._notify_state_change()
        return True

    def complete_ball_drop(self, ball_path: BallPath) -> None:
        """Apply a path previously produced by :meth:`drop_ball` and pass the turn."""
        self._grid.apply_ball_path(ball_path)
        self._advance_turn()
        self._notify_state_change()

    def drop_ball_sync(self, col: int) -> bool:
        """Validate, drop and apply in one call."""
        error = self.validate_drop(col)
        if error:
            logger.debug("Rejected drop in column %d: %s", col, error)
            return False

        player = self._current_player
        _, ball_path = self._grid.drop_ball_with_path(col, player)
        if ball_path is None:
            return False

        self._balls_remaining[player] -= 1
        self._used_columns.add(col)
        self._column_owners[col] = player
        self._advance_turn()
        self._notify_state_change()
        return True

    def _advance_turn(self) -> None:
        if self.is_game_finished():
            self._finish()
        else:
            self._current_player = self._current_player.opponent()

    def _finish(self) -> None:
        self._state = GameState.FINISHED
        result = self.get_game_result()
        logger.info(
            "Game finished: P1=%d P2=%d winner=%s",
            result.player1_columns,
            result.player2_columns,
            result.winner.name if result.winner else "tie",
        )
        logger.debug("Final board:\n%s", self._grid.to_text())

    def is_game_finished(self) -> bool:
        return self._balls_remaining[Player.PLAYER1] == 0 and self._balls_remaining[Player.PLAYER2] == 0

    # ------------------------------------------------------------------
    # Hard mode: reservation and placement
    # ------------------------------------------------------------------

    def _dispatch_hard_mode(self, col: int) -> bool:
        if self._state is GameState.COLUMN_RESERVATION_PHASE:
            return self.reserve_column(col)
        if self._state is GameState.BALL_PLACEMENT_PHASE:
            return self.select_move(col)
        if self._state is GameState.BALL_RELEASE_PHASE:
            return self.release_ball_in_column(col)
        return False

    def can_reserve_column(self, col: int) -> bool:
        if self._state is not GameState.COLUMN_RESERVATION_PHASE:
            return False
        if self._grid.is_column_full(col):
            return False
        if col in self._column_reservation.reserved_column_owners:
            return False
        reserved = self._column_reservation.columns_for(self._current_player)
        return len(reserved) < self._config.balls_per_player

    def reserve_column(self, col: int) -> bool:
        if not self.can_reserve_column(col):
            return False

        reservation = self._column_reservation
        reservation.columns_for(self._current_player).append(col)
        reservation.reserved_column_owners[col] = self._current_player

        if len(reservation.reserved_column_owners) >= self._config.balls_per_player * 2:
            reservation.all_columns_reserved = True
            self._state = GameState.BALL_PLACEMENT_PHASE
            self._current_player = Player.PLAYER1
            self._move_selection.current_selection_player = Player.PLAYER1
            logger.debug("All columns reserved, entering %s", self._state.value)
        else:
            self._current_player = self._current_player.opponent()
            reservation.current_reservation_player = self._current_player

        self._notify_state_change()
        return True

    def can_select_move(self, col: int) -> bool:
        if self._state not in (GameState.BALL_PLACEMENT_PHASE, GameState.SELECTING_MOVES):
            return False
        if self._grid.is_column_full(col):
            return False
        if col in self._move_selection.column_owners:
            return False
        if self._config.reserve_columns and self._config.game_mode is GameMode.HARD_MODE:
            if self._column_reservation.reserved_column_owners.get(col) is not self._current_player:
                return False
        moves = self._move_selection.moves_for(self._current_player)
        return len(moves) < self._config.balls_per_player

    def select_move(self, col: int) -> bool:
        """Claim ``col`` for the current player.

        Player 1 makes all of their selections before player 2 starts. In Hard
        Mode the last selection drops every claimed ball as a dormant ball and
        opens the release phase.
        """
        if not self.can_select_move(col):
            return False

        selection = self._move_selection
        moves = selection.moves_for(self._current_player)
        moves.append(col)
        selection.column_owners[col] = self._current_player

        total = len(selection.player1_moves) + len(selection.player2_moves)
        if total >= self._config.balls_per_player * 2:
            selection.all_moves_selected = True
            self._current_player = Player.PLAYER1
            selection.current_selection_player = Player.PLAYER1
            if self._state is GameState.BALL_PLACEMENT_PHASE:
                self._place_dormant_balls()
                self._balls_remaining[Player.PLAYER1] = 0
                self._balls_remaining[Player.PLAYER2] = 0
                self._state = GameState.BALL_RELEASE_PHASE
                logger.debug("All balls placed, entering %s", self._state.value)
                if not self._ball_release_selection.dormant_balls:
                    self._finish()
                elif not self.get_dormant_balls_for_player(Player.PLAYER1):
                    self._current_player = Player.PLAYER2
                self._ball_release_selection.current_release_player = self._current_player
        elif len(moves) >= self._config.balls_per_player:
            self._current_player = self._current_player.opponent()
            selection.current_selection_player = self._current_player

        self._notify_state_change()
        return True

    def _place_dormant_balls(self) -> None:
        for player in (Player.PLAYER1, Player.PLAYER2):
            for col in self._move_selection.moves_for(player):
                _, ball_path = self._grid.calculate_ball_path(col, player)
                if ball_path is None:
                    logger.warning("Could not place dormant ball for %s in column %d", player.name, col)
                    continue
                self._grid.apply_ball_path(ball_path, is_dormant=True)

        registry = self._ball_release_selection.dormant_balls
        registry.clear()
        for ball in self._grid.get_dormant_balls():
            registry[ball.ball_id] = ball

    # ------------------------------------------------------------------
    # Hard mode: release
    # ------------------------------------------------------------------

    def _find_dormant_ball(self, row: int, col: int) -> DormantBall | None:
        for ball in self._ball_release_selection.dormant_balls.values():
            if ball.position.row == row and ball.position.col == col:
                return ball
        return None

    def can_release_ball(self, row: int, col: int) -> bool:
        if self._state is not GameState.BALL_RELEASE_PHASE:
            return False
        ball = self._find_dormant_ball(row, col)
        return ball is not None and ball.player is self._current_player

    def release_ball(self, row: int, col: int) -> bool:
        """Activate the current player's dormant ball at (row, col)."""
        if not self.can_release_ball(row, col):
            return False

        ball = self._find_dormant_ball(row, col)
        if not self._grid.activate_dormant_ball(ball.position):
            return False

        release = self._ball_release_selection
        del release.dormant_balls[ball.ball_id]
        release.released_for(ball.player).add(ball.ball_id)
        self._used_columns.add(col)
        self._column_owners[col] = ball.player

        if self._on_ball_dropped:
            self._on_ball_dropped(
                BallPath(
                    steps=(BallPathStep(position=ball.position, action="settle"),),
                    final_position=ball.position,
                    player=ball.player,
                    start_column=col,
                )
            )

        released = len(release.player1_released_balls) + len(release.player2_released_balls)
        if released >= self._config.balls_per_player * 2 or not release.dormant_balls:
            release.all_balls_released = True
            self._finish()
        else:
            next_player = self._current_player.opponent()
            if not self.get_dormant_balls_for_player(next_player):
                next_player = self._current_player
            self._current_player = next_player
            release.current_release_player = next_player

        self._notify_state_change()
        return True

    def release_ball_in_column(self, col: int) -> bool:
        """Release the current player's topmost dormant ball in ``col``."""
        candidates = [
            ball for ball in self.get_dormant_balls_for_player(self._current_player)
            if ball.position.col == col
        ]
        if not candidates:
            return False
        ball = min(candidates, key=lambda b: b.position.row)
        return self.release_ball(ball.position.row, ball.position.col)

    def complete_ball_release(self, ball_path: BallPath) -> None:
        """Acknowledge that the release of ``ball_path`` finished animating."""
        logger.debug("Release animation done for %s at column %d", ball_path.player.name, ball_path.start_column)
        self._notify_state_change()

    # ------------------------------------------------------------------
    # Simultaneous selection: batch execution
    # ------------------------------------------------------------------

    def can_execute_all_moves(self) -> bool:
        return self._state is GameState.SELECTING_MOVES and self._move_selection.all_moves_selected

    def _queued_moves(self) -> list[tuple[Player, int]]:
        return [
            (player, col)
            for player in (Player.PLAYER1, Player.PLAYER2)
            for col in self._move_selection.moves_for(player)
        ]

    def execute_all_moves(self) -> list[BallPath] | None:
        """Compute every queued move against the current board; apply later in one go."""
        if not self.can_execute_all_moves():
            return None
        ball_paths = []
        for player, col in self._queued_moves():
            _, ball_path = self._grid.calculate_ball_path(col, player)
            if ball_path is not None:
                ball_paths.append(ball_path)
        return self._start_execution(ball_paths, applied=False)

    def execute_moves_left_to_right(self) -> list[BallPath] | None:
        return self._execute_in_column_order(reverse=False)

    def execute_moves_right_to_left(self) -> list[BallPath] | None:
        return self._execute_in_column_order(reverse=True)

    def _execute_in_column_order(self, reverse: bool) -> list[BallPath] | None:
        # Each ball lands before the next is computed, so later balls see earlier flips.
        if not self.can_execute_all_moves():
            return None
        ball_paths = []
        for player, col in sorted(self._queued_moves(), key=lambda move: move[1], reverse=reverse):
            _, ball_path = self._grid.drop_ball_with_path(col, player)
            if ball_path is not None:
                ball_paths.append(ball_path)
        return self._start_execution(ball_paths, applied=True)

    def _start_execution(self, ball_paths: list[BallPath], applied: bool) -> list[BallPath]:
        self._state = GameState.EXECUTING_MOVES
        self._batch_applied = applied
        for player, col in self._queued_moves():
            self._used_columns.add(col)
            self._column_owners[col] = player
        self._balls_remaining[Player.PLAYER1] = 0
        self._balls_remaining[Player.PLAYER2] = 0

        if self._on_moves_executed:
            self._on_moves_executed(list(ball_paths))
        self._notify_state_change()
        return ball_paths

    def complete_moves_execution(self, ball_paths: list[BallPath]) -> None:
        if not self._batch_applied:
            for ball_path in ball_paths:
                self._grid.apply_ball_path(ball_path)
            self._batch_applied = True
        self._finish()
        self._notify_state_change()

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def get_current_score(self) -> tuple[int, int]:
        winners = self._grid.get_column_winners()
        return winners.count(Player.PLAYER1), winners.count(Player.PLAYER2)

    def get_game_result(self) -> GameResult:
        player1_columns, player2_columns = self.get_current_score()
        winner = None
        if player1_columns > player2_columns:
            winner = Player.PLAYER1
        elif player2_columns > player1_columns:
            winner = Player.PLAYER2
        return GameResult(
            winner=winner,
            player1_columns=player1_columns,
            player2_columns=player2_columns,
            is_tie=winner is None,
        )

    def can_drop_in_column(self, col: int) -> bool:
        if self._config.game_mode is GameMode.HARD_MODE:
            if self._state is GameState.COLUMN_RESERVATION_PHASE:
                return self.can_reserve_column(col)
            if self._state is GameState.BALL_PLACEMENT_PHASE:
                return self.can_select_move(col)
            if self._state is GameState.BALL_RELEASE_PHASE:
                return any(
                    ball.position.col == col
                    for ball in self.get_dormant_balls_for_player(self._current_player)
                )
            return False
        if self._state is GameState.SELECTING_MOVES:
            return self.can_select_move(col)
        return self.validate_drop(col) is None

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def grid(self) -> Grid:
        return self._grid

    @property
    def state(self) -> GameState:
        return self._state

    @property
    def current_player(self) -> Player:
        return self._current_player

    @property
    def config(self) -> GameConfig:
        return self._config

    @property
    def game_mode(self) -> GameMode:
        return self._config.game_mode

    def get_balls_remaining(self, player: Player) -> int:
        return self._balls_remaining[player]

    def get_move_selection(self) -> MoveSelection:
        return self._move_selection.copy()

    def get_ball_release_selection(self) -> BallReleaseSelection:
        return self._ball_release_selection.copy()

    def get_column_reservation(self) -> ColumnReservation:
        return self._column_reservation.copy()

    def get_selected_moves_count(self, player: Player) -> int:
        return len(self._move_selection.moves_for(player))

    def get_reserved_columns_count(self, player: Player) -> int:
        return len(self._column_reservation.columns_for(player))

    def get_reserved_columns_for_player(self, player: Player) -> list[int]:
        return list(self._column_reservation.columns_for(player))

    def get_dormant_balls_for_player(self, player: Player) -> list[DormantBall]:
        return [ball for ball in self._ball_release_selection.dormant_balls.values() if ball.player is player]

    def get_released_balls_count(self, player: Player) -> int:
        return len(self._ball_release_selection.released_for(player))

    def get_column_owners(self) -> dict[int, Player]:
        if self._config.game_mode is GameMode.HARD_MODE:
            return dict(self._move_selection.column_owners)
        return dict(self._column_owners)

    def get_used_columns(self) -> set[int]:
        return set(self._used_columns)

    # ------------------------------------------------------------------
    # Observers (one slot each; registering replaces the previous callback)
    # ------------------------------------------------------------------

    def on_state_change(self, callback: StateChangeCallback) -> None:
        self._on_state_change = callback

    def on_ball_dropped(self, callback: BallDroppedCallback) -> None:
        self._on_ball_dropped = callback

    def on_moves_executed(self, callback: MovesExecutedCallback) -> None:
        self._on_moves_executed = callback

    def _notify_state_change(self) -> None:
        if self._on_state_change:
            self._on_state_change(self)
