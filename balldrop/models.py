"""Shared types: enums, the board cell sum type, and pydantic records."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Player(Enum):
    PLAYER1 = 1
    PLAYER2 = 2

    def opponent(self) -> Player:
        return Player.PLAYER2 if self is Player.PLAYER1 else Player.PLAYER1


class Direction(str, Enum):
    LEFT = "LEFT"
    RIGHT = "RIGHT"

    def flipped(self) -> Direction:
        return Direction.RIGHT if self is Direction.LEFT else Direction.LEFT

    @property
    def offset(self) -> int:
        """Column delta a ball is pushed by a box pointing this way."""
        return -1 if self is Direction.LEFT else 1


class CellType(str, Enum):
    EMPTY = "EMPTY"
    BOX = "BOX"
    BALL_P1 = "BALL_P1"
    BALL_P2 = "BALL_P2"
    DORMANT_BALL_P1 = "DORMANT_BALL_P1"
    DORMANT_BALL_P2 = "DORMANT_BALL_P2"
    PORTAL_1 = "PORTAL_1"
    PORTAL_2 = "PORTAL_2"


class GameMode(str, Enum):
    NORMAL = "NORMAL"
    HARD_MODE = "HARD_MODE"


class GameState(str, Enum):
    SETUP = "SETUP"
    PLAYING = "PLAYING"
    COLUMN_RESERVATION_PHASE = "COLUMN_RESERVATION_PHASE"
    BALL_PLACEMENT_PHASE = "BALL_PLACEMENT_PHASE"
    BALL_RELEASE_PHASE = "BALL_RELEASE_PHASE"
    SELECTING_MOVES = "SELECTING_MOVES"
    EXECUTING_MOVES = "EXECUTING_MOVES"
    FINISHED = "FINISHED"


ACTIVE_BALL_TYPES = {
    Player.PLAYER1: CellType.BALL_P1,
    Player.PLAYER2: CellType.BALL_P2,
}
DORMANT_BALL_TYPES = {
    Player.PLAYER1: CellType.DORMANT_BALL_P1,
    Player.PLAYER2: CellType.DORMANT_BALL_P2,
}
PORTAL_TYPES = (CellType.PORTAL_1, CellType.PORTAL_2)


# ---------------------------------------------------------------------------
# Board cell
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Cell:
    """One board square. ``direction`` is set for boxes, ``player`` for balls."""

    type: CellType = CellType.EMPTY
    direction: Direction | None = None
    player: Player | None = None

    @classmethod
    def empty(cls) -> Cell:
        return cls()

    @classmethod
    def box(cls, direction: Direction) -> Cell:
        return cls(CellType.BOX, direction=direction)

    @classmethod
    def ball(cls, player: Player, dormant: bool = False) -> Cell:
        types = DORMANT_BALL_TYPES if dormant else ACTIVE_BALL_TYPES
        return cls(types[player], player=player)

    @classmethod
    def portal(cls, cell_type: CellType) -> Cell:
        if cell_type not in PORTAL_TYPES:
            raise ValueError(f"Not a portal type: {cell_type}")
        return cls(cell_type)

    @property
    def is_empty(self) -> bool:
        return self.type is CellType.EMPTY

    @property
    def is_box(self) -> bool:
        return self.type is CellType.BOX

    @property
    def is_portal(self) -> bool:
        return self.type in PORTAL_TYPES

    @property
    def is_active_ball(self) -> bool:
        return self.type in (CellType.BALL_P1, CellType.BALL_P2)

    @property
    def is_dormant_ball(self) -> bool:
        return self.type in (CellType.DORMANT_BALL_P1, CellType.DORMANT_BALL_P2)

    @property
    def is_ball(self) -> bool:
        return self.is_active_ball or self.is_dormant_ball

    def flipped(self) -> Cell:
        """Return the same box pointing the other way."""
        if self.direction is None:
            raise ValueError("Only boxes can be flipped")
        return Cell.box(self.direction.flipped())


# ---------------------------------------------------------------------------
# Records handed across the engine boundary
# ---------------------------------------------------------------------------

class Position(BaseModel):
    model_config = ConfigDict(frozen=True)

    row: int
    col: int


StepAction = Literal["fall", "redirect", "settle"]


class BallPathStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    position: Position
    action: StepAction
    hit_box: bool = False
    box_position: Position | None = None
    box_direction: Direction | None = None
    new_box_direction: Direction | None = None


class BallPath(BaseModel):
    """A ball's full journey from its entry cell to where it settles."""

    model_config = ConfigDict(frozen=True)

    steps: tuple[BallPathStep, ...]
    final_position: Position
    player: Player
    start_column: int

    @model_validator(mode="after")
    def _check_settle(self) -> BallPath:
        if not self.steps:
            raise ValueError("a ball path needs at least one step")
        settles = [step for step in self.steps if step.action == "settle"]
        if len(settles) != 1 or self.steps[-1].action != "settle":
            raise ValueError("a ball path must end with exactly one settle step")
        if self.steps[-1].position != self.final_position:
            raise ValueError("settle step must be at the final position")
        return self

    @property
    def box_hits(self) -> list[BallPathStep]:
        return [step for step in self.steps if step.action == "redirect" and step.hit_box]


class DormantBall(BaseModel):
    model_config = ConfigDict(frozen=True)

    position: Position
    player: Player
    ball_id: str


class GameResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    winner: Player | None
    player1_columns: int
    player2_columns: int
    is_tie: bool


class GameConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    grid_size: int = Field(default=20, ge=3)
    balls_per_player: int = Field(default=10, ge=1)
    min_boxes: int = Field(default=15, ge=0)
    max_boxes: int = Field(default=30, ge=0)
    game_mode: GameMode = GameMode.NORMAL
    reserve_columns: bool = False

    @model_validator(mode="after")
    def _check_ranges(self) -> GameConfig:
        if self.max_boxes < self.min_boxes:
            raise ValueError("max_boxes must be >= min_boxes")
        # Every column takes at most one ball per game.
        if self.balls_per_player * 2 > self.grid_size:
            raise ValueError("balls_per_player * 2 must not exceed grid_size")
        return self
