"""Board state and ball physics: layout, path simulation, and scoring queries."""

from __future__ import annotations

import logging
import random

from balldrop.models import (
    PORTAL_TYPES,
    BallPath,
    BallPathStep,
    Cell,
    CellType,
    Direction,
    DormantBall,
    Player,
    Position,
)

logger = logging.getLogger(__name__)

DEFAULT_GRID_SIZE = 20
PORTAL_PAIRS = 2

_TEXT_SYMBOLS = {
    CellType.EMPTY: ".",
    CellType.BALL_P1: "1",
    CellType.BALL_P2: "2",
    CellType.DORMANT_BALL_P1: "a",
    CellType.DORMANT_BALL_P2: "b",
    CellType.PORTAL_1: "P",
    CellType.PORTAL_2: "Q",
}


class Grid:
    def __init__(self, size: int = DEFAULT_GRID_SIZE, rng: random.Random | None = None):
        self._size = size
        self._rng = rng or random.Random()
        self._cells: list[list[Cell]] = [[Cell.empty() for _ in range(size)] for _ in range(size)]

    @property
    def size(self) -> int:
        return self._size

    @property
    def cells(self) -> list[list[Cell]]:
        return self._cells

    def get_cells(self) -> list[list[Cell]]:
        """Return a row-by-row copy of the board."""
        return [row[:] for row in self._cells]

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def is_valid_position(self, row: int, col: int) -> bool:
        return 0 <= row < self._size and 0 <= col < self._size

    def get_cell(self, row: int, col: int) -> Cell | None:
        if not self.is_valid_position(row, col):
            return None
        return self._cells[row][col]

    def set_cell(self, row: int, col: int, cell: Cell) -> bool:
        if not self.is_valid_position(row, col):
            return False
        self._cells[row][col] = cell
        return True

    def clear_grid(self) -> None:
        for row in range(self._size):
            for col in range(self._size):
                self._cells[row][col] = Cell.empty()

    def is_column_full(self, col: int) -> bool:
        if not self.is_valid_position(0, col):
            return True
        return not self._cells[0][col].is_empty

    def is_dormant_ball(self, row: int, col: int) -> bool:
        cell = self.get_cell(row, col)
        return cell is not None and cell.is_dormant_ball

    def count_cells(self, cell_type: CellType) -> int:
        return sum(1 for row in self._cells for cell in row if cell.type is cell_type)

    # ------------------------------------------------------------------
    # Random layout
    # ------------------------------------------------------------------

    def _interior_positions(self) -> list[Position]:
        # Row 0 and the bottom row are reserved for balls.
        return [
            Position(row=row, col=col)
            for row in range(1, self._size - 1)
            for col in range(self._size)
        ]

    def _shuffle(self, positions: list[Position]) -> None:
        # Fisher-Yates
        for i in range(len(positions) - 1, 0, -1):
            j = self._rng.randint(0, i)
            positions[i], positions[j] = positions[j], positions[i]

    def place_random_boxes(self, min_boxes: int, max_boxes: int) -> None:
        """Clear the board, scatter ``min_boxes..max_boxes`` boxes, then add portals."""
        self.clear_grid()
        num_boxes = self._rng.randint(min_boxes, max_boxes)
        positions = self._interior_positions()
        self._shuffle(positions)

        for pos in positions[:num_boxes]:
            direction = Direction.LEFT if self._rng.random() < 0.5 else Direction.RIGHT
            self.set_cell(pos.row, pos.col, Cell.box(direction))

        self.place_portal_blocks()
        logger.debug(
            "Placed %d boxes and %d portal cells on %dx%d grid",
            min(num_boxes, len(positions)),
            self.count_cells(CellType.PORTAL_1) + self.count_cells(CellType.PORTAL_2),
            self._size,
            self._size,
        )

    def place_portal_blocks(self) -> None:
        """Place two portal pairs on free interior cells, or none if fewer than four are free."""
        free = [pos for pos in self._interior_positions() if self._cells[pos.row][pos.col].is_empty]
        if len(free) < PORTAL_PAIRS * 2:
            return
        self._shuffle(free)
        for pair, portal_type in enumerate(PORTAL_TYPES):
            for pos in free[pair * 2: pair * 2 + 2]:
                self.set_cell(pos.row, pos.col, Cell.portal(portal_type))

    def find_portal_partner(self, position: Position) -> Position | None:
        """Return the other cell of the portal pair at ``position``."""
        cell = self.get_cell(position.row, position.col)
        if cell is None or not cell.is_portal:
            return None
        for row in range(self._size):
            for col in range(self._size):
                if (row, col) == (position.row, position.col):
                    continue
                if self._cells[row][col].type is cell.type:
                    return Position(row=row, col=col)
        return None

    # ------------------------------------------------------------------
    # Ball physics
    # ------------------------------------------------------------------

    def calculate_ball_path(self, col: int, player: Player) -> tuple[Position | None, BallPath | None]:
        """Simulate a drop into ``col`` without touching the board.

        Box flips the ball causes are described on the redirect steps and only
        take effect in :meth:`apply_ball_path`. Returns ``(None, None)`` for an
        invalid or full column.
        """
        if self.is_column_full(col):
            return None, None

        row = 0
        while row < self._size and not self._cells[row][col].is_empty:
            row += 1
        if row >= self._size:
            return None, None

        steps: list[BallPathStep] = [BallPathStep(position=Position(row=row, col=col), action="fall")]
        # Directions of boxes this ball has already flipped on its way down.
        flipped: dict[tuple[int, int], Direction] = {}
        used_portals: set[CellType] = set()
        max_iterations = 4 * self._size * self._size

        for _ in range(max_iterations):
            next_row = row + 1
            if next_row >= self._size:
                break

            below = self._cells[next_row][col]

            if below.is_empty:
                row = next_row
                steps.append(BallPathStep(position=Position(row=row, col=col), action="fall"))
                continue

            if below.is_box:
                original = flipped.get((next_row, col), below.direction)
                new_direction = original.flipped()
                flipped[(next_row, col)] = new_direction
                steps.append(
                    BallPathStep(
                        position=Position(row=row, col=col),
                        action="redirect",
                        hit_box=True,
                        box_position=Position(row=next_row, col=col),
                        box_direction=original,
                        new_box_direction=new_direction,
                    )
                )
                new_col = col + original.offset
                target = self.get_cell(row, new_col)
                if target is not None and target.is_empty:
                    col = new_col
                    steps.append(BallPathStep(position=Position(row=row, col=col), action="fall"))
                    continue
                # Stuck: blocked or pushed off the board.
                break

            if below.is_portal:
                if below.type in used_portals:
                    break
                partner = self.find_portal_partner(Position(row=next_row, col=col))
                if partner is None:
                    break
                steps.append(BallPathStep(position=Position(row=row, col=col), action="redirect"))
                dest = self.get_cell(partner.row - 1, partner.col)
                if dest is None or not dest.is_empty:
                    break
                used_portals.add(below.type)
                row, col = partner.row - 1, partner.col
                steps.append(BallPathStep(position=Position(row=row, col=col), action="fall"))
                continue

            # Any ball, active or dormant.
            break
        else:
            logger.warning("Ball path from column %d hit the step limit at (%d, %d)", steps[0].position.col, row, col)

        final_position = Position(row=row, col=col)
        steps.append(BallPathStep(position=final_position, action="settle"))
        ball_path = BallPath(
            steps=tuple(steps),
            final_position=final_position,
            player=player,
            start_column=steps[0].position.col,
        )
        logger.debug(
            "Path for %s from column %d settles at (%d, %d) after %d steps",
            player.name, ball_path.start_column, row, col, len(steps),
        )
        return final_position, ball_path

    def apply_ball_path(self, ball_path: BallPath, is_dormant: bool = False) -> bool:
        """Commit a calculated path: flip the boxes it hit and write the ball.

        Not idempotent; call exactly once per real drop. Dormant placements do
        not flip boxes.
        """
        if not is_dormant:
            for step in ball_path.box_hits:
                box_pos = step.box_position
                cell = self.get_cell(box_pos.row, box_pos.col)
                if cell is None or not cell.is_box:
                    logger.warning("No box at (%d, %d) to flip while applying path", box_pos.row, box_pos.col)
                    continue
                if cell.direction is not step.box_direction:
                    logger.warning("Box at (%d, %d) changed since the path was calculated", box_pos.row, box_pos.col)
                self.set_cell(box_pos.row, box_pos.col, cell.flipped())

        final = ball_path.final_position
        return self.set_cell(final.row, final.col, Cell.ball(ball_path.player, dormant=is_dormant))

    def drop_ball_with_path(self, col: int, player: Player) -> tuple[Position | None, BallPath | None]:
        final_position, ball_path = self.calculate_ball_path(col, player)
        if ball_path is not None:
            self.apply_ball_path(ball_path)
        return final_position, ball_path

    def drop_ball(self, col: int, player: Player) -> Position | None:
        final_position, _ = self.drop_ball_with_path(col, player)
        return final_position

    # ------------------------------------------------------------------
    # Dormant balls
    # ------------------------------------------------------------------

    def get_dormant_balls(self) -> list[DormantBall]:
        """Scan the board for dormant balls, numbering them per player top-down."""
        balls: list[DormantBall] = []
        counters = {Player.PLAYER1: 0, Player.PLAYER2: 0}
        for row in range(self._size):
            for col in range(self._size):
                cell = self._cells[row][col]
                if not cell.is_dormant_ball:
                    continue
                player = cell.player
                balls.append(
                    DormantBall(
                        position=Position(row=row, col=col),
                        player=player,
                        ball_id=f"p{player.value}-{counters[player]}",
                    )
                )
                counters[player] += 1
        return balls

    def activate_dormant_ball(self, position: Position) -> bool:
        """Turn a dormant ball active and flip the box directly beneath it, if any."""
        cell = self.get_cell(position.row, position.col)
        if cell is None or not cell.is_dormant_ball:
            return False
        self.set_cell(position.row, position.col, Cell.ball(cell.player))
        below = self.get_cell(position.row + 1, position.col)
        if below is not None and below.is_box:
            self.set_cell(position.row + 1, position.col, below.flipped())
        return True

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def get_column_winner(self, col: int) -> Player | None:
        """Owner of the active ball in the bottom cell of ``col``; nothing else counts."""
        cell = self.get_cell(self._size - 1, col)
        if cell is None or not cell.is_active_ball:
            return None
        return cell.player

    def get_column_winners(self) -> list[Player | None]:
        return [self.get_column_winner(col) for col in range(self._size)]

    def to_text(self) -> str:
        lines = []
        for row in self._cells:
            symbols = []
            for cell in row:
                if cell.is_box:
                    symbols.append("<" if cell.direction is Direction.LEFT else ">")
                else:
                    symbols.append(_TEXT_SYMBOLS[cell.type])
            lines.append("".join(symbols))
        return "\n".join(lines)
