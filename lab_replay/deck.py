"""
Deck layouts
============
A layout names the deck positions a method works with. Programs never refer
to a deck location directly: instructions carry a *deck parameter* id, and the
layout bound to the running frame maps that id to a location label such as
``"C3"``.

Location labels follow the instrument's grid convention: a row letter
(A = front) followed by a 1-based column number. Labels that do not follow
the convention (``"Waste"``, ``"Gripper Park"``) are still valid locations,
they just have no grid coordinates.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple
import re

# ── Deck geometry ─────────────────────────────────────────────────────────────
# Grid used for display; labels outside it are accepted but flagged.
DECK_ROWS = 5    # A–E
DECK_COLS = 5    # 1–5

_LABEL_RE = re.compile(r"^([A-Za-z])(\d+)$")


def location_to_rowcol(label: str) -> Optional[Tuple[int, int]]:
    """Convert a grid label ("C3") to 1-based (row, col); None if not a grid label."""
    m = _LABEL_RE.match(label.strip())
    if not m:
        return None
    row = ord(m.group(1).upper()) - ord("A") + 1
    col = int(m.group(2))
    if col < 1:
        return None
    return row, col


def rowcol_to_location(row: int, col: int) -> str:
    """Inverse of location_to_rowcol: (3, 3) -> "C3"."""
    if row < 1 or row > 26 or col < 1:
        raise ValueError(f"Grid position ({row}, {col}) out of range")
    return f"{chr(ord('A') + row - 1)}{col}"


def on_deck_grid(label: str) -> bool:
    rc = location_to_rowcol(label)
    if rc is None:
        return False
    row, col = rc
    return 1 <= row <= DECK_ROWS and 1 <= col <= DECK_COLS


@dataclass(frozen=True)
class Layout:
    """A named set of deck positions: position id -> location label."""
    layout_id: str
    designation: str = "Untitled Layout"
    positions: Dict[str, str] = field(default_factory=dict)

    def position(self, position_id: str) -> Optional[str]:
        return self.positions.get(position_id)

    def __len__(self) -> int:
        return len(self.positions)

    def to_dict(self) -> dict:
        grid = []
        for position_id, label in self.positions.items():
            rc = location_to_rowcol(label)
            grid.append({
                "position_id": position_id,
                "location": label,
                "row": rc[0] if rc else None,
                "col": rc[1] if rc else None,
                "on_grid": on_deck_grid(label),
            })
        return {
            "layout_id": self.layout_id,
            "designation": self.designation,
            "deck_rows": DECK_ROWS,
            "deck_cols": DECK_COLS,
            "positions": grid,
        }
