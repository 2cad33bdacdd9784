"""
Affine Transforms
=================
PDF transformation matrices as plain 6-tuples (a, b, c, d, e, f),
composed in PDF's row-vector convention.
"""

from __future__ import annotations

from typing import Sequence

Matrix = tuple[float, float, float, float, float, float]

IDENTITY: Matrix = (1.0, 0.0, 0.0, 1.0, 0.0, 0.0)


def to_matrix(values: Sequence[float]) -> Matrix:
    """Coerce six numeric values into a Matrix."""
    if len(values) != 6:
        raise ValueError(f"Transform needs 6 values, got {len(values)}")
    a, b, c, d, e, f = (float(v) for v in values)
    return (a, b, c, d, e, f)


def compose(current: Matrix, incoming: Matrix) -> Matrix:
    """Apply `incoming` inside the coordinate system of `current`."""
    a1, b1, c1, d1, e1, f1 = current
    a2, b2, c2, d2, e2, f2 = incoming
    return (
        a1 * a2 + c1 * b2,
        b1 * a2 + d1 * b2,
        a1 * c2 + c1 * d2,
        b1 * c2 + d1 * d2,
        a1 * e2 + c1 * f2 + e1,
        b1 * e2 + d1 * f2 + f1,
    )


def origin(matrix: Matrix) -> tuple[float, float]:
    """Translation components, i.e. where (0, 0) lands on the page."""
    return matrix[4], matrix[5]


class TransformStack:
    """Current transform plus the save/restore stack of one page."""

    def __init__(self):
        self.current: Matrix = IDENTITY
        self._saved: list[Matrix] = []

    @property
    def depth(self) -> int:
        return len(self._saved)

    def save(self):
        self._saved.append(self.current)

    def restore(self):
        # Unbalanced restore falls back to identity
        self.current = self._saved.pop() if self._saved else IDENTITY

    def apply(self, incoming: Matrix):
        self.current = compose(self.current, incoming)
