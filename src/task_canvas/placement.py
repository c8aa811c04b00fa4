"""Automatic canvas placement for tasks created without a position."""

from __future__ import annotations

import math

from .models import Position

GOLDEN_ANGLE = math.pi * (3 - math.sqrt(5))
BASE_RADIUS = 200
RADIUS_STEP = 48
MAX_RADIUS = 5000


def plan_spiral_position(existing_count: int) -> Position:
    """Return the next point on a golden-angle spiral around the origin."""
    if existing_count <= 0:
        return Position(0, 0)
    angle = existing_count * GOLDEN_ANGLE
    radius = min(MAX_RADIUS, BASE_RADIUS + math.sqrt(existing_count) * RADIUS_STEP)
    return Position(round(math.cos(angle) * radius), round(math.sin(angle) * radius))
