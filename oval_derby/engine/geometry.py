from __future__ import annotations

import math
from dataclasses import dataclass
from typing import NamedTuple, Tuple

import numpy as np

# Fraction of the viewport the drawn track occupies.
TRACK_WIDTH_RATIO = 0.85
TRACK_HEIGHT_RATIO = 0.75
# Racing line sits 1/55 of the track size inside the outer rail.
RAIL_INSET_RATIO = 1.0 / 55.0
# Lane spacing is 1/300 of the smaller track dimension.
LANE_WIDTH_RATIO = 1.0 / 300.0
LANE_SEPARATION = 0.1


class TrackPosition(NamedTuple):
    x: float
    y: float
    heading: float


def ellipse_circumference(a: float, b: float) -> float:
    """Quadratic-mean approximation 2*pi*sqrt((a^2 + b^2) / 2)."""
    return 2.0 * math.pi * math.sqrt((a * a + b * b) / 2.0)


@dataclass(frozen=True)
class OvalTrack:
    """Elliptical racing line mapping distance-along-track to world space."""

    center_x: float
    center_y: float
    radius_x: float
    radius_y: float
    inset_x: float = 0.0
    inset_y: float = 0.0
    lap_length: float = 0.0

    def __post_init__(self) -> None:
        if self.radius_x <= 0 or self.radius_y <= 0:
            raise ValueError("Track radii must be positive")
        if self.inset_x < 0 or self.inset_y < 0:
            raise ValueError("Track inset must be non-negative")
        if self.inset_x >= self.radius_x or self.inset_y >= self.radius_y:
            raise ValueError("Track inset must be smaller than the radii")
        if self.lap_length <= 0:
            object.__setattr__(self, "lap_length", ellipse_circumference(self.radius_x, self.radius_y))

    @classmethod
    def for_viewport(cls, width: float, height: float, lap_length: float = 0.0) -> "OvalTrack":
        """Fits the oval to a viewport the way the race screen lays it out."""
        if width <= 0 or height <= 0:
            raise ValueError("Viewport dimensions must be positive")
        track_width = width * TRACK_WIDTH_RATIO
        track_height = height * TRACK_HEIGHT_RATIO
        return cls(
            center_x=width / 2.0,
            center_y=height / 2.0,
            radius_x=track_width / 2.0,
            radius_y=track_height / 2.0,
            inset_x=track_width * RAIL_INSET_RATIO,
            inset_y=track_height * RAIL_INSET_RATIO,
            lap_length=lap_length,
        )

    @property
    def base_radius_x(self) -> float:
        return self.radius_x - self.inset_x

    @property
    def base_radius_y(self) -> float:
        return self.radius_y - self.inset_y

    @property
    def max_lane_offset(self) -> float:
        return min(self.base_radius_x, self.base_radius_y)

    @property
    def lane_width(self) -> float:
        return min(self.radius_x, self.radius_y) * 2.0 * LANE_WIDTH_RATIO

    @property
    def speed_scale(self) -> float:
        """Bigger tracks cover ground faster so lap times stay comparable."""
        return max(0.7, min(self.radius_x, self.radius_y) * 2.0 / 400.0)

    def position_at(self, distance: float, lane_offset: float = 0.0) -> TrackPosition:
        """Returns the world coordinate and travel heading at a distance."""
        if lane_offset > self.max_lane_offset:
            raise ValueError(
                f"Lane offset {lane_offset:.3f} exceeds the track's inner radius {self.max_lane_offset:.3f}"
            )
        t = (distance % self.lap_length) / self.lap_length
        angle = t * 2.0 * math.pi
        rx = self.base_radius_x - lane_offset
        ry = self.base_radius_y - lane_offset

        x = self.center_x + rx * math.cos(angle)
        y = self.center_y + ry * math.sin(angle)
        heading = math.atan2(-ry * math.sin(angle), -rx * math.cos(angle))
        return TrackPosition(x, y, heading)

    def lap_fraction(self, distance: float) -> float:
        return (distance % self.lap_length) / self.lap_length

    def lane_offset(self, lane: int, field_size: int) -> float:
        """
        Offset of a lane from the racing line. Every horse follows a lane
        near the middle of the field, fanned out by a tenth of a lane width.
        """
        if field_size < 1 or not 0 <= lane < field_size:
            raise ValueError(f"Lane {lane} is outside a field of {field_size}")
        reference = field_size // 2 - 1
        width = self.lane_width
        offset = (field_size - 1 - reference) * width
        offset += (lane - reference) * width * LANE_SEPARATION
        return min(max(offset, 0.0), self.max_lane_offset)

    def sample_evenly(self, count: int, lane_offset: float = 0.0) -> np.ndarray:
        """Returns `count` (x, y) points spread evenly over one lap."""
        if count < 2:
            raise ValueError("Sample count must be at least 2")
        angles = np.linspace(0.0, 2.0 * np.pi, count, endpoint=False)
        rx = self.base_radius_x - lane_offset
        ry = self.base_radius_y - lane_offset
        return np.column_stack((self.center_x + rx * np.cos(angles), self.center_y + ry * np.sin(angles)))

    def boundaries(self) -> Tuple[Tuple[float, float], Tuple[float, float]]:
        """Outer and inner rail semi-axes; the inner rail sits 10% of the track size in."""
        outer = (self.radius_x, self.radius_y)
        inner = (self.radius_x - self.radius_x * 0.2, self.radius_y - self.radius_y * 0.2)
        return outer, inner
