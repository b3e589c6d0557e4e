from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple


@dataclass
class TelemetryRacerFrame:
    lane: int
    name: str
    world_position: Tuple[float, float]
    distance: float
    distance_delta: float
    speed: float
    target_speed: float
    stamina_factor: float
    catch_up: float
    lead_handicap: float
    momentum: float
    event: Optional[str]
    lap: int
    finished: bool
    debug: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TelemetryFrame:
    tick: int
    time: float
    phase: str
    leader_lap: int
    racers: List[TelemetryRacerFrame] = field(default_factory=list)

    def racer(self, lane: int) -> Optional[TelemetryRacerFrame]:
        for racer in self.racers:
            if racer.lane == lane:
                return racer
        return None


class TelemetryCollector:
    """Keeps every running tick of a race for replay and balance tuning."""

    def __init__(self) -> None:
        self.frames: List[TelemetryFrame] = []

    def record_frame(self, frame: TelemetryFrame) -> None:
        self.frames.append(frame)

    def export(self) -> Sequence[TelemetryFrame]:
        return tuple(self.frames)

    def series(self, lane: int, attribute: str) -> List[Tuple[float, Any]]:
        """(race time, value) pairs of one racer attribute, e.g. ``series(3, "catch_up")``."""
        points = []
        for frame in self.frames:
            racer = frame.racer(lane)
            if racer is not None:
                points.append((frame.time, getattr(racer, attribute)))
        return points

    def as_dicts(self) -> List[Dict[str, Any]]:
        """Plain dicts, ready for json.dump."""
        return [asdict(frame) for frame in self.frames]

    def clear(self) -> None:
        self.frames.clear()
