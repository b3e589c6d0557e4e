from __future__ import annotations

import random
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Tuple, Union

from .geometry import OvalTrack

if TYPE_CHECKING:
    from .competitor import Competitor


class RacePhase(Enum):
    """Race controller lifecycle."""

    IDLE = "idle"
    COUNTDOWN = "countdown"
    RUNNING = "running"
    COMPLETE = "complete"

    @classmethod
    def from_str(cls, value: str) -> "RacePhase":
        try:
            return cls(value.lower())
        except ValueError as exc:
            raise ValueError(f"Unknown race phase: {value}") from exc


class EventKind(Enum):
    BURST = "burst of speed"
    SLOWDOWN = "slight slowdown"
    MOMENTUM_SHIFT = "momentum shift"
    COMEBACK = "comeback effort"


@dataclass(frozen=True)
class NoEvent:
    multiplier: float = 1.0

    @property
    def kind(self) -> None:
        return None


@dataclass(frozen=True)
class ActiveEvent:
    kind: EventKind
    multiplier: float
    remaining_ms: float


NO_EVENT = NoEvent()
RaceEvent = Union[NoEvent, ActiveEvent]


@dataclass(frozen=True)
class LapFactor:
    speed_boost: float = 0.0
    stamina_boost: float = 0.0


@dataclass(frozen=True)
class SkillProfile:
    """Skills rolled for one race. Speed, stamina and acceleration must be positive."""

    base_speed: float
    stamina: float
    acceleration: float
    luck_factor: float
    lap_factors: Sequence[LapFactor] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.base_speed <= 0.0:
            raise ValueError("base_speed must be > 0.0.")
        if self.stamina <= 0.0:
            raise ValueError("stamina must be > 0.0.")
        if self.acceleration <= 0.0:
            raise ValueError("acceleration must be > 0.0.")
        if self.luck_factor < 0.0:
            raise ValueError("luck_factor must be >= 0.0.")

    def lap_factor(self, lap: int) -> LapFactor:
        """Factor for a 1-based lap; laps without a roll are neutral."""
        index = lap - 1
        if 0 <= index < len(self.lap_factors):
            return self.lap_factors[index]
        return LapFactor()

    @property
    def traits(self) -> Tuple[str, ...]:
        traits: List[str] = []
        if self.base_speed > 2.8:
            traits.append("Fast")
        if self.stamina > 1.0:
            traits.append("Endurance")
        if self.acceleration > 0.5:
            traits.append("Quick Starter")
        if not traits:
            traits.append("Balanced")
        return tuple(traits)


@dataclass(frozen=True)
class RaceCourse:
    """The track plus the number of laps being run on it."""

    track: OvalTrack
    total_laps: int

    def __post_init__(self) -> None:
        if self.total_laps < 1:
            raise ValueError("total_laps must be >= 1.")

    @property
    def lap_length(self) -> float:
        return self.track.lap_length

    @property
    def total_distance(self) -> float:
        return self.track.lap_length * self.total_laps

    def lap_for(self, distance: float) -> int:
        return min(self.total_laps, int(distance // self.lap_length) + 1)


@dataclass(frozen=True)
class FieldEntry:
    competitor: "Competitor"
    distance: float


@dataclass(frozen=True)
class FieldSnapshot:
    """
    Ranking of the still-racing field captured once at the start of a tick.
    Balancing reads these distances, never the live ones, so the order in
    which competitors are ticked cannot change anybody's rank.
    """

    entries: Tuple[FieldEntry, ...] = ()
    _ranks: Dict[int, int] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def capture(cls, competitors: Sequence["Competitor"]) -> "FieldSnapshot":
        active = [c for c in competitors if not c.finished]
        active.sort(key=lambda c: (-c.distance, c.lane))
        entries = tuple(FieldEntry(competitor=c, distance=c.distance) for c in active)
        ranks = {id(entry.competitor): idx for idx, entry in enumerate(entries)}
        return cls(entries=entries, _ranks=ranks)

    def __len__(self) -> int:
        return len(self.entries)

    def rank_of(self, competitor: "Competitor") -> Optional[int]:
        """0-based rank, or None when the competitor is not in the snapshot."""
        return self._ranks.get(id(competitor))

    def distance_at(self, rank: int) -> float:
        return self.entries[rank].distance

    @property
    def leader_distance(self) -> float:
        return self.entries[0].distance if self.entries else 0.0


@dataclass(frozen=True)
class BalanceResult:
    catch_up: float = 0.0
    lead_handicap: float = 0.0
    momentum_delta: float = 0.0


NEUTRAL_BALANCE = BalanceResult()


@dataclass
class RNGContainer:
    """Seeded RNGs for one horse: skill rolls and in-race draws stay independent."""

    skill_seed: int
    race_seed: int

    skill_rng: Optional[random.Random] = field(init=False, default=None)
    race_rng: Optional[random.Random] = field(init=False, default=None)

    def __post_init__(self) -> None:
        self.skill_rng = random.Random(self.skill_seed)
        self.race_rng = random.Random(self.race_seed)

    @classmethod
    def derive(cls, source: random.Random) -> "RNGContainer":
        return cls(skill_seed=source.getrandbits(64), race_seed=source.getrandbits(64))
