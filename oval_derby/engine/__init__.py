"""
Race engine package for the multi-lap oval simulation.

The package is split into rules, data models, track geometry, event and
balancing kernels, and the per-horse competitor. The race controller
composes these pieces and is what a host (CLI, UI, tests) drives.
"""

from .balancing import BalancingEngine  # noqa: F401
from .competitor import Competitor, roll_skills  # noqa: F401
from .data_models import (  # noqa: F401
    NO_EVENT,
    ActiveEvent,
    EventKind,
    FieldSnapshot,
    LapFactor,
    NoEvent,
    RaceCourse,
    RacePhase,
    RNGContainer,
    SkillProfile,
)
from .geometry import OvalTrack, TrackPosition  # noqa: F401
from .rules import BalanceRules, EventRules, RaceRules, SkillRules, load_rules, ruleset_names  # noqa: F401
from .telemetry import TelemetryCollector, TelemetryFrame, TelemetryRacerFrame  # noqa: F401
from .race_loop import CompetitorSnapshot, FinishResult, RaceController, RaceSnapshot  # noqa: F401

__all__ = [
    "BalancingEngine",
    "Competitor",
    "roll_skills",
    "NO_EVENT",
    "ActiveEvent",
    "EventKind",
    "FieldSnapshot",
    "LapFactor",
    "NoEvent",
    "RaceCourse",
    "RacePhase",
    "RNGContainer",
    "SkillProfile",
    "OvalTrack",
    "TrackPosition",
    "BalanceRules",
    "EventRules",
    "RaceRules",
    "SkillRules",
    "load_rules",
    "ruleset_names",
    "TelemetryCollector",
    "TelemetryFrame",
    "TelemetryRacerFrame",
    "CompetitorSnapshot",
    "FinishResult",
    "RaceController",
    "RaceSnapshot",
]
