from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Optional, Tuple

from oval_derby.config import BALANCE_CONFIG, ConfigError, get_config

DEFAULT_RULESET = "classic"
RULESET_ENV = "OVAL_DERBY_RULESET"
FINISH_MODES = ("crossing", "tolerance_band")

Range = Tuple[float, float]


def _check_range(owner: str, name: str, value: Range) -> None:
    if len(value) != 2:
        raise ConfigError(f"{owner}.{name} must be a [low, high] pair, got {value!r}")
    low, high = value
    if low < 0 or high < 0:
        raise ConfigError(f"{owner}.{name} must be non-negative, got {value!r}")
    if low > high:
        raise ConfigError(f"{owner}.{name} is an empty range, got {value!r}")


def _check_non_negative(owner: str, name: str, value: float) -> None:
    if value < 0:
        raise ConfigError(f"{owner}.{name} must be >= 0, got {value!r}")


def _check_positive(owner: str, name: str, value: float) -> None:
    if value <= 0:
        raise ConfigError(f"{owner}.{name} must be > 0, got {value!r}")


def _check_probability(owner: str, name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ConfigError(f"{owner}.{name} must be within [0, 1], got {value!r}")


def _validate_fields(instance: Any, owner: str) -> None:
    """Ranges must be non-empty and non-negative, scalars non-negative."""
    for f in fields(instance):
        value = getattr(instance, f.name)
        if isinstance(value, tuple):
            _check_range(owner, f.name, value)
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            _check_non_negative(owner, f.name, value)


@dataclass(frozen=True)
class SkillRules:
    """How a horse's skill points are rolled before each race."""

    total_skill_points: float = 3.75
    skill_variance: float = 0.3
    speed_weight: Range = (0.7, 1.3)
    stamina_weight: Range = (0.6, 1.4)
    acceleration_weight: Range = (0.6, 1.4)
    speed_scale: float = 2.5
    speed_base: float = 1.0
    stamina_scale: float = 0.8
    stamina_base: float = 0.4
    acceleration_scale: float = 0.4
    acceleration_base: float = 0.2
    luck: Range = (0.05, 0.25)
    lap_speed_spread: float = 0.1
    lap_stamina_spread: float = 0.08

    def __post_init__(self) -> None:
        _validate_fields(self, "skills")
        if self.skill_variance >= self.total_skill_points:
            raise ConfigError("skills.skill_variance must be smaller than skills.total_skill_points")
        for name in ("speed_base", "stamina_base", "acceleration_base"):
            _check_positive("skills", name, getattr(self, name))
        for name in ("speed_weight", "stamina_weight", "acceleration_weight"):
            _check_positive("skills", name, getattr(self, name)[1])
        # Stamina boosts must never cancel out the weakest possible stamina.
        if self.lap_stamina_spread >= self.stamina_base:
            raise ConfigError("skills.lap_stamina_spread must be smaller than skills.stamina_base")


@dataclass(frozen=True)
class EventRules:
    """Random in-race events. Chances are independent slices of one draw."""

    first_event_window: Range = (3000.0, 7000.0)
    gap_after_active: Range = (8000.0, 15000.0)
    gap_when_idle: Range = (8000.0, 18000.0)
    burst_chance: float = 0.12
    slowdown_chance: float = 0.04
    momentum_shift_chance: float = 0.08
    comeback_chance: float = 0.04
    burst_multiplier: float = 1.15
    slowdown_multiplier: float = 0.9
    comeback_multiplier: float = 1.2
    burst_duration: Range = (800.0, 2000.0)
    slowdown_duration: Range = (800.0, 2000.0)
    comeback_duration: Range = (1000.0, 2000.0)
    momentum_gain: Range = (0.10, 0.15)
    momentum_loss: Range = (0.05, 0.15)
    comeback_min_catch_up: float = 0.2

    def __post_init__(self) -> None:
        _validate_fields(self, "events")
        for name in ("burst_chance", "slowdown_chance", "momentum_shift_chance", "comeback_chance"):
            _check_probability("events", name, getattr(self, name))
        if self.total_chance > 1.0:
            raise ConfigError(f"events chances must sum to <= 1, got {self.total_chance:.3f}")
        for name in ("burst_multiplier", "slowdown_multiplier", "comeback_multiplier"):
            _check_positive("events", name, getattr(self, name))

    @property
    def total_chance(self) -> float:
        return self.burst_chance + self.slowdown_chance + self.momentum_shift_chance + self.comeback_chance


@dataclass(frozen=True)
class BalanceRules:
    """Rubber-band tuning: leader handicap, trailing catch-up, final-lap nudges."""

    min_lead_threshold: float = 0.02
    handicap_slope: float = 1.5
    handicap_cap: float = 0.2
    handicap_decay: float = 0.9
    handicap_epsilon: float = 0.001
    final_lap_handicap_scale: float = 0.5
    leader_ease_chance: float = 0.03
    leader_ease_min_lead: float = 0.04
    leader_ease_momentum: float = 0.08
    position_step: float = 0.02
    position_cap: float = 0.15
    distance_weight: float = 1.0
    distance_cap: float = 0.15
    jitter_max: float = 0.05
    last_place_bonus: float = 0.1
    lapping_threshold: float = 0.5
    lapping_bonus: float = 0.1
    final_lap_amplifier: float = 1.25
    catch_up_cap: float = 0.45
    recovery_chance: float = 0.01
    recovery_momentum: float = 0.15
    final_lap_lead_threshold: float = 0.06
    final_lap_leader_penalty: float = 0.08
    final_lap_boost_base: float = 0.08
    final_lap_boost_slope: float = 0.12
    final_lap_boost_cap: float = 0.2

    def __post_init__(self) -> None:
        _validate_fields(self, "balance")
        for name in ("leader_ease_chance", "recovery_chance"):
            _check_probability("balance", name, getattr(self, name))
        if not 0.0 <= self.handicap_decay < 1.0:
            raise ConfigError(f"balance.handicap_decay must be within [0, 1), got {self.handicap_decay!r}")
        _check_positive("balance", "handicap_epsilon", self.handicap_epsilon)


@dataclass(frozen=True)
class RaceRules:
    """
    One named ruleset. Every tuning number the race uses lives here so that
    variants differ by data, not by code.
    """

    name: str = DEFAULT_RULESET
    stamina_floor: float = 0.7
    luck_spread: float = 0.5
    catch_up_weight: float = 0.7
    lead_handicap_weight: float = 0.7
    momentum_weight: float = 0.8
    catch_up_accel_weight: float = 0.6
    accel_scale: float = 0.8
    decel_ratio: float = 0.5
    decel_tolerance: float = 0.05
    min_race_speed: float = 0.7
    min_speed_catch_up_weight: float = 0.8
    momentum_decay: float = 0.995
    momentum_epsilon: float = 0.01
    momentum_cap: float = 0.4
    distance_scale: float = 80.0
    lap_surge_chance: float = 0.3
    lap_surge_max: float = 0.15
    finish_detection: str = "crossing"
    finish_tolerance: float = 50.0
    skills: SkillRules = field(default_factory=SkillRules)
    events: EventRules = field(default_factory=EventRules)
    balance: BalanceRules = field(default_factory=BalanceRules)

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigError("ruleset name must not be empty")
        _validate_fields(self, self.name)
        if self.finish_detection not in FINISH_MODES:
            raise ConfigError(
                f"{self.name}.finish_detection must be one of {FINISH_MODES}, got {self.finish_detection!r}"
            )
        if not 0.0 < self.stamina_floor <= 1.0:
            raise ConfigError(f"{self.name}.stamina_floor must be within (0, 1], got {self.stamina_floor!r}")
        if not 0.0 < self.momentum_decay <= 1.0:
            raise ConfigError(f"{self.name}.momentum_decay must be within (0, 1], got {self.momentum_decay!r}")
        if self.luck_spread * self.skills.luck[1] >= 2.0:
            raise ConfigError(f"{self.name}: luck_spread * max luck must stay below 2 to keep speeds positive")
        for name in ("min_race_speed", "distance_scale", "accel_scale"):
            _check_positive(self.name, name, getattr(self, name))
        _check_probability(self.name, "lap_surge_chance", self.lap_surge_chance)


_SECTIONS = {"skills": SkillRules, "events": EventRules, "balance": BalanceRules}


def _coerce(value: Any) -> Any:
    if isinstance(value, list):
        return tuple(float(item) for item in value)
    return value


def _apply_overrides(base: Any, overrides: Dict[str, Any], owner: str) -> Any:
    if not isinstance(overrides, dict):
        raise ConfigError(f"{owner} overrides must be an object, got {type(overrides).__name__}")
    known = {f.name for f in fields(base)}
    unknown = sorted(set(overrides) - known)
    if unknown:
        raise ConfigError(f"Unknown setting(s) for {owner}: {', '.join(unknown)}")
    try:
        return replace(base, **{key: _coerce(value) for key, value in overrides.items()})
    except TypeError as exc:
        raise ConfigError(f"Invalid value in {owner}: {exc}") from exc


def build_rules(name: str, overrides: Optional[Dict[str, Any]] = None) -> RaceRules:
    """Layer a ruleset's JSON overrides on top of the code defaults."""
    overrides = dict(overrides or {})
    sections = {}
    for key, section_cls in _SECTIONS.items():
        sections[key] = _apply_overrides(section_cls(), overrides.pop(key, {}), f"{name}.{key}")
    base = RaceRules(name=name, **sections)
    return _apply_overrides(base, overrides, name)


def ruleset_names(config: Optional[Dict[str, Any]] = None) -> Tuple[str, ...]:
    rulesets = get_config("rulesets", {}, config=config)
    names = set(rulesets) if isinstance(rulesets, dict) else set()
    names.add(DEFAULT_RULESET)
    return tuple(sorted(names))


def load_rules(name: Optional[str] = None, config: Optional[Dict[str, Any]] = None) -> RaceRules:
    """
    Returns the validated ruleset called `name`.

    Resolution order: explicit name, OVAL_DERBY_RULESET, the config's
    default_ruleset, then "classic". Unknown names raise ConfigError.
    """
    config = BALANCE_CONFIG if config is None else config
    ruleset = name or os.getenv(RULESET_ENV) or get_config("default_ruleset", DEFAULT_RULESET, config=config)
    rulesets = get_config("rulesets", {}, config=config)
    if not isinstance(rulesets, dict):
        raise ConfigError("'rulesets' must be an object keyed by ruleset name")
    if ruleset not in rulesets and ruleset != DEFAULT_RULESET:
        raise ConfigError(f"Unknown ruleset '{ruleset}'. Available: {', '.join(ruleset_names(config))}")
    return build_rules(ruleset, rulesets.get(ruleset, {}))
