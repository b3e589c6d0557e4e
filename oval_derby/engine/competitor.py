from __future__ import annotations

import math
import random
from typing import Any, Callable, Dict, Optional, Tuple

import numpy as np

from .balancing import BalancingEngine
from .data_models import (
    NO_EVENT,
    EventKind,
    FieldSnapshot,
    LapFactor,
    RaceCourse,
    RaceEvent,
    RNGContainer,
    SkillProfile,
)
from .events import advance_event, first_event_time
from .geometry import TrackPosition
from .rules import RaceRules, SkillRules

FinishListener = Callable[["Competitor"], None]


def roll_skills(rules: SkillRules, total_laps: int, rng: random.Random) -> SkillProfile:
    """
    Spreads a slightly randomised budget of skill points over speed, stamina
    and acceleration, so each horse is good at something different.
    """
    points = rules.total_skill_points + rng.uniform(-rules.skill_variance, rules.skill_variance)
    weights = np.array(
        [
            rng.uniform(*rules.speed_weight),
            rng.uniform(*rules.stamina_weight),
            rng.uniform(*rules.acceleration_weight),
        ]
    )
    total = weights.sum()
    if total <= 0.0:
        weights = np.full(3, 1.0 / 3.0)
    else:
        weights = weights / total
    speed_w, stamina_w, accel_w = (float(w) for w in weights)

    lap_factors = tuple(
        LapFactor(
            speed_boost=rng.uniform(-rules.lap_speed_spread, rules.lap_speed_spread),
            stamina_boost=rng.uniform(-rules.lap_stamina_spread, rules.lap_stamina_spread),
        )
        for _ in range(total_laps)
    )
    return SkillProfile(
        base_speed=speed_w * points * rules.speed_scale + rules.speed_base,
        stamina=stamina_w * points * rules.stamina_scale + rules.stamina_base,
        acceleration=accel_w * points * rules.acceleration_scale + rules.acceleration_base,
        luck_factor=rng.uniform(*rules.luck),
        lap_factors=lap_factors,
    )


def random_hex_color(rng: random.Random) -> str:
    return "#" + "".join(rng.choice("0123456789ABCDEF") for _ in range(6))


class Competitor:
    """One horse: skills for the current race plus its per-tick kinematic state."""

    def __init__(
        self,
        lane: int,
        name: str,
        course: RaceCourse,
        rules: RaceRules,
        balancing: BalancingEngine,
        rng: RNGContainer,
        color: Optional[str] = None,
        lane_offset: float = 0.0,
        verbose: bool = False,
        finish_listener: Optional[FinishListener] = None,
    ):
        self.lane = lane
        self.name = name
        self.course = course
        self.rules = rules
        self.balancing = balancing
        self.rng = rng
        self.color = color or random_hex_color(rng.skill_rng)
        self.lane_offset = lane_offset
        self.verbose = verbose
        self.finish_listener = finish_listener

        self.skills = roll_skills(rules.skills, course.total_laps, rng.skill_rng)
        self.debug_log: Dict[str, Any] = {}
        self._clear_race_state()

    def __repr__(self) -> str:
        return f"<Competitor lane={self.lane} name={self.name!r} distance={self.distance:.1f}>"

    # --- Lifecycle -------------------------------------------------------

    def reset(self, course: Optional[RaceCourse] = None) -> None:
        """New skills and a clean slate for the next race; lane, name and colour stay."""
        if course is not None:
            self.course = course
        self.skills = roll_skills(self.rules.skills, self.course.total_laps, self.rng.skill_rng)
        self._clear_race_state()

    def start_running(self, start_ms: float) -> None:
        self.race_start_ms = start_ms
        self.next_event_at = first_event_time(self.rules.events, self.rng.race_rng)

    def _clear_race_state(self) -> None:
        self.current_speed = 0.0
        self.target_speed = 0.0
        self.distance = 0.0
        self.current_lap = 1
        self.finished = False
        self.finish_time: Optional[float] = None
        self.finish_rank: Optional[int] = None
        self.momentum = 0.0
        self.catch_up_factor = 0.0
        self.lead_handicap = 0.0
        self.stamina_factor = 1.0
        self.instant_random_factor = 1.0
        self.event: RaceEvent = NO_EVENT
        self.next_event_at = math.inf
        self.last_event: Optional[EventKind] = None
        self.race_start_ms: Optional[float] = None
        self.debug_log.clear()

    # --- Derived state ---------------------------------------------------

    @property
    def in_final_lap(self) -> bool:
        return self.current_lap >= self.course.total_laps

    @property
    def traits(self) -> Tuple[str, ...]:
        return self.skills.traits

    @property
    def position(self) -> TrackPosition:
        return self.course.track.position_at(self.distance, self.lane_offset)

    @property
    def distance_fraction(self) -> float:
        return min(1.0, self.distance / self.course.total_distance)

    @property
    def lap_progress(self) -> float:
        if self.finished:
            return 1.0
        return self.course.track.lap_fraction(self.distance)

    # --- Simulation ------------------------------------------------------

    def tick(self, elapsed_ms: float, now_ms: float, field: Optional[FieldSnapshot] = None) -> bool:
        """
        Advances the horse by one frame. Returns True if it crossed the
        finish line during this tick.

        `field` is the ranking captured before anyone moved this tick; with
        no field the horse races alone and balancing stays neutral.
        """
        if self.finished:
            return False
        if field is None:
            field = FieldSnapshot.capture([self])

        rules = self.rules
        rng = self.rng.race_rng
        dt = elapsed_ms / 1000.0
        race_time = now_ms - self.race_start_ms if self.race_start_ms is not None else 0.0

        self._update_lap(field, rng)
        self._update_event(race_time, elapsed_ms, rng)
        self._update_positioning(field, rng)

        if abs(self.momentum) > rules.momentum_epsilon:
            self.momentum *= rules.momentum_decay
        else:
            self.momentum = 0.0

        lap_factor = self.skills.lap_factor(self.current_lap)
        self.stamina_factor = self._calculate_stamina_factor(lap_factor)
        self.instant_random_factor = 1.0 + (rng.random() - 0.5) * (self.skills.luck_factor * rules.luck_spread)
        event_multiplier = self.event.multiplier

        self.target_speed = self._calculate_target_speed(lap_factor, event_multiplier)
        self._integrate_speed(dt)

        actual_speed = self.current_speed * self.stamina_factor * self.instant_random_factor * event_multiplier
        step = actual_speed * dt * rules.distance_scale * self.course.track.speed_scale
        previous = self.distance
        self.distance += step

        return self._check_finish(previous, step, elapsed_ms, now_ms)

    def _update_lap(self, field: FieldSnapshot, rng: random.Random) -> None:
        previous_lap = self.current_lap
        self.current_lap = max(previous_lap, self.course.lap_for(self.distance))
        if self.current_lap <= previous_lap:
            return

        self._announce(f"{self.name} starting lap {self.current_lap} of {self.course.total_laps}")
        if rng.random() < self.rules.lap_surge_chance:
            self._add_momentum(rng.random() * self.rules.lap_surge_max)
            self._announce(f"{self.name} gets a surge of energy at the start of lap {self.current_lap}!")

        if self.current_lap == self.course.total_laps:
            nudge = self.balancing.final_lap_nudge(self, field)
            if nudge < 0:
                self._announce(f"{self.name} feels the pressure of the final lap")
            elif nudge > 0:
                self._announce(f"{self.name} gets motivated for the final lap (boost: {nudge:.2f})")
            self._add_momentum(nudge)

    def _update_event(self, race_time: float, elapsed_ms: float, rng: random.Random) -> None:
        outcome = advance_event(
            self.event,
            self.next_event_at,
            race_time,
            elapsed_ms,
            self.catch_up_factor,
            self.rules.events,
            rng,
        )
        self.event = outcome.event
        self.next_event_at = outcome.next_event_at
        if outcome.triggered is not None:
            self.last_event = outcome.triggered
        if outcome.momentum_delta:
            self._add_momentum(outcome.momentum_delta)
        if outcome.announcement:
            self._announce(outcome.announcement.format(name=self.name))

    def _update_positioning(self, field: FieldSnapshot, rng: random.Random) -> None:
        balance = self.balancing.evaluate(self, field, rng)
        self.catch_up_factor = balance.catch_up
        self.lead_handicap = balance.lead_handicap
        if balance.momentum_delta > 0:
            self._announce(f"{self.name} makes a move to catch up!")
        elif balance.momentum_delta < 0:
            self._announce(f"{self.name} eases the pace slightly!")
        self._add_momentum(balance.momentum_delta)

    # --- Helpers ---------------------------------------------------------

    def _calculate_stamina_factor(self, lap_factor: LapFactor) -> float:
        progress = self.distance / self.course.total_distance
        endurance = self.skills.stamina + lap_factor.stamina_boost
        return max(self.rules.stamina_floor, 1.0 - progress / endurance)

    def _calculate_target_speed(self, lap_factor: LapFactor, event_multiplier: float) -> float:
        rules = self.rules
        modifiers = {
            "lap_speed_boost": lap_factor.speed_boost,
            "catch_up": self.catch_up_factor * rules.catch_up_weight,
            "lead_handicap": -self.lead_handicap * rules.lead_handicap_weight,
            "momentum": self.momentum * rules.momentum_weight,
        }
        target = (
            self.skills.base_speed
            * self.stamina_factor
            * self.instant_random_factor
            * event_multiplier
            * (1.0 + sum(modifiers.values()))
        )
        modifiers["stamina_factor"] = self.stamina_factor
        modifiers["event_multiplier"] = event_multiplier
        self.debug_log["target_components"] = modifiers
        return target

    def _integrate_speed(self, dt: float) -> None:
        rules = self.rules
        acceleration = self.skills.acceleration
        if self.current_speed < self.target_speed:
            boost = 1.0 + self.catch_up_factor * rules.catch_up_accel_weight
            self.current_speed += acceleration * boost * dt * rules.accel_scale
        elif self.current_speed > self.target_speed * (1.0 + rules.decel_tolerance):
            self.current_speed -= acceleration * rules.decel_ratio * dt * rules.accel_scale

        # Trailing horses get a higher floor so nobody stalls.
        min_speed = rules.min_race_speed + self.catch_up_factor * rules.min_speed_catch_up_weight
        self.current_speed = max(min_speed, self.current_speed)

    def _check_finish(self, previous: float, step: float, elapsed_ms: float, now_ms: float) -> bool:
        total = self.course.total_distance
        if self.distance < total:
            return False

        if self.rules.finish_detection == "tolerance_band":
            remainder = self.distance % self.course.lap_length
            if remainder > self.rules.finish_tolerance:
                return False
            line = self.distance - remainder
            if previous < line and step > 0.0:
                # The remainder past the line is the overshoot for this frame.
                finish_time = now_ms - elapsed_ms * (remainder / step)
                self.distance = line
            else:
                finish_time = now_ms
            self._finish(finish_time)
            return True

        if previous < total and step > 0.0:
            # Interpolate the moment the line was crossed inside this frame.
            overshoot = self.distance - total
            finish_time = now_ms - elapsed_ms * (overshoot / step)
            self.distance = total
        else:
            finish_time = now_ms
        self._finish(finish_time)
        return True

    def _finish(self, finish_time: float) -> None:
        self.finished = True
        self.finish_time = finish_time
        self.current_lap = self.course.total_laps
        self.event = NO_EVENT
        self._announce(f"Horse {self.name} finished the race! ({self.course.total_laps} laps)")
        if self.finish_listener is not None:
            self.finish_listener(self)

    def _add_momentum(self, delta: float) -> None:
        if not delta:
            return
        cap = self.rules.momentum_cap
        self.momentum = max(-cap, min(cap, self.momentum + delta))

    def _announce(self, message: str) -> None:
        self.debug_log.setdefault("events", []).append(message)
        if self.verbose:
            print(message)
