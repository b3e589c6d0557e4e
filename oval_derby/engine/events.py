"""
Random race events for a single horse.

Each horse carries one `RaceEvent`: either `NO_EVENT` or an `ActiveEvent`
with a speed multiplier and the milliseconds it has left. `advance_event`
is the whole state machine; it returns the next state instead of mutating
the horse so the caller decides when to apply it.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, replace
from typing import Optional

from .data_models import NO_EVENT, ActiveEvent, EventKind, RaceEvent
from .rules import EventRules, Range


@dataclass(frozen=True)
class EventOutcome:
    event: RaceEvent
    next_event_at: float
    momentum_delta: float = 0.0
    triggered: Optional[EventKind] = None
    announcement: Optional[str] = None


def _uniform(rng: random.Random, bounds: Range) -> float:
    return rng.uniform(bounds[0], bounds[1])


def first_event_time(rules: EventRules, rng: random.Random) -> float:
    """Race time (ms) at which a horse first rolls for an event."""
    return _uniform(rng, rules.first_event_window)


def advance_event(
    event: RaceEvent,
    next_event_at: float,
    race_time_ms: float,
    elapsed_ms: float,
    catch_up: float,
    rules: EventRules,
    rng: random.Random,
) -> EventOutcome:
    if race_time_ms <= next_event_at:
        return EventOutcome(event=event, next_event_at=next_event_at)

    if isinstance(event, ActiveEvent):
        remaining = event.remaining_ms - elapsed_ms
        if remaining > 0:
            return EventOutcome(event=replace(event, remaining_ms=remaining), next_event_at=next_event_at)
        return EventOutcome(
            event=NO_EVENT,
            next_event_at=race_time_ms + _uniform(rng, rules.gap_after_active),
            announcement=f"{{name}}'s {event.kind.value} has ended",
        )

    roll = rng.random()

    edge = rules.burst_chance
    if roll < edge:
        burst = ActiveEvent(EventKind.BURST, rules.burst_multiplier, _uniform(rng, rules.burst_duration))
        return EventOutcome(
            event=burst,
            next_event_at=next_event_at,
            triggered=EventKind.BURST,
            announcement="{name} finds a burst of speed!",
        )

    edge += rules.slowdown_chance
    if roll < edge:
        slowdown = ActiveEvent(EventKind.SLOWDOWN, rules.slowdown_multiplier, _uniform(rng, rules.slowdown_duration))
        return EventOutcome(
            event=slowdown,
            next_event_at=next_event_at,
            triggered=EventKind.SLOWDOWN,
            announcement="{name} slows slightly",
        )

    edge += rules.momentum_shift_chance
    if roll < edge:
        if rng.random() < 0.5:
            delta = _uniform(rng, rules.momentum_gain)
            message = "{name} makes a move!"
        else:
            delta = -_uniform(rng, rules.momentum_loss)
            message = "{name} loses a bit of momentum"
        return EventOutcome(
            event=NO_EVENT,
            next_event_at=race_time_ms + _uniform(rng, rules.gap_when_idle),
            momentum_delta=delta,
            triggered=EventKind.MOMENTUM_SHIFT,
            announcement=message,
        )

    edge += rules.comeback_chance
    # A comeback needs a horse that is actually behind; otherwise nothing happens.
    if roll < edge and catch_up > rules.comeback_min_catch_up:
        comeback = ActiveEvent(EventKind.COMEBACK, rules.comeback_multiplier, _uniform(rng, rules.comeback_duration))
        return EventOutcome(
            event=comeback,
            next_event_at=next_event_at,
            triggered=EventKind.COMEBACK,
            announcement="{name} is making a comeback effort!",
        )

    return EventOutcome(event=NO_EVENT, next_event_at=race_time_ms + _uniform(rng, rules.gap_when_idle))
