from __future__ import annotations

import random
from typing import TYPE_CHECKING

from .data_models import NEUTRAL_BALANCE, BalanceResult, FieldSnapshot
from .rules import BalanceRules

if TYPE_CHECKING:
    from .competitor import Competitor


class BalancingEngine:
    """
    Rubber-band modifiers that keep the field bunched without fixing the result.

    Leaders pick up a handicap proportional to their margin over second place;
    everyone else gets a catch-up bonus built from their rank, their gap to the
    leader and a little jitter. Every term is capped so nobody can run away
    with the race or lap the field.
    """

    def __init__(self, rules: BalanceRules):
        self.rules = rules

    def evaluate(self, competitor: "Competitor", field: FieldSnapshot, rng: random.Random) -> BalanceResult:
        rank = field.rank_of(competitor)
        if rank is None or len(field) < 2:
            return NEUTRAL_BALANCE

        lap_length = competitor.course.lap_length
        final_lap = competitor.in_final_lap
        if rank == 0:
            return self._leader(competitor, field, lap_length, final_lap, rng)
        return self._trailing(rank, field, lap_length, final_lap, rng)

    def final_lap_nudge(self, competitor: "Competitor", field: FieldSnapshot) -> float:
        """One-shot momentum change applied when a horse starts its last lap."""
        rules = self.rules
        rank = field.rank_of(competitor)
        if rank is None or len(field) < 2:
            return 0.0

        if rank == 0:
            lead = field.distance_at(0) - field.distance_at(1)
            if lead > competitor.course.lap_length * rules.final_lap_lead_threshold:
                return -rules.final_lap_leader_penalty
            return 0.0

        boost = rules.final_lap_boost_base + (rank / len(field)) * rules.final_lap_boost_slope
        return min(boost, rules.final_lap_boost_cap)

    # --- Helpers ---------------------------------------------------------

    def _leader(
        self,
        competitor: "Competitor",
        field: FieldSnapshot,
        lap_length: float,
        final_lap: bool,
        rng: random.Random,
    ) -> BalanceResult:
        rules = self.rules
        lead = (field.distance_at(0) - field.distance_at(1)) / lap_length

        if lead < rules.min_lead_threshold:
            handicap = competitor.lead_handicap * rules.handicap_decay
            if handicap < rules.handicap_epsilon:
                handicap = 0.0
        else:
            handicap = min(rules.handicap_cap, lead * rules.handicap_slope)
            if final_lap:
                handicap *= rules.final_lap_handicap_scale

        momentum = 0.0
        if rng.random() < rules.leader_ease_chance and lead > rules.leader_ease_min_lead:
            momentum = -rules.leader_ease_momentum

        return BalanceResult(catch_up=0.0, lead_handicap=handicap, momentum_delta=momentum)

    def _trailing(
        self,
        rank: int,
        field: FieldSnapshot,
        lap_length: float,
        final_lap: bool,
        rng: random.Random,
    ) -> BalanceResult:
        rules = self.rules
        behind = (field.leader_distance - field.distance_at(rank)) / lap_length

        position_term = min(rules.position_cap, rules.position_step * rank)
        distance_term = min(rules.distance_cap, behind * rules.distance_weight)
        catch_up = position_term + distance_term + rng.random() * rules.jitter_max

        if rank == len(field) - 1:
            catch_up += rules.last_place_bonus
        if behind > rules.lapping_threshold:
            catch_up += rules.lapping_bonus
        if final_lap:
            catch_up *= rules.final_lap_amplifier
        catch_up = min(rules.catch_up_cap, catch_up)

        momentum = 0.0
        if rng.random() < rules.recovery_chance and rank > len(field) / 2:
            momentum = rules.recovery_momentum

        return BalanceResult(catch_up=catch_up, lead_handicap=0.0, momentum_delta=momentum)
