import random

import pytest

from oval_derby.engine import (
    BalancingEngine,
    Competitor,
    OvalTrack,
    RaceCourse,
    RNGContainer,
    SkillProfile,
    load_rules,
    roll_skills,
)
from oval_derby.engine.rules import RaceRules


def _course(laps: int = 2) -> RaceCourse:
    return RaceCourse(track=OvalTrack.for_viewport(800, 600, lap_length=1200.0), total_laps=laps)


def _competitor(rules: RaceRules = None, laps: int = 2, listener=None, seed: int = 7) -> Competitor:
    rules = rules or load_rules("classic")
    return Competitor(
        lane=0,
        name="Swift Arrow",
        course=_course(laps),
        rules=rules,
        balancing=BalancingEngine(rules.balance),
        rng=RNGContainer(skill_seed=seed, race_seed=seed + 1),
        finish_listener=listener,
    )


def test_rolled_skills_are_positive_and_cover_every_lap():
    rules = load_rules("classic").skills
    rng = random.Random(11)
    for _ in range(100):
        skills = roll_skills(rules, 4, rng)
        assert skills.base_speed > 0.0
        assert skills.stamina > 0.0
        assert skills.acceleration > 0.0
        assert 0.05 <= skills.luck_factor <= 0.25
        assert len(skills.lap_factors) == 4
        assert skills.traits


def test_lap_factor_outside_rolled_laps_is_neutral():
    skills = roll_skills(load_rules("classic").skills, 2, random.Random(1))
    assert skills.lap_factor(3).speed_boost == 0.0
    assert skills.lap_factor(0).stamina_boost == 0.0


def test_invalid_skill_profile_is_rejected():
    with pytest.raises(ValueError):
        SkillProfile(base_speed=0.0, stamina=1.0, acceleration=0.5, luck_factor=0.1)
    with pytest.raises(ValueError):
        SkillProfile(base_speed=3.0, stamina=-1.0, acceleration=0.5, luck_factor=0.1)


def test_solo_run_is_monotonic_and_finishes_on_the_line():
    finished = []
    horse = _competitor(listener=finished.append)
    horse.start_running(0.0)

    now, last_distance, last_lap = 0.0, 0.0, 1
    for _ in range(20000):
        if horse.finished:
            break
        now += 16.0
        crossed = horse.tick(16.0, now)
        assert horse.distance >= last_distance
        assert last_lap <= horse.current_lap <= 2
        assert horse.current_speed >= load_rules("classic").min_race_speed
        last_distance, last_lap = horse.distance, horse.current_lap
        if crossed:
            assert horse.finished

    assert horse.finished
    assert finished == [horse]
    assert horse.distance == pytest.approx(horse.course.total_distance)
    assert now - 16.0 < horse.finish_time <= now
    assert horse.current_lap == 2
    assert horse.distance_fraction == pytest.approx(1.0)


def test_finished_horse_stops_moving():
    horse = _competitor()
    horse.start_running(0.0)
    horse.distance = horse.course.total_distance - 0.01
    assert horse.tick(16.0, 1000.0)
    distance = horse.distance
    assert not horse.tick(16.0, 1016.0)
    assert horse.distance == distance


def test_crossing_time_is_interpolated_inside_the_frame():
    horse = _competitor()
    horse.start_running(0.0)
    horse.distance = horse.course.total_distance - 0.1
    assert horse.tick(16.0, 1016.0)
    assert horse.distance == pytest.approx(horse.course.total_distance)
    assert 1000.0 < horse.finish_time <= 1016.0


def test_tolerance_band_finish_only_counts_near_the_line():
    horse = _competitor(rules=load_rules("finish_band"))
    horse.start_running(0.0)
    total = horse.course.total_distance

    # Past the band: keeps running until it comes round again.
    horse.distance = total + 60.0
    assert not horse.tick(16.0, 1000.0)
    assert not horse.finished
    assert horse.current_lap == 2

    horse.distance = total + 10.0
    assert horse.tick(16.0, 1016.0)
    assert horse.finish_time == 1016.0


def test_momentum_is_clamped():
    horse = _competitor()
    horse._add_momentum(5.0)
    assert horse.momentum == pytest.approx(horse.rules.momentum_cap)
    horse._add_momentum(-10.0)
    assert horse.momentum == pytest.approx(-horse.rules.momentum_cap)


def test_reset_clears_race_state_and_rerolls():
    horse = _competitor()
    old_skills = horse.skills
    horse.start_running(0.0)
    horse.distance = horse.course.total_distance - 0.1
    horse.tick(16.0, 16.0)
    assert horse.finished

    horse.reset()
    assert not horse.finished
    assert horse.finish_time is None
    assert horse.distance == 0.0
    assert horse.current_lap == 1
    assert horse.momentum == 0.0
    assert horse.skills != old_skills
    assert horse.name == "Swift Arrow"


def test_same_seeds_run_the_same_race():
    a, b = _competitor(seed=21), _competitor(seed=21)
    a.start_running(0.0)
    b.start_running(0.0)
    for step in range(1, 200):
        a.tick(16.0, step * 16.0)
        b.tick(16.0, step * 16.0)
    assert a.distance == b.distance
    assert a.color == b.color


def test_position_reports_world_coordinates():
    horse = _competitor()
    start = horse.position
    track = horse.course.track
    assert start.x == pytest.approx(track.center_x + track.base_radius_x)
    assert start.y == pytest.approx(track.center_y)


def test_tolerance_band_crossing_time_is_interpolated():
    horse = _competitor(rules=load_rules("finish_band"))
    horse.start_running(0.0)
    horse.distance = horse.course.total_distance - 0.1
    assert horse.tick(16.0, 1016.0)
    assert horse.distance == pytest.approx(horse.course.total_distance)
    assert 1000.0 < horse.finish_time < 1016.0
