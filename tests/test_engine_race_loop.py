import asyncio
import math

import pytest

from oval_derby.engine import (
    OvalTrack,
    RaceController,
    RacePhase,
    TelemetryCollector,
    load_rules,
)
from oval_derby.engine.race_loop import (
    STATUS_COMPLETE,
    STATUS_READY,
    STATUS_RUNNING,
    STATUS_STARTING,
)


def _controller(num_horses: int = 12, laps: int = 4, seed: int = 1234, **kwargs) -> RaceController:
    kwargs.setdefault("rules", load_rules("classic"))
    return RaceController(
        num_horses=num_horses,
        total_laps=laps,
        track=OvalTrack.for_viewport(800, 600, lap_length=1200.0),
        rng_seed=seed,
        **kwargs,
    )


def test_new_controller_is_idle_and_lined_up():
    controller = _controller()
    assert controller.phase is RacePhase.IDLE
    assert controller.status == STATUS_READY
    assert len(controller.competitors) == 12
    assert len({c.name for c in controller.competitors}) == 12
    assert controller.total_race_distance == pytest.approx(4800.0)
    assert all(c.distance == 0.0 for c in controller.competitors)
    assert controller.race_time() == 0.0
    assert controller.leader_lap() == 1


@pytest.mark.parametrize("ruleset", ["classic", "finish_band"])
def test_full_race_produces_a_complete_ordered_result(ruleset):
    controller = _controller(rules=load_rules(ruleset))
    leader_laps = []
    snapshots = controller.run_until_complete(frame_ms=16.0, on_tick=lambda s: leader_laps.append(s.leader_lap))

    assert controller.phase is RacePhase.COMPLETE
    assert controller.status == STATUS_COMPLETE
    assert snapshots[-1].phase is RacePhase.COMPLETE

    results = controller.results()
    assert [r.rank for r in results] == list(range(1, 13))
    assert len({r.lane for r in results}) == 12
    assert all(a.finish_time < b.finish_time for a, b in zip(results, results[1:]))
    assert results[0].finish_time > controller.race_start_time
    assert all(r.race_time > 0.0 for r in results)

    assert all(c.distance == pytest.approx(controller.total_race_distance) for c in controller.competitors)
    assert all(1 <= lap <= 4 for lap in leader_laps)
    assert controller.leader_lap() == 4


def test_standings_during_a_race_are_ordered():
    controller = _controller(num_horses=6, laps=2)
    seen = []

    def check(snapshot):
        places = [s.place for s in snapshot.standings]
        assert places == list(range(1, 7))
        running = [s for s in snapshot.standings if not s.finished]
        assert all(a.distance >= b.distance for a, b in zip(running, running[1:]))
        assert all(math.isfinite(s.x) and math.isfinite(s.y) for s in snapshot.standings)
        seen.append(snapshot)

    controller.run_until_complete(frame_ms=16.0, on_tick=check)
    assert seen
    assert len(controller.still_racing()) == 0


def test_same_seed_same_race():
    first = _controller(seed=99)
    second = _controller(seed=99)
    first.run_until_complete()
    second.run_until_complete()
    assert [c.name for c in first.competitors] == [c.name for c in second.competitors]
    assert [(r.name, r.finish_time) for r in first.results()] == [(r.name, r.finish_time) for r in second.results()]


def test_single_horse_race_completes():
    controller = _controller(num_horses=1, laps=1)
    controller.run_until_complete()
    assert controller.phase is RacePhase.COMPLETE
    assert controller.results()[0].rank == 1


def test_commands_in_the_wrong_phase_are_ignored():
    controller = _controller(num_horses=3, laps=1)
    assert not controller.begin_running(0.0)

    idle = controller.tick(16.0, 16.0)
    assert idle.phase is RacePhase.IDLE
    assert all(c.distance == 0.0 for c in controller.competitors)

    assert controller.start()
    assert controller.phase is RacePhase.COUNTDOWN
    assert controller.status == STATUS_STARTING
    assert controller.countdown_task is None
    assert not controller.start()

    assert controller.begin_running(0.0)
    assert controller.status == STATUS_RUNNING
    assert not controller.start()
    assert not controller.begin_running(0.0)
    assert not controller.resize_field(5)
    assert not controller.set_track(OvalTrack.for_viewport(1024, 768))

    controller.tick(16.0, 16.0)
    assert any(c.distance > 0.0 for c in controller.competitors)

    controller.reset()
    assert controller.phase is RacePhase.IDLE
    assert controller.status == STATUS_READY
    assert controller.race_start_time is None
    assert all(c.distance == 0.0 and not c.finished for c in controller.competitors)


def test_race_can_be_restarted_after_completion():
    controller = _controller(num_horses=3, laps=1)
    controller.run_until_complete()
    assert controller.start()
    assert controller.results() == []
    assert all(c.finish_rank is None for c in controller.competitors)


def test_countdown_runs_to_the_start_signal():
    controller = _controller(num_horses=3, laps=1, clock=lambda: 5000.0)
    controller.start()
    assert asyncio.run(controller.countdown(step_seconds=0)) is True
    assert controller.phase is RacePhase.RUNNING
    assert controller.countdown_label is None
    assert controller.race_start_time == 5000.0


def test_start_schedules_countdown_inside_an_event_loop():
    controller = _controller(num_horses=3, laps=1, countdown_step_seconds=0)

    async def scenario():
        assert controller.start()
        task = controller.countdown_task
        assert task is not None
        return await task

    assert asyncio.run(scenario()) is True
    assert controller.phase is RacePhase.RUNNING
    assert controller.countdown_task is None


def test_reset_cancels_the_countdown():
    controller = _controller(num_horses=3, laps=1, countdown_step_seconds=10.0)

    async def scenario():
        controller.start()
        task = controller.countdown_task
        await asyncio.sleep(0)
        label = controller.countdown_label
        controller.reset()
        await asyncio.wait([task])
        return task, label

    task, label = asyncio.run(scenario())
    assert label == "3"
    assert task.cancelled()
    assert controller.phase is RacePhase.IDLE
    assert controller.countdown_label is None
    assert controller.countdown_task is None


def test_finish_is_recorded_once():
    controller = _controller(num_horses=3, laps=1)
    controller.start()
    controller.begin_running(0.0)
    horse = controller.competitors[1]

    assert controller.on_competitor_finished(horse, 500.0) == 1
    assert controller.on_competitor_finished(horse, 900.0) == 1
    assert controller.finish_order == [horse]
    assert horse.finish_time == 500.0
    assert controller.status == f"{horse.name} takes first place!"

    stranger = _controller(num_horses=1).competitors[0]
    assert controller.on_competitor_finished(stranger, 600.0) is None


def test_finish_outside_a_running_race_is_ignored():
    controller = _controller(num_horses=2, laps=1)
    for horse in controller.competitors:
        assert controller.on_competitor_finished(horse, 10.0) is None
    assert controller.phase is RacePhase.IDLE
    assert controller.finish_order == []
    assert not any(c.finished for c in controller.competitors)

    controller.start()
    assert controller.on_competitor_finished(controller.competitors[0], 10.0) is None
    assert controller.phase is RacePhase.COUNTDOWN


def test_leader_lap_is_final_once_the_winner_is_home():
    controller = _controller(num_horses=3, laps=4)
    controller.start()
    controller.begin_running(0.0)
    winner = controller.competitors[0]
    winner.distance = controller.total_race_distance
    controller.on_competitor_finished(winner, 100.0)
    assert all(c.distance == 0.0 for c in controller.competitors[1:])
    assert controller.leader_lap() == 4


def test_race_time_freezes_once_complete():
    controller = _controller(num_horses=2, laps=1)
    controller.run_until_complete()
    final = controller.race_time()
    assert final > 0.0
    assert controller.race_time(now_ms=10_000_000.0) == final


def test_resize_and_track_change_between_races():
    controller = _controller(num_horses=4, laps=1)
    assert controller.resize_field(7)
    assert len(controller.competitors) == 7
    assert len({c.name for c in controller.competitors}) == 7
    assert controller.phase is RacePhase.IDLE

    assert controller.set_track(OvalTrack.for_viewport(800, 600, lap_length=900.0))
    assert controller.lap_length == pytest.approx(900.0)
    assert all(c.course is controller.course for c in controller.competitors)

    with pytest.raises(ValueError):
        controller.resize_field(0)


def test_telemetry_records_every_tick():
    collector = TelemetryCollector()
    controller = _controller(num_horses=3, laps=1, telemetry=collector)
    snapshots = controller.run_until_complete()

    frames = collector.export()
    assert len(frames) == len(snapshots)
    assert [f.tick for f in frames] == list(range(len(frames)))
    assert all(len(f.racers) == 3 for f in frames)
    assert frames[-1].phase == "complete"
    assert all(r.distance_delta >= 0.0 for f in frames for r in f.racers)
    assert "target_components" in frames[0].racers[0].debug

    series = collector.series(2, "distance")
    assert len(series) == len(frames)
    assert [d for _, d in series] == sorted(d for _, d in series)
    dumped = collector.as_dicts()
    assert dumped[0]["racers"][0]["lane"] == 0
    assert dumped[-1]["phase"] == "complete"

    collector.clear()
    assert collector.export() == ()


def test_phase_names_round_trip():
    assert RacePhase.from_str("Running") is RacePhase.RUNNING
    with pytest.raises(ValueError):
        RacePhase.from_str("photo finish")
