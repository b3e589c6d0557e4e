from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from oval_derby.config import get_config
from oval_derby.horse_name_generator import NameAllocator

from .balancing import BalancingEngine
from .competitor import Competitor
from .data_models import FieldSnapshot, RaceCourse, RacePhase, RNGContainer
from .geometry import OvalTrack
from .rules import RaceRules, load_rules
from .telemetry import TelemetryCollector, TelemetryFrame, TelemetryRacerFrame

COUNTDOWN_STEPS = ("3", "2", "1", "GO!")
COUNTDOWN_STEP_SECONDS = 1.0

STATUS_READY = "Ready to Race"
STATUS_STARTING = "Race is starting..."
STATUS_RUNNING = "Race in Progress"
STATUS_COMPLETE = "Race Complete"

Clock = Callable[[], float]


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass
class CompetitorSnapshot:
    lane: int
    name: str
    color: str
    x: float
    y: float
    heading: float
    distance: float
    distance_fraction: float
    lap: int
    lap_progress: float
    finished: bool
    rank: Optional[int]
    place: int
    traits: Tuple[str, ...] = ()


@dataclass
class FinishResult:
    rank: int
    lane: int
    name: str
    finish_time: float
    race_time: float


@dataclass
class RaceSnapshot:
    time: float
    phase: RacePhase
    status: str
    countdown_label: Optional[str]
    leader_lap: int
    total_laps: int
    standings: List[CompetitorSnapshot] = field(default_factory=list)
    results: List[FinishResult] = field(default_factory=list)


class RaceController:
    """
    Owns the field and walks it through idle -> countdown -> running -> complete.

    The host calls `tick(elapsed_ms, now_ms)` once per frame; everything else
    is a command (`start`, `begin_running`, `reset`) or a read-only query.
    Commands issued in the wrong phase are ignored and return False.
    """

    def __init__(
        self,
        num_horses: Optional[int] = None,
        total_laps: Optional[int] = None,
        track: Optional[OvalTrack] = None,
        rules: Optional[RaceRules] = None,
        names: Optional[NameAllocator] = None,
        rng: Optional[random.Random] = None,
        rng_seed: Optional[int] = None,
        clock: Optional[Clock] = None,
        telemetry: Optional[TelemetryCollector] = None,
        countdown_step_seconds: float = COUNTDOWN_STEP_SECONDS,
        verbose: bool = False,
    ) -> None:
        self.rng = rng or random.Random(rng_seed)
        self.rules = rules or load_rules()
        self.names = names or NameAllocator(rng=random.Random(self.rng.getrandbits(64)))
        self.clock: Clock = clock or _monotonic_ms
        self.telemetry = telemetry
        self.countdown_step_seconds = countdown_step_seconds
        self.verbose = verbose

        if track is None:
            width, height = get_config("field.viewport", [800, 600])
            track = OvalTrack.for_viewport(width, height)
        laps = total_laps if total_laps is not None else get_config("field.total_laps", 4)
        self.course = RaceCourse(track=track, total_laps=int(laps))
        self.balancing = BalancingEngine(self.rules.balance)

        self.phase = RacePhase.IDLE
        self.status = STATUS_READY
        self.countdown_label: Optional[str] = None
        self.race_start_time: Optional[float] = None
        self.finish_order: List[Competitor] = []
        self.tick_index = 0
        self._last_tick_time: Optional[float] = None
        self._pending_finishers: List[Competitor] = []
        self._countdown_task: Optional[asyncio.Task] = None

        size = num_horses if num_horses is not None else get_config("field.num_horses", 12)
        self.competitors: List[Competitor] = []
        self._build_field(int(size))

    # --- Properties ------------------------------------------------------

    @property
    def total_laps(self) -> int:
        return self.course.total_laps

    @property
    def lap_length(self) -> float:
        return self.course.lap_length

    @property
    def total_race_distance(self) -> float:
        return self.course.total_distance

    @property
    def countdown_task(self) -> Optional[asyncio.Task]:
        return self._countdown_task

    # --- Commands --------------------------------------------------------

    def start(self) -> bool:
        """
        Resets the field and enters the countdown. Inside a running event
        loop the countdown is scheduled as a task; otherwise the host
        drives it with `await countdown()` or skips it with `begin_running()`.
        """
        if self.phase not in (RacePhase.IDLE, RacePhase.COMPLETE):
            self._log("Race already in progress")
            return False

        self._log("Starting race...")
        self._reset_field()
        self.phase = RacePhase.COUNTDOWN
        self.status = STATUS_STARTING
        self._schedule_countdown()
        return True

    async def countdown(self, step_seconds: Optional[float] = None) -> bool:
        """Shows 3, 2, 1, GO! one step apart, then starts the race."""
        if step_seconds is None:
            step_seconds = self.countdown_step_seconds
        if self.phase is not RacePhase.COUNTDOWN:
            return False
        scheduled = self._countdown_task
        if scheduled is not None and not scheduled.done() and scheduled is not asyncio.current_task():
            return False

        for label in COUNTDOWN_STEPS:
            self.countdown_label = label
            self._log(label)
            await asyncio.sleep(step_seconds)
            if self.phase is not RacePhase.COUNTDOWN:
                return False
        return self.begin_running()

    def begin_running(self, now_ms: Optional[float] = None) -> bool:
        if self.phase is not RacePhase.COUNTDOWN:
            return False
        self._cancel_countdown()

        now = self.clock() if now_ms is None else now_ms
        self.race_start_time = now
        self._last_tick_time = now
        for competitor in self.competitors:
            competitor.start_running(now)

        self.phase = RacePhase.RUNNING
        self.status = STATUS_RUNNING
        self.countdown_label = None
        self._log("Race in progress")
        return True

    def reset(self) -> None:
        """Stops whatever is happening and returns to a fresh, idle field."""
        self._log(f"Resetting race with {len(self.competitors)} horses")
        self._cancel_countdown()
        self._reset_field()
        self.phase = RacePhase.IDLE
        self.status = STATUS_READY
        self.countdown_label = None

    def resize_field(self, num_horses: int) -> bool:
        """Replaces the field with `num_horses` new horses. Not allowed mid-race."""
        if self.phase not in (RacePhase.IDLE, RacePhase.COMPLETE):
            self._log("Cannot resize the field while a race is on")
            return False
        self._build_field(num_horses)
        self.reset()
        return True

    def set_track(self, track: OvalTrack) -> bool:
        """Swaps the track geometry (e.g. after a viewport change). Not allowed mid-race."""
        if self.phase not in (RacePhase.IDLE, RacePhase.COMPLETE):
            self._log("Cannot change the track while a race is on")
            return False
        self.course = RaceCourse(track=track, total_laps=self.course.total_laps)
        size = len(self.competitors)
        for competitor in self.competitors:
            competitor.lane_offset = track.lane_offset(competitor.lane, size)
        self.reset()
        return True

    # --- Simulation ------------------------------------------------------

    def tick(self, elapsed_ms: float, now_ms: float) -> RaceSnapshot:
        if self.phase is not RacePhase.RUNNING:
            return self.snapshot(now_ms)

        field_snapshot = FieldSnapshot.capture(self.competitors)
        collect = self.telemetry is not None
        previous = {c.lane: c.distance for c in self.competitors} if collect else {}

        for competitor in self.competitors:
            if not competitor.finished:
                competitor.tick(elapsed_ms, now_ms, field_snapshot)

        # Several horses can cross in one frame; rank them by when they crossed.
        finishers = sorted(self._pending_finishers, key=lambda c: (c.finish_time, c.lane))
        self._pending_finishers.clear()
        for competitor in finishers:
            self.on_competitor_finished(competitor, now_ms)

        self._last_tick_time = now_ms
        if collect:
            self._record_telemetry(now_ms, previous)
        for competitor in self.competitors:
            competitor.debug_log.clear()
        self.tick_index += 1

        return self.snapshot(now_ms)

    def on_competitor_finished(self, competitor: Competitor, now_ms: Optional[float] = None) -> Optional[int]:
        """Appends a horse to the finish order and returns its rank."""
        if self.phase is not RacePhase.RUNNING:
            return None
        if not any(c is competitor for c in self.competitors):
            return None
        if any(c is competitor for c in self.finish_order):
            return competitor.finish_rank

        competitor.finished = True
        if competitor.finish_time is None:
            competitor.finish_time = self.clock() if now_ms is None else now_ms
        self.finish_order.append(competitor)
        competitor.finish_rank = len(self.finish_order)

        if competitor.finish_rank == 1:
            self.status = f"{competitor.name} takes first place!"
            self._log(self.status)
        if len(self.finish_order) == len(self.competitors):
            self.phase = RacePhase.COMPLETE
            self.status = STATUS_COMPLETE
            self._log("Race completed!")
        return competitor.finish_rank

    def run_until_complete(
        self,
        frame_ms: float = 16.0,
        max_time_s: float = 600.0,
        on_tick: Optional[Callable[[RaceSnapshot], None]] = None,
        start_ms: float = 0.0,
    ) -> List[RaceSnapshot]:
        """
        Headless host loop: skips the real-time countdown and ticks on a
        synthetic clock until every horse has finished or time runs out.
        """
        if self.phase in (RacePhase.IDLE, RacePhase.COMPLETE):
            self.start()
        if self.phase is RacePhase.COUNTDOWN:
            self.begin_running(start_ms)

        snapshots: List[RaceSnapshot] = []
        now = self._last_tick_time if self._last_tick_time is not None else start_ms
        max_ticks = int(max_time_s * 1000.0 / frame_ms) if frame_ms > 0 else 0
        for _ in range(max_ticks):
            if self.phase is not RacePhase.RUNNING:
                break
            now += frame_ms
            snapshot = self.tick(frame_ms, now)
            snapshots.append(snapshot)
            if on_tick:
                on_tick(snapshot)

        return snapshots

    # --- Queries ---------------------------------------------------------

    def race_time(self, now_ms: Optional[float] = None) -> float:
        """Seconds since the start signal; frozen at the last tick once the race is over."""
        if self.race_start_time is None:
            return 0.0
        end = self._last_tick_time
        if self.phase is RacePhase.RUNNING and now_ms is not None:
            end = now_ms
        if end is None:
            return 0.0
        return max(0.0, (end - self.race_start_time) / 1000.0)

    def leader_lap(self) -> int:
        if self.finish_order:
            return self.total_laps
        active = [c for c in self.competitors if not c.finished]
        if not active:
            return 1
        return self.course.lap_for(max(c.distance for c in active))

    def standings(self) -> List[CompetitorSnapshot]:
        """Finishers in finish order, then the rest by distance covered."""
        ordered = sorted(
            self.competitors,
            key=lambda c: (0, c.finish_rank, 0.0) if c.finish_rank is not None else (1, 0, -c.distance),
        )
        return [self.competitor_snapshot(c, place) for place, c in enumerate(ordered, start=1)]

    def still_racing(self, limit: int = 3) -> List[CompetitorSnapshot]:
        return [snap for snap in self.standings() if not snap.finished][:limit]

    def results(self) -> List[FinishResult]:
        start = self.race_start_time or 0.0
        return [
            FinishResult(
                rank=c.finish_rank,
                lane=c.lane,
                name=c.name,
                finish_time=c.finish_time,
                race_time=round((c.finish_time - start) / 1000.0, 2),
            )
            for c in self.finish_order
        ]

    def competitor_snapshot(self, competitor: Competitor, place: Optional[int] = None) -> CompetitorSnapshot:
        position = competitor.position
        return CompetitorSnapshot(
            lane=competitor.lane,
            name=competitor.name,
            color=competitor.color,
            x=position.x,
            y=position.y,
            heading=position.heading,
            distance=competitor.distance,
            distance_fraction=competitor.distance_fraction,
            lap=competitor.current_lap,
            lap_progress=competitor.lap_progress,
            finished=competitor.finished,
            rank=competitor.finish_rank,
            place=place if place is not None else competitor.lane + 1,
            traits=competitor.traits,
        )

    def snapshot(self, now_ms: Optional[float] = None) -> RaceSnapshot:
        return RaceSnapshot(
            time=self.race_time(now_ms),
            phase=self.phase,
            status=self.status,
            countdown_label=self.countdown_label,
            leader_lap=self.leader_lap(),
            total_laps=self.total_laps,
            standings=self.standings(),
            results=self.results(),
        )

    # --- Helpers ---------------------------------------------------------

    def _build_field(self, num_horses: int) -> None:
        if num_horses < 1:
            raise ValueError("A race needs at least one horse.")
        self._log(f"Initializing horse list with {num_horses} horses")
        self.names.reset()
        track = self.course.track
        self.competitors = [
            Competitor(
                lane=lane,
                name=self.names.generate(),
                course=self.course,
                rules=self.rules,
                balancing=self.balancing,
                rng=RNGContainer.derive(self.rng),
                lane_offset=track.lane_offset(lane, num_horses),
                verbose=self.verbose,
                finish_listener=self._pending_finishers.append,
            )
            for lane in range(num_horses)
        ]
        self.finish_order = []

    def _reset_field(self) -> None:
        self.finish_order = []
        self._pending_finishers.clear()
        self.race_start_time = None
        self._last_tick_time = None
        self.tick_index = 0
        for competitor in self.competitors:
            competitor.reset(self.course)

    def _schedule_countdown(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self.countdown())
        self._countdown_task = task
        task.add_done_callback(self._forget_countdown)

    def _forget_countdown(self, task: asyncio.Task) -> None:
        if self._countdown_task is task:
            self._countdown_task = None

    def _cancel_countdown(self) -> None:
        task = self._countdown_task
        self._countdown_task = None
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()

    def _record_telemetry(self, now_ms: float, previous: dict) -> None:
        racers: List[TelemetryRacerFrame] = []
        for competitor in self.competitors:
            position = competitor.position
            racers.append(
                TelemetryRacerFrame(
                    lane=competitor.lane,
                    name=competitor.name,
                    world_position=(position.x, position.y),
                    distance=competitor.distance,
                    distance_delta=competitor.distance - previous.get(competitor.lane, competitor.distance),
                    speed=competitor.current_speed,
                    target_speed=competitor.target_speed,
                    stamina_factor=competitor.stamina_factor,
                    catch_up=competitor.catch_up_factor,
                    lead_handicap=competitor.lead_handicap,
                    momentum=competitor.momentum,
                    event=competitor.event.kind.value if competitor.event.kind is not None else None,
                    lap=competitor.current_lap,
                    finished=competitor.finished,
                    debug=dict(competitor.debug_log),
                )
            )
        self.telemetry.record_frame(
            TelemetryFrame(
                tick=self.tick_index,
                time=self.race_time(now_ms),
                phase=self.phase.value,
                leader_lap=self.leader_lap(),
                racers=racers,
            )
        )

    def _log(self, message: str) -> None:
        if self.verbose:
            print(message)
