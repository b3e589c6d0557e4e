"""
Run a single oval race from the command line.

Usage:
    python scripts/run_race.py --seed 7 --horses 8 --laps 3
    python scripts/run_race.py --ruleset tight_pack --realtime

Settings in a local .env file (OVAL_DERBY_CONFIG, OVAL_DERBY_RULESET) are
picked up before the balance config is loaded.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
import time

from dotenv import load_dotenv

# Ensure repo root is on sys.path when script is executed from anywhere
REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if REPO_ROOT not in sys.path:
    sys.path.append(REPO_ROOT)

# Load environment variables before the balance config is read at import
load_dotenv()

from oval_derby.config import ConfigError, get_config  # noqa: E402
from oval_derby.engine import (  # noqa: E402
    RaceController,
    RacePhase,
    RaceSnapshot,
    TelemetryCollector,
    load_rules,
    ruleset_names,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run a multi-lap oval horse race.")
    parser.add_argument("--seed", type=int, default=None, help="Seed for a reproducible race.")
    parser.add_argument("--horses", type=int, default=None, help="Field size (default from config).")
    parser.add_argument("--laps", type=int, default=None, help="Number of laps (default from config).")
    parser.add_argument("--ruleset", default=None, help=f"One of: {', '.join(ruleset_names())}.")
    parser.add_argument(
        "--frame-ms",
        type=float,
        default=float(get_config("field.frame_ms", 16)),
        help="Simulated milliseconds per tick.",
    )
    parser.add_argument(
        "--realtime",
        action="store_true",
        help="Run the 3-2-1 countdown and tick against the wall clock.",
    )
    parser.add_argument("--telemetry", metavar="PATH", help="Write per-tick telemetry to a JSON file.")
    parser.add_argument("--silent", action="store_true", help="Only print the final results.")
    return parser


def _lap_reporter():
    last = {"lap": 0, "status": None}

    def report(snapshot: RaceSnapshot) -> None:
        if snapshot.status != last["status"]:
            last["status"] = snapshot.status
            print(f"[{snapshot.time:6.2f}s] {snapshot.status}")
        if snapshot.phase is RacePhase.RUNNING and snapshot.leader_lap != last["lap"]:
            last["lap"] = snapshot.leader_lap
            leaders = ", ".join(s.name for s in snapshot.standings[:3])
            print(f"[{snapshot.time:6.2f}s] Lap {snapshot.leader_lap}/{snapshot.total_laps}: {leaders}")

    return report


async def run_realtime(controller: RaceController, frame_ms: float, silent: bool) -> None:
    report = None if silent else _lap_reporter()
    controller.start()
    if not silent:
        print(controller.status)
    countdown = controller.countdown_task
    if countdown is not None:
        last_label = None
        while not countdown.done():
            if not silent and controller.countdown_label != last_label:
                last_label = controller.countdown_label
                print(last_label)
            await asyncio.sleep(0.05)
    if controller.phase is RacePhase.COUNTDOWN:
        controller.begin_running()

    last = controller.clock()
    while controller.phase is RacePhase.RUNNING:
        await asyncio.sleep(frame_ms / 1000.0)
        now = controller.clock()
        snapshot = controller.tick(now - last, now)
        last = now
        if report:
            report(snapshot)


def print_results(controller: RaceController) -> None:
    print("\nFinish Order:")
    for result in controller.results():
        print(f"{result.rank:>2}. {result.name:<24} {result.race_time:7.2f}s  (lane {result.lane + 1})")
    unfinished = [s for s in controller.standings() if not s.finished]
    if unfinished:
        print(f"\n{len(unfinished)} horse(s) did not finish.")


def main() -> None:
    args = build_parser().parse_args()

    try:
        rules = load_rules(args.ruleset)
    except ConfigError as exc:
        print(f"FATAL ERROR: {exc}")
        sys.exit(2)

    controller = RaceController(
        num_horses=args.horses,
        total_laps=args.laps,
        rules=rules,
        rng_seed=args.seed,
        telemetry=TelemetryCollector() if args.telemetry else None,
        verbose=not args.silent,
    )
    if not args.silent:
        print(f"Ruleset '{rules.name}': {len(controller.competitors)} horses, {controller.total_laps} laps")

    started = time.perf_counter()
    try:
        if args.realtime:
            asyncio.run(run_realtime(controller, args.frame_ms, args.silent))
        else:
            controller.run_until_complete(
                frame_ms=args.frame_ms,
                on_tick=None if args.silent else _lap_reporter(),
            )
    except KeyboardInterrupt:
        controller.reset()
        print("Race stopped by user.")
        return

    print_results(controller)
    if args.telemetry:
        with open(args.telemetry, "w", encoding="utf-8") as f:
            json.dump(controller.telemetry.as_dicts(), f)
        print(f"Telemetry written to {args.telemetry} ({len(controller.telemetry.frames)} frames).")
    if not args.silent:
        print(f"\nSimulated in {time.perf_counter() - started:.2f}s wall time.")


if __name__ == "__main__":
    main()
