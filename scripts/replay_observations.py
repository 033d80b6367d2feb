#!/usr/bin/env python3
"""CLI for replaying recorded face observations through the tracking engine."""

from __future__ import annotations

import argparse
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from tqdm import tqdm

from dwelltime.attribution.aggregate import format_duration
from dwelltime.attribution.history import AttentionHistory, HistoryStore
from dwelltime.config import load_config
from dwelltime.detectors.replay import ManualClock, ReplayDetector, load_replay
from dwelltime.engine import TrackingEngine
from dwelltime.io_utils import setup_logging


LOGGER = logging.getLogger("scripts.replay_observations")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Replay JSONL face observations through the engine")
    parser.add_argument("observations", type=Path, help="JSON-lines file, one detection tick per line")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("configs/engine.yaml"),
        help="Engine configuration YAML",
    )
    parser.add_argument(
        "--history-json",
        type=Path,
        default=None,
        help="Write attention history here (overrides config history_path)",
    )
    parser.add_argument(
        "--gallery-json",
        type=Path,
        default=None,
        help="Gallery to resolve identities against (overrides config gallery_path)",
    )
    parser.add_argument(
        "--matcher",
        choices=["greedy", "hungarian"],
        default=None,
        help="Override the track matcher",
    )
    parser.add_argument(
        "--top",
        type=int,
        default=5,
        help="Number of top attention getters to report per day",
    )
    parser.add_argument(
        "--no-flush",
        dest="flush",
        action="store_false",
        help="Keep tracks still active at the end instead of closing them",
    )
    parser.add_argument("--quiet", action="store_true", help="Disable the progress bar")
    return parser.parse_args(argv)


def replay(engine: TrackingEngine, clock: ManualClock, frames: List, flush: bool = True, progress: bool = True) -> int:
    """Drive ``engine`` through ``frames`` in order; returns records emitted."""
    emitted = 0
    engine.start()
    for frame in tqdm(frames, desc="Replaying", unit="tick", disable=not progress):
        clock.set(frame.timestamp)
        engine.check_rollover()
        emitted += len(engine.sweep())
        engine.detect_tick(frame)
    if flush:
        emitted += len(engine.flush())
    engine.stop()
    return emitted


def build_report(engine: TrackingEngine, top: int) -> Dict:
    days = []
    for day in engine.unique_dates():
        summary = engine.daily_summary(day)
        getters = engine.top_attention_getters(day, limit=top)
        days.append(
            {
                **summary.to_dict(),
                "total_formatted": format_duration(summary.total_duration),
                "top": [
                    {
                        "key": g.key,
                        "name": g.identity_name,
                        "total_duration": g.total_duration,
                        "sessions": g.sessions,
                    }
                    for g in getters
                ],
            }
        )
    count = engine.people_count()
    return {"people_total": count.total, "people_today": count.today, "days": days}


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    setup_logging()

    config = load_config(args.config)
    if args.matcher is not None:
        config.matcher = args.matcher
    if args.gallery_json is not None:
        config.gallery_path = args.gallery_json
    history_path = args.history_json if args.history_json is not None else config.history_path

    frames = load_replay(args.observations)
    if not frames:
        LOGGER.warning("No replayable frames in %s", args.observations)

    clock = ManualClock(frames[0].timestamp if frames else datetime.now())
    history = AttentionHistory(
        max_records=config.max_records,
        store=HistoryStore(history_path) if history_path else None,
    )
    engine = TrackingEngine(config=config, detector=ReplayDetector(), clock=clock, history=history)
    emitted = replay(engine, clock, frames, flush=args.flush, progress=not args.quiet)
    LOGGER.info("Replay complete: %d frames, %d attention records", len(frames), emitted)
    if history_path:
        LOGGER.info("Attention history written to %s", history_path)

    print(json.dumps(build_report(engine, args.top), indent=2))


if __name__ == "__main__":
    main()
