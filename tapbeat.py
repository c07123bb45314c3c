"""
tapbeat.py

Command line entrypoint for the tapbeat gameplay core.

Commands
- analyze <audio>     Decode an audio file, detect onsets and print the resulting chart summary.
- simulate [<audio>]  Prepare a chart and auto-play it against a simulated clock, then print the score.
                      Without an audio path (or with --fallback) the fallback metronome chart is used.
- config              Print the effective configuration.

All output is JSON on stdout. Logging goes to stderr.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from audio_source import InMemoryAudioSource, SoundFileAudioSource
from chart_engine import ChartEngine, ChartResult
from config import AppConfig, load_config, to_json
from game_session import GameSession
import gameplay_models
from input_router import ScriptedInputSource
from timing_model import TimingModel

logger = logging.getLogger("tapbeat")


def _chart_summary(result: ChartResult, *, preview_count: int) -> Dict[str, Any]:
    notes = result.chart.notes
    return {
        "source_id": result.source_id,
        "source_kind": result.source_kind,
        "fallback_reason": result.fallback_reason,
        "tempo": result.chart.tempo,
        "bpm_guess": result.bpm_guess,
        "seed": result.seed,
        "duration_seconds": round(result.chart.duration_seconds, 3),
        "note_count": len(notes),
        "first_notes": [
            {"time_seconds": round(note.time_seconds, 4), "lane": note.lane}
            for note in notes[:preview_count]
        ],
    }


def _prepare(app_config: AppConfig, audio_path: Optional[Path]) -> ChartResult:
    engine = ChartEngine(app_config)
    if audio_path is None:
        source = InMemoryAudioSource(None, source_id="fallback")
    else:
        source = SoundFileAudioSource(audio_path)
    return asyncio.run(engine.prepare(source))


def _autoplay_trace(
    chart: gameplay_models.Chart,
    *,
    offset_seconds: float,
    skip_every: int,
) -> List[gameplay_models.InputEvent]:
    events: List[gameplay_models.InputEvent] = []
    for index, note in enumerate(chart.notes):
        if skip_every > 0 and (index + 1) % skip_every == 0:
            continue
        events.append(gameplay_models.InputEvent(lane=note.lane, at_time=note.time_seconds + offset_seconds))
    return events


def _simulate(
    app_config: AppConfig,
    result: ChartResult,
    *,
    offset_seconds: float,
    skip_every: int,
    frame_seconds: float,
) -> Dict[str, Any]:
    clock = TimingModel(av_offset_seconds=app_config.av_offset_seconds)
    trace = _autoplay_trace(result.chart, offset_seconds=offset_seconds, skip_every=skip_every)
    session = GameSession.from_chart_result(
        result,
        clock,
        app_config=app_config,
        input_source=ScriptedInputSource(trace),
    )

    label_counts: Dict[str, int] = {label.value: 0 for label in gameplay_models.JudgementLabel}
    def count_label(judgement: gameplay_models.JudgementResult) -> None:
        label_counts[judgement.label.value] += 1

    session.on_judgement(count_label)

    frame_index = 0
    while not session.is_finished():
        clock.update_player_time_seconds(frame_index * frame_seconds)
        session.tick()
        frame_index += 1

    score_state = session.get_score_state()
    return {
        "frames": frame_index,
        "song_time_seconds": round(session.song_time_seconds, 3),
        "score": score_state.score,
        "max_combo": score_state.max_combo,
        "final_combo": score_state.combo,
        "judgements": label_counts,
    }


def _load_app_config(config_path: Optional[str]) -> AppConfig:
    app_config, resolved_path = load_config(Path(config_path) if config_path else None)
    logger.debug("Config source: %s", resolved_path or "defaults")
    return app_config


def main(argv: Optional[List[str]] = None) -> int:
    argument_parser = argparse.ArgumentParser(description="tapbeat gameplay core tools")
    argument_parser.add_argument("--config", default=None, help="Path to a tapbeat_config.json file.")
    argument_parser.add_argument("--log-level", default="WARNING", help="DEBUG, INFO, WARNING or ERROR.")
    subparsers = argument_parser.add_subparsers(dest="command", required=True)

    analyze_parser = subparsers.add_parser("analyze", help="Detect onsets and summarize the generated chart.")
    analyze_parser.add_argument("audio", help="Audio file readable by libsndfile (wav, flac, ogg, mp3).")
    analyze_parser.add_argument("--preview", type=int, default=8, help="Number of leading notes to print.")

    simulate_parser = subparsers.add_parser("simulate", help="Auto-play a chart and report the score.")
    simulate_parser.add_argument("audio", nargs="?", default=None)
    simulate_parser.add_argument("--fallback", action="store_true", help="Skip decoding and use the fallback chart.")
    simulate_parser.add_argument("--offset", type=float, default=0.0, help="Seconds added to every simulated tap.")
    simulate_parser.add_argument("--skip-every", type=int, default=0, help="Leave every Nth note untouched.")
    simulate_parser.add_argument("--fps", type=float, default=60.0)

    subparsers.add_parser("config", help="Print the effective configuration.")

    parsed_args = argument_parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, str(parsed_args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        app_config = _load_app_config(parsed_args.config)
    except (OSError, ValueError) as exception:
        print(json.dumps({"ok": False, "error": str(exception)}, ensure_ascii=False, indent=2))
        return 2

    if parsed_args.command == "config":
        print(to_json(app_config))
        return 0

    if parsed_args.command == "analyze":
        result = _prepare(app_config, Path(parsed_args.audio))
        print(json.dumps({"ok": True, "chart": _chart_summary(result, preview_count=parsed_args.preview)}, indent=2))
        return 0

    audio_path = None if parsed_args.fallback or parsed_args.audio is None else Path(parsed_args.audio)
    result = _prepare(app_config, audio_path)
    fps = parsed_args.fps if parsed_args.fps > 0 else 60.0
    summary = _simulate(
        app_config,
        result,
        offset_seconds=float(parsed_args.offset),
        skip_every=int(parsed_args.skip_every),
        frame_seconds=1.0 / fps,
    )
    print(json.dumps({"ok": True, "chart": _chart_summary(result, preview_count=0), "result": summary}, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
