"""
config.py

Typed configuration loading and validation for tapbeat.

Design goals
- Load at most one UTF-8 JSON config file
- Validate with pydantic (defaults included)
- Support environment variable overrides
- A missing config file is not an error: gameplay always runs on defaults

Config file location
- If TAPBEAT_CONFIG_PATH is set, that file is used.
- Otherwise tapbeat searches these paths in order and uses the first one that exists:
  1) ./tapbeat_config.json (current working directory)
  2) platformdirs user_config_dir("Tapbeat", "Tapbeat")/tapbeat_config.json
- If none exists, every section uses its defaults.

Example config file (tapbeat_config.json)
{
  "detector": {
    "threshold_ratio": 1.25,
    "min_gap_seconds": 0.23
  },
  "chart": {
    "lane_strategy": "pattern",
    "seed": 1234
  },
  "scheduler": {
    "lookahead_seconds": 8.0,
    "max_active_notes": 4
  },
  "playfield": {
    "width": 1280,
    "height": 720,
    "hit_radius_scale": 0.045
  }
}
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from platformdirs import user_config_dir
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator


class DetectorConfig(BaseModel):
    frame_size: int = Field(default=1024, ge=2, description="Samples per energy frame.")
    hop_size: int = Field(default=512, ge=1, description="Samples between frame starts.")
    threshold_ratio: float = Field(default=1.25, gt=0.0, description="Onset threshold as a multiple of mean energy.")
    min_gap_seconds: float = Field(default=0.23, ge=0.0, description="Minimum spacing between accepted onsets.")
    min_onsets: int = Field(default=4, ge=1, description="Fewer detected onsets than this triggers the fallback grid.")
    fallback_spacing_seconds: float = Field(default=0.5, gt=0.0, description="Spacing of the fallback metronome grid.")
    fallback_duration_seconds: float = Field(default=120.0, gt=0.0, description="Grid length when duration is unknown.")
    min_tempo_bpm: int = Field(default=40, ge=1)
    max_tempo_bpm: int = Field(default=300, ge=1)

    @model_validator(mode="after")
    def validate_ranges(self) -> "DetectorConfig":
        if self.hop_size > self.frame_size:
            raise ValueError("hop_size must not exceed frame_size")
        if self.min_tempo_bpm >= self.max_tempo_bpm:
            raise ValueError("min_tempo_bpm must be below max_tempo_bpm")
        return self


class ChartConfig(BaseModel):
    lane_count: int = Field(default=4, ge=1, le=8, description="Number of input lanes.")
    lane_strategy: str = Field(default="random", description="random or pattern")
    seed: Optional[int] = Field(default=None, description="Fixed lane RNG seed. Derived from the source id when unset.")

    @field_validator("lane_strategy")
    @classmethod
    def validate_lane_strategy(cls, value: str) -> str:
        normalized = (value or "").strip().lower()
        allowed = {"random", "pattern"}
        if normalized not in allowed:
            raise ValueError("lane_strategy must be one of: random, pattern")
        return normalized


class SchedulerConfig(BaseModel):
    lookahead_seconds: float = Field(default=8.0, gt=0.0, description="How far ahead chart entries are activated.")
    max_active_notes: int = Field(default=4, ge=1, description="Cap on simultaneously pending notes.")
    hit_decay_seconds: float = Field(default=0.4, ge=0.0, description="Retention of a hit note after judgement.")
    miss_decay_seconds: float = Field(default=0.6, ge=0.0, description="Retention of a missed note after judgement.")


class JudgementConfig(BaseModel):
    cool_seconds: float = Field(default=0.08, gt=0.0)
    fine_seconds: float = Field(default=0.18, gt=0.0)
    miss_seconds: float = Field(default=0.35, gt=0.0, description="Outer edge of the explicit miss band.")
    cool_score: int = Field(default=300, ge=0)
    fine_score: int = Field(default=100, ge=0)
    auto_miss_grace_seconds: float = Field(default=0.20, ge=0.0, description="Extra time after the fine window.")
    combo_bonus_per_step: float = Field(default=0.05, ge=0.0)

    @model_validator(mode="after")
    def validate_window_order(self) -> "JudgementConfig":
        if not (self.cool_seconds < self.fine_seconds < self.miss_seconds):
            raise ValueError("windows must satisfy cool_seconds < fine_seconds < miss_seconds")
        return self


class ApproachConfig(BaseModel):
    base_seconds: float = Field(default=1.4, ge=0.0, description="Constant part of the approach time.")
    beats_per_approach: float = Field(default=4.0, ge=0.0, description="Beats added to the approach time.")
    default_bpm: int = Field(default=120, ge=1, description="Tempo assumed when no tempo is known.")
    density_step_seconds: float = Field(default=0.12, ge=0.0)
    smoothing: float = Field(default=0.18, gt=0.0, le=1.0)


class PlayfieldConfig(BaseModel):
    width: float = Field(default=1280.0, gt=0.0)
    height: float = Field(default=720.0, gt=0.0)
    margin_ratio: float = Field(default=0.15, ge=0.0, lt=0.5)
    hit_radius_scale: float = Field(default=0.045, gt=0.0, description="0.045 desktop, 0.10 touch screens.")
    tap_radius_multiplier: float = Field(default=1.2, gt=0.0)
    lane_keys: List[str] = Field(default_factory=lambda: ["w", "a", "s", "d"])

    @field_validator("lane_keys")
    @classmethod
    def normalize_lane_keys(cls, value: List[str]) -> List[str]:
        normalized = [str(item).strip().lower() for item in value]
        if any(not item for item in normalized):
            raise ValueError("lane_keys must be non-empty strings")
        if len(set(normalized)) != len(normalized):
            raise ValueError("lane_keys must be unique")
        return normalized

    def hit_radius(self) -> float:
        return min(float(self.width), float(self.height)) * float(self.hit_radius_scale)


class AppConfig(BaseModel):
    av_offset_seconds: float = Field(default=0.0, description="Added to player time to get song time.")
    detector: DetectorConfig = Field(default_factory=DetectorConfig)
    chart: ChartConfig = Field(default_factory=ChartConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    judgement: JudgementConfig = Field(default_factory=JudgementConfig)
    approach: ApproachConfig = Field(default_factory=ApproachConfig)
    playfield: PlayfieldConfig = Field(default_factory=PlayfieldConfig)


def _default_config_candidates() -> List[Path]:
    config_directory = Path(user_config_dir("Tapbeat", "Tapbeat"))
    return [
        Path.cwd() / "tapbeat_config.json",
        config_directory / "tapbeat_config.json",
    ]


def _resolve_config_path() -> Optional[Path]:
    explicit_path_text = os.environ.get("TAPBEAT_CONFIG_PATH", "").strip()
    if explicit_path_text:
        return Path(explicit_path_text)

    for candidate_path in _default_config_candidates():
        if candidate_path.exists():
            return candidate_path

    return None


def _read_json_file_utf8(config_path: Path) -> Dict[str, Any]:
    try:
        raw_text = config_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise
    except OSError as exception:
        raise OSError(f"Failed to read config file: {config_path}. Error: {exception}") from exception

    try:
        parsed = json.loads(raw_text)
    except json.JSONDecodeError as exception:
        raise ValueError(f"Config file is not valid JSON: {config_path}. Error: {exception}") from exception

    if not isinstance(parsed, dict):
        raise ValueError(f"Config file root must be a JSON object: {config_path}")

    return parsed


# (variable, section or None for the root, key, parser)
_ENVIRONMENT_OVERRIDES: Tuple[Tuple[str, Optional[str], str, Callable[[str], Any]], ...] = (
    ("TAPBEAT_AV_OFFSET_SECONDS", None, "av_offset_seconds", float),
    ("TAPBEAT_LOOKAHEAD_SECONDS", "scheduler", "lookahead_seconds", float),
    ("TAPBEAT_MAX_ACTIVE_NOTES", "scheduler", "max_active_notes", int),
    ("TAPBEAT_LANE_STRATEGY", "chart", "lane_strategy", str),
    ("TAPBEAT_CHART_SEED", "chart", "seed", int),
)


def _apply_environment_overrides(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """
    Environment overrides are optional and win over the file.

    Values that do not parse are ignored so a stray shell variable never blocks startup.
    """
    updated_config = dict(config_dict)

    for env_name, section_name, key_name, parse in _ENVIRONMENT_OVERRIDES:
        value_text = os.environ.get(env_name, "").strip()
        if not value_text:
            continue
        try:
            value = parse(value_text)
        except ValueError:
            continue

        if section_name is None:
            updated_config[key_name] = value
            continue
        section = updated_config.get(section_name)
        section = dict(section) if isinstance(section, dict) else {}
        section[key_name] = value
        updated_config[section_name] = section

    return updated_config


def load_config(config_path: Optional[Path] = None) -> Tuple[AppConfig, Optional[Path]]:
    resolved_path = config_path if config_path is not None else _resolve_config_path()
    json_dict = _read_json_file_utf8(resolved_path) if resolved_path is not None else {}
    json_dict = _apply_environment_overrides(json_dict)

    try:
        config = AppConfig.model_validate(json_dict)
    except ValidationError as exception:
        source_text = str(resolved_path) if resolved_path is not None else "defaults"
        raise ValueError(f"Config validation failed for {source_text}:\n{exception}") from exception

    return config, resolved_path


@lru_cache(maxsize=1)
def get_config() -> Tuple[AppConfig, Optional[Path]]:
    return load_config()


def to_json(config: AppConfig) -> str:
    return json.dumps(config.model_dump(), ensure_ascii=False, indent=2)
