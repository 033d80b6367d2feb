"""Engine configuration: dataclass defaults plus YAML overrides."""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from dwelltime.io_utils import load_yaml, resolve_path
from dwelltime.tracking.matcher import MATCHERS

LOGGER = logging.getLogger("dwelltime.config")

# Section of the YAML read by the detector adapters rather than the engine
DETECTOR_SECTION = "detector"


@dataclass
class EngineConfig:
    embedding_dim: Optional[int] = 128
    # Euclidean distance thresholds
    track_match_threshold: float = 0.5
    identity_match_threshold: float = 0.6
    # Track lifecycle
    track_timeout_ms: float = 3000.0
    min_attention_seconds: float = 1.0
    identity_announce_cooldown_ms: float = 5000.0
    # Scheduler periods
    detection_interval_ms: float = 1000.0
    sweep_interval_ms: float = 1000.0
    rollover_check_ms: float = 60000.0
    # History
    max_records: int = 500
    # People counter
    dedup_window_ms: float = 10000.0
    dedup_purge_ms: float = 60000.0
    # Demographics
    age_window: int = 10
    gender_min_probability: float = 0.7
    emotion_window: int = 10
    require_facing_camera: bool = True
    facing_max_turn_ratio: float = 0.25
    facing_max_tilt_ratio: float = 0.4
    matcher: str = "greedy"
    # Persistence (None keeps state in memory only)
    gallery_path: Optional[Path] = None
    history_path: Optional[Path] = None

    def __post_init__(self) -> None:
        if self.matcher not in MATCHERS:
            raise ValueError(f"Unknown matcher '{self.matcher}'; expected one of {sorted(MATCHERS)}")
        if self.track_match_threshold <= 0 or self.identity_match_threshold <= 0:
            raise ValueError("Match thresholds must be positive")
        if self.max_records < 1:
            raise ValueError("max_records must be at least 1")
        if self.embedding_dim is not None and self.embedding_dim < 1:
            raise ValueError("embedding_dim must be positive when set")


def config_from_dict(data: Dict[str, Any], base_dir: Optional[Path] = None) -> EngineConfig:
    """Build an EngineConfig from a mapping, skipping keys the engine does not know."""
    known = {f.name for f in fields(EngineConfig)}
    kwargs: Dict[str, Any] = {}
    for key, value in data.items():
        if key == DETECTOR_SECTION:
            continue
        if key not in known:
            LOGGER.warning("Ignoring unknown config key %s", key)
            continue
        kwargs[key] = value
    for key in ("gallery_path", "history_path"):
        if kwargs.get(key) is not None:
            kwargs[key] = resolve_path(str(kwargs[key]), base_dir)
    return EngineConfig(**kwargs)


def load_config(path: Optional[Path]) -> EngineConfig:
    """Load engine configuration from YAML; defaults when no path is given."""
    if path is None:
        return EngineConfig()
    if not path.exists():
        LOGGER.warning("Config %s not found; using defaults", path)
        return EngineConfig()
    data = load_yaml(path)
    config = config_from_dict(data, base_dir=path.parent)
    LOGGER.info(
        "Loaded engine config %s matcher=%s track_th=%.2f identity_th=%.2f timeout_ms=%.0f",
        path,
        config.matcher,
        config.track_match_threshold,
        config.identity_match_threshold,
        config.track_timeout_ms,
    )
    return config


@dataclass
class DetectorOptions:
    """InsightFace settings from the ``detector:`` section of the engine YAML."""

    det_size: Tuple[int, int] = (640, 640)
    det_thresh: float = 0.5
    providers: Optional[List[str]] = None


def detector_options_from_dict(data: Dict[str, Any]) -> DetectorOptions:
    section = data.get(DETECTOR_SECTION) or {}
    if not isinstance(section, dict):
        raise ValueError(f"'{DETECTOR_SECTION}' must be a mapping")
    known = {f.name for f in fields(DetectorOptions)}
    kwargs: Dict[str, Any] = {}
    for key, value in section.items():
        if key not in known:
            LOGGER.warning("Ignoring unknown detector key %s", key)
            continue
        kwargs[key] = value
    if "det_size" in kwargs:
        width, height = kwargs["det_size"]
        kwargs["det_size"] = (int(width), int(height))
    if "det_thresh" in kwargs:
        kwargs["det_thresh"] = float(kwargs["det_thresh"])
    if kwargs.get("providers") is not None:
        kwargs["providers"] = [str(p) for p in kwargs["providers"]]
    return DetectorOptions(**kwargs)


def load_detector_options(path: Optional[Path]) -> DetectorOptions:
    if path is None or not path.exists():
        return DetectorOptions()
    return detector_options_from_dict(load_yaml(path))
