import logging
from pathlib import Path

import pytest
import yaml

from dwelltime.config import (
    DetectorOptions,
    EngineConfig,
    config_from_dict,
    detector_options_from_dict,
    load_config,
    load_detector_options,
)


def test_defaults_match_engine_constants():
    cfg = EngineConfig()
    assert cfg.track_match_threshold == 0.5
    assert cfg.identity_match_threshold == 0.6
    assert cfg.track_timeout_ms == 3000
    assert cfg.max_records == 500
    assert cfg.dedup_window_ms == 10000
    assert cfg.matcher == "greedy"
    assert cfg.gallery_path is None


def test_missing_config_returns_defaults(tmp_path: Path):
    assert load_config(tmp_path / "missing.yaml") == EngineConfig()
    assert load_config(None) == EngineConfig()


def test_load_config_resolves_paths_and_ignores_unknown_keys(tmp_path: Path):
    path = tmp_path / "engine.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "track_match_threshold": 0.45,
                "matcher": "hungarian",
                "gallery_path": "state/gallery.json",
                "frame_rate": 30,
            }
        ),
        encoding="utf-8",
    )
    cfg = load_config(path)
    assert cfg.track_match_threshold == 0.45
    assert cfg.matcher == "hungarian"
    assert cfg.gallery_path == tmp_path / "state" / "gallery.json"
    assert cfg.history_path is None


def test_invalid_values_rejected():
    with pytest.raises(ValueError):
        config_from_dict({"matcher": "nearest"})
    with pytest.raises(ValueError):
        EngineConfig(max_records=0)
    with pytest.raises(ValueError):
        EngineConfig(identity_match_threshold=0)


def test_shipped_configs_load(caplog):
    root = Path(__file__).resolve().parents[1] / "configs"
    engine_cfg = load_config(root / "engine.yaml")
    assert engine_cfg == EngineConfig(
        gallery_path=engine_cfg.gallery_path,
        history_path=engine_cfg.history_path,
    )
    with caplog.at_level(logging.WARNING, logger="dwelltime.config"):
        insight_cfg = load_config(root / "insightface.yaml")
        options = load_detector_options(root / "insightface.yaml")
    assert "Ignoring unknown" not in caplog.text
    assert options == DetectorOptions(det_size=(640, 640), det_thresh=0.5)
    assert insight_cfg.embedding_dim == 512
    assert insight_cfg.matcher == "greedy"


def test_detector_section_is_kept_out_of_engine_config(caplog):
    data = {
        "matcher": "greedy",
        "detector": {"det_size": [320, 240], "det_thresh": "0.6", "providers": ["CPUExecutionProvider"]},
    }
    with caplog.at_level(logging.WARNING, logger="dwelltime.config"):
        cfg = config_from_dict(data)
        options = detector_options_from_dict(data)
    assert "Ignoring unknown" not in caplog.text
    assert cfg == EngineConfig()
    assert options.det_size == (320, 240)
    assert options.det_thresh == 0.6
    assert options.providers == ["CPUExecutionProvider"]
    assert detector_options_from_dict({}) == DetectorOptions()
    with pytest.raises(ValueError):
        detector_options_from_dict({"detector": [640, 640]})
