"""Tests for rollups.core.config."""

import pytest

from rollups.core.config import RefreshWindows, RollupConfig, default_config_path, load_config


def test_packaged_config_matches_defaults():
    assert default_config_path().exists()
    assert load_config() == RollupConfig()


def test_yaml_overrides_and_unknown_keys(tmp_path):
    path = tmp_path / "rollups.yaml"
    path.write_text(
        "backfill:\n"
        "  batch_size: 25\n"
        "  colour: blue\n"
        "refresh:\n"
        "  player_best_scores: 14\n"
        "  map_global_averages: 90\n"
        "retention:\n"
        "  horizon_days: 30\n"
        "min_pattern_samples: 5\n",
        encoding="utf-8",
    )
    config = load_config(path)
    assert config.backfill.batch_size == 25
    assert config.refresh.player_best_scores == 14
    assert config.refresh.map_global_averages == 90
    # Untouched keys keep their defaults
    assert config.refresh.player_stats_monthly == 35
    assert config.retention.horizon_days == 30
    assert config.retention.batch_size == 10_000
    assert config.min_pattern_samples == 5


def test_missing_explicit_path_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml")


def test_non_mapping_file_raises(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(path)


def test_non_mapping_section_raises():
    with pytest.raises(ValueError, match="schedule"):
        RollupConfig.from_mapping({"schedule": [1, 2]})


def test_window_for_unknown_shape():
    windows = RefreshWindows()
    assert windows.for_shape("map_global_averages") is None
    with pytest.raises(KeyError):
        windows.for_shape("nope")
