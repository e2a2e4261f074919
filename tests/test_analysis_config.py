"""Tests for the per-sport analysis configuration table."""

import pytest

from vision_engine.analysis.config import (
    SUPPORTED_SESSION_TYPES,
    SUPPORTED_SPORTS,
    focus_region_names,
    get_analysis_config,
)
from vision_engine.analysis.biomechanics import ANGLE_FUNCTIONS
from vision_engine.errors import ValidationError


class TestGetAnalysisConfig:

    @pytest.mark.parametrize("sport", SUPPORTED_SPORTS)
    @pytest.mark.parametrize("session_type", SUPPORTED_SESSION_TYPES)
    def test_total_and_deterministic(self, sport, session_type):
        first = get_analysis_config(sport, session_type)
        second = get_analysis_config(sport, session_type)

        assert first == second
        assert first.sport == sport
        assert first.session_type == session_type
        assert first.biomechanics.power_phase in first.biomechanics.phases

    @pytest.mark.parametrize("sport", SUPPORTED_SPORTS)
    def test_angles_and_phases_are_known(self, sport):
        config = get_analysis_config(sport, "training").biomechanics
        assert set(config.critical_angles) <= set(ANGLE_FUNCTIONS)
        for phase, bounds in config.phase_rules:
            assert phase in config.phases
            assert all(name in config.critical_angles for name, _, _ in bounds)

    def test_game_sessions_lower_pressure_threshold(self):
        assert get_analysis_config("baseball", "game").behavioral.pressure_threshold == 0.55
        assert get_analysis_config("baseball", "training").behavioral.pressure_threshold == 0.6

    def test_unsupported_values(self):
        with pytest.raises(ValidationError) as exc_info:
            get_analysis_config("cricket", "scrimmage")
        assert len(exc_info.value.errors) == 2

    def test_to_dict(self):
        data = get_analysis_config("football", "game").to_dict()
        assert data["biomechanics"]["power_phase"] == "release"
        assert data["behavioral"]["micro_expression_window_ms"] == 150


class TestFocusRegions:

    def test_groups_expand(self):
        config = get_analysis_config("baseball", "training").behavioral
        assert focus_region_names(config) == (
            "left_eye", "right_eye", "jaw", "left_eyebrow", "right_eyebrow",
        )
