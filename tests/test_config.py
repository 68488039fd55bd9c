"""Tests for settings and model configuration."""

from __future__ import annotations

import logging

import pytest
from pydantic import ValidationError

from switchts.config import ModelConfig, Settings, configure_logging, get_settings


class TestModelConfig:
    def test_defaults(self):
        cfg = ModelConfig()
        assert cfg.variance_sharing == "shared"
        assert cfg.fixed_variances == {}
        assert cfg.diffuse_scale == get_settings().diffuse_scale
        assert cfg.consistency_atol == 1e-8

    def test_unknown_sharing_policy(self):
        with pytest.raises(ValidationError):
            ModelConfig(variance_sharing="per_leaf")

    def test_negative_fixed_variance(self):
        with pytest.raises(ValidationError, match="sigma2\\[obs\\]"):
            ModelConfig(fixed_variances={"sigma2[obs]": -1.0})

    @pytest.mark.parametrize("field, value", [
        ("diffuse_scale", 0.0),
        ("diffuse_scale", -5.0),
        ("consistency_atol", -1e-3),
    ])
    def test_invalid_numbers(self, field, value):
        with pytest.raises(ValidationError):
            ModelConfig(**{field: value})

    def test_frozen(self):
        cfg = ModelConfig()
        with pytest.raises(ValidationError):
            cfg.variance_sharing = "per_regime"

    def test_dump(self):
        dumped = ModelConfig(fixed_variances={"sigma2[obs]": 0.5}).model_dump()
        assert dumped["fixed_variances"] == {"sigma2[obs]": 0.5}


class TestSettings:
    def test_log_level_normalized(self):
        assert Settings(log_level="info").log_level == "INFO"

    def test_unknown_log_level(self):
        with pytest.raises(ValidationError):
            Settings(log_level="loud")

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("SWITCHTS_LOG_LEVEL", "debug")
        monkeypatch.setenv("SWITCHTS_ENABLE_X64", "0")
        monkeypatch.setenv("SWITCHTS_DIFFUSE_SCALE", "1e4")
        s = Settings.from_env()
        assert s.log_level == "DEBUG"
        assert s.enable_x64 is False
        assert s.diffuse_scale == 1e4

    def test_overrides_win(self, monkeypatch):
        monkeypatch.setenv("SWITCHTS_DIFFUSE_SCALE", "1e4")
        assert Settings.from_env(diffuse_scale=5.0).diffuse_scale == 5.0

    def test_env_unset(self, monkeypatch):
        for var in ("SWITCHTS_LOG_LEVEL", "SWITCHTS_ENABLE_X64", "SWITCHTS_DIFFUSE_SCALE"):
            monkeypatch.delenv(var, raising=False)
        s = Settings.from_env()
        assert s.log_level == "WARNING"
        assert s.enable_x64 is True

    def test_cached(self):
        assert get_settings() is get_settings()


class TestConfigureLogging:
    @pytest.fixture(autouse=True)
    def _restore_logger(self):
        pkg_logger = logging.getLogger("switchts")
        level, handlers = pkg_logger.level, list(pkg_logger.handlers)
        yield
        pkg_logger.setLevel(level)
        pkg_logger.handlers = handlers

    def test_sets_level_and_handler(self):
        configure_logging("debug")
        pkg_logger = logging.getLogger("switchts")
        assert pkg_logger.level == logging.DEBUG
        assert len(pkg_logger.handlers) >= 1

    def test_single_handler(self):
        configure_logging("INFO")
        configure_logging("INFO")
        assert len(logging.getLogger("switchts").handlers) == 1
