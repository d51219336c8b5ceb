"""
Tests for settings loading and the explicit analytics config structs.
"""
import pytest
from pydantic import ValidationError

from edumeter_analytics.core.config import (
    AnalyticsConfig,
    DetectionThresholds,
    IrtOptions,
    Settings,
)
from edumeter_analytics.core.errors import ConfigurationError
from edumeter_analytics.domain_types import IrtModelKind
from edumeter_analytics.models.base import build_engine


class TestDefaults:
    def test_detection_defaults(self):
        thresholds = DetectionThresholds()
        assert thresholds.ipd_threshold == 0.2
        assert thresholds.ipd_a_threshold == 0.3
        assert thresholds.ipd_b_threshold == 0.3
        assert thresholds.dif_threshold == 0.2
        assert thresholds.dif_min_responses == 30
        assert thresholds.exposure_threshold == 200
        assert thresholds.time_threshold_ms == 120000

    def test_irt_defaults(self):
        options = IrtOptions()
        assert options.model == IrtModelKind.TWO_PL
        assert options.min_responses == 30
        assert options.max_iters == 250
        assert options.learning_rate == 0.05
        assert options.tolerance == 0.0005
        assert options.l2 == 0.01
        assert (options.min_a, options.max_a) == (0.2, 3.0)
        assert (options.min_b, options.max_b) == (-4.0, 4.0)

    def test_window_default(self):
        assert AnalyticsConfig().window_days == 30

    def test_job_defaults(self):
        config = AnalyticsConfig()
        assert config.commit_batch_size == 500
        assert config.software_version is None


class TestRunParams:
    def test_thresholds_serialise_camel_case(self):
        params = DetectionThresholds().to_params()
        assert set(params) == {
            "ipdThreshold",
            "ipdAThreshold",
            "ipdBThreshold",
            "difThreshold",
            "difMinResponses",
            "exposureThreshold",
            "timeThresholdMs",
        }

    def test_irt_options_serialise_model_value(self):
        assert IrtOptions().to_params()["model"] == "2PL"

    def test_structs_are_frozen(self):
        options = IrtOptions()
        with pytest.raises(ValidationError):
            options.learning_rate = 1.0


class TestValidation:
    def test_unordered_bounds_rejected(self):
        with pytest.raises(ValidationError):
            IrtOptions(min_a=2.0, max_a=1.0)

    def test_bounds_must_contain_prior(self):
        with pytest.raises(ValidationError):
            IrtOptions(min_b=0.5, max_b=2.0)

    def test_negative_threshold_rejected(self):
        with pytest.raises(ValidationError):
            DetectionThresholds(ipd_threshold=-0.1)

    def test_zero_window_rejected(self):
        with pytest.raises(ValidationError):
            AnalyticsConfig(window_days=0)


class TestSettings:
    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("IPD_THRESHOLD", "0.35")
        monkeypatch.setenv("IRT_MAX_ITERS", "100")
        monkeypatch.setenv("ANALYTICS_WINDOW_DAYS", "7")

        config = Settings(_env_file=None).analytics_config()

        assert config.detection.ipd_threshold == 0.35
        assert config.irt.max_iters == 100
        assert config.window_days == 7

    def test_batch_size_and_version_reach_config(self, monkeypatch):
        monkeypatch.setenv("ANALYTICS_COMMIT_BATCH_SIZE", "50")
        monkeypatch.setenv("SOFTWARE_VERSION", "build-77")

        config = Settings(_env_file=None).analytics_config()

        assert config.commit_batch_size == 50
        assert config.software_version == "build-77"

    def test_software_version_falls_back_to_app_version(self, monkeypatch):
        monkeypatch.delenv("SOFTWARE_VERSION", raising=False)
        monkeypatch.setenv("APP_VERSION", "0.9.1")

        config = Settings(_env_file=None).analytics_config()

        assert config.software_version == "0.9.1"

    def test_invalid_environment_value(self, monkeypatch):
        monkeypatch.setenv("DIF_MIN_RESPONSES", "0")
        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_unsupported_model_parses(self, monkeypatch):
        monkeypatch.setenv("IRT_MODEL", "3PL")
        config = Settings(_env_file=None).analytics_config()
        assert config.irt.model == IrtModelKind.THREE_PL


class TestBuildEngine:
    def test_empty_url_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            build_engine("")

    def test_sqlite_url(self):
        engine = build_engine("sqlite://")
        assert engine.dialect.name == "sqlite"
        engine.dispose()
