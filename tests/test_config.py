"""
Unit tests for configuration module.

Tests run WITHOUT .env file and WITHOUT a database.
"""
import pytest
from pydantic import ValidationError

from cinerecon.core.config import (
    DEFAULT_SOURCE_TRUST_ORDER,
    MissingDatabaseURLError,
    Settings,
    get_settings,
    reset_settings,
)
from cinerecon.matching.classifier import MatchPolicy


@pytest.mark.unit
def test_config_database_url_optional(clean_env):
    """The reconciliation core starts without DATABASE_URL."""
    settings = Settings(_env_file=None)
    assert settings.database_url is None


@pytest.mark.unit
def test_config_database_url_required_for_sql_store(clean_env):
    """require_database_url() raises a clear error when unset."""
    settings = Settings(_env_file=None)

    with pytest.raises(MissingDatabaseURLError) as exc_info:
        settings.require_database_url()

    assert "DATABASE_URL is required" in str(exc_info.value)


@pytest.mark.unit
def test_config_database_url_returned_when_set(clean_env, monkeypatch):
    """require_database_url() returns the configured URL."""
    monkeypatch.setenv("DATABASE_URL", "sqlite:///recon.db")
    settings = Settings(_env_file=None)
    assert settings.require_database_url() == "sqlite:///recon.db"


@pytest.mark.unit
def test_config_defaults(clean_env):
    """Defaults match the documented thresholds."""
    settings = Settings(_env_file=None)

    assert settings.exact_temporal_window == 1
    assert settings.audit_temporal_window == 3
    assert settings.sweep_min_similarity == 60
    assert settings.identical_min_similarity == 95
    assert settings.same_entity_min_similarity == 85
    assert settings.match_floor == 70
    assert settings.auto_apply_min_confidence == 90
    assert settings.source_trust_order == DEFAULT_SOURCE_TRUST_ORDER
    assert settings.tables_path is None


@pytest.mark.unit
def test_config_env_overrides(clean_env, monkeypatch):
    """Thresholds and windows can be tuned from the environment."""
    monkeypatch.setenv("AUDIT_TEMPORAL_WINDOW", "5")
    monkeypatch.setenv("SAME_ENTITY_MIN_SIMILARITY", "88")
    monkeypatch.setenv("SOURCE_TRUST_ORDER", '["curated", "tmdb"]')

    settings = Settings(_env_file=None)

    assert settings.audit_temporal_window == 5
    assert settings.same_entity_min_similarity == 88
    assert settings.source_trust_order == ["curated", "tmdb"]


@pytest.mark.unit
def test_config_log_level_validation(clean_env, monkeypatch):
    """Log level is validated and upper-cased."""
    monkeypatch.setenv("LOG_LEVEL", "debug")
    assert Settings(_env_file=None).log_level == "DEBUG"

    monkeypatch.setenv("LOG_LEVEL", "CHATTY")
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


@pytest.mark.unit
def test_config_threshold_bounds(clean_env, monkeypatch):
    """Similarity thresholds are bounded to 0-100."""
    monkeypatch.setenv("MATCH_FLOOR", "101")
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


@pytest.mark.unit
def test_config_threshold_order_enforced(clean_env, monkeypatch):
    """identical >= same_entity >= match_floor is checked at load time."""
    monkeypatch.setenv("SAME_ENTITY_MIN_SIMILARITY", "60")

    with pytest.raises(ValidationError) as exc_info:
        Settings(_env_file=None)

    assert "same_entity_min_similarity" in str(exc_info.value)


@pytest.mark.unit
def test_config_identifier_threshold_below_floor(clean_env, monkeypatch):
    """The shared-identifier threshold cannot exceed the match floor."""
    monkeypatch.setenv("IDENTIFIER_MIN_SIMILARITY", "75")
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


@pytest.mark.unit
def test_config_match_policy(clean_env, monkeypatch):
    """match_policy() carries every classifier threshold."""
    monkeypatch.setenv("AUTO_APPLY_MIN_CONFIDENCE", "95")
    policy = Settings(_env_file=None).match_policy()

    assert isinstance(policy, MatchPolicy)
    assert policy.auto_apply_min_confidence == 95
    assert policy.same_entity_min_similarity == 85
    assert policy.large_temporal_gap == 40


@pytest.mark.unit
def test_config_singleton(clean_env):
    """get_settings() returns the same instance until reset."""
    first = get_settings()
    assert get_settings() is first

    reset_settings()
    assert get_settings() is not first
