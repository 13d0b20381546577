"""Tests for promptloop.core.config -- YAML settings, env overrides, validation."""

import pytest
import yaml

from promptloop.core.config import (
    DEFAULT_BOUNDARIES,
    ConfigValidationError,
    PromptLoopSettings,
    load_settings,
    save_settings,
)
from promptloop.core.llm.config import RoleConfig


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for var in ("PROMPTLOOP_CRON_SECRET", "CRON_SECRET", "PROMPTLOOP_DB",
                "PROMPTLOOP_WEBHOOK_URL", "PROMPTLOOP_CONFIG"):
        monkeypatch.delenv(var, raising=False)


class TestDefaults:
    def test_thresholds(self):
        s = PromptLoopSettings()
        assert s.thresholds.min_interactions == 50
        assert s.thresholds.success_rate == 0.7
        assert s.thresholds.edit_rate == 0.3
        assert s.thresholds.lookback_days == 7

    def test_boundaries_and_ttls(self):
        s = PromptLoopSettings()
        assert tuple(s.default_boundaries) == DEFAULT_BOUNDARIES
        assert s.aggregation_ttl_days == {"hour": 7, "day": 30, "week": 90, "month": 365}
        assert s.proposal_ttl_seconds == 30 * 24 * 3600

    def test_defaults_validate(self):
        assert PromptLoopSettings().validate() == []


class TestRoleConfig:
    def test_validate_valid(self):
        assert RoleConfig(provider="anthropic", model="claude-sonnet-4-20250514").validate() == []

    def test_unknown_provider(self):
        errors = RoleConfig(provider="nope", model="x").validate()
        assert len(errors) == 1
        assert "Unknown provider" in errors[0]

    def test_requires_api_key(self):
        assert RoleConfig(provider="openai").requires_api_key()
        assert not RoleConfig(provider="ollama", model="qwen2.5:7b").requires_api_key()

    def test_from_dict_uses_defaults(self):
        base = RoleConfig(provider="openai", model="gpt-4o-mini", temperature=0.3, max_tokens=200)
        rc = RoleConfig.from_dict({"model": "gpt-4o"}, defaults=base)
        assert rc.model == "gpt-4o"
        assert rc.temperature == 0.3
        assert rc.max_tokens == 200


class TestLoadSettings:
    def test_missing_file_gives_defaults(self, tmp_path):
        s = load_settings(tmp_path / "absent.yaml")
        assert s.thresholds.min_interactions == 50

    def test_yaml_overrides(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({
            "thresholds": {"min_interactions": 10, "success_rate": 0.8},
            "vocabulary": {"technical_terms": ["SDK", "Webhook"]},
            "aggregation_ttl_days": {"hour": 3},
            "prober": {"provider": "ollama", "model": "qwen2.5:7b"},
        }))

        s = load_settings(path)

        assert s.thresholds.min_interactions == 10
        assert s.thresholds.success_rate == 0.8
        assert s.thresholds.edit_rate == 0.3
        assert s.vocabulary.technical_terms == ["sdk", "webhook"]
        assert s.aggregation_ttl_days["hour"] == 3
        assert s.aggregation_ttl_days["day"] == 30
        assert s.prober.provider == "ollama"
        assert s.prober.max_tokens == 200

    def test_env_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PROMPTLOOP_CRON_SECRET", "s3cret")
        monkeypatch.setenv("PROMPTLOOP_DB", str(tmp_path / "x.db"))
        s = load_settings(tmp_path / "absent.yaml")
        assert s.cron_secret == "s3cret"
        assert s.db_path == str(tmp_path / "x.db")

    def test_config_path_from_env(self, tmp_path, monkeypatch):
        path = tmp_path / "alt.yaml"
        path.write_text("proposal_ttl_days: 5\n")
        monkeypatch.setenv("PROMPTLOOP_CONFIG", str(path))
        assert load_settings().proposal_ttl_days == 5

    def test_invalid_values_raise(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"thresholds": {"success_rate": 1.5}}))
        with pytest.raises(ConfigValidationError) as exc:
            load_settings(path)
        assert any("success_rate" in e for e in exc.value.errors)

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigValidationError):
            load_settings(path)


class TestSaveSettings:
    def test_save_then_load(self, tmp_path):
        s = PromptLoopSettings()
        s.thresholds.min_interactions = 25
        s.cron_secret = "not-written"
        path = save_settings(s, tmp_path / "config.yaml")

        raw = yaml.safe_load(path.read_text())
        assert "cron_secret" not in raw

        loaded = load_settings(path)
        assert loaded.thresholds.min_interactions == 25
        assert loaded.cron_secret == ""
