import pytest
from pydantic import ValidationError

from src.integrations.contracts.interfaces import ProposalStatus
from src.utils.config_loader import ArtifactConfig, EngineConfig, LifecycleConfig, load_engine_config


def test_repository_config_loads():
    config = load_engine_config()
    assert config.premium.zero_total_policy == "confirm"
    assert config.artifacts.auth_code_length == 8
    assert config.lifecycle.policy_issue_allowed_from == [ProposalStatus.PAID]
    assert config.payment_link.timeout_seconds == 60


def test_missing_file_falls_back_to_defaults(tmp_path):
    assert load_engine_config(tmp_path / "nope.yml") == EngineConfig()


def test_env_override_and_partial_file(tmp_path, monkeypatch):
    path = tmp_path / "engine.yml"
    path.write_text("artifacts:\n  ttl_hours: 24\nlifecycle:\n  policy_no_prefix: TEST\n", encoding="utf-8")
    monkeypatch.setenv("ENGINE_CONFIG_PATH", str(path))

    config = load_engine_config()
    assert config.artifacts.ttl_hours == 24
    assert config.artifacts.auth_code_length == 8
    assert config.lifecycle.policy_no_prefix == "TEST"


def test_invalid_values_are_rejected(tmp_path):
    path = tmp_path / "engine.yml"
    path.write_text("premium:\n  zero_total_policy: sometimes\n", encoding="utf-8")
    with pytest.raises(ValidationError):
        load_engine_config(path)

    with pytest.raises(ValidationError):
        ArtifactConfig(auth_code_alphabet="AABBCC")
    with pytest.raises(ValidationError):
        LifecycleConfig(policy_issue_allowed_from=["COMPLETED"])
