import pytest

from backend.internal_core.config import load_config


def test_load_config_defaults(monkeypatch) -> None:
    for name in (
        "PLAYCOACH_PROVIDER",
        "PLAYCOACH_MAX_ATTEMPTS",
        "PLAYCOACH_RETRY_DELAYS",
        "PLAYCOACH_SILENCE_THRESHOLD_SEC",
        "PLAYCOACH_FAILURE_WEBHOOK_URL",
    ):
        monkeypatch.delenv(name, raising=False)

    cfg = load_config()

    assert cfg.PLAYCOACH_PROVIDER == "mock"
    assert cfg.PLAYCOACH_MAX_ATTEMPTS == 3
    assert cfg.PLAYCOACH_RETRY_DELAYS == (0.0, 5.0, 15.0)
    assert cfg.PLAYCOACH_SILENCE_THRESHOLD_SEC == 3.0
    assert cfg.PLAYCOACH_DIVERGENCE_REASSIGN_RATIO == 0.2
    assert cfg.PLAYCOACH_FAILURE_WEBHOOK_URL is None


def test_retry_delays_parse_from_env_and_index_by_attempt(monkeypatch) -> None:
    monkeypatch.setenv("PLAYCOACH_RETRY_DELAYS", "0, 1.5, 3")
    cfg = load_config()

    assert cfg.PLAYCOACH_RETRY_DELAYS == (0.0, 1.5, 3.0)
    assert cfg.retry_delay_for_attempt(1) == 0.0
    assert cfg.retry_delay_for_attempt(2) == 1.5
    assert cfg.retry_delay_for_attempt(3) == 3.0
    # Attempts past the table reuse the last delay.
    assert cfg.retry_delay_for_attempt(7) == 3.0


def test_load_config_rejects_unknown_transcription_mode(monkeypatch) -> None:
    monkeypatch.setenv("PLAYCOACH_TRANSCRIPTION_MODE", "three_pass")
    with pytest.raises(ValueError, match="PLAYCOACH_TRANSCRIPTION_MODE"):
        load_config()


def test_load_config_rejects_zero_attempts(monkeypatch) -> None:
    monkeypatch.setenv("PLAYCOACH_MAX_ATTEMPTS", "0")
    with pytest.raises(ValueError):
        load_config()


def test_milestone_library_path_resolves_relative_to_project(monkeypatch, tmp_path) -> None:
    target = tmp_path / "library.json"
    monkeypatch.setenv("PLAYCOACH_MILESTONE_LIBRARY_PATH", str(target))
    cfg = load_config()
    assert cfg.milestone_library_path() == target.resolve()

    monkeypatch.delenv("PLAYCOACH_MILESTONE_LIBRARY_PATH")
    assert load_config().milestone_library_path() is None
