from duelmatch.backend.config import load_settings

_VARS = (
    "DUELMATCH_HOST",
    "DUELMATCH_PORT",
    "DUELMATCH_QUEUE_TIMEOUT",
    "DUELMATCH_HANDSHAKE_TIMEOUT",
    "DUELMATCH_SWEEP_INTERVAL",
    "DUELMATCH_ACK_GRACE",
    "DUELMATCH_REMATCH_TIMEOUT",
    "DUELMATCH_IDLE_TIMEOUT",
    "DUELMATCH_LIVENESS_TIMEOUT",
    "DUELMATCH_HISTORY_SIZE",
)


def test_load_settings_reads_expected_env(monkeypatch) -> None:
    monkeypatch.setenv("DUELMATCH_HOST", "0.0.0.0")
    monkeypatch.setenv("DUELMATCH_PORT", "9000")
    monkeypatch.setenv("DUELMATCH_QUEUE_TIMEOUT", "60")
    monkeypatch.setenv("DUELMATCH_HANDSHAKE_TIMEOUT", "5.5")
    monkeypatch.setenv("DUELMATCH_SWEEP_INTERVAL", "2")
    monkeypatch.setenv("DUELMATCH_ACK_GRACE", "1")
    monkeypatch.setenv("DUELMATCH_REMATCH_TIMEOUT", "8")
    monkeypatch.setenv("DUELMATCH_IDLE_TIMEOUT", "12")
    monkeypatch.setenv("DUELMATCH_LIVENESS_TIMEOUT", "30")
    monkeypatch.setenv("DUELMATCH_HISTORY_SIZE", "50")

    settings = load_settings()

    assert settings.host == "0.0.0.0"
    assert settings.port == 9000
    assert settings.queue_timeout_s == 60.0
    assert settings.handshake_timeout_s == 5.5
    assert settings.sweep_interval_s == 2.0
    assert settings.ack_grace_s == 1.0
    assert settings.rematch_timeout_s == 8.0
    assert settings.idle_timeout_s == 12.0
    assert settings.liveness_timeout_s == 30.0
    assert settings.history_size == 50


def test_load_settings_applies_defaults(monkeypatch) -> None:
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)

    settings = load_settings()

    assert settings.host == "127.0.0.1"
    assert settings.port == 8000
    assert settings.queue_timeout_s == 120.0
    assert settings.handshake_timeout_s == 15.0
    assert settings.sweep_interval_s == 10.0
    assert settings.ack_grace_s == 3.0
    assert settings.rematch_timeout_s == 15.0
    assert settings.idle_timeout_s == 30.0
    assert settings.liveness_timeout_s is None
    assert settings.history_size == 1000
