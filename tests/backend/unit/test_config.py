from tablekeeper.backend.config import load_settings


def test_load_settings_reads_expected_env(monkeypatch) -> None:
    monkeypatch.setenv("TABLEKEEPER_SERVER_SALT", "salt-1")
    monkeypatch.setenv("TABLEKEEPER_DATABASE_URL", "postgresql://local")
    monkeypatch.setenv("TABLEKEEPER_HOST", "localhost")
    monkeypatch.setenv("TABLEKEEPER_PORT", "9000")
    monkeypatch.setenv("TABLEKEEPER_DM_USERNAME", "  GameMaster ")
    monkeypatch.setenv("TABLEKEEPER_COMBAT_SHARED", "yes")
    monkeypatch.setenv("TABLEKEEPER_SESSION_TTL_SECONDS", "60")
    monkeypatch.setenv("TABLEKEEPER_RESET_TTL_SECONDS", "30")
    monkeypatch.setenv("TABLEKEEPER_LOG_LEVEL", "debug")

    settings = load_settings()

    assert settings.server_salt == "salt-1"
    assert settings.database_url == "postgresql://local"
    assert settings.host == "localhost"
    assert settings.port == 9000
    assert settings.dm_username == "gamemaster"
    assert settings.combat_shared is True
    assert settings.session_ttl_seconds == 60
    assert settings.reset_ttl_seconds == 30
    assert settings.log_level == "DEBUG"


def test_load_settings_applies_defaults(monkeypatch) -> None:
    for name in (
        "TABLEKEEPER_SERVER_SALT",
        "TABLEKEEPER_DATABASE_URL",
        "TABLEKEEPER_HOST",
        "TABLEKEEPER_PORT",
        "TABLEKEEPER_DM_USERNAME",
        "TABLEKEEPER_COMBAT_SHARED",
        "TABLEKEEPER_SESSION_TTL_SECONDS",
        "TABLEKEEPER_RESET_TTL_SECONDS",
        "TABLEKEEPER_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = load_settings()

    assert settings.server_salt == "dev-salt"
    assert settings.database_url is None
    assert settings.host == "127.0.0.1"
    assert settings.port == 8000
    assert settings.dm_username == "dm"
    assert settings.combat_shared is False
    assert settings.session_ttl_seconds == 7 * 24 * 3600
    assert settings.reset_ttl_seconds == 3600
    assert settings.log_level == "INFO"
