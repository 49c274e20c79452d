from coinflip_escrow.config import EngineSettings, load_settings


def test_load_settings_reads_expected_env(monkeypatch) -> None:
    monkeypatch.setenv("COINFLIP_TIMELOCK_DELAY", "60")
    monkeypatch.setenv("COINFLIP_JOIN_WINDOW", "600")
    monkeypatch.setenv("COINFLIP_RESOLVE_GRACE", "300")
    monkeypatch.setenv("COINFLIP_FEE_BPS", "150")
    monkeypatch.setenv("COINFLIP_MAX_GAMES_PER_DAY", "0")
    monkeypatch.setenv("COINFLIP_DB_PATH", "/tmp/flip.db")
    monkeypatch.setenv("COINFLIP_OWNER", "owner-id")
    monkeypatch.setenv("COINFLIP_SESSION_TTL", "3600")

    settings = load_settings()

    assert settings.timelock_delay == 60
    assert settings.join_window == 600
    assert settings.resolve_grace == 300
    assert settings.fee_bps == 150
    assert settings.max_games_per_day == 0
    assert settings.db_path == "/tmp/flip.db"
    assert settings.owner == "owner-id"
    assert settings.session_ttl == 3600


def test_load_settings_applies_defaults(monkeypatch) -> None:
    for name in (
        "COINFLIP_TIMELOCK_DELAY",
        "COINFLIP_JOIN_WINDOW",
        "COINFLIP_RESOLVE_GRACE",
        "COINFLIP_FEE_BPS",
        "COINFLIP_MAX_GAMES_PER_DAY",
        "COINFLIP_MAX_PAGE_SIZE",
        "COINFLIP_BLOCKHASH_WINDOW",
        "COINFLIP_DB_PATH",
        "COINFLIP_OWNER",
        "COINFLIP_SEED_KEY",
        "COINFLIP_SESSION_TTL",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = load_settings()

    assert settings == EngineSettings()
    assert settings.timelock_delay == 2 * 60 * 60
    assert settings.fee_bps == 200
    assert settings.max_page_size == 100
    assert settings.owner is None
    assert settings.session_ttl == 7 * 24 * 60 * 60
