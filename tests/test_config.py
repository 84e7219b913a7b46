from sonar_bot.config import (
    DEFAULT_SYSTEM_PROMPT,
    build_config,
    load_config,
    validate_for_production,
)


def test_defaults_from_empty_source():
    config = build_config({})

    assert config.env == "development"
    assert not config.is_production
    assert config.perplexity.base_url == "https://api.perplexity.ai"
    assert config.perplexity.return_citations is False
    assert config.ai.model == "sonar-pro"
    assert config.ai.temperature == 0.7
    assert config.ai.max_tokens == 4096
    assert config.ai.system_prompt == DEFAULT_SYSTEM_PROMPT
    assert config.telegram.enabled is True
    assert config.whatsapp.enabled is False
    assert config.redis.enabled is False
    assert config.security.rate_limit_requests == 20
    assert config.security.rate_limit_window_seconds == 60
    assert config.session.max_conversation_history == 20
    assert config.session.timeout_seconds == 86400
    assert config.server.port == 3000


def test_parses_values():
    config = build_config(
        {
            "APP_ENV": "production",
            "PERPLEXITY_DEFAULT_TEMPERATURE": "0.3",
            "PERPLEXITY_DEFAULT_MAX_TOKENS": "1024",
            "RETURN_CITATIONS": "1",
            "TELEGRAM_ENABLED": "false",
            "REDIS_ENABLED": "TRUE",
            "REDIS_PORT": "6380",
            "ADMIN_USER_IDS": "1, 2 ,,3",
            "WHITELIST_ENABLED": "true",
            "SERVER_PORT": "8080",
        }
    )

    assert config.is_production
    assert config.ai.temperature == 0.3
    assert config.ai.max_tokens == 1024
    assert config.perplexity.return_citations is True
    assert config.telegram.enabled is False
    assert config.redis.enabled is True
    assert config.redis.port == 6380
    assert config.security.admin_user_ids == ["1", "2", "3"]
    assert config.security.whitelist_enabled is True
    assert config.server.port == 8080


def test_malformed_numbers_fall_back_to_defaults():
    config = build_config(
        {
            "RATE_LIMIT_REQUESTS": "lots",
            "PERPLEXITY_DEFAULT_TEMPERATURE": "warm",
            "SESSION_TIMEOUT_SECONDS": "",
        }
    )
    assert config.security.rate_limit_requests == 20
    assert config.ai.temperature == 0.7
    assert config.session.timeout_seconds == 86400


def test_load_config_environment_wins_over_yaml(tmp_path, monkeypatch):
    monkeypatch.setenv("PERPLEXITY_API_KEY", "pplx-from-env")
    monkeypatch.setenv("SECRET_PORT", "6390")
    monkeypatch.delenv("PERPLEXITY_DEFAULT_MODEL", raising=False)
    monkeypatch.delenv("REDIS_PORT", raising=False)
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "PERPLEXITY_API_KEY: pplx-from-yaml\n"
        "PERPLEXITY_DEFAULT_MODEL: sonar\n"
        "REDIS_PORT: ${SECRET_PORT}\n",
        encoding="utf-8",
    )

    config = load_config(config_file, tmp_path / "missing.env")

    assert config.perplexity.api_key == "pplx-from-env"
    assert config.ai.model == "sonar"
    assert config.redis.port == 6390


def test_load_config_reads_dotenv(tmp_path, monkeypatch):
    monkeypatch.delenv("WHATSAPP_VERIFY_TOKEN", raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("WHATSAPP_VERIFY_TOKEN=from-dotenv\n", encoding="utf-8")

    config = load_config(tmp_path / "none.yaml", env_file)

    assert config.whatsapp.verify_token == "from-dotenv"
    monkeypatch.delenv("WHATSAPP_VERIFY_TOKEN", raising=False)


def test_production_validation():
    problems = validate_for_production(build_config({"TELEGRAM_ENABLED": "false"}))
    assert any("PERPLEXITY_API_KEY" in p for p in problems)
    assert any("At least one platform" in p for p in problems)

    problems = validate_for_production(
        build_config({"PERPLEXITY_API_KEY": "pplx-real", "WHATSAPP_ENABLED": "true"})
    )
    assert any("TELEGRAM_BOT_TOKEN" in p for p in problems)
    assert any("WHATSAPP_ACCESS_TOKEN" in p for p in problems)

    assert validate_for_production(
        build_config({"PERPLEXITY_API_KEY": "pplx-real", "TELEGRAM_BOT_TOKEN": "123:abc"})
    ) == []
